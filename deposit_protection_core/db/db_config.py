from contextlib import contextmanager
from typing import Any, Generator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, scoped_session, sessionmaker

from ..config import DatabaseConfig, get_config
from ..exceptions import ErrorCode, RepositoryError, ServiceError
from ..utils import get_logger

# Base class for all SQLAlchemy models
Base: Any = declarative_base()


def _is_sqlite(connection_string: str) -> bool:
    return connection_string.startswith("sqlite")


class DatabaseManager:
    """
    Owns the engine and session factory for one database.

    SQLite connections are shared across the adapter worker threads, so they
    are opened with ``check_same_thread=False`` and a busy timeout.
    """

    def __init__(self, config: Optional[DatabaseConfig] = None):
        self.config = config or get_config().database
        self.engine = self._create_engine()
        self.session_factory = sessionmaker(bind=self.engine, expire_on_commit=False)
        self.scoped_session = scoped_session(self.session_factory)

    @property
    def is_sqlite(self) -> bool:
        return _is_sqlite(self.config.connection_string)

    def _create_engine(self):
        connection_string = self.config.connection_string
        if _is_sqlite(connection_string):
            engine = create_engine(
                connection_string,
                echo=self.config.echo,
                connect_args={"check_same_thread": False, "timeout": 30},
            )

            @event.listens_for(engine, "connect")
            def _enable_foreign_keys(dbapi_connection, connection_record):
                cursor = dbapi_connection.cursor()
                cursor.execute("PRAGMA foreign_keys=ON")
                cursor.close()

            return engine
        return create_engine(
            connection_string,
            echo=self.config.echo,
            pool_size=self.config.pool_size,
            max_overflow=self.config.max_overflow,
            pool_timeout=self.config.pool_timeout,
            pool_pre_ping=True,
        )

    def create_tables(self) -> None:
        Base.metadata.create_all(self.engine)

    def drop_tables(self) -> None:
        if get_config().environment == "production":
            raise ServiceError(
                "Cannot drop tables in production",
                error_code=ErrorCode.CONFIGURATION_ERROR,
                operation="drop_tables",
            )
        Base.metadata.drop_all(self.engine)

    def get_session(self) -> Session:
        return self.scoped_session()

    @contextmanager
    def session_scope(self) -> Generator[Session, None, None]:
        """
        One unit of work: commit on success, roll back on any exception.

        SQLAlchemy failures are re-raised as RepositoryError; domain errors
        pass through unchanged.
        """
        session = self.session_factory()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            raise RepositoryError(
                f"Database operation failed: {e}",
                error_code=ErrorCode.DATABASE_ERROR,
                cause=e,
            ) from e
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def close(self) -> None:
        self.scoped_session.remove()
        self.engine.dispose()


def import_all_models():
    """Import all models to ensure they're registered with SQLAlchemy metadata."""
    from sqlalchemy.orm import configure_mappers

    from .db_credential_models import SchemeCredential  # noqa
    from .db_registration_models import DepositRegistration, RegistrationTransition  # noqa

    configure_mappers()


# Global database manager instance
_db_manager: Optional[DatabaseManager] = None


def get_db_manager() -> DatabaseManager:
    """
    Get the global database manager instance.

    Raises:
        ServiceError: If no database manager has been initialized
    """
    if _db_manager is None:
        raise ServiceError(
            "Database manager not initialized. Call initialize_db() first.",
            error_code=ErrorCode.CONFIGURATION_ERROR,
            operation="get_db_manager",
        )
    return _db_manager


def set_db_manager(manager: Optional[DatabaseManager]) -> None:
    """Set the global database manager instance (tests inject their own)."""
    global _db_manager
    _db_manager = manager


def initialize_db(config: Optional[DatabaseConfig] = None) -> DatabaseManager:
    """
    Initialize the global database manager and create missing tables.

    Args:
        config: Optional DatabaseConfig. If None, the application config is used.
    """
    global _db_manager
    manager = DatabaseManager(config)
    get_logger().info(
        "Initializing database",
        extra={"dialect": manager.engine.dialect.name},
    )
    import_all_models()
    manager.create_tables()
    _db_manager = manager
    return manager


def close_db() -> None:
    """Close the database connections and dispose of the engine."""
    global _db_manager
    if _db_manager:
        _db_manager.close()
        _db_manager = None
