"""
Column types and mixins shared by the deposit protection models.

SQLite backs development and tests, PostgreSQL backs production; the types
here hide the difference from the models.
"""

import uuid
from datetime import UTC, datetime

from sqlalchemy import Column, DateTime, String, Text
from sqlalchemy.dialects.postgresql import BYTEA, JSONB
from sqlalchemy.types import TypeDecorator

from ..utils import json_utils


def utc_now():
    """Return current UTC time with timezone info attached."""
    return datetime.now(UTC)


def as_utc(value):
    """SQLite returns naive datetimes; read them back as UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


class JSON(TypeDecorator):
    """JSONB on PostgreSQL, serialized text elsewhere. Decimals are kept as strings."""

    impl = Text
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(JSONB())
        return dialect.type_descriptor(Text())

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        encoded = json_utils.dumps(value)
        if dialect.name == "postgresql":
            return json_utils.loads(encoded)
        return encoded

    def process_result_value(self, value, dialect):
        if value is None or dialect.name == "postgresql":
            return value
        return json_utils.loads(value)


class EncryptedBinary(TypeDecorator):
    """pgcrypto output as BYTEA on PostgreSQL; plain text on SQLite."""

    impl = Text
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(BYTEA())
        return dialect.type_descriptor(Text())

    def process_bind_param(self, value, dialect):
        if dialect.name != "postgresql" and isinstance(value, bytes):
            return value.decode("utf-8")
        return value

    def process_result_value(self, value, dialect):
        # decrypt_secrets() does the reverse
        return value


class TimestampMixin:
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False)


class UUIDMixin:
    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
