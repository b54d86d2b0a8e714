"""
Bounded worker pool for adapter calls.

Scheme and CRM calls block on the network; running them through the pool
gives every call a deadline. A call past its deadline is reported as an
ADAPTER_TIMEOUT AdapterError. The worker itself is not interrupted and
finishes in the background.
"""

import concurrent.futures
import threading
from typing import Any, Callable, Optional, TypeVar

from ..config import get_config
from ..exceptions import AdapterError, BaseError, ErrorCode
from ..utils import get_logger

T = TypeVar("T")


class AdapterExecutor:
    def __init__(self, max_workers: Optional[int] = None, default_timeout: Optional[float] = None):
        adapter_config = get_config().adapters
        self.max_workers = max_workers or adapter_config.max_workers
        self.default_timeout = default_timeout or adapter_config.timeout_seconds
        self._pool: Optional[concurrent.futures.ThreadPoolExecutor] = None
        self._pool_lock = threading.Lock()
        self.logger = get_logger()

    def _get_pool(self) -> concurrent.futures.ThreadPoolExecutor:
        with self._pool_lock:
            if self._pool is None:
                self._pool = concurrent.futures.ThreadPoolExecutor(
                    max_workers=self.max_workers, thread_name_prefix="deposit-adapter"
                )
            return self._pool

    def call(
        self,
        fn: Callable[..., T],
        *args: Any,
        service_name: str,
        timeout: Optional[float] = None,
        **kwargs: Any,
    ) -> T:
        """
        Run ``fn(*args, **kwargs)`` on the pool and wait up to ``timeout`` seconds.

        Raises:
            AdapterError: On timeout, or wrapping any non-domain exception the
                adapter raised. Domain errors (BaseError) propagate unchanged.
        """
        timeout = timeout or self.default_timeout
        future = self._get_pool().submit(fn, *args, **kwargs)
        try:
            return future.result(timeout=timeout)
        except concurrent.futures.TimeoutError as e:
            raise AdapterError(
                f"{service_name} call timed out after {timeout}s",
                service_name=service_name,
                error_code=ErrorCode.ADAPTER_TIMEOUT,
                cause=e,
                timeout_seconds=timeout,
            ) from e
        except BaseError:
            raise
        except Exception as e:
            raise AdapterError(
                f"{service_name} call failed: {e}",
                service_name=service_name,
                cause=e,
            ) from e

    def shutdown(self, wait: bool = False) -> None:
        with self._pool_lock:
            if self._pool is not None:
                self._pool.shutdown(wait=wait)
                self._pool = None
