"""Decorator utilities for cross-cutting concerns."""
import time
import logging
import functools
import inspect
from typing import Any, Callable, Dict, Optional, TypeVar, cast

from files_storage.errors import StorageError

# Setup logging
logger = logging.getLogger(__name__)

F = TypeVar('F', bound=Callable[..., Any])


def _target(storage: Any, arguments: Dict[str, Any]) -> Optional[str]:
    """Bucket key (or namespace) an adapter call works on, for log lines."""
    id = arguments.get("id") or arguments.get("prefix")
    if id:
        return storage.path(id)
    return storage.prefix


def log_storage_operation(operation: str) -> Callable[[F], F]:
    """Decorator factory logging an ``S3Storage`` operation with its target and duration.

    Storage errors are logged with their taxonomy class; anything else gets a
    traceback. Both are re-raised unchanged.

    Args:
        operation: Name used in the log lines, e.g. ``"upload"``

    Returns:
        Decorator for ``S3Storage`` methods
    """
    def decorator(func: F) -> F:
        signature = inspect.signature(func)

        @functools.wraps(func)
        def wrapper(self, *args, **kwargs):
            arguments = signature.bind_partial(self, *args, **kwargs).arguments
            target = _target(self, arguments) or f"bucket {self.bucket}"
            start_time = time.perf_counter()
            try:
                result = func(self, *args, **kwargs)
            except StorageError as e:
                duration = time.perf_counter() - start_time
                logger.error(f"{operation} of '{target}' failed after {duration:.2f}s: {type(e).__name__}: {str(e)}")
                raise
            except Exception:
                duration = time.perf_counter() - start_time
                logger.exception(f"{operation} of '{target}' crashed after {duration:.2f}s")
                raise
            duration = time.perf_counter() - start_time
            logger.info(f"{operation} of '{target}' completed in {duration:.2f}s")
            return result
        return cast(F, wrapper)
    return decorator
