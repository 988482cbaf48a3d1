# =============================================================================
# fin_core/errors/handlers.py
# Error Handling Utilities
# =============================================================================

from __future__ import annotations
import functools
import traceback
from typing import Any, Callable, Iterable, Optional, TypeVar

from fin_core.logging import get_logger
from .exceptions import DataLayerError

logger = get_logger(__name__)

T = TypeVar("T")


def handle_error(
    error: BaseException,
    context: Optional[str] = None,
    log_traceback: bool = False,
) -> None:
    """
    Centralized error logging.

    Args:
        error: The exception to handle
        context: Short description of what was being attempted
        log_traceback: Whether to attach the traceback to the log record
    """
    if isinstance(error, DataLayerError):
        code = error.code
        message = error.message
        details = error.details
    else:
        code = "UNKNOWN"
        message = str(error)
        details = {"traceback": traceback.format_exc()} if log_traceback else {}

    prefix = f"{context}: " if context else ""
    logger.error(
        f"{prefix}[{code}] {message}",
        extra={"details": details},
        exc_info=log_traceback,
    )


def notify_callbacks(
    callbacks: Iterable[Callable[..., Any]],
    *args,
    label: str = "callback",
) -> None:
    """
    Invoke every callback with the given arguments.

    A failing callback is logged and skipped; it never reaches the caller and
    never prevents the remaining callbacks from running.
    """
    for callback in list(callbacks):
        try:
            callback(*args)
        except Exception as e:
            logger.error(f"Error in {label}: {e}")


def safe_execute(
    func: Callable[..., T],
    *args,
    default: Optional[T] = None,
    context: Optional[str] = None,
    reraise: bool = False,
    **kwargs,
) -> Optional[T]:
    """
    Execute a function with automatic error logging.

    Usage:
        cached = safe_execute(cache.load_snapshot, storage, default=0,
                              context="Restoring cache snapshot")
    """
    try:
        return func(*args, **kwargs)
    except Exception as e:
        handle_error(e, context=context)
        if reraise:
            raise
        return default


class ErrorContext:
    """
    Context manager for error handling with automatic logging.

    Usage:
        with ErrorContext("Writing offline copy", recoverable=True):
            local_store.append("accounts", item)
    """

    def __init__(self, operation: str, recoverable: bool = True):
        self.operation = operation
        self.recoverable = recoverable
        self.error: Optional[BaseException] = None

    def __enter__(self) -> ErrorContext:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        if exc_type is not None and issubclass(exc_type, Exception):
            self.error = exc_val
            handle_error(exc_val, context=f"Error during: {self.operation}")
            # Suppress exception if recoverable
            return self.recoverable
        return False

    @property
    def failed(self) -> bool:
        return self.error is not None


def error_boundary(default_return: Any = None, log: bool = True):
    """
    Decorator that logs and swallows exceptions, returning a default.

    Usage:
        @error_boundary(default_return=False)
        def probe() -> bool:
            ...
    """
    def decorator(func: Callable[..., T]) -> Callable[..., Optional[T]]:
        @functools.wraps(func)
        def wrapper(*args, **kwargs) -> Optional[T]:
            try:
                return func(*args, **kwargs)
            except Exception as e:
                if log:
                    logger.debug(f"Error in {func.__name__}: {e}")
                return default_return

        return wrapper

    return decorator
