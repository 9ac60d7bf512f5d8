"""
Standardized Error Handling for filebacked
==========================================

This module provides the exception hierarchy used by every directory and item
operation, plus the helpers that convert low-level failures into it.

Synchronous operations raise these errors directly. Failures that have no
caller to raise to (deferred writes, the lossy ``Item.value`` accessor) go
through :func:`report_unhandled`, the single diagnostic channel.
"""

import functools
import logging
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Type, Union

logger = logging.getLogger(__name__)

DiagnosticHook = Callable[[BaseException, Dict[str, Any]], None]

_diagnostic_hook: Optional[DiagnosticHook] = None


class PersistenceError(Exception):
    """Base exception for all persistence errors."""

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        self.context = context or {}
        super().__init__(message)

        # Log error with context for debugging
        context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
        logger.error(
            f"Persistence error: {message}"
            + (f" ({context_str})" if context_str else "")
        )


class EncodeError(PersistenceError):
    """Raised when a serializer cannot produce bytes for a value."""

    pass


class DecodeError(PersistenceError):
    """Raised when stored bytes cannot be parsed back into a value."""

    pass


class NilValueError(DecodeError):
    """Raised when an object archive decodes to an absent root object."""

    pass


class PersistenceIOError(PersistenceError, OSError):
    """Raised when a filesystem operation fails."""

    pass


class PersistenceConfigurationError(PersistenceError, ValueError):
    """Raised when configuration is invalid."""

    pass


def with_error_handling(
    error_type: Type[PersistenceError] = PersistenceError,
    context: Optional[Dict[str, Any]] = None,
):
    """
    Decorator converting unexpected exceptions into ``error_type``.

    PersistenceErrors raised inside the wrapped function pass through
    unchanged. Anything else is wrapped, with the original exception chained
    as ``__cause__``.

    Args:
        error_type: Type of PersistenceError to raise
        context: Additional context to include in the error
    """

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except PersistenceError:
                raise
            except Exception as e:
                error_context = (context or {}).copy()
                error_context.update(
                    {
                        "function": func.__name__,
                        "original_error": str(e),
                        "original_error_type": type(e).__name__,
                    }
                )
                raise error_type(f"Error in {func.__name__}: {e}", error_context) from e

        return wrapper

    return decorator


@contextmanager
def file_operation(operation: str, path: Union[str, Path]):
    """
    Context manager for filesystem operations.

    Logs the operation duration at DEBUG level and converts ``OSError`` into
    :class:`PersistenceIOError` carrying the operation and path.
    """
    start_time = time.time()
    try:
        yield
    except PersistenceError:
        raise
    except PermissionError as e:
        raise PersistenceIOError(
            f"Permission denied for {operation}: {path}",
            {"operation": operation, "path": str(path)},
        ) from e
    except OSError as e:
        raise PersistenceIOError(
            f"File system error during {operation}: {e}",
            {"operation": operation, "path": str(path), "errno": e.errno},
        ) from e
    else:
        logger.debug(f"{operation} completed for {path} ({time.time() - start_time:.3f}s)")


def set_diagnostic_hook(hook: Optional[DiagnosticHook]) -> Optional[DiagnosticHook]:
    """
    Install the hook that receives failures nobody can raise to.

    The hook is called with the exception and a context dict after the
    failure has been logged. Pass ``None`` to go back to logging only.

    Returns:
        The previously installed hook.
    """
    global _diagnostic_hook
    previous = _diagnostic_hook
    _diagnostic_hook = hook
    return previous


def get_diagnostic_hook() -> Optional[DiagnosticHook]:
    """Return the currently installed diagnostic hook, if any."""
    return _diagnostic_hook


def report_unhandled(
    error: BaseException,
    context: Optional[Dict[str, Any]] = None,
    level: int = logging.CRITICAL,
) -> None:
    """
    Surface a failure that cannot be propagated to a caller.

    Used by deferred writes and by the non-throwing ``Item.value`` accessor.
    The failure is always logged with its traceback; the diagnostic hook, when
    installed, is called afterwards. A failing hook is logged, never raised.
    """
    context = context or {}
    logger.log(
        level,
        f"Unhandled persistence failure: {type(error).__name__}: {error}",
        exc_info=(type(error), error, error.__traceback__),
        extra={"persistence_context": context},
    )
    hook = _diagnostic_hook
    if hook is None:
        return
    try:
        hook(error, context)
    except Exception as hook_error:
        logger.warning(f"Diagnostic hook raised {type(hook_error).__name__}: {hook_error}")
