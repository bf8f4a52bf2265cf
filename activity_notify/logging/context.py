"""Context propagation for structured logging.

Fields pushed here (notification id, cascade step, target reference) are
attached to every log record emitted inside the scope. Context is stored in a
ContextVar, so concurrent scheduler threads and asyncio tasks each see
their own fields.
"""

from contextvars import ContextVar, Token
from typing import Any, Dict, Optional

LogContextVar: ContextVar[Dict[str, Any]] = ContextVar("activity_notify_log_context", default={})


def get_log_context() -> Dict[str, Any]:
    """Return a copy of the current logging context."""
    return LogContextVar.get().copy()


def push_log_context(**kwargs) -> Token:
    """Merge fields into the logging context.

    Args:
        **kwargs: Fields to add to the logging context

    Returns:
        Token for restoring the previous context with pop_log_context()

    Example:
        >>> token = push_log_context(notification_id=42, step_index=0)
        >>> pop_log_context(token)
    """
    current = LogContextVar.get()
    return LogContextVar.set({**current, **kwargs})


def pop_log_context(token: Token) -> None:
    """Restore the logging context to the state captured by token."""
    LogContextVar.reset(token)


def clear_log_context() -> None:
    """Clear all logging context fields (mainly for tests)."""
    LogContextVar.set({})


class log_context:
    """Context manager for scoped logging context.

    Example:
        >>> with log_context(notification_id=42, channel="slack"):
        ...     logger.info("Triggering optional channel")
    """

    def __init__(self, **kwargs):
        self.kwargs = kwargs
        self.token: Optional[Token] = None

    def __enter__(self):
        self.token = push_log_context(**self.kwargs)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.token is not None:
            pop_log_context(self.token)
        return False
