"""Structured logging helpers shared by every notification component."""

import logging
from typing import Optional


class ComponentLoggerAdapter(logging.LoggerAdapter):
    """LoggerAdapter that merges its component field with per-call extras."""

    def process(self, msg, kwargs):
        # Call-site extras win over the adapter defaults
        extra = kwargs.get("extra", {})
        kwargs["extra"] = {**self.extra, **extra}
        return msg, kwargs


def get_logger(name: str, component: Optional[str] = None):
    """Get a logger with an optional default component field.

    Args:
        name: Logger name (typically __name__)
        component: Optional component identifier injected into every record

    Returns:
        Logger or ComponentLoggerAdapter instance

    Example:
        >>> logger = get_logger(__name__, component="cascade")
        >>> logger.info("Cascade step fired", extra={"event": "cascade.step.fired"})
    """
    logger = logging.getLogger(name)

    if component:
        return ComponentLoggerAdapter(logger, {"component": component})

    return logger
