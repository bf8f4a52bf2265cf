"""Delayed task scheduling used by the cascade and deferred email delivery."""

from .service import BackgroundTaskScheduler, ImmediateTaskScheduler, TaskScheduler

__all__ = [
    "TaskScheduler",
    "BackgroundTaskScheduler",
    "ImmediateTaskScheduler",
]
