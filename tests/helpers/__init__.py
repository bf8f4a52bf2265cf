"""Test helper utilities for activity_notify tests."""

from .entities import Article, Comment, EntityBook, FailingChannel, RecordingChannel, User
from .scheduling import RecordingScheduler

__all__ = [
    "Article",
    "Comment",
    "EntityBook",
    "FailingChannel",
    "RecordingChannel",
    "RecordingScheduler",
    "User",
]
