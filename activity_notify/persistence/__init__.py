"""Persistence layer for notifications and subscriptions using SQLAlchemy.

Public API:
    # Database initialization and session management
    - init_database(database_url: str) -> None
    - get_session() -> ContextManager[Session]
    - close_database() -> None
    - get_engine() -> Engine

    # Repository classes
    - NotificationRepository: notification records and bundle queries
    - SubscriptionRepository: subscription records

    # Exceptions
    - PersistenceError: Base exception for all persistence errors
    - DatabaseConnectionError: Database connection/initialization failures
    - RecordNotFoundError: Required record not found (also a LookupError)
    - DataIntegrityError: Constraint violations

Example usage:
    >>> from activity_notify.persistence import init_database, get_session, NotificationRepository
    >>>
    >>> init_database("sqlite:///./data/activity_notify.db")
    >>>
    >>> with get_session() as session:
    ...     repo = NotificationRepository(session)
    ...     notification = repo.get(42)
"""

# Database initialization and session management
from .database import close_database, get_engine, get_session, init_database

# Repository classes
from .repositories import NotificationRepository, SubscriptionRepository

# Exceptions
from .exceptions import (
    DatabaseConnectionError,
    DataIntegrityError,
    PersistenceError,
    RecordNotFoundError,
)

__all__ = [
    # Database functions
    "init_database",
    "get_session",
    "close_database",
    "get_engine",
    # Repositories
    "NotificationRepository",
    "SubscriptionRepository",
    # Exceptions
    "PersistenceError",
    "DatabaseConnectionError",
    "RecordNotFoundError",
    "DataIntegrityError",
]
