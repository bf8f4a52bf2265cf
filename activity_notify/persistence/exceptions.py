"""Persistence layer exceptions.

This module defines custom exceptions for database and persistence operations.
All persistence exceptions inherit from PersistenceError for easy catching.
"""


class PersistenceError(Exception):
    """Base exception for all persistence layer errors.

    All database-related exceptions should inherit from this class.
    This allows callers to catch all persistence errors with a single except clause.
    """

    pass


class DatabaseConnectionError(PersistenceError):
    """Raised when database connection or initialization fails.

    Examples:
    - Invalid database URL format
    - Database file not accessible
    - Database not initialized before use
    """

    pass


class RecordNotFoundError(PersistenceError, LookupError):
    """Raised when a required database record is not found.

    Subclasses LookupError so entity loaders backed by this layer report
    absence the same way as any other loader.
    For optional lookups, methods return None instead of raising this.
    """

    pass


class DataIntegrityError(PersistenceError):
    """Raised when database constraint violation occurs.

    Examples:
    - Duplicate subscription for the same (target, key)
    - Not-null constraint violation
    """

    pass
