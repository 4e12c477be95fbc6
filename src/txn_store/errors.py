"""
Custom exceptions for the Transaction Store client.

Every database failure leaving the client is one of these, so callers can
recover from a failed write without importing psycopg.
"""


class StoreError(Exception):
    """Base error for store operations."""

    pass


class RetryableStoreError(StoreError):
    """Temporary errors (connection loss, deadlock, serialization)."""

    pass


class ConstraintViolation(StoreError):
    """Database constraint violations other than the ignored id conflict."""

    pass


class StoreTimeout(StoreError):
    """Query, statement or pool checkout timeout."""

    pass


def map_db_error(e: Exception) -> StoreError:
    import psycopg
    import psycopg.errors as E
    from psycopg_pool import PoolTimeout

    if isinstance(e, StoreError):
        return e
    if isinstance(e, (E.QueryCanceled, PoolTimeout)):
        return StoreTimeout(str(e))
    if isinstance(e, (E.SerializationFailure, E.DeadlockDetected, psycopg.OperationalError)):
        return RetryableStoreError(str(e))
    if isinstance(e, (E.UniqueViolation, E.CheckViolation, E.NotNullViolation)):
        return ConstraintViolation(str(e))
    return StoreError(str(e))
