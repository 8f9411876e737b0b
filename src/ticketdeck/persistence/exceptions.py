"""Custom exceptions for the Persistence Layer."""


class PersistenceError(Exception):
    """Base exception for snapshot persistence errors.

    Never fatal: a failed save is logged, a failed load means a cold start.
    """


class SchemaError(PersistenceError):
    """Snapshot file was written with a different schema version."""
