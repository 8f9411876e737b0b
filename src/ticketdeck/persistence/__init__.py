"""Persistence Layer - per-project snapshot files for fast cold starts."""

from ticketdeck.persistence.database import Database
from ticketdeck.persistence.exceptions import PersistenceError, SchemaError
from ticketdeck.persistence.models import SCHEMA_VERSION
from ticketdeck.persistence.snapshot_store import LoadedSnapshot, SnapshotStore

__all__ = [
    "SCHEMA_VERSION",
    "Database",
    "LoadedSnapshot",
    "PersistenceError",
    "SchemaError",
    "SnapshotStore",
]
