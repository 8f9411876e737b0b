"""SnapshotStore - per-project snapshot files for fast cold starts."""

from __future__ import annotations

import logging
import os
import re
import sqlite3
import threading
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from pathlib import Path

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from ticketdeck.cache.models import Epic, StatusSets, TeamMember, Ticket
from ticketdeck.cache.store import CacheSnapshot
from ticketdeck.persistence.database import Database
from ticketdeck.persistence.exceptions import PersistenceError, SchemaError
from ticketdeck.persistence.models import (
    SCHEMA_VERSION,
    EpicRow,
    SnapshotMeta,
    TeamMemberRow,
    TicketRow,
)

logger = logging.getLogger(__name__)

_UNSAFE_FILENAME_CHARS = re.compile(r"[^A-Za-z0-9_.-]")


@dataclass(frozen=True)
class LoadedSnapshot:
    """A snapshot read back from disk."""

    snapshot: CacheSnapshot
    saved_at: datetime

    @property
    def age(self) -> timedelta:
        return datetime.now(UTC) - self.saved_at


class SnapshotStore:
    """Reads and writes one SQLite snapshot file per project scope.

    Saves run on background threads; a lock serializes overlapping saves and
    makes ``close()`` wait for a write in progress, so nothing is written
    after shutdown begins.
    """

    def __init__(self, cache_dir: str | Path) -> None:
        """Initialize the store.

        Args:
            cache_dir: Directory holding the snapshot files
        """
        self.cache_dir = Path(cache_dir).expanduser()
        self._lock = threading.Lock()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def path_for(self, project: str) -> Path:
        """Snapshot file path for a project scope."""
        safe = _UNSAFE_FILENAME_CHARS.sub("_", project) or "default"
        return self.cache_dir / f"{safe}.db"

    def save(self, project: str, snapshot: CacheSnapshot) -> bool:
        """Write a snapshot, replacing whatever the file held before.

        Rows are written to a staging file beside the target in one
        transaction; the staging file replaces the target only once that
        transaction has committed. A failed save leaves the previous snapshot
        untouched, and a file left by an older schema version is simply
        replaced.

        Args:
            project: Project scope (one file per scope)
            snapshot: Immutable store snapshot to persist

        Returns:
            False if the store is closed and the save was skipped

        Raises:
            PersistenceError: If the file cannot be written
        """
        with self._lock:
            if self._closed:
                logger.info("Skipping snapshot save for %s: shutting down", project)
                return False

            path = self.path_for(project)
            staging = path.with_name(path.name + ".saving")
            _remove_with_sidecars(staging)
            try:
                self._write(staging, project, snapshot)
                _remove_sidecars(path)
                os.replace(staging, path)
            except (SQLAlchemyError, sqlite3.Error, OSError) as e:
                _remove_with_sidecars(staging)
                raise PersistenceError(f"Failed to save snapshot to {path}: {e}") from e

        logger.info(
            "Saved snapshot for %s: %d ticket(s), %d epic(s)",
            project,
            len(snapshot.tickets_by_key),
            len(snapshot.epics_by_key),
        )
        return True

    def load(self, project: str, statuses: StatusSets | None = None) -> LoadedSnapshot | None:
        """Read the snapshot for a project scope.

        A missing, unreadable or incompatible snapshot is not an error: it is
        logged and None is returned so the caller starts cold. An unreadable
        file is moved aside so the next save can start fresh.

        Args:
            project: Project scope
            statuses: Status sets the returned snapshot classifies with

        Returns:
            The loaded snapshot, or None
        """
        path = self.path_for(project)
        if not path.exists():
            logger.info("No snapshot for %s at %s", project, path)
            return None
        try:
            return self._read(path, statuses or StatusSets())
        except SchemaError as e:
            logger.warning("Ignoring snapshot %s: %s", path, e)
            return None
        except PersistenceError as e:
            logger.warning("Ignoring unreadable snapshot %s: %s", path, e)
            self._quarantine(path)
            return None

    def close(self) -> None:
        """Refuse further saves; waits for a save already in progress."""
        with self._lock:
            self._closed = True
        logger.debug("Snapshot store closed")

    def _write(self, path: Path, project: str, snapshot: CacheSnapshot) -> None:
        db = Database(path)
        try:
            with db.get_session() as session, session.begin():
                db.create_tables(session.connection())
                session.add(
                    SnapshotMeta(
                        id=1,
                        schema_version=SCHEMA_VERSION,
                        project=project,
                        saved_at=datetime.now(UTC).replace(tzinfo=None),
                        current_user_email=snapshot.current_user_email,
                    )
                )
                session.add_all(
                    TicketRow(key=t.key, status=t.status.label, payload=t.to_dict())
                    for t in snapshot.tickets()
                )
                session.add_all(
                    EpicRow(key=e.key, payload=e.to_dict()) for e in snapshot.epics()
                )
                session.add_all(
                    TeamMemberRow(email=m.email, name=m.name)
                    for m in snapshot.team_members()
                )
        finally:
            db.close()

    def _read(self, path: Path, statuses: StatusSets) -> LoadedSnapshot:
        """Read and deserialize a snapshot file.

        Raises:
            SchemaError: If the file carries another schema version
            PersistenceError: If the file is corrupt or incomplete
        """
        db = Database(path)
        try:
            with db.get_session() as session:
                meta = session.scalars(select(SnapshotMeta)).first()
                if meta is None:
                    raise PersistenceError("snapshot has no metadata row")
                if meta.schema_version != SCHEMA_VERSION:
                    raise SchemaError(
                        f"schema version {meta.schema_version}, expected {SCHEMA_VERSION}"
                    )
                tickets = [
                    Ticket.from_dict(row.payload) for row in session.scalars(select(TicketRow))
                ]
                epics = [Epic.from_dict(row.payload) for row in session.scalars(select(EpicRow))]
                members = [
                    TeamMember(name=row.name, email=row.email)
                    for row in session.scalars(select(TeamMemberRow))
                ]
                saved_at = meta.saved_at.replace(tzinfo=UTC)
                current_user_email = meta.current_user_email
        except (SQLAlchemyError, sqlite3.Error) as e:
            raise PersistenceError(f"Failed to read snapshot: {e}") from e
        except (KeyError, TypeError, ValueError) as e:
            raise PersistenceError(f"Malformed snapshot record: {e}") from e
        finally:
            db.close()

        snapshot = CacheSnapshot.build(
            tickets=tickets,
            epics=epics,
            members=members,
            statuses=statuses,
            current_user_email=current_user_email,
            taken_at=saved_at,
        )
        logger.info("Loaded snapshot %s saved at %s", path, saved_at.isoformat())
        return LoadedSnapshot(snapshot=snapshot, saved_at=saved_at)

    def _quarantine(self, path: Path) -> None:
        target = path.with_name(path.name + ".corrupt")
        try:
            os.replace(path, target)
            _remove_sidecars(path)
        except OSError as e:
            logger.warning("Could not move aside corrupt snapshot %s: %s", path, e)
            return
        logger.info("Moved corrupt snapshot to %s", target)


def _remove_sidecars(path: Path) -> None:
    """Delete the WAL and shared-memory files SQLite keeps beside a database."""
    for suffix in ("-wal", "-shm"):
        path.with_name(path.name + suffix).unlink(missing_ok=True)


def _remove_with_sidecars(path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
        _remove_sidecars(path)
    except OSError as e:
        logger.warning("Could not remove staging snapshot %s: %s", path, e)
