"""CacheStore - authoritative in-memory snapshot of all known records."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from types import MappingProxyType

from ticketdeck.cache.exceptions import EpicNotFoundError, TicketNotFoundError
from ticketdeck.cache.models import (
    BatchSource,
    Epic,
    EpicProgress,
    FetchBatch,
    StatusSets,
    TeamMember,
    Ticket,
    TicketDetail,
    UnassignedGroup,
    same_email,
)

logger = logging.getLogger(__name__)

# Merges from these sources mark their tickets as wanted on screen.
_RELEVANT_SOURCES = frozenset({BatchSource.ACTIVE, BatchSource.EPICS})

NO_EPIC_TITLE = "No Epic"


def _key_order(key: str) -> tuple[str, int]:
    """Sort ENG-2 before ENG-10."""
    project, _, number = key.rpartition("-")
    if number.isdigit():
        return project, int(number)
    return key, -1


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


class CacheViews:
    """Derived views shared by the live store and its snapshots.

    Nothing here is cached: every view is recomputed from the current
    records, so status partitions and epic progress can never go stale.
    """

    tickets_by_key: Mapping[str, Ticket]
    epics_by_key: Mapping[str, Epic]
    members_by_email: Mapping[str, TeamMember]
    relevant_keys: Iterable[str]
    statuses: StatusSets
    current_user_email: str | None

    def get_ticket(self, key: str) -> Ticket | None:
        return self.tickets_by_key.get(key)

    def require_ticket(self, key: str) -> Ticket:
        """Get a cached ticket.

        Raises:
            TicketNotFoundError: If the key is not cached
        """
        ticket = self.tickets_by_key.get(key)
        if ticket is None:
            raise TicketNotFoundError(f"Ticket '{key}' is not cached")
        return ticket

    def tickets(self) -> list[Ticket]:
        return list(self.tickets_by_key.values())

    def epics(self) -> list[Epic]:
        return list(self.epics_by_key.values())

    def team_members(self) -> list[TeamMember]:
        return list(self.members_by_email.values())

    def active_tickets(self) -> list[Ticket]:
        return [t for t in self.tickets_by_key.values() if self.statuses.is_active(t.status)]

    def done_tickets(self) -> list[Ticket]:
        return [t for t in self.tickets_by_key.values() if self.statuses.is_done(t.status)]

    def tickets_by_status(
        self, assignee_email: str | None = None
    ) -> list[tuple[str, list[Ticket]]]:
        """Group tickets by status label.

        Groups follow the configured display order (active labels, then done
        labels); statuses matching neither set come last, in first-seen order.
        Empty groups are omitted.

        Args:
            assignee_email: Only include tickets assigned to this email.

        Returns:
            List of (status label, tickets) pairs.
        """
        groups: dict[str, tuple[str, list[Ticket]]] = {}
        for label in self.statuses.display_order():
            groups.setdefault(label.casefold(), (label, []))
        for ticket in self.tickets_by_key.values():
            wanted = assignee_email is None or same_email(ticket.assignee_email, assignee_email)
            if not wanted:
                continue
            bucket = groups.setdefault(
                ticket.status.label.casefold(), (ticket.status.label, [])
            )
            bucket[1].append(ticket)
        return [(label, tickets) for label, tickets in groups.values() if tickets]

    def my_tickets_by_status(self) -> list[tuple[str, list[Ticket]]]:
        if not self.current_user_email:
            return []
        return self.tickets_by_status(assignee_email=self.current_user_email)

    def active_tickets_for(self, email: str) -> list[Ticket]:
        return [
            t
            for t in self.tickets_by_key.values()
            if same_email(t.assignee_email, email) and self.statuses.is_active(t.status)
        ]

    def team_board(self) -> list[tuple[TeamMember, list[Ticket]]]:
        """Team members with their active tickets, busiest first.

        Members are ordered by active-ticket count descending, ties broken by
        name ascending. Any code that maps a row position back to a ticket
        must go through this ordering (see ``team_ticket_keys``).
        """
        rows = [(m, self.active_tickets_for(m.email)) for m in self.members_by_email.values()]
        rows.sort(key=lambda row: (-len(row[1]), row[0].name.casefold()))
        return rows

    def team_ticket_keys(self) -> list[str]:
        return [t.key for _, tickets in self.team_board() for t in tickets]

    def ticket_key_at(self, index: int) -> str | None:
        """Ticket key shown at a position of the flattened team board."""
        keys = self.team_ticket_keys()
        if 0 <= index < len(keys):
            return keys[index]
        return None

    def epic_children(self, epic_key: str) -> list[Ticket]:
        epic = self.epics_by_key.get(epic_key)
        if epic is None:
            raise EpicNotFoundError(f"Epic '{epic_key}' is not cached")
        children = []
        for ticket in self.tickets_by_key.values():
            if ticket.key in epic.child_keys or ticket.epic_key == epic_key:
                children.append(ticket)
        return children

    def epic_progress(self, epic_key: str) -> EpicProgress:
        """Progress of an epic, computed from its currently cached children."""
        children = self.epic_children(epic_key)
        counts: dict[str, int] = {}
        done = 0
        for child in children:
            counts[child.status.label] = counts.get(child.status.label, 0) + 1
            if self.statuses.is_done(child.status):
                done += 1
        return EpicProgress(epic_key=epic_key, total=len(children), done=done, counts=counts)

    def unassigned_by_epic(self) -> list[UnassignedGroup]:
        """Active tickets nobody is assigned to, grouped by epic.

        A ticket belongs to the epic it names, else to a cached epic listing
        it as a child. Epic groups come in key order and tickets in key order
        within a group; tickets with no epic share a final "No Epic" group.
        Groups without tickets are omitted.
        """
        parents: dict[str, str] = {}
        for epic in self.epics_by_key.values():
            for child in epic.child_keys:
                parents.setdefault(child, epic.key)
        grouped: dict[str | None, list[Ticket]] = {}
        for ticket in self.tickets_by_key.values():
            if ticket.assignee_email or ticket.assignee:
                continue
            if not self.statuses.is_active(ticket.status):
                continue
            epic_key = ticket.epic_key or parents.get(ticket.key)
            grouped.setdefault(epic_key, []).append(ticket)

        groups = []
        for epic_key in sorted((k for k in grouped if k is not None), key=_key_order):
            epic = self.epics_by_key.get(epic_key)
            groups.append(
                UnassignedGroup(
                    epic_key=epic_key,
                    title=epic.title if epic else epic_key,
                    tickets=tuple(sorted(grouped[epic_key], key=lambda t: _key_order(t.key))),
                )
            )
        if None in grouped:
            groups.append(
                UnassignedGroup(
                    epic_key=None,
                    title=NO_EPIC_TITLE,
                    tickets=tuple(sorted(grouped[None], key=lambda t: _key_order(t.key))),
                )
            )
        return groups

    def missing_detail_keys(self) -> list[str]:
        """Relevant tickets whose detail has never been fetched."""
        relevant = set(self.relevant_keys)
        return [
            key
            for key, ticket in self.tickets_by_key.items()
            if key in relevant and not ticket.detail_loaded
        ]


@dataclass(frozen=True)
class CacheSnapshot(CacheViews):
    """Immutable, independently readable copy of the store."""

    tickets_by_key: Mapping[str, Ticket] = field(default_factory=lambda: MappingProxyType({}))
    epics_by_key: Mapping[str, Epic] = field(default_factory=lambda: MappingProxyType({}))
    members_by_email: Mapping[str, TeamMember] = field(
        default_factory=lambda: MappingProxyType({})
    )
    relevant_keys: frozenset[str] = frozenset()
    statuses: StatusSets = field(default_factory=StatusSets)
    current_user_email: str | None = None
    version: int = 0
    taken_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @classmethod
    def build(
        cls,
        tickets: Iterable[Ticket] = (),
        epics: Iterable[Epic] = (),
        members: Iterable[TeamMember] = (),
        statuses: StatusSets | None = None,
        current_user_email: str | None = None,
        taken_at: datetime | None = None,
    ) -> CacheSnapshot:
        """Assemble a snapshot from plain record lists."""
        return cls(
            tickets_by_key=MappingProxyType({t.key: t for t in tickets}),
            epics_by_key=MappingProxyType({e.key: e for e in epics}),
            members_by_email=MappingProxyType({m.email: m for m in members}),
            statuses=statuses or StatusSets(),
            current_user_email=current_user_email,
            taken_at=taken_at or datetime.now(UTC),
        )


class CacheStore(CacheViews):
    """Authoritative in-memory store of tickets, epics and team members.

    Not thread-safe by itself: only the control thread writes to it, and
    readers on other threads work from ``snapshot()`` copies.
    """

    def __init__(self, statuses: StatusSets | None = None) -> None:
        """Initialize an empty store.

        Args:
            statuses: Configured active/done status labels
        """
        self.statuses = statuses or StatusSets()
        self.tickets_by_key: dict[str, Ticket] = {}
        self.epics_by_key: dict[str, Epic] = {}
        self.members_by_email: dict[str, TeamMember] = {}
        self.relevant_keys: set[str] = set()
        self.current_user_email: str | None = None
        self.version = 0

    def merge(
        self,
        batch: FetchBatch,
        source: BatchSource,
        base: Mapping[str, Ticket] | None = None,
    ) -> list[str]:
        """Insert or overwrite the records of one fetch batch.

        Additive and idempotent: merging the same batch twice leaves the same
        state, and records absent from the batch are never removed.

        Args:
            batch: Records from one fetch
            source: Which fetch produced the batch
            base: Records to merge onto instead of the cached ones, keyed by
                ticket key. Pending mutations pass their pre-images here so
                detail kept from the old record is never a provisional value.

        Returns:
            Keys of the tickets written
        """
        written = []
        for incoming in batch.tickets:
            if base is not None and incoming.key in base:
                existing = base[incoming.key]
            else:
                existing = self.tickets_by_key.get(incoming.key)
            self.tickets_by_key[incoming.key] = _keep_detail(existing, incoming)
            written.append(incoming.key)
        for epic in batch.epics:
            self.epics_by_key[epic.key] = epic
        for member in batch.team_members:
            self.members_by_email[member.email] = member
        if source in _RELEVANT_SOURCES:
            self.relevant_keys.update(written)
        self.version += 1
        logger.debug(
            "Merged %d ticket(s), %d epic(s), %d member(s) from %s",
            len(batch.tickets),
            len(batch.epics),
            len(batch.team_members),
            source,
        )
        return written

    def replace_done_window(
        self,
        tickets: Iterable[Ticket],
        window: timedelta,
        now: datetime | None = None,
        protected: Iterable[str] = (),
        base: Mapping[str, Ticket] | None = None,
    ) -> list[str]:
        """Merge the recently-done batch and evict done tickets that aged out.

        A cached ticket is evicted when it is absent from the batch, its
        status is in the done set and its last update is older than the
        window. Done tickets still inside the window and tickets without an
        update timestamp are left alone.

        Args:
            tickets: Tickets returned by the recently-done fetch
            window: Length of the done window
            now: Reference time, defaults to the current UTC time
            protected: Keys that must not be evicted (pending mutations)
            base: Records to merge onto, as for ``merge``

        Returns:
            Keys of the evicted tickets
        """
        batch = FetchBatch(tickets=tuple(tickets))
        self.merge(batch, BatchSource.DONE_WINDOW, base=base)
        cutoff = _as_utc(now or datetime.now(UTC)) - window
        keep = batch.ticket_keys | set(protected)
        evicted = []
        for key, ticket in list(self.tickets_by_key.items()):
            if key in keep or not self.statuses.is_done(ticket.status):
                continue
            if ticket.updated_at is None or _as_utc(ticket.updated_at) >= cutoff:
                continue
            del self.tickets_by_key[key]
            self.relevant_keys.discard(key)
            evicted.append(key)
        if evicted:
            self.version += 1
            logger.info("Evicted %d done ticket(s) outside the window", len(evicted))
        return evicted

    def apply_detail(self, key: str, detail: TicketDetail) -> bool:
        """Merge a hydrated detail payload into an existing ticket.

        Returns:
            False if the ticket is no longer cached (the detail is dropped)
        """
        ticket = self.tickets_by_key.get(key)
        if ticket is None:
            logger.info("Dropping detail for %s: ticket no longer cached", key)
            return False
        self.tickets_by_key[key] = ticket.with_detail(detail)
        self.version += 1
        return True

    def put_ticket(self, ticket: Ticket) -> None:
        """Write a single ticket (used for provisional edits and rollbacks)."""
        self.tickets_by_key[ticket.key] = ticket
        self.version += 1

    def set_current_user(self, email: str) -> None:
        self.current_user_email = email
        self.version += 1

    def is_relevant(self, key: str) -> bool:
        return key in self.relevant_keys

    def snapshot(self) -> CacheSnapshot:
        """Immutable copy of the full store for rendering or persistence."""
        return CacheSnapshot(
            tickets_by_key=MappingProxyType(dict(self.tickets_by_key)),
            epics_by_key=MappingProxyType(dict(self.epics_by_key)),
            members_by_email=MappingProxyType(dict(self.members_by_email)),
            relevant_keys=frozenset(self.relevant_keys),
            statuses=self.statuses,
            current_user_email=self.current_user_email,
            version=self.version,
        )

    def replace_all(self, snapshot: CacheSnapshot) -> None:
        """Replace the whole store with a snapshot (cold start only)."""
        self.tickets_by_key = dict(snapshot.tickets_by_key)
        self.epics_by_key = dict(snapshot.epics_by_key)
        self.members_by_email = dict(snapshot.members_by_email)
        self.relevant_keys = set()
        self.current_user_email = snapshot.current_user_email
        self.version += 1
        logger.info(
            "Loaded %d ticket(s) and %d epic(s) from snapshot",
            len(self.tickets_by_key),
            len(self.epics_by_key),
        )


def _keep_detail(existing: Ticket | None, incoming: Ticket) -> Ticket:
    """Keep what a summary-level record cannot carry when it overwrites a ticket.

    Listings name the assignee but not always their email; the email learned
    earlier is kept while the assignee is unchanged. Hydrated detail is kept
    unless the incoming record is itself hydrated.
    """
    if existing is None:
        return incoming
    if (
        incoming.assignee_email is None
        and existing.assignee_email is not None
        and incoming.assignee == existing.assignee
    ):
        incoming = incoming.with_changes(assignee_email=existing.assignee_email)
    if incoming.detail_loaded or not existing.detail_loaded:
        return incoming
    return incoming.with_changes(
        description=existing.description,
        activity=existing.activity,
        labels=incoming.labels or existing.labels,
        reporter=incoming.reporter or existing.reporter,
        epic_key=incoming.epic_key or existing.epic_key,
        detail_loaded=True,
    )
