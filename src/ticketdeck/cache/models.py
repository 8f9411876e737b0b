"""Record types held by the Cache Store."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import StrEnum
from typing import Any


class StatusKind(StrEnum):
    """Closed set of workflow states the viewer knows about."""

    NEEDS_TRIAGE = "Needs Triage"
    READY_FOR_WORK = "Ready for Work"
    TO_DO = "To Do"
    IN_PROGRESS = "In Progress"
    IN_REVIEW = "In Review"
    BLOCKED = "Blocked"
    DONE = "Done"
    OTHER = "Other"


class StatusCategory(StrEnum):
    """Partition a status falls into, derived from configuration."""

    ACTIVE = "active"
    DONE = "done"
    UNRECOGNIZED = "unrecognized"


_STATUS_ALIASES = {
    "needs triage": StatusKind.NEEDS_TRIAGE,
    "ready for work": StatusKind.READY_FOR_WORK,
    "to do": StatusKind.TO_DO,
    "todo": StatusKind.TO_DO,
    "open": StatusKind.TO_DO,
    "new": StatusKind.TO_DO,
    "in progress": StatusKind.IN_PROGRESS,
    "in development": StatusKind.IN_PROGRESS,
    "in review": StatusKind.IN_REVIEW,
    "review": StatusKind.IN_REVIEW,
    "blocked": StatusKind.BLOCKED,
    "done": StatusKind.DONE,
    "closed": StatusKind.DONE,
    "resolved": StatusKind.DONE,
}

# Move-picker shortcuts, one per known kind.
MOVE_SHORTCUTS = {
    StatusKind.IN_PROGRESS: "p",
    StatusKind.READY_FOR_WORK: "w",
    StatusKind.NEEDS_TRIAGE: "n",
    StatusKind.TO_DO: "t",
    StatusKind.IN_REVIEW: "v",
    StatusKind.BLOCKED: "b",
    StatusKind.DONE: "c",
}


@dataclass(frozen=True)
class Status:
    """A ticket status: a known kind, or OTHER carrying the source's text.

    The label is kept exactly as the external source spelled it so that a
    move command can be issued with the same workflow name.
    """

    kind: StatusKind
    label: str

    @classmethod
    def parse(cls, text: str) -> Status:
        """Map a status string from the source onto a known kind."""
        cleaned = text.strip()
        kind = _STATUS_ALIASES.get(cleaned.lower(), StatusKind.OTHER)
        return cls(kind=kind, label=cleaned)

    @classmethod
    def of(cls, kind: StatusKind) -> Status:
        """Canonical status for a known kind."""
        if kind is StatusKind.OTHER:
            raise ValueError("OTHER has no canonical label; use Status.parse")
        return cls(kind=kind, label=kind.value)

    @classmethod
    def from_shortcut(cls, char: str) -> Status | None:
        for kind, shortcut in MOVE_SHORTCUTS.items():
            if shortcut == char.lower():
                return cls.of(kind)
        return None

    @classmethod
    def from_input(cls, text: str) -> Status:
        """Status typed by a user: a one-letter move shortcut or a label.

        Raises:
            ValueError: If a single letter is not a known shortcut
        """
        cleaned = text.strip()
        if len(cleaned) == 1:
            found = cls.from_shortcut(cleaned)
            if found is None:
                raise ValueError(f"Unknown status shortcut '{cleaned}'")
            return found
        return cls.parse(cleaned)

    @property
    def shortcut(self) -> str:
        return MOVE_SHORTCUTS.get(self.kind, "?")

    def __str__(self) -> str:
        return self.label


DEFAULT_ACTIVE_STATUSES = (
    "Needs Triage",
    "Ready for Work",
    "To Do",
    "In Progress",
    "In Review",
    "Blocked",
)
DEFAULT_DONE_STATUSES = ("Done", "Closed")


@dataclass(frozen=True)
class StatusSets:
    """Configured active and done status labels.

    Matching is case-insensitive. A label listed in both sets counts as done.
    """

    active: tuple[str, ...] = DEFAULT_ACTIVE_STATUSES
    done: tuple[str, ...] = DEFAULT_DONE_STATUSES

    def category(self, status: Status) -> StatusCategory:
        label = status.label.casefold()
        if label in {s.casefold() for s in self.done}:
            return StatusCategory.DONE
        if label in {s.casefold() for s in self.active}:
            return StatusCategory.ACTIVE
        return StatusCategory.UNRECOGNIZED

    def is_done(self, status: Status) -> bool:
        return self.category(status) is StatusCategory.DONE

    def is_active(self, status: Status) -> bool:
        return self.category(status) is StatusCategory.ACTIVE

    def display_order(self) -> list[str]:
        """Configured labels in display order: active first, then done."""
        return [*self.active, *self.done]


class ActivityKind(StrEnum):
    """Kinds of entries in a ticket's activity log."""

    STATUS_CHANGE = "status_change"
    COMMENT = "comment"
    ASSIGNEE_CHANGE = "assignee_change"
    FIELD_CHANGE = "field_change"


@dataclass(frozen=True)
class ActivityEntry:
    """One entry of a ticket's history (changelog item or comment).

    Attributes:
        timestamp: When the change happened, as reported by the source.
        author: Display name of whoever made the change.
        kind: What sort of change this is.
        field: Changed field name (field changes only).
        before: Previous value (status, assignee and field changes).
        after: New value (status, assignee and field changes).
        body: Comment text (comments only).
        author_email: Author email when the source reports it.
    """

    timestamp: str
    author: str
    kind: ActivityKind
    field: str | None = None
    before: str | None = None
    after: str | None = None
    body: str | None = None
    author_email: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "author": self.author,
            "kind": self.kind.value,
            "field": self.field,
            "before": self.before,
            "after": self.after,
            "body": self.body,
            "author_email": self.author_email,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ActivityEntry:
        return cls(
            timestamp=data["timestamp"],
            author=data["author"],
            kind=ActivityKind(data["kind"]),
            field=data.get("field"),
            before=data.get("before"),
            after=data.get("after"),
            body=data.get("body"),
            author_email=data.get("author_email"),
        )


def same_email(left: str | None, right: str | None) -> bool:
    """Case-insensitive email comparison.

    None stands for "unassigned": it equals only None, never an address.
    """
    if left is None or right is None:
        return left is None and right is None
    return left.casefold() == right.casefold()


def _parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromisoformat(value)


@dataclass(frozen=True)
class Ticket:
    """A unit of trackable work.

    Records are immutable; the store swaps whole records on every change, so
    a reference held by a reader never changes underneath it.
    """

    key: str
    summary: str
    status: Status
    assignee: str | None = None
    assignee_email: str | None = None
    reporter: str | None = None
    labels: frozenset[str] = frozenset()
    epic_key: str | None = None
    description: str | None = None
    activity: tuple[ActivityEntry, ...] = ()
    updated_at: datetime | None = None
    url: str = ""
    detail_loaded: bool = False

    def with_changes(self, **changes: Any) -> Ticket:
        """Return a copy with the given fields replaced."""
        return replace(self, **changes)

    def with_detail(self, detail: TicketDetail) -> Ticket:
        """Return a hydrated copy carrying a detail payload.

        Status, assignee and epic are only taken from the detail when it
        reports them; otherwise the record keeps its own.
        """
        observed = detail.status is not None
        return replace(
            self,
            description=detail.description,
            labels=detail.labels,
            activity=detail.activity,
            status=detail.status if observed else self.status,
            assignee=detail.assignee if observed else self.assignee,
            assignee_email=detail.assignee_email if observed else self.assignee_email,
            epic_key=detail.epic_key or self.epic_key,
            updated_at=detail.updated_at or self.updated_at,
            detail_loaded=True,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "summary": self.summary,
            "status": self.status.label,
            "assignee": self.assignee,
            "assignee_email": self.assignee_email,
            "reporter": self.reporter,
            "labels": sorted(self.labels),
            "epic_key": self.epic_key,
            "description": self.description,
            "activity": [entry.to_dict() for entry in self.activity],
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "url": self.url,
            "detail_loaded": self.detail_loaded,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Ticket:
        return cls(
            key=data["key"],
            summary=data.get("summary", ""),
            status=Status.parse(data["status"]),
            assignee=data.get("assignee"),
            assignee_email=data.get("assignee_email"),
            reporter=data.get("reporter"),
            labels=frozenset(data.get("labels", [])),
            epic_key=data.get("epic_key"),
            description=data.get("description"),
            activity=tuple(ActivityEntry.from_dict(e) for e in data.get("activity", [])),
            updated_at=_parse_timestamp(data.get("updated_at")),
            url=data.get("url", ""),
            detail_loaded=bool(data.get("detail_loaded", False)),
        )


@dataclass(frozen=True)
class TicketDetail:
    """Full detail payload for one ticket, as returned by a detail fetch."""

    key: str
    description: str | None
    labels: frozenset[str] = frozenset()
    activity: tuple[ActivityEntry, ...] = ()
    status: Status | None = None
    assignee: str | None = None
    assignee_email: str | None = None
    epic_key: str | None = None
    updated_at: datetime | None = None


@dataclass(frozen=True)
class Epic:
    """A grouping record; progress is derived from its children on read."""

    key: str
    title: str
    child_keys: frozenset[str] = frozenset()

    def to_dict(self) -> dict[str, Any]:
        return {"key": self.key, "title": self.title, "child_keys": sorted(self.child_keys)}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Epic:
        return cls(
            key=data["key"],
            title=data.get("title", ""),
            child_keys=frozenset(data.get("child_keys", [])),
        )


@dataclass(frozen=True)
class EpicProgress:
    """Progress of an epic computed from its current children."""

    epic_key: str
    total: int
    done: int
    counts: dict[str, int] = field(default_factory=dict)

    @property
    def percentage(self) -> float:
        if self.total == 0:
            return 0.0
        return self.done / self.total * 100.0


@dataclass(frozen=True)
class UnassignedGroup:
    """Unassigned active tickets under one epic, or under no epic at all."""

    epic_key: str | None
    title: str
    tickets: tuple[Ticket, ...] = ()

    @property
    def count(self) -> int:
        return len(self.tickets)


@dataclass(frozen=True)
class TeamMember:
    """Roster entry; email is the unique key."""

    name: str
    email: str

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "email": self.email}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TeamMember:
        return cls(name=data["name"], email=data["email"])


@dataclass(frozen=True)
class SavedFilter:
    """A named JQL query the user can run on demand."""

    name: str
    jql: str


class BatchSource(StrEnum):
    """Where a merge batch came from."""

    SNAPSHOT = "snapshot"
    ACTIVE = "active"
    DONE_WINDOW = "done_window"
    EPICS = "epics"
    FILTER = "filter"
    MUTATION = "mutation"


@dataclass(frozen=True)
class FetchBatch:
    """Records produced by one fetch, merged into the store as a unit."""

    tickets: tuple[Ticket, ...] = ()
    epics: tuple[Epic, ...] = ()
    team_members: tuple[TeamMember, ...] = ()

    @property
    def ticket_keys(self) -> frozenset[str]:
        return frozenset(t.key for t in self.tickets)
