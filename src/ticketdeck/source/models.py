"""Data models for the External Source Adapter."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ticketdeck.cache.models import Epic, Status, Ticket


@dataclass(frozen=True)
class EpicTree:
    """An epic together with the child tickets fetched alongside it."""

    epic: Epic
    children: tuple[Ticket, ...] = ()


@dataclass(frozen=True)
class MoveStatus:
    """Move a ticket to another workflow status."""

    key: str
    status: Status
    resolution: str | None = None


@dataclass(frozen=True)
class Assign:
    """Assign a ticket to a team member, or unassign it when email is None."""

    key: str
    email: str | None
    name: str | None = None


@dataclass(frozen=True)
class AddComment:
    """Append a comment to a ticket."""

    key: str
    body: str


@dataclass(frozen=True)
class EditFields:
    """Edit summary, description and/or labels. None means unchanged.

    ``labels`` is the full new label set; ``removed_labels`` lists the labels
    the source must drop to get there.
    """

    key: str
    summary: str | None = None
    description: str | None = None
    labels: frozenset[str] | None = None
    removed_labels: frozenset[str] = field(default_factory=frozenset)


@dataclass(frozen=True)
class CreateTicket:
    """Create a new ticket in a project."""

    project: str
    summary: str
    issue_type: str = "Task"
    description: str | None = None
    assignee_email: str | None = None
    epic_key: str | None = None
    labels: frozenset[str] = field(default_factory=frozenset)


MutationCommand = MoveStatus | Assign | AddComment | EditFields | CreateTicket


@dataclass(frozen=True)
class MutationOutcome:
    """Result of a successful mutation.

    Attributes:
        key: Key of the ticket the command acted on; for creation, the key
             the source assigned to the new ticket.
        url: Browse URL of the ticket, when the source reports one.
    """

    key: str
    url: str = ""
