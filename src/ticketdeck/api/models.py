"""Pydantic models for REST API."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from pydantic import BaseModel, Field

from ticketdeck.mutation import MutationState

if TYPE_CHECKING:
    from ticketdeck.cache import CacheSnapshot, Epic, TeamMember, Ticket, UnassignedGroup
    from ticketdeck.mutation import BulkOperation, PendingMutation
    from ticketdeck.mutation.upload import UploadPreview

T = TypeVar("T")


class APIResponse(BaseModel, Generic[T]):
    """Standard API response wrapper."""

    data: T | None = None
    error: str | None = None


# Ticket models


class ActivityResponse(BaseModel):
    """One activity log entry."""

    timestamp: str
    author: str
    kind: str
    field: str | None = None
    before: str | None = None
    after: str | None = None
    body: str | None = None


class TicketSummaryResponse(BaseModel):
    """Response model for a ticket in a list."""

    key: str
    summary: str
    status: str
    status_category: str
    assignee: str | None
    assignee_email: str | None
    epic_key: str | None
    labels: list[str]
    updated_at: datetime | None
    detail_loaded: bool
    pending: str


class TicketResponse(TicketSummaryResponse):
    """Response model for a single ticket with its detail."""

    reporter: str | None
    description: str | None
    url: str
    activity: list[ActivityResponse]


class StatusGroupResponse(BaseModel):
    """Tickets sharing one status label."""

    status: str
    tickets: list[TicketSummaryResponse]


def ticket_to_summary(
    ticket: Ticket, snapshot: CacheSnapshot, pending: MutationState
) -> TicketSummaryResponse:
    """Convert a Ticket to TicketSummaryResponse."""
    return TicketSummaryResponse(
        key=ticket.key,
        summary=ticket.summary,
        status=ticket.status.label,
        status_category=snapshot.statuses.category(ticket.status).value,
        assignee=ticket.assignee,
        assignee_email=ticket.assignee_email,
        epic_key=ticket.epic_key,
        labels=sorted(ticket.labels),
        updated_at=ticket.updated_at,
        detail_loaded=ticket.detail_loaded,
        pending=pending.value,
    )


def ticket_to_response(
    ticket: Ticket, snapshot: CacheSnapshot, pending: MutationState
) -> TicketResponse:
    """Convert a Ticket to TicketResponse."""
    summary = ticket_to_summary(ticket, snapshot, pending)
    return TicketResponse(
        **summary.model_dump(),
        reporter=ticket.reporter,
        description=ticket.description,
        url=ticket.url,
        activity=[
            ActivityResponse(
                timestamp=entry.timestamp,
                author=entry.author,
                kind=entry.kind.value,
                field=entry.field,
                before=entry.before,
                after=entry.after,
                body=entry.body,
            )
            for entry in ticket.activity
        ],
    )


# Team models


class TeamRowResponse(BaseModel):
    """A team member with their active tickets, in board order."""

    name: str
    email: str
    active_count: int
    ticket_keys: list[str]


def team_row_to_response(member: TeamMember, tickets: list[Ticket]) -> TeamRowResponse:
    return TeamRowResponse(
        name=member.name,
        email=member.email,
        active_count=len(tickets),
        ticket_keys=[t.key for t in tickets],
    )


class TicketPositionResponse(BaseModel):
    """Ticket shown at a position of the team board."""

    index: int
    key: str


# Epic models


class EpicResponse(BaseModel):
    """Response model for an epic with progress computed from its children."""

    key: str
    title: str
    total: int
    done: int
    percentage: float
    counts: dict[str, int]
    child_keys: list[str]


def epic_to_response(epic: Epic, snapshot: CacheSnapshot) -> EpicResponse:
    """Convert an Epic to EpicResponse."""
    progress = snapshot.epic_progress(epic.key)
    children = snapshot.epic_children(epic.key)
    return EpicResponse(
        key=epic.key,
        title=epic.title,
        total=progress.total,
        done=progress.done,
        percentage=progress.percentage,
        counts=progress.counts,
        child_keys=sorted(c.key for c in children),
    )


class UnassignedGroupResponse(BaseModel):
    """Unassigned active tickets under one epic; a null key is the "No Epic" group."""

    epic_key: str | None
    title: str
    count: int
    tickets: list[TicketSummaryResponse]


def unassigned_to_response(
    group: UnassignedGroup, snapshot: CacheSnapshot, pending: dict[str, MutationState]
) -> UnassignedGroupResponse:
    return UnassignedGroupResponse(
        epic_key=group.epic_key,
        title=group.title,
        count=group.count,
        tickets=[
            ticket_to_summary(t, snapshot, pending.get(t.key, MutationState.IDLE))
            for t in group.tickets
        ],
    )


# Refresh models


class RefreshStatusResponse(BaseModel):
    """Response model for refresh state."""

    refreshing: bool
    running_cycles: list[int]
    last_cycle: int | None
    last_completed_at: str | None
    last_failed_stages: list[str]
    hydrating: int


class RefreshStartedResponse(BaseModel):
    cycle_id: int


class HydrateResponse(BaseModel):
    key: str
    queued: bool


class FilterResponse(BaseModel):
    """A saved filter and the keys of its last run."""

    name: str
    jql: str
    result_keys: list[str] | None = None


# Mutation models


class MoveRequest(BaseModel):
    """Request model for a status move. ``status`` may be a label or a one-letter shortcut."""

    status: str = Field(..., min_length=1, max_length=100)
    resolution: str | None = Field(default=None, max_length=100)


class AssignRequest(BaseModel):
    """Request model for an assignment; a null email unassigns."""

    email: str | None = None


class CommentRequest(BaseModel):
    body: str = Field(..., min_length=1)


class EditRequest(BaseModel):
    """Request model for a field edit (partial update)."""

    summary: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = None
    labels: list[str] | None = None


class CreateRequest(BaseModel):
    """Request model for creating a ticket."""

    summary: str = Field(..., min_length=1, max_length=255)
    issue_type: str = Field(default="Task", max_length=50)
    description: str | None = None
    assignee_email: str | None = None
    epic_key: str | None = None
    labels: list[str] = Field(default_factory=list)


class MutationResponse(BaseModel):
    """Response model for a mutation."""

    id: int
    key: str
    kind: str
    state: str
    bulk_id: int | None = None
    error: str | None = None
    new_key: str | None = None


def mutation_to_response(mutation: PendingMutation) -> MutationResponse:
    return MutationResponse(**mutation.to_dict())


class BulkMoveRequest(BaseModel):
    keys: list[str] = Field(..., min_length=1)
    status: str = Field(..., min_length=1, max_length=100)


class BulkAssignRequest(BaseModel):
    keys: list[str] = Field(..., min_length=1)
    email: str | None = None


class BulkResponse(BaseModel):
    """Response model for a bulk operation as dispatched."""

    bulk_id: int
    kind: str
    attempted: list[str]
    skipped: list[str]
    failed: dict[str, str]


def bulk_to_response(bulk: BulkOperation) -> BulkResponse:
    return BulkResponse(
        bulk_id=bulk.id,
        kind=bulk.kind.value,
        attempted=sorted(bulk.attempted),
        skipped=sorted(bulk.skipped),
        failed=dict(bulk.failed),
    )


class BulkSummaryResponse(BaseModel):
    bulk_id: int
    kind: str
    succeeded: list[str]
    failed: dict[str, str]
    skipped: list[str]
    created: dict[str, str] = Field(default_factory=dict)


class UploadRequest(BaseModel):
    """CSV text to check and, unless ``dry_run`` is set, create."""

    csv: str = Field(..., min_length=1)
    dry_run: bool = False


class UploadRowResponse(BaseModel):
    """One validated CSV row."""

    row_number: int
    summary: str
    issue_type: str
    assignee_email: str | None
    epic_key: str | None
    labels: list[str]
    description: str | None
    errors: list[str]
    warnings: list[str]


class UploadResponse(BaseModel):
    """Upload preview, with the dispatched bulk creation unless it was a dry run."""

    total_rows: int
    valid_rows: int
    invalid_rows: int
    warning_count: int
    rows: list[UploadRowResponse]
    bulk: BulkResponse | None = None


def upload_to_response(
    preview: UploadPreview, bulk: BulkOperation | None = None
) -> UploadResponse:
    return UploadResponse(
        total_rows=preview.total_rows,
        valid_rows=preview.valid_rows,
        invalid_rows=preview.invalid_rows,
        warning_count=preview.warning_count,
        rows=[UploadRowResponse(**row.to_dict()) for row in preview.rows],
        bulk=bulk_to_response(bulk) if bulk is not None else None,
    )


# Event models


class EventResponse(BaseModel):
    type: str
    data: dict[str, Any]
    timestamp: str
