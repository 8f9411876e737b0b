"""Mutation endpoints: optimistic edits, creation and bulk operations.

Mutation records keep changing on the control thread, so they are converted
to response models there too.
"""

from __future__ import annotations

import io
from typing import TYPE_CHECKING, Any

from fastapi import APIRouter, HTTPException, status

from ticketdeck.api.dependencies import DeckDep
from ticketdeck.api.models import (
    APIResponse,
    AssignRequest,
    BulkAssignRequest,
    BulkMoveRequest,
    BulkResponse,
    BulkSummaryResponse,
    CommentRequest,
    CreateRequest,
    EditRequest,
    MoveRequest,
    MutationResponse,
    UploadRequest,
    UploadResponse,
    bulk_to_response,
    mutation_to_response,
    upload_to_response,
)
from ticketdeck.cache import Status
from ticketdeck.mutation import MutationError
from ticketdeck.mutation.upload import parse_upload, submit_upload

if TYPE_CHECKING:
    from collections.abc import Callable

    from ticketdeck.mutation import BulkOperation, PendingMutation
    from ticketdeck.runtime import TicketDeck

router = APIRouter(tags=["mutations"])


def parse_status(text: str) -> Status:
    """Turn a status label, or a one-letter move shortcut, into a Status.

    Raises:
        MutationError: If a single letter is not a known shortcut
    """
    try:
        return Status.from_input(text)
    except ValueError as e:
        raise MutationError(str(e)) from e


def _mutate(
    deck: TicketDeck, fn: Callable[..., PendingMutation], *args: Any, **kwargs: Any
) -> APIResponse[MutationResponse]:
    response = deck.call(lambda: mutation_to_response(fn(*args, **kwargs)))
    return APIResponse(data=response)


def _bulk(
    deck: TicketDeck, fn: Callable[..., BulkOperation], *args: Any
) -> APIResponse[BulkResponse]:
    response = deck.call(lambda: bulk_to_response(fn(*args)))
    return APIResponse(data=response)


@router.post(
    "/tickets/{key}/move",
    response_model=APIResponse[MutationResponse],
    status_code=status.HTTP_202_ACCEPTED,
)
def move_ticket(key: str, request: MoveRequest, deck: DeckDep) -> APIResponse[MutationResponse]:
    """Move a ticket to another status."""
    target = parse_status(request.status)
    return _mutate(deck, deck.mutations.move_status, key, target, request.resolution)


@router.post(
    "/tickets/{key}/assign",
    response_model=APIResponse[MutationResponse],
    status_code=status.HTTP_202_ACCEPTED,
)
def assign_ticket(
    key: str, request: AssignRequest, deck: DeckDep
) -> APIResponse[MutationResponse]:
    """Assign a ticket to a team member; a null email unassigns it."""
    return _mutate(deck, deck.mutations.assign, key, request.email)


@router.post(
    "/tickets/{key}/comments",
    response_model=APIResponse[MutationResponse],
    status_code=status.HTTP_202_ACCEPTED,
)
def comment_ticket(
    key: str, request: CommentRequest, deck: DeckDep
) -> APIResponse[MutationResponse]:
    """Add a comment to a ticket."""
    return _mutate(deck, deck.mutations.comment, key, request.body)


@router.patch(
    "/tickets/{key}",
    response_model=APIResponse[MutationResponse],
    status_code=status.HTTP_202_ACCEPTED,
)
def edit_ticket(key: str, request: EditRequest, deck: DeckDep) -> APIResponse[MutationResponse]:
    """Edit ticket fields (partial update)."""
    return _mutate(
        deck,
        deck.mutations.edit_fields,
        key,
        summary=request.summary,
        description=request.description,
        labels=request.labels,
    )


@router.post(
    "/tickets",
    response_model=APIResponse[MutationResponse],
    status_code=status.HTTP_202_ACCEPTED,
)
def create_ticket(request: CreateRequest, deck: DeckDep) -> APIResponse[MutationResponse]:
    """Create a ticket. The real key is reported once the source confirms it."""
    return _mutate(
        deck,
        deck.mutations.create,
        summary=request.summary,
        issue_type=request.issue_type,
        description=request.description,
        assignee_email=request.assignee_email,
        epic_key=request.epic_key,
        labels=request.labels,
    )


@router.get("/mutations", response_model=APIResponse[list[MutationResponse]])
def list_mutations(deck: DeckDep) -> APIResponse[list[MutationResponse]]:
    """Pending mutations followed by recently resolved ones, newest first."""
    engine = deck.mutations
    responses = deck.call(
        lambda: [
            mutation_to_response(m)
            for m in [*engine.pending.values(), *reversed(engine.history)]
        ]
    )
    return APIResponse(data=responses)


@router.get("/mutations/{mutation_id}", response_model=APIResponse[MutationResponse])
def get_mutation(mutation_id: int, deck: DeckDep) -> APIResponse[MutationResponse]:
    """Get one mutation by ID."""

    def lookup() -> MutationResponse | None:
        mutation = deck.mutations.get_mutation(mutation_id)
        return mutation_to_response(mutation) if mutation else None

    response = deck.call(lookup)
    if response is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Mutation not found")
    return APIResponse(data=response)


@router.post(
    "/bulk/move",
    response_model=APIResponse[BulkResponse],
    status_code=status.HTTP_202_ACCEPTED,
)
def bulk_move(request: BulkMoveRequest, deck: DeckDep) -> APIResponse[BulkResponse]:
    """Move many tickets at once."""
    target = parse_status(request.status)
    return _bulk(deck, deck.mutations.bulk_move, request.keys, target)


@router.post(
    "/bulk/assign",
    response_model=APIResponse[BulkResponse],
    status_code=status.HTTP_202_ACCEPTED,
)
def bulk_assign(request: BulkAssignRequest, deck: DeckDep) -> APIResponse[BulkResponse]:
    """Assign many tickets to one member."""
    return _bulk(deck, deck.mutations.bulk_assign, request.keys, request.email)


@router.post(
    "/bulk/upload",
    response_model=APIResponse[UploadResponse],
    status_code=status.HTTP_202_ACCEPTED,
)
def bulk_upload(request: UploadRequest, deck: DeckDep) -> APIResponse[UploadResponse]:
    """Check CSV rows against the cache and create the valid ones.

    With ``dry_run`` only the preview comes back. Rows with errors are never
    created; the per-row outcome arrives with the bulk_completed event.
    """

    def run() -> UploadResponse:
        preview = parse_upload(io.StringIO(request.csv, newline=""), deck.store, source="request")
        bulk = None if request.dry_run else submit_upload(preview, deck.mutations)
        return upload_to_response(preview, bulk)

    return APIResponse(data=deck.call(run))


@router.get("/bulk/last", response_model=APIResponse[BulkSummaryResponse])
def last_bulk(deck: DeckDep) -> APIResponse[BulkSummaryResponse]:
    """Summary of the most recently completed bulk operation."""
    summary = deck.call(lambda: deck.mutations.last_bulk)
    if summary is None:
        return APIResponse(data=None)
    return APIResponse(data=BulkSummaryResponse(**summary.to_dict()))
