"""Ticket read endpoints."""

from fastapi import APIRouter, Query, status

from ticketdeck.api.dependencies import DeckDep
from ticketdeck.api.models import (
    APIResponse,
    HydrateResponse,
    StatusGroupResponse,
    TicketResponse,
    TicketSummaryResponse,
    ticket_to_response,
    ticket_to_summary,
)
from ticketdeck.mutation import MutationState

router = APIRouter(prefix="/tickets", tags=["tickets"])


@router.get("", response_model=APIResponse[list[TicketSummaryResponse]])
def list_tickets(
    deck: DeckDep,
    status_label: str | None = Query(default=None, alias="status", description="Status label"),
    assignee: str | None = Query(default=None, description="Assignee email"),
) -> APIResponse[list[TicketSummaryResponse]]:
    """List cached tickets, optionally filtered by status and assignee."""
    snapshot, pending = deck.view()
    tickets = snapshot.tickets()
    if status_label:
        tickets = [t for t in tickets if t.status.label.casefold() == status_label.casefold()]
    if assignee:
        tickets = [
            t for t in tickets if (t.assignee_email or "").casefold() == assignee.casefold()
        ]
    tickets.sort(key=lambda t: t.key)
    return APIResponse(
        data=[
            ticket_to_summary(t, snapshot, pending.get(t.key, MutationState.IDLE)) for t in tickets
        ]
    )


@router.get("/groups", response_model=APIResponse[list[StatusGroupResponse]])
def list_groups(
    deck: DeckDep,
    assignee: str | None = Query(
        default=None, description="Assignee email; 'me' for the current user"
    ),
) -> APIResponse[list[StatusGroupResponse]]:
    """Tickets grouped by status in display order."""
    snapshot, pending = deck.view()
    if assignee == "me":
        groups = snapshot.my_tickets_by_status()
    else:
        groups = snapshot.tickets_by_status(assignee_email=assignee)
    return APIResponse(
        data=[
            StatusGroupResponse(
                status=label,
                tickets=[
                    ticket_to_summary(t, snapshot, pending.get(t.key, MutationState.IDLE))
                    for t in tickets
                ],
            )
            for label, tickets in groups
        ]
    )


@router.get("/{key}", response_model=APIResponse[TicketResponse])
def get_ticket(key: str, deck: DeckDep) -> APIResponse[TicketResponse]:
    """Get a cached ticket with whatever detail has been loaded."""
    snapshot, pending = deck.view()
    ticket = snapshot.require_ticket(key)
    return APIResponse(
        data=ticket_to_response(ticket, snapshot, pending.get(key, MutationState.IDLE))
    )


@router.post(
    "/{key}/hydrate",
    response_model=APIResponse[HydrateResponse],
    status_code=status.HTTP_202_ACCEPTED,
)
def hydrate_ticket(key: str, deck: DeckDep) -> APIResponse[HydrateResponse]:
    """Fetch the full detail of a ticket in the background."""
    queued = deck.call(deck.orchestrator.request_detail, key)
    return APIResponse(data=HydrateResponse(key=key, queued=queued))
