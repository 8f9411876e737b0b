"""Team board endpoints."""

from fastapi import APIRouter

from ticketdeck.api.dependencies import DeckDep
from ticketdeck.api.models import (
    APIResponse,
    TeamRowResponse,
    TicketPositionResponse,
    team_row_to_response,
)
from ticketdeck.cache import TicketNotFoundError

router = APIRouter(prefix="/team", tags=["team"])


@router.get("", response_model=APIResponse[list[TeamRowResponse]])
def team_board(deck: DeckDep) -> APIResponse[list[TeamRowResponse]]:
    """Team members with their active tickets, busiest first."""
    snapshot = deck.snapshot()
    return APIResponse(data=[team_row_to_response(m, t) for m, t in snapshot.team_board()])


@router.get("/tickets/{index}", response_model=APIResponse[TicketPositionResponse])
def ticket_at(index: int, deck: DeckDep) -> APIResponse[TicketPositionResponse]:
    """Resolve a position on the flattened team board to a ticket key."""
    key = deck.snapshot().ticket_key_at(index)
    if key is None:
        raise TicketNotFoundError(f"No ticket at team board position {index}")
    return APIResponse(data=TicketPositionResponse(index=index, key=key))
