"""Epic endpoints."""

from fastapi import APIRouter

from ticketdeck.api.dependencies import DeckDep
from ticketdeck.api.models import (
    APIResponse,
    EpicResponse,
    UnassignedGroupResponse,
    epic_to_response,
    unassigned_to_response,
)
from ticketdeck.cache import EpicNotFoundError

router = APIRouter(prefix="/epics", tags=["epics"])


@router.get("", response_model=APIResponse[list[EpicResponse]])
def list_epics(deck: DeckDep) -> APIResponse[list[EpicResponse]]:
    """List epics with progress recomputed from their cached children."""
    snapshot = deck.snapshot()
    epics = sorted(snapshot.epics(), key=lambda e: e.key)
    return APIResponse(data=[epic_to_response(e, snapshot) for e in epics])


@router.get("/unassigned", response_model=APIResponse[list[UnassignedGroupResponse]])
def unassigned(deck: DeckDep) -> APIResponse[list[UnassignedGroupResponse]]:
    """Unassigned active tickets by epic, with tickets outside any epic last."""
    snapshot, pending = deck.view()
    groups = snapshot.unassigned_by_epic()
    return APIResponse(data=[unassigned_to_response(g, snapshot, pending) for g in groups])


@router.get("/{key}", response_model=APIResponse[EpicResponse])
def get_epic(key: str, deck: DeckDep) -> APIResponse[EpicResponse]:
    """Get one epic and its progress."""
    snapshot = deck.snapshot()
    epic = snapshot.epics_by_key.get(key)
    if epic is None:
        raise EpicNotFoundError(f"Epic '{key}' is not cached")
    return APIResponse(data=epic_to_response(epic, snapshot))
