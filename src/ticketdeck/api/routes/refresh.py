"""Refresh and saved filter endpoints."""

from fastapi import APIRouter, status

from ticketdeck.api.dependencies import DeckDep
from ticketdeck.api.models import (
    APIResponse,
    FilterResponse,
    RefreshStartedResponse,
    RefreshStatusResponse,
)

router = APIRouter(tags=["refresh"])


@router.get("/refresh", response_model=APIResponse[RefreshStatusResponse])
def refresh_status(deck: DeckDep) -> APIResponse[RefreshStatusResponse]:
    """Get the state of running and last completed refresh cycles."""
    state = deck.call(deck.orchestrator.status)
    return APIResponse(data=RefreshStatusResponse(**state))


@router.post(
    "/refresh",
    response_model=APIResponse[RefreshStartedResponse],
    status_code=status.HTTP_202_ACCEPTED,
)
def start_refresh(deck: DeckDep) -> APIResponse[RefreshStartedResponse]:
    """Launch a refresh cycle. The cache keeps serving while it runs."""
    cycle = deck.call(deck.orchestrator.refresh)
    return APIResponse(data=RefreshStartedResponse(cycle_id=cycle.id))


@router.get("/filters", response_model=APIResponse[list[FilterResponse]])
def list_filters(deck: DeckDep) -> APIResponse[list[FilterResponse]]:
    """List saved filters with the keys of their last run."""
    results = deck.call(lambda: dict(deck.orchestrator.filter_results))
    return APIResponse(
        data=[
            FilterResponse(name=f.name, jql=f.jql, result_keys=results.get(f.name))
            for f in deck.config.filters
        ]
    )


@router.post(
    "/filters/{name}/run",
    response_model=APIResponse[FilterResponse],
    status_code=status.HTTP_202_ACCEPTED,
)
def run_filter(name: str, deck: DeckDep) -> APIResponse[FilterResponse]:
    """Run a saved filter in the background; results merge into the cache."""
    saved = deck.call(deck.orchestrator.run_filter, name)
    return APIResponse(data=FilterResponse(name=saved.name, jql=saved.jql))
