"""FastAPI application setup."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import TYPE_CHECKING

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from ticketdeck.api.dependencies import close_deck, init_deck
from ticketdeck.api.models import APIResponse
from ticketdeck.api.routes import epics, events, mutations, refresh, team, tickets
from ticketdeck.cache import CacheError, EpicNotFoundError, TicketNotFoundError
from ticketdeck.config import ConfigError, load_config
from ticketdeck.control import ControlError
from ticketdeck.mutation import MutationBusyError, MutationError, UnknownMemberError
from ticketdeck.refresh import FilterNotFoundError
from ticketdeck.runtime import TicketDeck

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager.

    A deck handed to ``create_app`` is used as is and left running on
    shutdown; otherwise one is built from the config file and owned here.
    """
    # Startup
    deck: TicketDeck | None = app.state.deck
    owned = deck is None
    if deck is None:
        config = load_config(app.state.config_path)
        if config is None:
            raise ConfigError("No configuration found; run 'ticketdeck init' first")
        deck = TicketDeck(config)
        deck.start(background=True)
    init_deck(deck)

    yield
    # Shutdown
    close_deck()
    if owned:
        deck.shutdown()


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=APIResponse[None](data=None, error=message).model_dump(),
    )


def create_app(deck: TicketDeck | None = None, config_path: str | Path | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        deck: Running deck to serve; None builds one at startup
        config_path: Config file used when no deck is given
    """
    app = FastAPI(
        title="TicketDeck API",
        description="REST API for TicketDeck - Jira ticket viewer with a local cache",
        version="0.1.0",
        lifespan=lifespan,
    )

    # Store config for lifespan manager
    app.state.deck = deck
    app.state.config_path = Path(config_path) if config_path else None

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Exception handlers
    @app.exception_handler(TicketNotFoundError)
    async def ticket_not_found_handler(_request: Request, exc: TicketNotFoundError) -> JSONResponse:
        return _error(status.HTTP_404_NOT_FOUND, str(exc))

    @app.exception_handler(EpicNotFoundError)
    async def epic_not_found_handler(_request: Request, exc: EpicNotFoundError) -> JSONResponse:
        return _error(status.HTTP_404_NOT_FOUND, str(exc))

    @app.exception_handler(FilterNotFoundError)
    async def filter_not_found_handler(_request: Request, exc: FilterNotFoundError) -> JSONResponse:
        return _error(status.HTTP_404_NOT_FOUND, str(exc))

    @app.exception_handler(MutationBusyError)
    async def mutation_busy_handler(_request: Request, exc: MutationBusyError) -> JSONResponse:
        return _error(status.HTTP_409_CONFLICT, str(exc))

    @app.exception_handler(UnknownMemberError)
    async def unknown_member_handler(_request: Request, exc: UnknownMemberError) -> JSONResponse:
        return _error(status.HTTP_400_BAD_REQUEST, str(exc))

    @app.exception_handler(MutationError)
    async def mutation_error_handler(_request: Request, exc: MutationError) -> JSONResponse:
        return _error(status.HTTP_400_BAD_REQUEST, str(exc))

    @app.exception_handler(ControlError)
    async def control_error_handler(_request: Request, _exc: ControlError) -> JSONResponse:
        return _error(status.HTTP_503_SERVICE_UNAVAILABLE, "TicketDeck is shutting down")

    @app.exception_handler(CacheError)
    async def cache_error_handler(_request: Request, exc: CacheError) -> JSONResponse:
        logger.error("Unhandled cache error: %s", exc)
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error")

    # Include routers
    app.include_router(tickets.router, prefix="/api/v1")
    app.include_router(team.router, prefix="/api/v1")
    app.include_router(epics.router, prefix="/api/v1")
    app.include_router(refresh.router, prefix="/api/v1")
    app.include_router(mutations.router, prefix="/api/v1")
    app.include_router(events.router, prefix="/api/v1")

    return app


# Default app instance; the deck is built from the config file at startup
app = create_app()
