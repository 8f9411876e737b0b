"""FastAPI dependencies for dependency injection."""

from __future__ import annotations

from collections.abc import Generator  # noqa: TC003
from typing import Annotated

from fastapi import Depends

from ticketdeck.events import EventManager
from ticketdeck.runtime import TicketDeck

# Global TicketDeck instance (initialized on app startup)
_deck: TicketDeck | None = None


def init_deck(deck: TicketDeck) -> TicketDeck:
    """Initialize the global TicketDeck instance."""
    global _deck  # noqa: PLW0603
    _deck = deck
    return _deck


def close_deck() -> None:
    """Forget the global TicketDeck instance."""
    global _deck  # noqa: PLW0603
    _deck = None


def get_deck() -> Generator[TicketDeck, None, None]:
    """Dependency that provides the TicketDeck instance."""
    if _deck is None:
        raise RuntimeError("TicketDeck not initialized. Call init_deck() first.")
    yield _deck


# Type alias for dependency injection
DeckDep = Annotated[TicketDeck, Depends(get_deck)]


def get_event_manager() -> Generator[EventManager, None, None]:
    """Dependency that provides the deck's EventManager."""
    if _deck is None:
        raise RuntimeError("TicketDeck not initialized. Call init_deck() first.")
    yield _deck.events


# Type alias for dependency injection
EventManagerDep = Annotated[EventManager, Depends(get_event_manager)]
