"""REST API for TicketDeck."""

from ticketdeck.api.app import app, create_app
from ticketdeck.api.models import (
    APIResponse,
    MutationResponse,
    TicketResponse,
    TicketSummaryResponse,
)

__all__ = [
    "APIResponse",
    "MutationResponse",
    "TicketResponse",
    "TicketSummaryResponse",
    "app",
    "create_app",
]
