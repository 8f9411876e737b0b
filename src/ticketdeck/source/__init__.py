"""External Source Adapter - typed fetch/mutate requests against the tracker."""

from ticketdeck.source.adapter import TicketSource
from ticketdeck.source.exceptions import FetchError, MutateError, SourceError
from ticketdeck.source.jira_cli import JiraCliSource
from ticketdeck.source.models import (
    AddComment,
    Assign,
    CreateTicket,
    EditFields,
    EpicTree,
    MoveStatus,
    MutationCommand,
    MutationOutcome,
)

__all__ = [
    "AddComment",
    "Assign",
    "CreateTicket",
    "EditFields",
    "EpicTree",
    "FetchError",
    "JiraCliSource",
    "MoveStatus",
    "MutateError",
    "MutationCommand",
    "MutationOutcome",
    "SourceError",
    "TicketSource",
]
