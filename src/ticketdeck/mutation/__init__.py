"""Mutation Engine - optimistic edits with reconciliation."""

from ticketdeck.mutation.engine import DRAFT_PREFIX, MutationEngine
from ticketdeck.mutation.exceptions import (
    InvalidTransitionError,
    MutationBusyError,
    MutationError,
    UnknownMemberError,
    UploadError,
)
from ticketdeck.mutation.models import (
    BulkOperation,
    BulkSummary,
    MutationFailed,
    MutationKind,
    MutationState,
    MutationSucceeded,
    NewTicket,
    PendingMutation,
)

__all__ = [
    "DRAFT_PREFIX",
    "BulkOperation",
    "BulkSummary",
    "InvalidTransitionError",
    "MutationBusyError",
    "MutationEngine",
    "MutationError",
    "MutationFailed",
    "MutationKind",
    "MutationState",
    "MutationSucceeded",
    "NewTicket",
    "PendingMutation",
    "UnknownMemberError",
    "UploadError",
]
