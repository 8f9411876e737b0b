"""Cache Store - in-memory snapshot of tickets, epics and team members."""

from ticketdeck.cache.exceptions import CacheError, EpicNotFoundError, TicketNotFoundError
from ticketdeck.cache.models import (
    ActivityEntry,
    ActivityKind,
    BatchSource,
    Epic,
    EpicProgress,
    FetchBatch,
    SavedFilter,
    Status,
    StatusCategory,
    StatusKind,
    StatusSets,
    TeamMember,
    Ticket,
    TicketDetail,
    UnassignedGroup,
    same_email,
)
from ticketdeck.cache.store import CacheSnapshot, CacheStore, CacheViews

__all__ = [
    "ActivityEntry",
    "ActivityKind",
    "BatchSource",
    "CacheError",
    "CacheSnapshot",
    "CacheStore",
    "CacheViews",
    "Epic",
    "EpicNotFoundError",
    "EpicProgress",
    "FetchBatch",
    "SavedFilter",
    "Status",
    "StatusCategory",
    "StatusKind",
    "StatusSets",
    "TeamMember",
    "Ticket",
    "TicketDetail",
    "TicketNotFoundError",
    "UnassignedGroup",
    "same_email",
]
