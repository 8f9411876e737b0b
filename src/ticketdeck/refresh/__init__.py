"""Refresh Orchestrator - staged background fetches into the Cache Store."""

from ticketdeck.refresh.exceptions import FilterNotFoundError, RefreshError
from ticketdeck.refresh.models import (
    ALL_STAGES,
    DetailFailed,
    DetailFetched,
    FilterFailed,
    FilterFetched,
    RefreshCycle,
    SnapshotSaved,
    SnapshotSaveFailed,
    Stage,
    StageFailed,
    StageFetched,
)
from ticketdeck.refresh.orchestrator import RefreshOrchestrator

__all__ = [
    "ALL_STAGES",
    "DetailFailed",
    "DetailFetched",
    "FilterFailed",
    "FilterFetched",
    "FilterNotFoundError",
    "RefreshCycle",
    "RefreshError",
    "RefreshOrchestrator",
    "SnapshotSaveFailed",
    "SnapshotSaved",
    "Stage",
    "StageFailed",
    "StageFetched",
]
