"""Data models and result messages for the Refresh Orchestrator."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum

from ticketdeck.cache.models import FetchBatch, Ticket, TicketDetail


class Stage(StrEnum):
    """Background fetch stages of one refresh cycle."""

    ACTIVE = "active"
    DONE = "done"
    EPICS = "epics"


ALL_STAGES = frozenset(Stage)


@dataclass
class RefreshCycle:
    """Bookkeeping for one refresh cycle, owned by the control thread.

    Attributes:
        id: Monotonic cycle number.
        pending: Stages whose result has not arrived yet.
        failed: Error text per failed stage.
        started_at: When the cycle was launched.
        completed_at: When the last stage reported back.
    """

    id: int
    pending: set[Stage] = field(default_factory=lambda: set(ALL_STAGES))
    failed: dict[Stage, str] = field(default_factory=dict)
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    completed_at: datetime | None = None

    @property
    def finished(self) -> bool:
        return not self.pending

    @property
    def succeeded(self) -> bool:
        return self.finished and not self.failed


# Messages posted by background jobs to the control loop


@dataclass(frozen=True)
class StageFetched:
    cycle_id: int
    stage: Stage
    batch: FetchBatch
    current_user_email: str | None = None


@dataclass(frozen=True)
class StageFailed:
    cycle_id: int
    stage: Stage
    error: str


@dataclass(frozen=True)
class DetailFetched:
    """Hydration result; ``token`` ties it to the request that is in flight."""

    key: str
    token: int
    detail: TicketDetail


@dataclass(frozen=True)
class DetailFailed:
    key: str
    token: int
    error: str


@dataclass(frozen=True)
class FilterFetched:
    name: str
    tickets: tuple[Ticket, ...]


@dataclass(frozen=True)
class FilterFailed:
    name: str
    error: str


@dataclass(frozen=True)
class SnapshotSaved:
    project: str
    written: bool


@dataclass(frozen=True)
class SnapshotSaveFailed:
    project: str
    error: str
