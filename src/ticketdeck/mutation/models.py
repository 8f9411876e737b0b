"""Data models for the Mutation Engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from ticketdeck.mutation.exceptions import InvalidTransitionError

if TYPE_CHECKING:
    from ticketdeck.cache.models import Ticket
    from ticketdeck.source.models import MutationCommand, MutationOutcome


class MutationState(StrEnum):
    """Lifecycle of one mutation."""

    IDLE = "idle"
    PENDING = "pending"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"


class MutationKind(StrEnum):
    MOVE_STATUS = "move_status"
    ASSIGN = "assign"
    COMMENT = "comment"
    EDIT_FIELDS = "edit_fields"
    CREATE = "create"


# Allowed state transitions
VALID_TRANSITIONS: dict[MutationState, frozenset[MutationState]] = {
    MutationState.IDLE: frozenset({MutationState.PENDING}),
    MutationState.PENDING: frozenset({MutationState.COMMITTED, MutationState.ROLLED_BACK}),
    MutationState.COMMITTED: frozenset(),
    MutationState.ROLLED_BACK: frozenset(),
}


@dataclass
class PendingMutation:
    """One optimistic mutation and the pre-image needed to undo it.

    Attributes:
        id: Engine-wide mutation number.
        key: Ticket key (a draft key for creations).
        kind: What the mutation changes.
        command: Command dispatched to the source.
        pre_image: Ticket as it was before the optimistic apply; None for
                   creations. Replaced on rebase by the newly merged record.
        provisional: Ticket as shown while the command is in flight.
        state: Current lifecycle state.
        bulk_id: Bulk operation this mutation belongs to, if any.
        error: Failure reason once rolled back.
        outcome: Source response once committed.
    """

    id: int
    key: str
    kind: MutationKind
    command: MutationCommand
    pre_image: Ticket | None
    provisional: Ticket
    state: MutationState = MutationState.IDLE
    bulk_id: int | None = None
    error: str | None = None
    outcome: MutationOutcome | None = None
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    finished_at: datetime | None = None

    def transition(self, new_state: MutationState) -> None:
        """Move to another state.

        Raises:
            InvalidTransitionError: If the state machine forbids the move
        """
        if new_state not in VALID_TRANSITIONS[self.state]:
            raise InvalidTransitionError(
                f"Mutation {self.id} on {self.key}: cannot go from {self.state} to {new_state}"
            )
        self.state = new_state
        if new_state in (MutationState.COMMITTED, MutationState.ROLLED_BACK):
            self.finished_at = datetime.now(UTC)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "key": self.key,
            "kind": self.kind.value,
            "state": self.state.value,
            "bulk_id": self.bulk_id,
            "error": self.error,
            "new_key": self.outcome.key if self.outcome else None,
        }


@dataclass(frozen=True)
class NewTicket:
    """Fields of a ticket to create.

    ``ref`` is the caller's name for the request (a CSV row, say); bulk
    summaries report creations under it instead of the draft key.
    """

    summary: str
    issue_type: str = "Task"
    description: str | None = None
    assignee_email: str | None = None
    epic_key: str | None = None
    labels: frozenset[str] = frozenset()
    ref: str | None = None


@dataclass
class BulkOperation:
    """Progress of one multi-ticket move, assign or create.

    ``sealed`` is set once every key has been dispatched or skipped; only a
    sealed operation can finish. Creations are tracked under their ref, and
    ``created`` maps each successful ref to the key the source assigned.
    """

    id: int
    kind: MutationKind
    sealed: bool = False
    attempted: set[str] = field(default_factory=set)
    skipped: list[str] = field(default_factory=list)
    succeeded: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)
    refs: dict[str, str] = field(default_factory=dict)
    created: dict[str, str] = field(default_factory=dict)

    @property
    def finished(self) -> bool:
        return self.sealed and len(self.succeeded) + len(self.failed) >= len(self.attempted)

    def summary(self) -> BulkSummary:
        return BulkSummary(
            bulk_id=self.id,
            kind=self.kind,
            succeeded=tuple(sorted(self.succeeded)),
            failed=dict(sorted(self.failed.items())),
            skipped=tuple(sorted(self.skipped)),
            created=dict(sorted(self.created.items())),
        )


@dataclass(frozen=True)
class BulkSummary:
    """Per-key result of a bulk operation; partial failure is normal."""

    bulk_id: int
    kind: MutationKind
    succeeded: tuple[str, ...] = ()
    failed: dict[str, str] = field(default_factory=dict)
    skipped: tuple[str, ...] = ()
    created: dict[str, str] = field(default_factory=dict)

    @property
    def all_succeeded(self) -> bool:
        return not self.failed

    def to_dict(self) -> dict[str, Any]:
        return {
            "bulk_id": self.bulk_id,
            "kind": self.kind.value,
            "succeeded": list(self.succeeded),
            "failed": dict(self.failed),
            "skipped": list(self.skipped),
            "created": dict(self.created),
        }


# Messages posted by mutation jobs to the control loop


@dataclass(frozen=True)
class MutationSucceeded:
    mutation_id: int
    outcome: MutationOutcome


@dataclass(frozen=True)
class MutationFailed:
    mutation_id: int
    error: str
