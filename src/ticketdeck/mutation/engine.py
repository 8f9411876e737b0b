"""MutationEngine - optimistic edits reconciled against the external source."""

from __future__ import annotations

import itertools
import logging
from collections import deque
from collections.abc import Callable, Iterable
from datetime import UTC, datetime
from functools import partial
from typing import TYPE_CHECKING

from ticketdeck.cache.models import (
    ActivityEntry,
    ActivityKind,
    BatchSource,
    FetchBatch,
    Status,
    StatusKind,
    Ticket,
    TicketDetail,
    same_email,
)
from ticketdeck.events import EventType, NoticeLevel
from ticketdeck.mutation.exceptions import MutationBusyError, MutationError, UnknownMemberError
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
from ticketdeck.source.models import (
    AddComment,
    Assign,
    CreateTicket,
    EditFields,
    MoveStatus,
    MutationCommand,
)

if TYPE_CHECKING:
    from ticketdeck.cache.models import TeamMember
    from ticketdeck.cache.store import CacheStore
    from ticketdeck.control import ControlLoop, TaskRunner
    from ticketdeck.events import EventManager
    from ticketdeck.source import TicketSource

logger = logging.getLogger(__name__)

DRAFT_PREFIX = "draft-"
HISTORY_SIZE = 100

_KINDS: dict[type, MutationKind] = {
    MoveStatus: MutationKind.MOVE_STATUS,
    Assign: MutationKind.ASSIGN,
    AddComment: MutationKind.COMMENT,
    EditFields: MutationKind.EDIT_FIELDS,
    CreateTicket: MutationKind.CREATE,
}


class MutationEngine:
    """Applies user edits to the cache at once and reconciles them later.

    Each mutation goes IDLE -> PENDING -> COMMITTED or ROLLED_BACK. While
    pending, the ticket shows the provisional value and further requests for
    the same key are rejected with ``MutationBusyError``. On failure the
    pre-image captured at apply time is written back and an error notice is
    raised.

    Every public method and handler runs on the control thread.
    """

    def __init__(
        self,
        store: CacheStore,
        source: TicketSource,
        loop: ControlLoop,
        runner: TaskRunner,
        events: EventManager,
        project: str,
    ) -> None:
        """Initialize the engine and register its message handlers.

        Args:
            store: Cache Store owned by the control thread
            source: External ticket source, called from background jobs only
            loop: Control loop delivering command results
            runner: Background task runner
            events: Event manager for lifecycle events and notices
            project: Project new tickets are created in
        """
        self.store = store
        self.source = source
        self.loop = loop
        self.runner = runner
        self.events = events
        self.project = project

        self.pending: dict[str, PendingMutation] = {}
        self.drafts: dict[str, Ticket] = {}
        self.bulks: dict[int, BulkOperation] = {}
        self.history: deque[PendingMutation] = deque(maxlen=HISTORY_SIZE)
        self.selected_key: str | None = None
        self.last_bulk: BulkSummary | None = None
        self._by_id: dict[int, PendingMutation] = {}
        self._ids = itertools.count(1)
        self._bulk_ids = itertools.count(1)
        self._draft_ids = itertools.count(1)

        loop.register(MutationSucceeded, self._on_succeeded)
        loop.register(MutationFailed, self._on_failed)

    def state_of(self, key: str) -> MutationState:
        mutation = self.pending.get(key)
        return mutation.state if mutation else MutationState.IDLE

    def is_pending(self, key: str) -> bool:
        return key in self.pending

    def pending_keys(self) -> frozenset[str]:
        return frozenset(self.pending)

    def pending_states(self) -> dict[str, MutationState]:
        return {key: mutation.state for key, mutation in self.pending.items()}

    def pre_images(self) -> dict[str, Ticket]:
        """Records as they were before each pending edit, keyed by ticket key."""
        return {
            key: mutation.pre_image
            for key, mutation in self.pending.items()
            if mutation.pre_image is not None
        }

    def get_mutation(self, mutation_id: int) -> PendingMutation | None:
        """A mutation still in flight, or one from recent history."""
        if mutation_id in self._by_id:
            return self._by_id[mutation_id]
        for mutation in self.history:
            if mutation.id == mutation_id:
                return mutation
        return None

    # --- Single-ticket mutations ---

    def move_status(
        self, key: str, status: Status, resolution: str | None = None
    ) -> PendingMutation:
        """Move a ticket to another status.

        Raises:
            MutationBusyError: If the ticket has a pending mutation
            TicketNotFoundError: If the ticket is not cached
        """
        return self._begin(key, MoveStatus(key=key, status=status, resolution=resolution))

    def assign(self, key: str, email: str | None) -> PendingMutation:
        """Assign a ticket to a team member, or unassign it with None.

        Raises:
            MutationBusyError: If the ticket has a pending mutation
            TicketNotFoundError: If the ticket is not cached
            UnknownMemberError: If the email is not on the roster
        """
        name = self._member(email).name if email is not None else None
        return self._begin(key, Assign(key=key, email=email, name=name))

    def comment(self, key: str, body: str) -> PendingMutation:
        """Append a comment.

        Raises:
            MutationError: If the body is empty
            MutationBusyError: If the ticket has a pending mutation
            TicketNotFoundError: If the ticket is not cached
        """
        if not body.strip():
            raise MutationError("Comment body is empty")
        return self._begin(key, AddComment(key=key, body=body))

    def edit_fields(
        self,
        key: str,
        summary: str | None = None,
        description: str | None = None,
        labels: Iterable[str] | None = None,
    ) -> PendingMutation:
        """Edit summary, description and/or the label set. None leaves a field alone.

        Raises:
            MutationBusyError: If the ticket has a pending mutation
            TicketNotFoundError: If the ticket is not cached
        """
        ticket = self.store.require_ticket(key)
        new_labels = frozenset(labels) if labels is not None else None
        removed = ticket.labels - new_labels if new_labels is not None else frozenset()
        command = EditFields(
            key=key,
            summary=summary,
            description=description,
            labels=new_labels,
            removed_labels=removed,
        )
        return self._begin(key, command)

    def create(
        self,
        summary: str,
        issue_type: str = "Task",
        description: str | None = None,
        assignee_email: str | None = None,
        epic_key: str | None = None,
        labels: Iterable[str] = (),
    ) -> PendingMutation:
        """Create a ticket.

        The provisional ticket waits in the draft buffer under a draft key
        until the source returns the real key; it never enters the cache
        before that.

        Raises:
            MutationError: If the summary is empty
            UnknownMemberError: If the assignee is not on the roster
        """
        new = NewTicket(
            summary=summary,
            issue_type=issue_type,
            description=description,
            assignee_email=assignee_email,
            epic_key=epic_key,
            labels=frozenset(labels),
        )
        self._check_new(new)
        return self._create(new)

    # --- Bulk mutations ---

    def bulk_move(self, keys: Iterable[str], status: Status) -> BulkOperation:
        """Move many tickets; each key follows the single-ticket protocol.

        Keys already in the target status, or not cached, are skipped. Busy
        keys fail individually.
        """
        target = status.label.casefold()
        return self._bulk(
            MutationKind.MOVE_STATUS,
            keys,
            already_applied=lambda t: t.status.label.casefold() == target,
            make_command=lambda key: MoveStatus(key=key, status=status),
        )

    def bulk_assign(self, keys: Iterable[str], email: str | None) -> BulkOperation:
        """Assign many tickets to one member (or unassign with None).

        Raises:
            UnknownMemberError: If the email is not on the roster
        """
        name = self._member(email).name if email is not None else None
        return self._bulk(
            MutationKind.ASSIGN,
            keys,
            already_applied=lambda t: same_email(t.assignee_email, email),
            make_command=lambda key: Assign(key=key, email=email, name=name),
        )

    def bulk_create(self, tickets: Iterable[NewTicket]) -> BulkOperation:
        """Create many tickets on the worker pool.

        Every request is checked before anything is dispatched, so a bad
        request creates nothing. Each creation then follows the single-ticket
        protocol and succeeds or fails on its own.

        Raises:
            MutationError: If a summary is empty
            UnknownMemberError: If an assignee is not on the roster
        """
        requests = list(tickets)
        for new in requests:
            self._check_new(new)
        bulk = BulkOperation(id=next(self._bulk_ids), kind=MutationKind.CREATE)
        self.bulks[bulk.id] = bulk
        for new in requests:
            self._create(new, bulk=bulk)
        bulk.sealed = True
        logger.info("Bulk %d: creating %d ticket(s)", bulk.id, len(bulk.attempted))
        if bulk.finished:
            self._complete_bulk(bulk)
        return bulk

    # --- Reconciliation with merges ---

    def rebase(self, keys: Iterable[str]) -> list[str]:
        """Replay pending changes on top of freshly merged records.

        A merge overwrites the provisional value of a pending ticket with the
        authoritative one. The merged record becomes the new pre-image and
        the change is applied again so the view keeps showing it.

        Returns:
            Keys that were rebased
        """
        rebased = []
        for key in keys:
            mutation = self.pending.get(key)
            if mutation is None or mutation.kind is MutationKind.CREATE:
                continue
            merged = self.store.get_ticket(key)
            if merged is None or merged == mutation.provisional:
                continue
            mutation.pre_image = merged
            mutation.provisional = self._apply(merged, mutation.command)
            self.store.put_ticket(mutation.provisional)
            rebased.append(key)
        if rebased:
            logger.debug("Rebased pending mutations on %s", ", ".join(rebased))
        return rebased

    def apply_detail(self, key: str, detail: TicketDetail) -> bool:
        """Hydrate a ticket, keeping any pending change on top of the detail.

        For a pending ticket the detail goes into the pre-image and the
        change is applied again, so a rollback restores the hydrated record
        without the provisional edit.

        Returns:
            False if the ticket is no longer cached
        """
        mutation = self.pending.get(key)
        if mutation is None or mutation.pre_image is None:
            return self.store.apply_detail(key, detail)
        mutation.pre_image = mutation.pre_image.with_detail(detail)
        mutation.provisional = self._apply(mutation.pre_image, mutation.command)
        self.store.put_ticket(mutation.provisional)
        logger.debug("Hydrated %s under pending mutation %d", key, mutation.id)
        return True

    # --- Internals ---

    def _begin(
        self, key: str, command: MutationCommand, bulk: BulkOperation | None = None
    ) -> PendingMutation:
        if key in self.pending:
            raise MutationBusyError(key)
        ticket = self.store.require_ticket(key)
        mutation = PendingMutation(
            id=next(self._ids),
            key=key,
            kind=_KINDS[type(command)],
            command=command,
            pre_image=ticket,
            provisional=self._apply(ticket, command),
            bulk_id=bulk.id if bulk else None,
        )
        self.store.put_ticket(mutation.provisional)
        self._track(mutation)
        self._dispatch(mutation, pooled=bulk is not None)
        return mutation

    def _check_new(self, new: NewTicket) -> None:
        if not new.summary.strip():
            raise MutationError("Summary is required")
        if new.assignee_email:
            self._member(new.assignee_email)

    def _create(self, new: NewTicket, bulk: BulkOperation | None = None) -> PendingMutation:
        assignee = self._member(new.assignee_email).name if new.assignee_email else None
        draft_key = f"{DRAFT_PREFIX}{next(self._draft_ids)}"
        command = CreateTicket(
            project=self.project,
            summary=new.summary,
            issue_type=new.issue_type,
            description=new.description,
            assignee_email=new.assignee_email,
            epic_key=new.epic_key,
            labels=new.labels,
        )
        draft = Ticket(
            key=draft_key,
            summary=new.summary,
            status=Status.of(StatusKind.TO_DO),
            assignee=assignee,
            assignee_email=new.assignee_email,
            reporter=self._author_name(),
            labels=new.labels,
            epic_key=new.epic_key,
            description=new.description,
        )
        mutation = PendingMutation(
            id=next(self._ids),
            key=draft_key,
            kind=MutationKind.CREATE,
            command=command,
            pre_image=None,
            provisional=draft,
            bulk_id=bulk.id if bulk else None,
        )
        if bulk is not None:
            ref = new.ref or draft_key
            bulk.refs[draft_key] = ref
            bulk.attempted.add(ref)
        self.drafts[draft_key] = draft
        self._track(mutation)
        self._dispatch(mutation, pooled=bulk is not None)
        return mutation

    def _track(self, mutation: PendingMutation) -> None:
        mutation.transition(MutationState.PENDING)
        self.pending[mutation.key] = mutation
        self._by_id[mutation.id] = mutation
        logger.info("Mutation %d: %s on %s pending", mutation.id, mutation.kind, mutation.key)
        self.events.emit_mutation(EventType.MUTATION_PENDING, mutation.to_dict())

    def _dispatch(self, mutation: PendingMutation, pooled: bool) -> None:
        name = f"mutation-{mutation.id}"
        job = partial(self._run_command, mutation.id, mutation.command)
        on_error = partial(_failure, mutation.id)
        if pooled:
            started = self.runner.submit(name, job, on_error=on_error) is not None
        else:
            started = self.runner.spawn(name, job, on_error=on_error)
        if not started:
            self._on_failed(MutationFailed(mutation_id=mutation.id, error="shutting down"))

    def _run_command(self, mutation_id: int, command: MutationCommand) -> MutationSucceeded:
        return MutationSucceeded(mutation_id=mutation_id, outcome=self.source.mutate(command))

    def _on_succeeded(self, message: MutationSucceeded) -> None:
        mutation = self._by_id.pop(message.mutation_id, None)
        if mutation is None:
            logger.debug("Result for unknown mutation %d ignored", message.mutation_id)
            return
        mutation.outcome = message.outcome
        mutation.transition(MutationState.COMMITTED)
        self._release(mutation)

        if mutation.kind is MutationKind.CREATE:
            draft = self.drafts.pop(mutation.key, mutation.provisional)
            created = draft.with_changes(
                key=message.outcome.key, url=message.outcome.url or draft.url
            )
            self.store.merge(FetchBatch(tickets=(created,)), BatchSource.MUTATION)
            self.selected_key = created.key
            logger.info("Mutation %d: created %s", mutation.id, created.key)
        else:
            logger.info("Mutation %d: %s on %s committed", mutation.id, mutation.kind, mutation.key)

        self.events.emit_mutation(EventType.MUTATION_COMMITTED, mutation.to_dict())
        self._record_bulk(mutation)

    def _on_failed(self, message: MutationFailed) -> None:
        mutation = self._by_id.pop(message.mutation_id, None)
        if mutation is None:
            logger.debug("Failure for unknown mutation %d ignored", message.mutation_id)
            return
        mutation.error = message.error
        mutation.transition(MutationState.ROLLED_BACK)
        self._release(mutation)

        if mutation.kind is MutationKind.CREATE:
            self.drafts.pop(mutation.key, None)
        elif mutation.pre_image is not None:
            self.store.put_ticket(mutation.pre_image)

        logger.warning(
            "Mutation %d: %s on %s rolled back: %s",
            mutation.id,
            mutation.kind,
            mutation.key,
            message.error,
        )
        self.events.emit_mutation(EventType.MUTATION_ROLLED_BACK, mutation.to_dict())
        self.events.notify(
            f"{_describe(mutation)} failed and was reverted: {message.error}",
            NoticeLevel.ERROR,
            key=mutation.key,
            mutation_id=mutation.id,
        )
        self._record_bulk(mutation)

    def _release(self, mutation: PendingMutation) -> None:
        if self.pending.get(mutation.key) is mutation:
            del self.pending[mutation.key]
        self.history.append(mutation)

    def _bulk(
        self,
        kind: MutationKind,
        keys: Iterable[str],
        already_applied: Callable[[Ticket], bool],
        make_command: Callable[[str], MutationCommand],
    ) -> BulkOperation:
        bulk = BulkOperation(id=next(self._bulk_ids), kind=kind)
        self.bulks[bulk.id] = bulk
        for key in dict.fromkeys(keys):
            ticket = self.store.get_ticket(key)
            if ticket is None or already_applied(ticket):
                bulk.skipped.append(key)
                continue
            bulk.attempted.add(key)
            if key in self.pending:
                bulk.failed[key] = str(MutationBusyError(key))
                continue
            self._begin(key, make_command(key), bulk=bulk)
        bulk.sealed = True
        logger.info(
            "Bulk %d: %s on %d ticket(s), %d skipped",
            bulk.id,
            kind,
            len(bulk.attempted),
            len(bulk.skipped),
        )
        if bulk.finished:
            self._complete_bulk(bulk)
        return bulk

    def _record_bulk(self, mutation: PendingMutation) -> None:
        if mutation.bulk_id is None:
            return
        bulk = self.bulks.get(mutation.bulk_id)
        if bulk is None:
            return
        name = bulk.refs.get(mutation.key, mutation.key)
        if mutation.state is MutationState.COMMITTED:
            bulk.succeeded.append(name)
            if mutation.kind is MutationKind.CREATE and mutation.outcome is not None:
                bulk.created[name] = mutation.outcome.key
        else:
            bulk.failed[name] = mutation.error or "failed"
        if bulk.finished:
            self._complete_bulk(bulk)

    def _complete_bulk(self, bulk: BulkOperation) -> None:
        del self.bulks[bulk.id]
        summary = bulk.summary()
        self.last_bulk = summary
        logger.info(
            "Bulk %d finished: %d ok, %d failed, %d skipped",
            bulk.id,
            len(summary.succeeded),
            len(summary.failed),
            len(summary.skipped),
        )
        self.events.emit_bulk_completed(summary.to_dict())
        if summary.failed:
            verb = "created" if bulk.kind is MutationKind.CREATE else "updated"
            self.events.notify(
                f"{len(summary.failed)} of {len(bulk.attempted)} ticket(s) could not be {verb}",
                NoticeLevel.WARNING,
                bulk_id=bulk.id,
            )

    def _apply(self, ticket: Ticket, command: MutationCommand) -> Ticket:
        """Provisional version of a ticket with the command applied."""
        match command:
            case MoveStatus(status=status):
                return ticket.with_changes(status=status)
            case Assign(email=email, name=name):
                return ticket.with_changes(assignee=name, assignee_email=email)
            case AddComment(body=body):
                entry = ActivityEntry(
                    timestamp=datetime.now(UTC).isoformat(),
                    author=self._author_name() or "me",
                    author_email=self.store.current_user_email,
                    kind=ActivityKind.COMMENT,
                    body=body,
                )
                return ticket.with_changes(activity=(entry, *ticket.activity))
            case EditFields() as edit:
                changes: dict[str, object] = {}
                if edit.summary is not None:
                    changes["summary"] = edit.summary
                if edit.description is not None:
                    changes["description"] = edit.description
                if edit.labels is not None:
                    changes["labels"] = edit.labels
                return ticket.with_changes(**changes)
            case _:
                raise MutationError(f"Cannot apply {type(command).__name__} to an existing ticket")

    def _member(self, email: str | None) -> TeamMember:
        for member in self.store.members_by_email.values():
            if same_email(member.email, email):
                return member
        raise UnknownMemberError(f"'{email}' is not a team member")

    def _author_name(self) -> str | None:
        email = self.store.current_user_email
        if email is None:
            return None
        for member in self.store.members_by_email.values():
            if same_email(member.email, email):
                return member.name
        return email


def _failure(mutation_id: int, error: Exception) -> MutationFailed:
    return MutationFailed(mutation_id=mutation_id, error=str(error))


def _describe(mutation: PendingMutation) -> str:
    match mutation.command:
        case MoveStatus(status=status):
            return f"Moving {mutation.key} to {status.label}"
        case Assign(email=None):
            return f"Unassigning {mutation.key}"
        case Assign(name=name, email=email):
            return f"Assigning {mutation.key} to {name or email}"
        case AddComment():
            return f"Commenting on {mutation.key}"
        case EditFields():
            return f"Editing {mutation.key}"
        case CreateTicket(summary=summary):
            return f"Creating '{summary}'"
    return f"Changing {mutation.key}"
