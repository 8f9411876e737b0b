"""RefreshOrchestrator - staged background refreshes of the Cache Store."""

from __future__ import annotations

import itertools
import logging
from datetime import UTC, datetime
from functools import partial
from typing import TYPE_CHECKING

from ticketdeck.cache.models import BatchSource, FetchBatch, SavedFilter, Ticket
from ticketdeck.events import NoticeLevel
from ticketdeck.refresh.exceptions import FilterNotFoundError
from ticketdeck.refresh.models import (
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
from ticketdeck.source.exceptions import FetchError

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from ticketdeck.cache.store import CacheSnapshot, CacheStore
    from ticketdeck.config import AppConfig
    from ticketdeck.control import ControlLoop, TaskRunner
    from ticketdeck.events import EventManager
    from ticketdeck.mutation import MutationEngine
    from ticketdeck.persistence import SnapshotStore
    from ticketdeck.source import TicketSource

logger = logging.getLogger(__name__)


class RefreshOrchestrator:
    """Keeps the Cache Store warm without blocking interactive use.

    A cycle runs three independent stages (active tickets, the done window,
    epics) on background threads. Each result is merged on the control
    thread as it arrives and triggers detail hydration on the bounded pool
    for tickets that became relevant. A cycle whose stages all succeeded
    ends with a background snapshot write.

    Every public method and handler runs on the control thread.
    """

    def __init__(
        self,
        config: AppConfig,
        source: TicketSource,
        store: CacheStore,
        loop: ControlLoop,
        runner: TaskRunner,
        snapshots: SnapshotStore,
        events: EventManager,
        mutations: MutationEngine | None = None,
    ) -> None:
        """Initialize the orchestrator and register its message handlers.

        Args:
            config: Application configuration (queries, window, team)
            source: External ticket source, called from background jobs only
            store: Cache Store owned by the control thread
            loop: Control loop delivering job results
            runner: Background task runner
            snapshots: Snapshot persistence
            events: Event manager for change events and notices
            mutations: Mutation engine to rebase pending edits after merges
        """
        self.config = config
        self.source = source
        self.store = store
        self.loop = loop
        self.runner = runner
        self.snapshots = snapshots
        self.events = events
        self.mutations = mutations

        self.cycles: dict[int, RefreshCycle] = {}
        self.last_cycle: RefreshCycle | None = None
        self.filter_results: dict[str, list[str]] = {}
        self._cycle_ids = itertools.count(1)
        self._tokens = itertools.count(1)
        self._in_flight: dict[str, int] = {}
        self._failed_details: set[str] = set()
        self.saving = False

        loop.register(StageFetched, self._on_stage_fetched)
        loop.register(StageFailed, self._on_stage_failed)
        loop.register(DetailFetched, self._on_detail_fetched)
        loop.register(DetailFailed, self._on_detail_failed)
        loop.register(FilterFetched, self._on_filter_fetched)
        loop.register(FilterFailed, self._on_filter_failed)
        loop.register(SnapshotSaved, self._on_snapshot_saved)
        loop.register(SnapshotSaveFailed, self._on_snapshot_save_failed)

    @property
    def project(self) -> str:
        return self.config.jira.project

    @property
    def in_flight_keys(self) -> frozenset[str]:
        """Keys with a detail fetch currently running."""
        return frozenset(self._in_flight)

    @property
    def refreshing(self) -> bool:
        return bool(self.cycles)

    def start(self) -> RefreshCycle:
        """Cold start: load the snapshot, then launch the first refresh cycle.

        Loading the snapshot is the only synchronous step. A missing or
        unreadable snapshot means starting from an empty cache.

        Returns:
            The refresh cycle that was launched
        """
        loaded = self.snapshots.load(self.project, self.store.statuses)
        if loaded is not None:
            self.store.replace_all(loaded.snapshot)
            self.events.emit_cache_updated(
                BatchSource.SNAPSHOT.value,
                sorted(loaded.snapshot.tickets_by_key),
                self.store.version,
            )
            logger.info("Cold start from snapshot saved %s ago", loaded.age)
        else:
            logger.info("Cold start without snapshot for %s", self.project)
        return self.refresh()

    def refresh(self) -> RefreshCycle:
        """Launch the three fetch stages.

        The cache is not cleared, so the view stays populated. A cycle that
        is still running is not cancelled; both merge independently.

        Returns:
            The refresh cycle that was launched
        """
        cycle = RefreshCycle(id=next(self._cycle_ids))
        self.cycles[cycle.id] = cycle
        self._failed_details.clear()
        known_user = self.store.current_user_email
        logger.info("Starting refresh cycle %d for %s", cycle.id, self.project)
        self.events.emit_refresh_started(cycle.id)

        jobs = (
            (Stage.ACTIVE, partial(self._fetch_active, cycle.id)),
            (Stage.DONE, partial(self._fetch_done, cycle.id, known_user)),
            (Stage.EPICS, partial(self._fetch_epics, cycle.id)),
        )
        for stage, job in jobs:
            started = self.runner.spawn(
                f"{stage}-{cycle.id}", job, on_error=partial(_stage_error, cycle.id, stage)
            )
            if not started:
                self._finish_stage(cycle.id, stage, error="task runner is shut down")
        return cycle

    def request_detail(self, key: str) -> bool:
        """Hydrate a ticket the user opened, relevant or not.

        Returns:
            False if a detail fetch for the key is already running

        Raises:
            TicketNotFoundError: If the key is not cached
        """
        self.store.require_ticket(key)
        if key in self._in_flight:
            return False
        self._failed_details.discard(key)
        return self._submit_detail(key)

    def run_filter(self, name: str) -> SavedFilter:
        """Run a saved filter in the background and merge its results.

        Raises:
            FilterNotFoundError: If no filter has that name
        """
        saved = self.config.find_filter(name)
        if saved is None:
            raise FilterNotFoundError(f"No saved filter named '{name}'")
        self.runner.spawn(
            f"filter-{saved.name}",
            partial(self._fetch_filter, saved),
            on_error=partial(_filter_error, saved.name),
        )
        logger.info("Running saved filter %s", saved.name)
        return saved

    def status(self) -> dict[str, object]:
        """Refresh state for display."""
        last = self.last_cycle
        completed_at = last.completed_at if last else None
        return {
            "refreshing": self.refreshing,
            "running_cycles": sorted(self.cycles),
            "last_cycle": last.id if last else None,
            "last_completed_at": completed_at.isoformat() if completed_at else None,
            "last_failed_stages": sorted(last.failed) if last else [],
            "hydrating": len(self._in_flight),
        }

    # --- Background jobs (no shared state; they only return messages) ---

    def _fetch_active(self, cycle_id: int) -> StageFetched:
        user = self.source.fetch_current_user()
        tickets = self._fetch_per_assignee(user, self.config.active_query)
        return StageFetched(
            cycle_id=cycle_id,
            stage=Stage.ACTIVE,
            batch=FetchBatch(
                tickets=tuple(tickets), team_members=tuple(self.config.team_members())
            ),
            current_user_email=user,
        )

    def _fetch_done(self, cycle_id: int, known_user: str | None) -> StageFetched:
        user = known_user or self.source.fetch_current_user()
        tickets = self._fetch_per_assignee(user, self.config.done_query)
        return StageFetched(
            cycle_id=cycle_id, stage=Stage.DONE, batch=FetchBatch(tickets=tuple(tickets))
        )

    def _fetch_per_assignee(self, user: str, build_query: Callable[[str], str]) -> list[Ticket]:
        """Run one query per team member; only the current user's failure is fatal."""
        tickets: list[Ticket] = []
        for email in self.config.scope_emails(user):
            try:
                found = self.source.fetch_by_query(build_query(email))
            except FetchError as e:
                if email == user:
                    raise
                logger.warning("Fetch for team member %s failed: %s", email, e)
                continue
            tickets.extend(t.with_changes(assignee_email=email) for t in found)
        return tickets

    def _fetch_epics(self, cycle_id: int) -> StageFetched:
        trees = self.source.fetch_epics(self.project)
        children = [self._with_member_email(c) for tree in trees for c in tree.children]
        batch = FetchBatch(tickets=tuple(children), epics=tuple(tree.epic for tree in trees))
        return StageFetched(cycle_id=cycle_id, stage=Stage.EPICS, batch=batch)

    def _fetch_detail(self, key: str, token: int) -> DetailFetched:
        return DetailFetched(key=key, token=token, detail=self.source.fetch_detail(key))

    def _fetch_filter(self, saved: SavedFilter) -> FilterFetched:
        tickets = self.source.fetch_by_query(saved.jql)
        return FilterFetched(
            name=saved.name, tickets=tuple(self._with_member_email(t) for t in tickets)
        )

    def _save_snapshot(self, snapshot: CacheSnapshot) -> SnapshotSaved:
        written = self.snapshots.save(self.project, snapshot)
        return SnapshotSaved(project=self.project, written=written)

    def _with_member_email(self, ticket: Ticket) -> Ticket:
        if ticket.assignee_email is None and ticket.assignee:
            email = self.config.team.get(ticket.assignee)
            if email:
                return ticket.with_changes(assignee_email=email)
        return ticket

    # --- Message handlers (control thread) ---

    def _on_stage_fetched(self, message: StageFetched) -> None:
        match message.stage:
            case Stage.ACTIVE:
                user = message.current_user_email
                if user and user != self.store.current_user_email:
                    self.store.set_current_user(user)
                keys = self.store.merge(
                    message.batch, BatchSource.ACTIVE, base=self._pre_images()
                )
                source = BatchSource.ACTIVE
            case Stage.DONE:
                evicted = self.store.replace_done_window(
                    message.batch.tickets,
                    self.config.done_window,
                    protected=self._pending_keys(),
                    base=self._pre_images(),
                )
                for key in evicted:
                    self._in_flight.pop(key, None)
                keys = sorted(message.batch.ticket_keys)
                source = BatchSource.DONE_WINDOW
            case Stage.EPICS:
                keys = self.store.merge(
                    message.batch, BatchSource.EPICS, base=self._pre_images()
                )
                source = BatchSource.EPICS
        logger.info(
            "Cycle %d: merged %d ticket(s) from %s stage",
            message.cycle_id,
            len(keys),
            message.stage,
        )
        self._after_merge(source, keys)
        self._finish_stage(message.cycle_id, message.stage)

    def _on_stage_failed(self, message: StageFailed) -> None:
        logger.warning(
            "Cycle %d: %s stage failed: %s", message.cycle_id, message.stage, message.error
        )
        self.events.emit_stage_failed(message.cycle_id, message.stage.value, message.error)
        self.events.notify(
            f"Refreshing {message.stage} tickets failed: {message.error}",
            NoticeLevel.WARNING,
        )
        self._finish_stage(message.cycle_id, message.stage, error=message.error)

    def _on_detail_fetched(self, message: DetailFetched) -> None:
        if self._in_flight.get(message.key) != message.token:
            logger.debug("Discarding detail for %s: no longer in flight", message.key)
            return
        del self._in_flight[message.key]
        if self.mutations is not None:
            applied = self.mutations.apply_detail(message.key, message.detail)
        else:
            applied = self.store.apply_detail(message.key, message.detail)
        if not applied:
            return
        self.events.emit_detail_loaded(message.key)

    def _on_detail_failed(self, message: DetailFailed) -> None:
        if self._in_flight.get(message.key) != message.token:
            logger.debug("Ignoring stale detail failure for %s", message.key)
            return
        del self._in_flight[message.key]
        self._failed_details.add(message.key)
        logger.warning("Detail fetch for %s failed: %s", message.key, message.error)

    def _on_filter_fetched(self, message: FilterFetched) -> None:
        keys = self.store.merge(
            FetchBatch(tickets=message.tickets), BatchSource.FILTER, base=self._pre_images()
        )
        self.filter_results[message.name] = keys
        self._after_merge(BatchSource.FILTER, keys)

    def _on_filter_failed(self, message: FilterFailed) -> None:
        logger.warning("Saved filter %s failed: %s", message.name, message.error)
        self.events.notify(
            f"Filter '{message.name}' failed: {message.error}", NoticeLevel.WARNING
        )

    def _on_snapshot_saved(self, message: SnapshotSaved) -> None:
        self.saving = False
        if message.written:
            self.events.emit_snapshot_saved(message.project)

    def _on_snapshot_save_failed(self, message: SnapshotSaveFailed) -> None:
        self.saving = False
        logger.warning("Snapshot save for %s failed: %s", message.project, message.error)
        self.events.notify(
            f"Could not save the offline snapshot: {message.error}", NoticeLevel.WARNING
        )

    # --- Internals ---

    def _after_merge(self, source: BatchSource, keys: list[str]) -> None:
        if self.mutations is not None:
            self.mutations.rebase(keys)
        self.events.emit_cache_updated(source.value, keys, self.store.version)
        self._schedule_hydration()

    def _finish_stage(self, cycle_id: int, stage: Stage, error: str | None = None) -> None:
        cycle = self.cycles.get(cycle_id)
        if cycle is None:
            logger.debug("Result for finished cycle %d ignored", cycle_id)
            return
        cycle.pending.discard(stage)
        if error is not None:
            cycle.failed[stage] = error
        if not cycle.finished:
            return

        cycle.completed_at = datetime.now(UTC)
        del self.cycles[cycle_id]
        self.last_cycle = cycle
        logger.info(
            "Refresh cycle %d finished (%s)",
            cycle_id,
            "ok" if cycle.succeeded else f"failed: {', '.join(sorted(cycle.failed))}",
        )
        self.events.emit_refresh_completed(cycle_id, sorted(cycle.failed))
        if cycle.succeeded:
            self._persist()

    def _persist(self) -> None:
        snapshot = self.store.snapshot()
        self.saving = self.runner.spawn(
            f"snapshot-{self.project}",
            partial(self._save_snapshot, snapshot),
            on_error=partial(_save_error, self.project),
        )

    def _schedule_hydration(self) -> int:
        """Queue detail fetches for relevant tickets that still lack detail."""
        scheduled = 0
        for key in self.store.missing_detail_keys():
            if key in self._in_flight or key in self._failed_details:
                continue
            if self._submit_detail(key):
                scheduled += 1
        if scheduled:
            logger.debug("Queued %d detail fetch(es)", scheduled)
        return scheduled

    def _submit_detail(self, key: str) -> bool:
        token = next(self._tokens)
        self._in_flight[key] = token
        future = self.runner.submit(
            f"detail-{key}",
            partial(self._fetch_detail, key, token),
            on_error=partial(_detail_error, key, token),
        )
        if future is None:
            del self._in_flight[key]
            return False
        return True

    def _pending_keys(self) -> Iterable[str]:
        if self.mutations is None:
            return ()
        return self.mutations.pending_keys()

    def _pre_images(self) -> dict[str, Ticket] | None:
        if self.mutations is None:
            return None
        return self.mutations.pre_images()


def _stage_error(cycle_id: int, stage: Stage, error: Exception) -> StageFailed:
    return StageFailed(cycle_id=cycle_id, stage=stage, error=str(error))


def _detail_error(key: str, token: int, error: Exception) -> DetailFailed:
    return DetailFailed(key=key, token=token, error=str(error))


def _filter_error(name: str, error: Exception) -> FilterFailed:
    return FilterFailed(name=name, error=str(error))


def _save_error(project: str, error: Exception) -> SnapshotSaveFailed:
    return SnapshotSaveFailed(project=project, error=str(error))
