"""TicketDeck - wires the cache, refresh, mutation and persistence components."""

from __future__ import annotations

import logging
import threading
from functools import partial
from typing import TYPE_CHECKING, Any, TypeVar

from ticketdeck.cache.store import CacheStore
from ticketdeck.control import ControlLoop, TaskRunner
from ticketdeck.events import EventManager
from ticketdeck.mutation import MutationEngine
from ticketdeck.persistence import SnapshotStore
from ticketdeck.refresh import RefreshOrchestrator
from ticketdeck.source import JiraCliSource

if TYPE_CHECKING:
    from collections.abc import Callable

    from ticketdeck.cache.store import CacheSnapshot
    from ticketdeck.config import AppConfig
    from ticketdeck.mutation import MutationState
    from ticketdeck.refresh import RefreshCycle
    from ticketdeck.source import TicketSource

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_CALL_TIMEOUT = 30.0


class TicketDeck:
    """One running instance: a control thread and everything it owns.

    In background mode a dedicated daemon thread drains the control loop and
    other threads (API handlers, the CLI) reach the components through
    ``call``. In foreground mode the thread that calls ``start`` becomes the
    control thread and drives the loop itself with ``wait_until``.
    """

    def __init__(
        self,
        config: AppConfig,
        source: TicketSource | None = None,
        *,
        snapshots: SnapshotStore | None = None,
        events: EventManager | None = None,
        loop: ControlLoop | None = None,
        runner: TaskRunner | None = None,
    ) -> None:
        """Build all components.

        Args:
            config: Application configuration
            source: Ticket source; defaults to the jira CLI adapter
            snapshots: Snapshot store; defaults to one under the cache dir
            events: Event manager shared with the API
            loop: Control loop
            runner: Background task runner bound to ``loop``
        """
        self.config = config
        self.source: TicketSource = source or JiraCliSource(
            command=config.jira.command, base_url=config.jira.base_url
        )
        self.loop = loop or ControlLoop()
        self.runner = runner or TaskRunner(self.loop, max_workers=config.max_workers)
        self.events = events or EventManager()
        self.store = CacheStore(config.statuses)
        self.snapshots = snapshots or SnapshotStore(config.snapshot_dir)
        self.mutations = MutationEngine(
            store=self.store,
            source=self.source,
            loop=self.loop,
            runner=self.runner,
            events=self.events,
            project=config.jira.project,
        )
        self.orchestrator = RefreshOrchestrator(
            config=config,
            source=self.source,
            store=self.store,
            loop=self.loop,
            runner=self.runner,
            snapshots=self.snapshots,
            events=self.events,
            mutations=self.mutations,
        )
        self._thread: threading.Thread | None = None
        self.started = False

    def __enter__(self) -> TicketDeck:
        return self

    def __exit__(self, *_exc: object) -> None:
        self.shutdown()

    @property
    def background(self) -> bool:
        return self._thread is not None

    def start(self, background: bool = True) -> RefreshCycle:
        """Load the snapshot and launch the first refresh cycle.

        Args:
            background: Run the control loop on its own thread

        Returns:
            The first refresh cycle
        """
        if self.started:
            raise RuntimeError("TicketDeck already started")
        self.started = True
        if background:
            self._thread = threading.Thread(
                target=self.loop.run_forever, name="ticketdeck-control", daemon=True
            )
            self._thread.start()
        else:
            self.loop.claim()
        logger.info(
            "Starting ticketdeck for %s (%s)",
            self.config.jira.project,
            "background" if background else "foreground",
        )
        return self.call(self.orchestrator.start)

    def call(
        self,
        fn: Callable[..., T],
        *args: Any,
        timeout: float | None = DEFAULT_CALL_TIMEOUT,
        **kwargs: Any,
    ) -> T:
        """Run a function on the control thread and return its result.

        Raises:
            ControlLoopClosedError: If the deck is shut down
            TimeoutError: If the control thread does not answer in time
            Exception: Whatever ``fn`` raises
        """
        future = self.loop.call(partial(fn, *args, **kwargs))
        return future.result(timeout=timeout)

    def snapshot(self) -> CacheSnapshot:
        """Consistent read-only view of the cache, safe on any thread."""
        return self.call(self.store.snapshot)

    def view(self) -> tuple[CacheSnapshot, dict[str, MutationState]]:
        """Cache snapshot and pending mutation states, taken together."""
        return self.call(self._view)

    def _view(self) -> tuple[CacheSnapshot, dict[str, MutationState]]:
        return self.store.snapshot(), self.mutations.pending_states()

    def idle(self) -> bool:
        """No refresh, hydration, snapshot write or mutation is in flight."""
        return (
            not self.orchestrator.refreshing
            and not self.orchestrator.saving
            and not self.orchestrator.in_flight_keys
            and not self.mutations.pending
        )

    def wait_until(self, predicate: Callable[[], bool], timeout: float) -> bool:
        """Foreground mode: drive the loop until ``predicate`` holds.

        Returns:
            True if the predicate became true before the timeout
        """
        if self.background:
            raise RuntimeError("wait_until drives the loop; use it in foreground mode only")
        return self.loop.run_until(predicate, timeout)

    def shutdown(self) -> None:
        """Stop everything; in-flight work is abandoned, no snapshot write follows."""
        self.snapshots.close()
        self.runner.shutdown()
        self.loop.stop()
        if self._thread is not None:
            self._thread.join(timeout=5)
            self._thread = None
        logger.info("ticketdeck shut down")
