"""TaskRunner - background threads and the bounded worker pool."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ticketdeck.control.loop import ControlLoop

logger = logging.getLogger(__name__)

DEFAULT_MAX_WORKERS = 6

Job = Callable[[], object | None]
ErrorHandler = Callable[[Exception], object | None]


class TaskRunner:
    """Runs blocking jobs off the control thread and posts their results.

    A job returns a result message (or None); the runner posts it to the
    control loop. Stage fetches, single mutations and snapshot writes get a
    daemon thread each. Detail hydration and bulk mutations share one
    bounded pool so external-process load stays capped.
    """

    def __init__(self, loop: ControlLoop, max_workers: int = DEFAULT_MAX_WORKERS) -> None:
        """Initialize the runner.

        Args:
            loop: Control loop receiving result messages
            max_workers: Size of the bounded worker pool
        """
        self.loop = loop
        self.max_workers = max_workers
        self._pool = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="ticketdeck-worker"
        )
        self._shutdown = False

    @property
    def is_shutdown(self) -> bool:
        return self._shutdown

    def spawn(self, name: str, job: Job, on_error: ErrorHandler | None = None) -> bool:
        """Run a job on its own daemon thread.

        Args:
            name: Thread name, shown in logs
            job: Callable returning a result message or None
            on_error: Turns an exception raised by the job into a message

        Returns:
            False if the runner is shut down and the job was not started
        """
        if self._shutdown:
            logger.debug("Not starting %s: runner shut down", name)
            return False
        thread = threading.Thread(
            target=self._run,
            args=(name, job, on_error),
            name=f"ticketdeck-{name}",
            daemon=True,
        )
        thread.start()
        return True

    def submit(
        self, name: str, job: Job, on_error: ErrorHandler | None = None
    ) -> Future[None] | None:
        """Queue a job on the bounded worker pool.

        Returns:
            The pool future, or None if the runner is shut down
        """
        if self._shutdown:
            logger.debug("Not queueing %s: runner shut down", name)
            return None
        return self._pool.submit(self._run, name, job, on_error)

    def shutdown(self) -> None:
        """Abandon in-flight work; queued pool jobs are cancelled."""
        self._shutdown = True
        self._pool.shutdown(wait=False, cancel_futures=True)
        logger.info("Task runner shut down")

    def _run(self, name: str, job: Job, on_error: ErrorHandler | None) -> None:
        try:
            message = job()
        except Exception as e:
            if on_error is None:
                logger.exception("Background job %s failed", name)
                return
            logger.debug("Background job %s failed: %s", name, e)
            message = on_error(e)
        if message is not None:
            self.loop.post(message)
