"""ControlLoop - the single writer thread and its ordered message channel."""

from __future__ import annotations

import logging
import queue
import threading
import time
from collections.abc import Callable
from concurrent.futures import Future
from dataclasses import dataclass
from typing import Any

from ticketdeck.control.exceptions import ControlLoopClosedError, UnhandledMessageError

logger = logging.getLogger(__name__)

Handler = Callable[[Any], None]


@dataclass(frozen=True)
class Invoke:
    """Run a callable on the control thread and resolve a future with its result."""

    fn: Callable[[], Any]
    future: Future[Any]


class ControlLoop:
    """Ordered message channel drained by the one thread that owns the cache.

    Background tasks never touch shared state: they ``post`` immutable result
    messages here. Whichever thread drains the loop (``run_forever`` on a
    dedicated thread, or ``process_pending``/``run_until`` on the caller's
    thread) applies them in arrival order, one at a time, with no
    reordering or coalescing.
    """

    def __init__(self, poll_interval: float = 0.1) -> None:
        self._queue: queue.Queue[object] = queue.Queue()
        self._handlers: dict[type, Handler] = {}
        self._poll_interval = poll_interval
        self._owner: int | None = None
        self._stopping = threading.Event()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending_count(self) -> int:
        return self._queue.qsize()

    def register(self, message_type: type, handler: Handler) -> None:
        """Route messages of one type to a handler.

        Raises:
            ValueError: If the type already has a handler
        """
        if message_type in self._handlers:
            raise ValueError(f"Handler already registered for {message_type.__name__}")
        self._handlers[message_type] = handler

    def post(self, message: object) -> bool:
        """Enqueue a message. Safe from any thread.

        Returns:
            False if the loop is closed and the message was dropped
        """
        if self._closed:
            logger.debug("Dropping %s: control loop closed", type(message).__name__)
            return False
        self._queue.put(message)
        return True

    def call(self, fn: Callable[[], Any]) -> Future[Any]:
        """Run ``fn`` on the control thread.

        Called from the control thread itself, ``fn`` runs immediately.

        Returns:
            Future resolved with the result or exception of ``fn``

        Raises:
            ControlLoopClosedError: If the loop no longer accepts work
        """
        future: Future[Any] = Future()
        if self.on_control_thread():
            _resolve(future, fn)
            return future
        if not self.post(Invoke(fn=fn, future=future)):
            raise ControlLoopClosedError("Control loop is closed")
        return future

    def on_control_thread(self) -> bool:
        return self._owner == threading.get_ident()

    def claim(self) -> None:
        """Make the calling thread the control thread (foreground use)."""
        self._owner = threading.get_ident()

    def process_pending(self, timeout: float | None = None, max_messages: int | None = None) -> int:
        """Apply queued messages on the calling thread.

        Args:
            timeout: Seconds to wait for the first message; None applies only
                     what is already queued
            max_messages: Upper bound on messages applied in this call

        Returns:
            Number of messages applied
        """
        self._owner = threading.get_ident()
        handled = 0
        wait = timeout
        while max_messages is None or handled < max_messages:
            try:
                if wait is None:
                    message = self._queue.get_nowait()
                else:
                    message = self._queue.get(timeout=wait)
            except queue.Empty:
                break
            wait = None
            self._dispatch(message)
            handled += 1
        return handled

    def run_until(self, predicate: Callable[[], bool], timeout: float) -> bool:
        """Apply messages until ``predicate`` holds or the timeout passes.

        Returns:
            True if the predicate became true
        """
        deadline = time.monotonic() + timeout
        while not predicate():
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return False
            self.process_pending(timeout=min(remaining, self._poll_interval))
        return True

    def run_forever(self) -> None:
        """Drain messages until ``stop`` is called. Meant for a dedicated thread."""
        self._owner = threading.get_ident()
        logger.info("Control loop started")
        while not self._stopping.is_set():
            self.process_pending(timeout=self._poll_interval)
        logger.info("Control loop stopped")

    def stop(self) -> None:
        """Close the channel and let ``run_forever`` return.

        Calls still queued are cancelled; other queued messages are dropped.
        """
        self._closed = True
        self._stopping.set()
        while True:
            try:
                message = self._queue.get_nowait()
            except queue.Empty:
                break
            if isinstance(message, Invoke):
                message.future.cancel()

    def _dispatch(self, message: object) -> None:
        if isinstance(message, Invoke):
            _resolve(message.future, message.fn)
            return
        handler = self._handlers.get(type(message))
        try:
            if handler is None:
                raise UnhandledMessageError(f"No handler for {type(message).__name__}")
            handler(message)
        except Exception:
            # Keep draining after a failed handler
            logger.exception("Error handling %s", type(message).__name__)


def _resolve(future: Future[Any], fn: Callable[[], Any]) -> None:
    if not future.set_running_or_notify_cancel():
        return
    try:
        result = fn()
    except Exception as e:
        future.set_exception(e)
    else:
        future.set_result(result)
