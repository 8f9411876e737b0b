"""Unit tests for ControlLoop and TaskRunner."""

import logging
import threading
from dataclasses import dataclass

import pytest

from ticketdeck.control import ControlLoop, ControlLoopClosedError, TaskRunner


@dataclass(frozen=True)
class Ping:
    value: int


@dataclass(frozen=True)
class Failed:
    error: str


@pytest.fixture
def control() -> ControlLoop:
    loop = ControlLoop(poll_interval=0.01)
    yield loop
    loop.stop()


@pytest.mark.unit
class TestMessages:
    """Tests for registration and ordered dispatch."""

    def test_duplicate_registration_rejected(self, control: ControlLoop) -> None:
        control.register(Ping, lambda m: None)

        with pytest.raises(ValueError, match="Ping"):
            control.register(Ping, lambda m: None)

    def test_messages_applied_in_arrival_order(self, control: ControlLoop) -> None:
        seen: list[int] = []
        control.register(Ping, lambda m: seen.append(m.value))
        for i in range(5):
            control.post(Ping(i))

        assert control.pending_count == 5
        assert control.process_pending() == 5
        assert seen == [0, 1, 2, 3, 4]

    def test_max_messages_bounds_one_pass(self, control: ControlLoop) -> None:
        control.register(Ping, lambda m: None)
        for i in range(3):
            control.post(Ping(i))

        assert control.process_pending(max_messages=2) == 2
        assert control.pending_count == 1

    def test_failing_handler_does_not_stop_loop(
        self, control: ControlLoop, caplog: pytest.LogCaptureFixture
    ) -> None:
        seen: list[int] = []

        def handle(message: Ping) -> None:
            if message.value == 1:
                raise RuntimeError("boom")
            seen.append(message.value)

        control.register(Ping, handle)
        for i in range(3):
            control.post(Ping(i))

        with caplog.at_level(logging.ERROR, logger="ticketdeck.control"):
            control.process_pending()

        assert seen == [0, 2]
        assert "Error handling Ping" in caplog.text

    def test_unhandled_message_is_logged(
        self, control: ControlLoop, caplog: pytest.LogCaptureFixture
    ) -> None:
        control.post(Failed("x"))

        with caplog.at_level(logging.ERROR, logger="ticketdeck.control"):
            assert control.process_pending() == 1

        assert "No handler for Failed" in caplog.text

    def test_post_after_stop_is_dropped(self, control: ControlLoop) -> None:
        control.stop()

        assert control.closed
        assert control.post(Ping(1)) is False
        assert control.pending_count == 0


@pytest.mark.unit
class TestCall:
    """Tests for running callables on the control thread."""

    def test_call_on_control_thread_runs_inline(self, control: ControlLoop) -> None:
        control.claim()

        future = control.call(lambda: 42)

        assert future.done()
        assert future.result() == 42

    def test_call_from_other_thread_is_queued(self, control: ControlLoop) -> None:
        future = control.call(lambda: "applied")

        assert not future.done()
        control.process_pending()
        assert future.result(timeout=0) == "applied"

    def test_call_carries_exception(self, control: ControlLoop) -> None:
        control.claim()

        future = control.call(lambda: 1 / 0)

        with pytest.raises(ZeroDivisionError):
            future.result()

    def test_call_after_stop_raises(self, control: ControlLoop) -> None:
        control.stop()

        with pytest.raises(ControlLoopClosedError):
            control.call(lambda: None)

    def test_stop_cancels_queued_calls(self, control: ControlLoop) -> None:
        future = control.call(lambda: None)

        control.stop()

        assert future.cancelled()

    def test_call_runs_on_loop_thread(self, control: ControlLoop) -> None:
        thread = threading.Thread(target=control.run_forever, daemon=True)
        thread.start()
        try:
            ident = control.call(threading.get_ident).result(timeout=5)
        finally:
            control.stop()
            thread.join(timeout=5)

        assert ident == thread.ident
        assert not thread.is_alive()


@pytest.mark.unit
class TestRunUntil:
    """Tests for run_until."""

    def test_returns_when_predicate_holds(self, control: ControlLoop) -> None:
        seen: list[int] = []
        control.register(Ping, lambda m: seen.append(m.value))
        control.post(Ping(1))

        assert control.run_until(lambda: seen == [1], timeout=5) is True

    def test_times_out(self, control: ControlLoop) -> None:
        assert control.run_until(lambda: False, timeout=0.05) is False


@pytest.mark.unit
class TestTaskRunner:
    """Tests for background jobs posting result messages."""

    @pytest.fixture
    def runner(self, control: ControlLoop) -> TaskRunner:
        tasks = TaskRunner(control, max_workers=2)
        yield tasks
        tasks.shutdown()

    def test_spawn_posts_result(self, control: ControlLoop, runner: TaskRunner) -> None:
        seen: list[int] = []
        control.register(Ping, lambda m: seen.append(m.value))

        assert runner.spawn("ping", lambda: Ping(7)) is True

        assert control.run_until(lambda: seen == [7], timeout=5)

    def test_submit_posts_result(self, control: ControlLoop, runner: TaskRunner) -> None:
        seen: list[int] = []
        control.register(Ping, lambda m: seen.append(m.value))

        future = runner.submit("ping", lambda: Ping(3))
        future.result(timeout=5)

        control.process_pending()
        assert seen == [3]

    def test_on_error_turns_exception_into_message(
        self, control: ControlLoop, runner: TaskRunner
    ) -> None:
        errors: list[str] = []
        control.register(Failed, lambda m: errors.append(m.error))

        def job() -> Ping:
            raise RuntimeError("fetch broke")

        runner.submit("job", job, on_error=lambda e: Failed(str(e))).result(timeout=5)
        control.process_pending()

        assert errors == ["fetch broke"]

    def test_error_without_handler_posts_nothing(
        self, control: ControlLoop, runner: TaskRunner, caplog: pytest.LogCaptureFixture
    ) -> None:
        def job() -> Ping:
            raise RuntimeError("fetch broke")

        with caplog.at_level(logging.ERROR, logger="ticketdeck.control"):
            runner.submit("job", job).result(timeout=5)

        assert control.pending_count == 0
        assert "Background job job failed" in caplog.text

    def test_none_result_posts_nothing(self, control: ControlLoop, runner: TaskRunner) -> None:
        runner.submit("noop", lambda: None).result(timeout=5)
        assert control.pending_count == 0

    def test_shutdown_refuses_new_jobs(self, runner: TaskRunner) -> None:
        runner.shutdown()

        assert runner.is_shutdown
        assert runner.spawn("late", lambda: None) is False
        assert runner.submit("late", lambda: None) is None
