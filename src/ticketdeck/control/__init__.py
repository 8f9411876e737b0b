"""Control loop - single-writer message channel and background task runner."""

from ticketdeck.control.exceptions import (
    ControlError,
    ControlLoopClosedError,
    UnhandledMessageError,
)
from ticketdeck.control.loop import ControlLoop, Invoke
from ticketdeck.control.tasks import DEFAULT_MAX_WORKERS, TaskRunner

__all__ = [
    "DEFAULT_MAX_WORKERS",
    "ControlError",
    "ControlLoop",
    "ControlLoopClosedError",
    "Invoke",
    "TaskRunner",
    "UnhandledMessageError",
]
