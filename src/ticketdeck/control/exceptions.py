"""Custom exceptions for the control loop."""


class ControlError(Exception):
    """Base exception for control loop errors."""


class ControlLoopClosedError(ControlError):
    """The control loop has stopped accepting work."""


class UnhandledMessageError(ControlError):
    """A message arrived with no registered handler."""
