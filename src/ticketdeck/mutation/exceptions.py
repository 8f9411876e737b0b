"""Exceptions for the Mutation Engine."""


class MutationError(Exception):
    """Base exception for mutation errors."""


class MutationBusyError(MutationError):
    """A mutation for this ticket is already in flight.

    The request is rejected, not queued; retry once the first one resolves.
    """

    def __init__(self, key: str) -> None:
        super().__init__(f"Ticket {key} has a pending change; try again when it completes")
        self.key = key


class InvalidTransitionError(MutationError):
    """A mutation state change the state machine does not allow."""


class UnknownMemberError(MutationError):
    """Assignee email is not on the team roster."""


class UploadError(MutationError):
    """A bulk-upload file cannot be used at all (as opposed to a bad row)."""
