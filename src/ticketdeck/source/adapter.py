"""Interface every ticket source implements."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from ticketdeck.cache.models import Ticket, TicketDetail
    from ticketdeck.source.models import EpicTree, MutationCommand, MutationOutcome


class TicketSource(Protocol):
    """Typed fetch/mutate requests against the external ticket tracker.

    Implementations are called from background threads only, never from the
    control thread, and may block for as long as the external command takes.
    """

    def fetch_current_user(self) -> str:
        """Email of the authenticated user.

        Raises:
            FetchError: If the source cannot be reached
        """
        ...

    def fetch_by_query(self, query: str) -> list[Ticket]:
        """Summary-level tickets matching a JQL query.

        Raises:
            FetchError: If the query fails
        """
        ...

    def fetch_epics(self, project: str) -> list[EpicTree]:
        """All epics of a project with their child tickets.

        Raises:
            FetchError: If the epic listing fails
        """
        ...

    def fetch_detail(self, key: str) -> TicketDetail:
        """Full detail (description, labels, activity) for one ticket.

        Raises:
            FetchError: If the ticket cannot be read
        """
        ...

    def mutate(self, command: MutationCommand) -> MutationOutcome:
        """Apply one mutation command.

        Raises:
            MutateError: If the source rejects the command
        """
        ...
