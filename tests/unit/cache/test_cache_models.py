"""Unit tests for cache record types."""

from datetime import UTC, datetime

import pytest

from ticketdeck.cache import (
    ActivityEntry,
    ActivityKind,
    Epic,
    EpicProgress,
    Status,
    StatusCategory,
    StatusKind,
    StatusSets,
    Ticket,
    same_email,
)


@pytest.mark.unit
class TestStatus:
    """Tests for Status parsing."""

    @pytest.mark.parametrize(
        ("text", "kind"),
        [
            ("In Progress", StatusKind.IN_PROGRESS),
            ("in progress", StatusKind.IN_PROGRESS),
            ("  To Do ", StatusKind.TO_DO),
            ("Closed", StatusKind.DONE),
            ("Review", StatusKind.IN_REVIEW),
            ("Waiting for Vendor", StatusKind.OTHER),
        ],
    )
    def test_parse_maps_known_kinds(self, text: str, kind: StatusKind) -> None:
        assert Status.parse(text).kind is kind

    def test_parse_keeps_source_spelling(self) -> None:
        status = Status.parse("  Waiting for Vendor ")
        assert status.label == "Waiting for Vendor"
        assert str(status) == "Waiting for Vendor"

    def test_of_other_raises(self) -> None:
        with pytest.raises(ValueError):
            Status.of(StatusKind.OTHER)

    def test_shortcuts_round_trip(self) -> None:
        for kind in StatusKind:
            if kind is StatusKind.OTHER:
                continue
            status = Status.of(kind)
            assert Status.from_shortcut(status.shortcut) == status

    def test_unknown_shortcut_is_none(self) -> None:
        assert Status.from_shortcut("z") is None
        assert Status.parse("Weird").shortcut == "?"

    def test_from_input_accepts_shortcut_and_label(self) -> None:
        assert Status.from_input("p") == Status.of(StatusKind.IN_PROGRESS)
        assert Status.from_input("P") == Status.of(StatusKind.IN_PROGRESS)
        assert Status.from_input("In Review").kind is StatusKind.IN_REVIEW

    def test_from_input_rejects_unknown_shortcut(self) -> None:
        with pytest.raises(ValueError, match="Unknown status shortcut"):
            Status.from_input("z")


@pytest.mark.unit
class TestStatusSets:
    """Tests for configured status partitions."""

    def test_default_categories(self) -> None:
        sets = StatusSets()
        assert sets.category(Status.parse("in progress")) is StatusCategory.ACTIVE
        assert sets.category(Status.parse("DONE")) is StatusCategory.DONE
        assert sets.category(Status.parse("Parked")) is StatusCategory.UNRECOGNIZED

    def test_label_in_both_sets_counts_as_done(self) -> None:
        sets = StatusSets(active=("Shipped",), done=("Shipped",))
        assert sets.is_done(Status.parse("Shipped"))
        assert not sets.is_active(Status.parse("Shipped"))

    def test_display_order_lists_active_then_done(self) -> None:
        sets = StatusSets(active=("A", "B"), done=("C",))
        assert sets.display_order() == ["A", "B", "C"]


@pytest.mark.unit
class TestTicket:
    """Tests for the Ticket record."""

    def test_with_changes_returns_copy(self) -> None:
        ticket = Ticket(key="ENG-1", summary="s", status=Status.parse("To Do"))
        moved = ticket.with_changes(status=Status.parse("Done"))

        assert ticket.status.label == "To Do"
        assert moved.status.label == "Done"
        assert moved.key == "ENG-1"

    def test_dict_round_trip_keeps_every_field(self) -> None:
        ticket = Ticket(
            key="ENG-1",
            summary="Fix login",
            status=Status.parse("Waiting for Vendor"),
            assignee="Alice Able",
            assignee_email="alice@example.com",
            reporter="Bob Baker",
            labels=frozenset({"backend", "auth"}),
            epic_key="ENG-100",
            description="Login fails on Safari",
            activity=(
                ActivityEntry(
                    timestamp="2026-03-01T10:00:00+00:00",
                    author="Bob Baker",
                    kind=ActivityKind.COMMENT,
                    body="Repro attached",
                ),
            ),
            updated_at=datetime(2026, 3, 1, 10, 0, tzinfo=UTC),
            url="https://jira.example.com/browse/ENG-1",
            detail_loaded=True,
        )

        assert Ticket.from_dict(ticket.to_dict()) == ticket

    def test_from_dict_defaults(self) -> None:
        ticket = Ticket.from_dict({"key": "ENG-1", "status": "To Do"})

        assert ticket.summary == ""
        assert ticket.labels == frozenset()
        assert ticket.updated_at is None
        assert ticket.detail_loaded is False


@pytest.mark.unit
class TestEpic:
    """Tests for Epic and EpicProgress."""

    def test_epic_dict_round_trip(self) -> None:
        epic = Epic(key="ENG-100", title="Launch", child_keys=frozenset({"ENG-1", "ENG-2"}))
        assert Epic.from_dict(epic.to_dict()) == epic

    def test_progress_percentage_of_empty_epic(self) -> None:
        assert EpicProgress(epic_key="ENG-100", total=0, done=0).percentage == 0.0

    def test_progress_percentage(self) -> None:
        assert EpicProgress(epic_key="ENG-100", total=4, done=1).percentage == 25.0


@pytest.mark.unit
class TestSameEmail:
    """Tests for email comparison."""

    @pytest.mark.parametrize(
        ("left", "right", "expected"),
        [
            ("alice@example.com", "ALICE@Example.com", True),
            ("alice@example.com", "bob@example.com", False),
            (None, None, True),
            (None, "alice@example.com", False),
            ("alice@example.com", None, False),
        ],
    )
    def test_same_email(self, left: str | None, right: str | None, expected: bool) -> None:
        assert same_email(left, right) is expected
