"""Unit tests for API response conversion and dependencies."""

from pathlib import Path

import pytest
from conftest import ALICE, make_ticket
from fastapi.testclient import TestClient

from ticketdeck.api import APIResponse, create_app
from ticketdeck.api.dependencies import get_deck, get_event_manager
from ticketdeck.api.models import epic_to_response, ticket_to_response, ticket_to_summary
from ticketdeck.cache import (
    ActivityEntry,
    ActivityKind,
    BatchSource,
    CacheStore,
    Epic,
    FetchBatch,
    StatusSets,
)
from ticketdeck.config import ConfigError
from ticketdeck.mutation import MutationState


@pytest.fixture
def store() -> CacheStore:
    store = CacheStore(StatusSets())
    epic = Epic(key="ENG-100", title="Launch", child_keys=frozenset({"ENG-1", "ENG-2"}))
    store.merge(
        FetchBatch(
            tickets=(
                make_ticket("ENG-1", "In Progress", labels=frozenset({"ui", "api"})),
                make_ticket("ENG-2", "Done", assignee_email=ALICE),
                make_ticket("ENG-3", "Blocked Upstream", assignee_email=None),
            ),
            epics=(epic,),
        ),
        BatchSource.EPICS,
    )
    return store


@pytest.mark.unit
class TestTicketConversion:
    """Tests for ticket response models."""

    def test_summary(self, store: CacheStore) -> None:
        snapshot = store.snapshot()

        summary = ticket_to_summary(
            snapshot.require_ticket("ENG-1"), snapshot, MutationState.PENDING
        )

        assert summary.status == "In Progress"
        assert summary.status_category == "active"
        assert summary.labels == ["api", "ui"]
        assert summary.pending == "pending"
        assert summary.detail_loaded is False

    def test_unrecognized_status(self, store: CacheStore) -> None:
        snapshot = store.snapshot()

        summary = ticket_to_summary(snapshot.require_ticket("ENG-3"), snapshot, MutationState.IDLE)

        assert summary.status_category == "unrecognized"
        assert summary.assignee is None

    def test_response_includes_activity(self, store: CacheStore) -> None:
        comment = ActivityEntry(
            timestamp="2026-03-01T10:00:00+00:00",
            author="Alice Able",
            kind=ActivityKind.COMMENT,
            body="Looks good",
        )
        ticket = store.require_ticket("ENG-1").with_changes(
            description="Details", activity=(comment,), detail_loaded=True
        )

        response = ticket_to_response(ticket, store.snapshot(), MutationState.IDLE)

        assert response.description == "Details"
        assert response.url == "https://jira.example.com/browse/ENG-1"
        assert response.activity[0].kind == "comment"
        assert response.activity[0].body == "Looks good"
        assert response.activity[0].field is None


@pytest.mark.unit
class TestEpicConversion:
    """Tests for epic progress in responses."""

    def test_progress(self, store: CacheStore) -> None:
        snapshot = store.snapshot()

        response = epic_to_response(snapshot.epics_by_key["ENG-100"], snapshot)

        assert response.total == 2
        assert response.done == 1
        assert response.percentage == 50.0
        assert response.counts == {"In Progress": 1, "Done": 1}
        assert response.child_keys == ["ENG-1", "ENG-2"]


@pytest.mark.unit
class TestEnvelope:
    """Tests for the response envelope."""

    def test_data(self) -> None:
        assert APIResponse[int](data=3).model_dump() == {"data": 3, "error": None}

    def test_error(self) -> None:
        response = APIResponse[None](error="Ticket 'ENG-9' is not cached")
        assert response.model_dump() == {"data": None, "error": "Ticket 'ENG-9' is not cached"}


@pytest.mark.unit
class TestDependencies:
    """Tests for dependency wiring without a deck."""

    def test_deck_not_initialized(self) -> None:
        with pytest.raises(RuntimeError, match="not initialized"):
            next(get_deck())

    def test_event_manager_not_initialized(self) -> None:
        with pytest.raises(RuntimeError, match="not initialized"):
            next(get_event_manager())

    def test_startup_without_config(self, tmp_path: Path) -> None:
        app = create_app(config_path=tmp_path / "missing.yml")

        with pytest.raises(ConfigError, match="ticketdeck init"), TestClient(app):
            pass
