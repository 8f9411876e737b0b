"""Shared pytest fixtures and configuration."""

from __future__ import annotations

import itertools
import threading
import time
from collections import deque
from collections.abc import Callable, Iterator
from concurrent.futures import Future
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

import pytest

from ticketdeck.cache import (
    Epic,
    Status,
    StatusSets,
    TeamMember,
    Ticket,
    TicketDetail,
)
from ticketdeck.config import AppConfig, JiraConfig
from ticketdeck.control import ControlLoop, TaskRunner
from ticketdeck.events import EventManager
from ticketdeck.persistence import SnapshotStore
from ticketdeck.source import (
    CreateTicket,
    EpicTree,
    FetchError,
    MutateError,
    MutationCommand,
    MutationOutcome,
)

ME = "me@example.com"
ALICE = "alice@example.com"
BOB = "bob@example.com"

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=UTC)


# Register custom markers
def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers for test categorization."""
    config.addinivalue_line("markers", "unit: fast tests with no external dependencies")
    config.addinivalue_line("markers", "integration: component interaction tests")


class FakeSource:
    """In-memory TicketSource.

    Query results are keyed by the exact JQL string. Errors can be injected
    per query, per detail key, for epics, and for mutations.
    """

    def __init__(self, user: str = ME) -> None:
        self.user = user
        self.results: dict[str, list[Ticket]] = {}
        self.query_errors: dict[str, Exception] = {}
        self.epic_trees: list[EpicTree] = []
        self.epics_error: Exception | None = None
        self.details: dict[str, TicketDetail] = {}
        self.detail_errors: dict[str, Exception] = {}
        self.user_error: Exception | None = None
        self.mutate_error: Exception | None = None
        self.mutate_gate: threading.Event | None = None
        self.create_errors: dict[str, Exception] = {}
        self._created_numbers = itertools.count(900)
        self.commands: list[MutationCommand] = []
        self.queries: list[str] = []
        self.detail_requests: list[str] = []
        self._lock = threading.Lock()

    def fetch_current_user(self) -> str:
        if self.user_error is not None:
            raise self.user_error
        return self.user

    def fetch_by_query(self, query: str) -> list[Ticket]:
        with self._lock:
            self.queries.append(query)
        if query in self.query_errors:
            raise self.query_errors[query]
        return list(self.results.get(query, []))

    def fetch_epics(self, project: str) -> list[EpicTree]:
        if self.epics_error is not None:
            raise self.epics_error
        return list(self.epic_trees)

    def fetch_detail(self, key: str) -> TicketDetail:
        with self._lock:
            self.detail_requests.append(key)
        if key in self.detail_errors:
            raise self.detail_errors[key]
        if key not in self.details:
            raise FetchError(f"Issue {key} does not exist")
        return self.details[key]

    def mutate(self, command: MutationCommand) -> MutationOutcome:
        with self._lock:
            self.commands.append(command)
        if self.mutate_gate is not None:
            self.mutate_gate.wait(timeout=5)
        if self.mutate_error is not None:
            raise self.mutate_error
        if isinstance(command, CreateTicket):
            if command.summary in self.create_errors:
                raise self.create_errors[command.summary]
            with self._lock:
                key = f"ENG-{next(self._created_numbers)}"
            return MutationOutcome(key=key, url=f"https://jira.example.com/browse/{key}")
        return MutationOutcome(key=command.key)


class ManualRunner(TaskRunner):
    """TaskRunner that queues jobs until the test runs them.

    Jobs run on the test thread through the real ``_run``, so result
    messages and error conversion behave as in production; only the timing
    is under the test's control.
    """

    def __init__(self, loop: ControlLoop) -> None:
        super().__init__(loop, max_workers=1)
        self.jobs: deque = deque()

    @property
    def names(self) -> list[str]:
        return [name for name, _, _ in self.jobs]

    def spawn(self, name, job, on_error=None) -> bool:  # noqa: ANN001
        if self.is_shutdown:
            return False
        self.jobs.append((name, job, on_error))
        return True

    def submit(self, name, job, on_error=None) -> Future[None] | None:  # noqa: ANN001
        if self.is_shutdown:
            return None
        self.jobs.append((name, job, on_error))
        return Future()

    def run_next(self) -> str:
        name, job, on_error = self.jobs.popleft()
        self._run(name, job, on_error)
        return name

    def run_matching(self, prefix: str) -> list[str]:
        """Run queued jobs whose name starts with ``prefix``, leaving the rest queued."""
        ran = []
        remaining: deque = deque()
        while self.jobs:
            name, job, on_error = self.jobs.popleft()
            if name.startswith(prefix):
                self._run(name, job, on_error)
                ran.append(name)
            else:
                remaining.append((name, job, on_error))
        self.jobs = remaining
        return ran

    def drain(self, max_rounds: int = 50) -> None:
        """Run jobs and apply their messages until nothing is left."""
        for _ in range(max_rounds):
            if not self.jobs and self.loop.pending_count == 0:
                return
            while self.jobs:
                self.run_next()
            self.loop.process_pending()
        raise AssertionError("jobs kept spawning more jobs")


def make_ticket(
    key: str,
    status: str = "To Do",
    assignee_email: str | None = ME,
    updated_at: datetime | None = None,
    **changes: Any,
) -> Ticket:
    """Summary-level ticket with sensible defaults."""
    names = {ME: "Me Myself", ALICE: "Alice Able", BOB: "Bob Baker"}
    return Ticket(
        key=key,
        summary=changes.pop("summary", f"Summary of {key}"),
        status=Status.parse(status),
        assignee=changes.pop("assignee", names.get(assignee_email or "")),
        assignee_email=assignee_email,
        updated_at=updated_at or NOW - timedelta(days=1),
        url=f"https://jira.example.com/browse/{key}",
        **changes,
    )


def make_detail(key: str, description: str = "Full description", **changes: Any) -> TicketDetail:
    return TicketDetail(key=key, description=description, **changes)


def make_epic_tree(key: str, title: str, children: list[Ticket]) -> EpicTree:
    epic = Epic(key=key, title=title, child_keys=frozenset(c.key for c in children))
    return EpicTree(epic=epic, children=tuple(children))


def populate(source: FakeSource, config: AppConfig) -> None:
    """Give the source a small board: two of mine, one of Alice's, one epic."""
    recent = datetime.now(UTC) - timedelta(days=2)
    source.results[config.active_query(ME)] = [
        make_ticket("ENG-1", "To Do"),
        make_ticket("ENG-2", "In Progress"),
    ]
    source.results[config.active_query(ALICE)] = [
        make_ticket("ENG-3", "In Review", assignee_email=ALICE)
    ]
    source.results[config.done_query(ME)] = [make_ticket("ENG-4", "Done", updated_at=recent)]
    source.epic_trees = [
        make_epic_tree(
            "ENG-100",
            "Launch",
            [
                make_ticket("ENG-1", "To Do", epic_key="ENG-100"),
                make_ticket(
                    "ENG-5", "Done", assignee_email=BOB, updated_at=recent, epic_key="ENG-100"
                ),
            ],
        )
    ]
    source.details["ENG-1"] = make_detail("ENG-1", epic_key="ENG-100")


def wait_for(predicate: Callable[[], bool], timeout: float = 5.0) -> bool:
    """Poll until ``predicate`` holds; for tests against a background deck."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


# Shared fixtures


@pytest.fixture
def config(tmp_path: Path) -> AppConfig:
    """Config for project ENG with a three-person team and a temp cache dir."""
    return AppConfig(
        jira=JiraConfig(project="ENG", team_name="Platform", base_url="https://jira.example.com"),
        team={"Me Myself": ME, "Alice Able": ALICE, "Bob Baker": BOB},
        statuses=StatusSets(),
        cache_dir=tmp_path / "cache",
    )


@pytest.fixture
def members() -> list[TeamMember]:
    return [
        TeamMember(name="Me Myself", email=ME),
        TeamMember(name="Alice Able", email=ALICE),
        TeamMember(name="Bob Baker", email=BOB),
    ]


@pytest.fixture
def source() -> FakeSource:
    return FakeSource()


@pytest.fixture
def loop() -> Iterator[ControlLoop]:
    """Control loop owned by the test thread."""
    control = ControlLoop(poll_interval=0.01)
    control.claim()
    yield control
    control.stop()


@pytest.fixture
def runner(loop: ControlLoop) -> ManualRunner:
    return ManualRunner(loop)


@pytest.fixture
def events() -> EventManager:
    return EventManager()


@pytest.fixture
def snapshots(config: AppConfig) -> Iterator[SnapshotStore]:
    store = SnapshotStore(config.snapshot_dir)
    yield store
    store.close()


@pytest.fixture
def failing_source(source: FakeSource) -> FakeSource:
    """Source whose every mutation is rejected."""
    source.mutate_error = MutateError("transition not allowed")
    return source
