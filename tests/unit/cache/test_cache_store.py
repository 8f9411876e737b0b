"""Unit tests for CacheStore merges, eviction and derived views."""

from datetime import timedelta

import pytest
from conftest import ALICE, BOB, ME, NOW, make_detail, make_ticket

from ticketdeck.cache import (
    BatchSource,
    CacheStore,
    Epic,
    EpicNotFoundError,
    FetchBatch,
    StatusSets,
    TeamMember,
    TicketNotFoundError,
)

WINDOW = timedelta(days=14)


@pytest.fixture
def store(members: list[TeamMember]) -> CacheStore:
    s = CacheStore(StatusSets())
    s.merge(FetchBatch(team_members=tuple(members)), BatchSource.ACTIVE)
    return s


@pytest.mark.unit
class TestMerge:
    """Tests for additive, idempotent merges."""

    def test_merge_inserts_tickets(self, store: CacheStore) -> None:
        written = store.merge(
            FetchBatch(tickets=(make_ticket("ENG-1"), make_ticket("ENG-2"))), BatchSource.ACTIVE
        )

        assert written == ["ENG-1", "ENG-2"]
        assert store.require_ticket("ENG-1").summary == "Summary of ENG-1"

    def test_merge_is_idempotent(self, store: CacheStore) -> None:
        batch = FetchBatch(
            tickets=(make_ticket("ENG-1"), make_ticket("ENG-2", "In Progress")),
            epics=(Epic(key="ENG-100", title="Epic"),),
        )
        store.merge(batch, BatchSource.ACTIVE)
        first = store.snapshot()

        store.merge(batch, BatchSource.ACTIVE)
        second = store.snapshot()

        assert dict(first.tickets_by_key) == dict(second.tickets_by_key)
        assert dict(first.epics_by_key) == dict(second.epics_by_key)
        assert first.relevant_keys == second.relevant_keys

    def test_merge_never_removes_absent_records(self, store: CacheStore) -> None:
        store.merge(FetchBatch(tickets=(make_ticket("ENG-1"),)), BatchSource.ACTIVE)
        store.merge(FetchBatch(tickets=(make_ticket("ENG-2"),)), BatchSource.ACTIVE)

        assert store.get_ticket("ENG-1") is not None
        assert store.get_ticket("ENG-2") is not None

    def test_merge_overwrites_existing_record(self, store: CacheStore) -> None:
        store.merge(FetchBatch(tickets=(make_ticket("ENG-1", "To Do"),)), BatchSource.SNAPSHOT)
        store.merge(FetchBatch(tickets=(make_ticket("ENG-1", "In Progress"),)), BatchSource.ACTIVE)

        assert store.require_ticket("ENG-1").status.label == "In Progress"

    def test_merge_bumps_version(self, store: CacheStore) -> None:
        before = store.version
        store.merge(FetchBatch(tickets=(make_ticket("ENG-1"),)), BatchSource.ACTIVE)
        assert store.version == before + 1

    def test_summary_merge_keeps_hydrated_detail(self, store: CacheStore) -> None:
        store.merge(FetchBatch(tickets=(make_ticket("ENG-1"),)), BatchSource.ACTIVE)
        store.apply_detail("ENG-1", make_detail("ENG-1", labels=frozenset({"backend"})))

        store.merge(FetchBatch(tickets=(make_ticket("ENG-1", "In Review"),)), BatchSource.ACTIVE)

        ticket = store.require_ticket("ENG-1")
        assert ticket.status.label == "In Review"
        assert ticket.description == "Full description"
        assert ticket.labels == frozenset({"backend"})
        assert ticket.detail_loaded is True

    def test_merge_keeps_known_email_for_same_assignee(self, store: CacheStore) -> None:
        known = make_ticket("ENG-1", assignee_email=ALICE)
        store.merge(FetchBatch(tickets=(known,)), BatchSource.ACTIVE)

        anonymous = make_ticket("ENG-1", assignee_email=None, assignee="Alice Able")
        store.merge(FetchBatch(tickets=(anonymous,)), BatchSource.EPICS)

        assert store.require_ticket("ENG-1").assignee_email == ALICE

    def test_merge_drops_email_when_assignee_changes(self, store: CacheStore) -> None:
        known = make_ticket("ENG-1", assignee_email=ALICE)
        store.merge(FetchBatch(tickets=(known,)), BatchSource.ACTIVE)

        reassigned = make_ticket("ENG-1", assignee_email=None, assignee="Someone Else")
        store.merge(FetchBatch(tickets=(reassigned,)), BatchSource.EPICS)

        assert store.require_ticket("ENG-1").assignee_email is None


@pytest.mark.unit
class TestRelevance:
    """Tests for which merges make a ticket eligible for hydration."""

    @pytest.mark.parametrize("source", [BatchSource.ACTIVE, BatchSource.EPICS])
    def test_active_and_epic_merges_mark_relevant(
        self, store: CacheStore, source: BatchSource
    ) -> None:
        store.merge(FetchBatch(tickets=(make_ticket("ENG-1"),)), source)
        assert store.is_relevant("ENG-1")

    @pytest.mark.parametrize(
        "source", [BatchSource.DONE_WINDOW, BatchSource.FILTER, BatchSource.SNAPSHOT]
    )
    def test_other_merges_do_not_mark_relevant(
        self, store: CacheStore, source: BatchSource
    ) -> None:
        store.merge(FetchBatch(tickets=(make_ticket("ENG-1"),)), source)
        assert not store.is_relevant("ENG-1")

    def test_missing_detail_keys_lists_relevant_unhydrated(self, store: CacheStore) -> None:
        store.merge(
            FetchBatch(tickets=(make_ticket("ENG-1"), make_ticket("ENG-2"))), BatchSource.ACTIVE
        )
        store.merge(FetchBatch(tickets=(make_ticket("ENG-3"),)), BatchSource.FILTER)
        store.apply_detail("ENG-2", make_detail("ENG-2"))

        assert store.missing_detail_keys() == ["ENG-1"]


@pytest.mark.unit
class TestDoneWindow:
    """Tests for replace_done_window eviction."""

    def test_evicts_done_ticket_older_than_window(self, store: CacheStore) -> None:
        old = make_ticket("ENG-1", "Done", updated_at=NOW - timedelta(days=20))
        store.merge(FetchBatch(tickets=(old,)), BatchSource.SNAPSHOT)

        evicted = store.replace_done_window([], WINDOW, now=NOW)

        assert evicted == ["ENG-1"]
        assert store.get_ticket("ENG-1") is None

    def test_keeps_done_ticket_inside_window(self, store: CacheStore) -> None:
        recent = make_ticket("ENG-1", "Done", updated_at=NOW - timedelta(days=5))
        store.merge(FetchBatch(tickets=(recent,)), BatchSource.SNAPSHOT)

        assert store.replace_done_window([], WINDOW, now=NOW) == []
        assert store.get_ticket("ENG-1") is not None

    def test_keeps_old_ticket_in_batch(self, store: CacheStore) -> None:
        old = make_ticket("ENG-1", "Done", updated_at=NOW - timedelta(days=20))

        store.replace_done_window([old], WINDOW, now=NOW)

        assert store.get_ticket("ENG-1") is not None

    def test_keeps_old_active_ticket(self, store: CacheStore) -> None:
        stale = make_ticket("ENG-1", "In Progress", updated_at=NOW - timedelta(days=90))
        store.merge(FetchBatch(tickets=(stale,)), BatchSource.ACTIVE)

        store.replace_done_window([], WINDOW, now=NOW)

        assert store.get_ticket("ENG-1") is not None

    def test_keeps_protected_keys(self, store: CacheStore) -> None:
        old = make_ticket("ENG-1", "Done", updated_at=NOW - timedelta(days=20))
        store.merge(FetchBatch(tickets=(old,)), BatchSource.SNAPSHOT)

        evicted = store.replace_done_window([], WINDOW, now=NOW, protected={"ENG-1"})

        assert evicted == []
        assert store.get_ticket("ENG-1") is not None

    def test_eviction_clears_relevance(self, store: CacheStore) -> None:
        store.merge(FetchBatch(tickets=(make_ticket("ENG-1"),)), BatchSource.ACTIVE)
        done = make_ticket("ENG-1", "Closed", updated_at=NOW - timedelta(days=30))
        store.put_ticket(done)

        store.replace_done_window([], WINDOW, now=NOW)

        assert not store.is_relevant("ENG-1")

    def test_batch_tickets_are_merged(self, store: CacheStore) -> None:
        done = make_ticket("ENG-7", "Done", updated_at=NOW - timedelta(days=2))

        store.replace_done_window([done], WINDOW, now=NOW)

        assert store.require_ticket("ENG-7").status.label == "Done"
        assert not store.is_relevant("ENG-7")


@pytest.mark.unit
class TestApplyDetail:
    """Tests for hydration results."""

    def test_apply_detail_marks_loaded(self, store: CacheStore) -> None:
        store.merge(FetchBatch(tickets=(make_ticket("ENG-1"),)), BatchSource.ACTIVE)

        assert store.apply_detail("ENG-1", make_detail("ENG-1", epic_key="ENG-100"))

        ticket = store.require_ticket("ENG-1")
        assert ticket.detail_loaded
        assert ticket.description == "Full description"
        assert ticket.epic_key == "ENG-100"

    def test_apply_detail_for_evicted_ticket_is_dropped(self, store: CacheStore) -> None:
        assert store.apply_detail("ENG-404", make_detail("ENG-404")) is False
        assert store.get_ticket("ENG-404") is None


@pytest.mark.unit
class TestViews:
    """Tests for derived views."""

    def test_require_ticket_raises_for_unknown_key(self, store: CacheStore) -> None:
        with pytest.raises(TicketNotFoundError):
            store.require_ticket("ENG-404")

    def test_tickets_by_status_follows_display_order(self, store: CacheStore) -> None:
        store.merge(
            FetchBatch(
                tickets=(
                    make_ticket("ENG-1", "Done"),
                    make_ticket("ENG-2", "Waiting for Vendor"),
                    make_ticket("ENG-3", "In Progress"),
                    make_ticket("ENG-4", "Needs Triage"),
                )
            ),
            BatchSource.ACTIVE,
        )

        labels = [label for label, _ in store.tickets_by_status()]

        assert labels == ["Needs Triage", "In Progress", "Done", "Waiting for Vendor"]

    def test_my_tickets_by_status_filters_on_current_user(self, store: CacheStore) -> None:
        store.merge(
            FetchBatch(
                tickets=(make_ticket("ENG-1"), make_ticket("ENG-2", assignee_email=ALICE))
            ),
            BatchSource.ACTIVE,
        )
        store.set_current_user(ME)

        groups = store.my_tickets_by_status()

        assert [[t.key for t in tickets] for _, tickets in groups] == [["ENG-1"]]

    def test_team_board_orders_by_active_count_then_name(self, store: CacheStore) -> None:
        store.merge(
            FetchBatch(
                tickets=(
                    make_ticket("ENG-1", "In Progress", assignee_email=BOB),
                    make_ticket("ENG-2", "To Do", assignee_email=BOB),
                    make_ticket("ENG-3", "In Review", assignee_email=ALICE),
                    make_ticket("ENG-4", "In Progress", assignee_email=ME),
                    make_ticket("ENG-5", "Done", assignee_email=ME),
                )
            ),
            BatchSource.ACTIVE,
        )

        board = store.team_board()

        assert [m.email for m, _ in board] == [BOB, ALICE, ME]
        assert [len(t) for _, t in board] == [2, 1, 1]

    def test_ticket_key_at_uses_board_order(self, store: CacheStore) -> None:
        store.merge(
            FetchBatch(
                tickets=(
                    make_ticket("ENG-1", "In Progress", assignee_email=ME),
                    make_ticket("ENG-2", "In Progress", assignee_email=BOB),
                    make_ticket("ENG-3", "To Do", assignee_email=BOB),
                )
            ),
            BatchSource.ACTIVE,
        )

        keys = store.team_ticket_keys()

        assert keys[2] == "ENG-1"
        assert store.ticket_key_at(2) == "ENG-1"
        assert store.ticket_key_at(3) is None
        assert store.ticket_key_at(-1) is None

    def test_epic_progress_recomputed_on_read(self, store: CacheStore) -> None:
        children = (make_ticket("ENG-1", "Done"), make_ticket("ENG-2", "In Progress"))
        epic = Epic(key="ENG-100", title="Launch", child_keys=frozenset({"ENG-1", "ENG-2"}))
        store.merge(FetchBatch(tickets=children, epics=(epic,)), BatchSource.EPICS)

        assert store.epic_progress("ENG-100").done == 1

        store.put_ticket(make_ticket("ENG-2", "Done"))

        progress = store.epic_progress("ENG-100")
        assert progress.total == 2
        assert progress.done == 2
        assert progress.percentage == 100.0
        assert progress.counts == {"Done": 2}

    def test_epic_children_include_tickets_pointing_at_epic(self, store: CacheStore) -> None:
        epic = Epic(key="ENG-100", title="Launch", child_keys=frozenset({"ENG-1"}))
        store.merge(
            FetchBatch(
                tickets=(make_ticket("ENG-1"), make_ticket("ENG-9", epic_key="ENG-100")),
                epics=(epic,),
            ),
            BatchSource.EPICS,
        )

        assert sorted(t.key for t in store.epic_children("ENG-100")) == ["ENG-1", "ENG-9"]

    def test_epic_progress_unknown_epic_raises(self, store: CacheStore) -> None:
        with pytest.raises(EpicNotFoundError):
            store.epic_progress("ENG-404")

    def test_unassigned_by_epic_groups_in_key_order(self, store: CacheStore) -> None:
        epics = (
            Epic(key="ENG-100", title="Launch"),
            Epic(key="ENG-20", title="Cleanup", child_keys=frozenset({"ENG-7"})),
        )
        store.merge(
            FetchBatch(
                tickets=(
                    make_ticket("ENG-11", assignee_email=None, epic_key="ENG-100"),
                    make_ticket("ENG-9", "In Progress", assignee_email=None, epic_key="ENG-100"),
                    make_ticket("ENG-7", assignee_email=None),
                    make_ticket("ENG-3", assignee_email=None),
                ),
                epics=epics,
            ),
            BatchSource.EPICS,
        )

        groups = store.unassigned_by_epic()

        assert [(g.epic_key, g.title) for g in groups] == [
            ("ENG-20", "Cleanup"),
            ("ENG-100", "Launch"),
            (None, "No Epic"),
        ]
        assert [[t.key for t in g.tickets] for g in groups] == [
            ["ENG-7"],
            ["ENG-9", "ENG-11"],
            ["ENG-3"],
        ]
        assert groups[1].count == 2

    def test_unassigned_by_epic_skips_assigned_and_done(self, store: CacheStore) -> None:
        store.merge(
            FetchBatch(
                tickets=(
                    make_ticket("ENG-1", assignee_email=ALICE),
                    make_ticket("ENG-2", "Done", assignee_email=None),
                    make_ticket("ENG-3", assignee_email=None, assignee="Former Member"),
                    make_ticket("ENG-4", "Waiting for Vendor", assignee_email=None),
                )
            ),
            BatchSource.ACTIVE,
        )

        assert store.unassigned_by_epic() == []

    def test_unassigned_epic_not_cached_uses_key_as_title(self, store: CacheStore) -> None:
        store.merge(
            FetchBatch(tickets=(make_ticket("ENG-1", assignee_email=None, epic_key="ENG-50"),)),
            BatchSource.ACTIVE,
        )

        [group] = store.unassigned_by_epic()

        assert group.epic_key == "ENG-50"
        assert group.title == "ENG-50"


@pytest.mark.unit
class TestSnapshots:
    """Tests for snapshot copies and cold start."""

    def test_snapshot_is_unaffected_by_later_writes(self, store: CacheStore) -> None:
        store.merge(FetchBatch(tickets=(make_ticket("ENG-1"),)), BatchSource.ACTIVE)
        snapshot = store.snapshot()

        store.put_ticket(make_ticket("ENG-1", "Done"))
        store.merge(FetchBatch(tickets=(make_ticket("ENG-2"),)), BatchSource.ACTIVE)

        assert snapshot.require_ticket("ENG-1").status.label == "To Do"
        assert snapshot.get_ticket("ENG-2") is None

    def test_replace_all_resets_relevance(self, store: CacheStore) -> None:
        store.merge(FetchBatch(tickets=(make_ticket("ENG-1"),)), BatchSource.ACTIVE)
        snapshot = store.snapshot()

        fresh = CacheStore()
        fresh.replace_all(snapshot)

        assert fresh.get_ticket("ENG-1") is not None
        assert not fresh.is_relevant("ENG-1")
        assert fresh.missing_detail_keys() == []
