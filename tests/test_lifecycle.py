"""Tests for giveaway status transitions and completion."""

import asyncio
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta

import pytest
from botocore.exceptions import ClientError
from conftest import NOW

from giveaway_engine import (
    GiveawayLifecycle,
    GiveawayNotFoundError,
    GiveawayStatus,
    IllegalTransitionError,
    InvalidGiveawayError,
    PermissionDeniedError,
    PersistenceError,
)
from giveaway_engine.lifecycle import can_transition


def first_index(low: int, high: int) -> int:
    return low


def last_index(low: int, high: int) -> int:
    return high


@pytest.fixture
def completed():
    return []


@pytest.fixture
def lifecycle(storage, clock, completed):
    return GiveawayLifecycle(
        storage, clock=clock, randint=last_index, on_completed=completed.append
    )


class TestTransitions:
    @pytest.mark.parametrize(
        ("current", "target", "allowed"),
        [
            (GiveawayStatus.SCHEDULED, GiveawayStatus.ACTIVE, True),
            (GiveawayStatus.ACTIVE, GiveawayStatus.FINISHED, True),
            (GiveawayStatus.ACTIVE, GiveawayStatus.CANCELLED, True),
            (GiveawayStatus.SCHEDULED, GiveawayStatus.FINISHED, False),
            (GiveawayStatus.FINISHED, GiveawayStatus.ACTIVE, False),
            (GiveawayStatus.FINISHED, GiveawayStatus.FINISHED, False),
            (GiveawayStatus.CANCELLED, GiveawayStatus.ACTIVE, False),
        ],
    )
    def test_transition_table(self, current, target, allowed):
        assert can_transition(current, target) is allowed


class TestComplete:
    @pytest.mark.asyncio
    async def test_weighted_single_winner(
        self, lifecycle, storage, make_giveaway, add_participants, completed
    ):
        make_giveaway("gw1", winners_count=1)
        # pool order is by user id: [1, 2, 3 x8]; the last ticket belongs to 3
        add_participants("gw1", {1: 1, 2: 1, 3: 8})

        result = await lifecycle.complete("gw1")

        assert result.status == GiveawayStatus.FINISHED
        assert result.participants_count == 3
        assert result.winners_count == 1
        (winner,) = result.winners
        assert (winner.user_id, winner.place, winner.tickets_used) == (3, 1, 8)
        assert winner.selected_at == NOW

        giveaway = storage.get_giveaway("gw1")
        assert giveaway.status == GiveawayStatus.FINISHED
        assert giveaway.finished_at == NOW
        assert giveaway.total_participants == 3
        assert [w.user_id for w in storage.list_winners("gw1")] == [3]
        assert completed == [result]

    @pytest.mark.asyncio
    async def test_draws_at_most_participant_count(
        self, lifecycle, storage, make_giveaway, add_participants
    ):
        make_giveaway("gw1", winners_count=5)
        add_participants("gw1", {1: 1, 2: 2})

        result = await lifecycle.complete("gw1")

        assert [w.place for w in result.winners] == [1, 2]
        assert {w.user_id for w in storage.list_winners("gw1")} == {1, 2}

    @pytest.mark.asyncio
    async def test_second_run_is_rejected_without_new_rows(
        self, lifecycle, storage, make_giveaway, add_participants, table
    ):
        make_giveaway("gw1", winners_count=2)
        add_participants("gw1", {1: 1, 2: 1, 3: 1})
        await lifecycle.complete("gw1")
        before = storage.list_winners("gw1")
        transactions = table.transactions

        with pytest.raises(IllegalTransitionError) as excinfo:
            await lifecycle.complete("gw1")

        assert excinfo.value.current == GiveawayStatus.FINISHED
        assert "Only an active giveaway can be finished" in str(excinfo.value)
        assert storage.list_winners("gw1") == before
        assert table.transactions == transactions

    @pytest.mark.asyncio
    async def test_no_participants_cancels(
        self, lifecycle, storage, make_giveaway, completed
    ):
        make_giveaway("gw1")

        result = await lifecycle.complete("gw1")

        assert result.status == GiveawayStatus.CANCELLED
        assert result.winners_count == 0
        assert storage.get_giveaway("gw1").status == GiveawayStatus.CANCELLED
        assert storage.list_winners("gw1") == []
        assert completed == []

    @pytest.mark.asyncio
    async def test_only_ineligible_participants_cancels(
        self, lifecycle, storage, make_giveaway, add_participants
    ):
        make_giveaway("gw1")
        add_participants("gw1", {1: 3}, status="BANNED")

        result = await lifecycle.complete("gw1")

        assert result.status == GiveawayStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_zero_ticket_participants_finish_without_winners(
        self, lifecycle, storage, make_giveaway, add_participants
    ):
        make_giveaway("gw1")
        add_participants("gw1", {1: 0, 2: 0})

        result = await lifecycle.complete("gw1")

        assert result.status == GiveawayStatus.FINISHED
        assert result.winners_count == 0
        assert result.participants_count == 2
        assert storage.get_giveaway("gw1").status == GiveawayStatus.FINISHED

    @pytest.mark.asyncio
    async def test_not_active_is_rejected(self, lifecycle, storage, make_giveaway):
        make_giveaway("gw1", status=GiveawayStatus.SCHEDULED)

        with pytest.raises(IllegalTransitionError):
            await lifecycle.complete("gw1")
        assert storage.get_giveaway("gw1").status == GiveawayStatus.SCHEDULED

    @pytest.mark.asyncio
    async def test_missing_giveaway(self, lifecycle):
        with pytest.raises(GiveawayNotFoundError):
            await lifecycle.complete("missing")

    @pytest.mark.asyncio
    async def test_failed_commit_can_be_retried(
        self, lifecycle, storage, make_giveaway, add_participants, table, completed
    ):
        make_giveaway("gw1", winners_count=2)
        add_participants("gw1", {1: 1, 2: 1, 3: 1})
        table.transaction_errors.append(
            ClientError(
                {"Error": {"Code": "InternalServerError", "Message": "oops"}},
                "TransactWriteItems",
            )
        )

        with pytest.raises(PersistenceError):
            await lifecycle.complete("gw1")
        assert storage.get_giveaway("gw1").status == GiveawayStatus.ACTIVE
        assert storage.list_winners("gw1") == []
        assert completed == []

        result = await lifecycle.complete("gw1")

        assert result.status == GiveawayStatus.FINISHED
        assert len(storage.list_winners("gw1")) == 2
        assert completed == [result]

    @pytest.mark.asyncio
    async def test_concurrent_completions_commit_once(
        self, storage, clock, make_giveaway, add_participants, table
    ):
        make_giveaway("gw1", winners_count=2)
        add_participants("gw1", {uid: 1 for uid in range(1, 11)})
        first = GiveawayLifecycle(storage, clock=clock)
        second = GiveawayLifecycle(storage, clock=clock)
        second_results = []

        def complete_elsewhere():
            # both have drawn; the second worker commits while the first waits
            with ThreadPoolExecutor(max_workers=1) as pool:
                second_results.append(
                    pool.submit(asyncio.run, second.complete("gw1")).result()
                )

        table.before_transaction = complete_elsewhere

        with pytest.raises(IllegalTransitionError) as excinfo:
            await first.complete("gw1")

        assert excinfo.value.current == GiveawayStatus.FINISHED
        assert [r.status for r in second_results] == [GiveawayStatus.FINISHED]
        assert table.transactions == 2
        winners = storage.list_winners("gw1")
        assert len(winners) == 2
        assert {w.user_id for w in winners} == {
            w.user_id for w in second_results[0].winners
        }

    @pytest.mark.asyncio
    async def test_status_change_before_commit_aborts_draw(
        self, lifecycle, storage, make_giveaway, add_participants, table, completed
    ):
        make_giveaway("gw1", winners_count=1)
        add_participants("gw1", {1: 1, 2: 1})

        def finish_elsewhere():
            table.items[("GIVEAWAY#gw1", "META")]["status"] = GiveawayStatus.FINISHED

        table.before_transaction = finish_elsewhere

        with pytest.raises(IllegalTransitionError) as excinfo:
            await lifecycle.complete("gw1")

        assert excinfo.value.current == GiveawayStatus.FINISHED
        assert storage.list_winners("gw1") == []
        assert completed == []

    @pytest.mark.asyncio
    async def test_listener_failure_does_not_undo_completion(
        self, storage, clock, make_giveaway, add_participants
    ):
        make_giveaway("gw1")
        add_participants("gw1", {1: 1})

        def broken(result):
            raise RuntimeError("queue full")

        lifecycle = GiveawayLifecycle(
            storage, clock=clock, randint=first_index, on_completed=broken
        )
        result = await lifecycle.complete("gw1")

        assert result.status == GiveawayStatus.FINISHED
        assert storage.get_giveaway("gw1").status == GiveawayStatus.FINISHED


    @pytest.mark.asyncio
    async def test_too_many_winners_rejected_before_draw(
        self, lifecycle, storage, make_giveaway, add_participants, table, completed
    ):
        make_giveaway("gw1", winners_count=150)
        add_participants("gw1", {1: 1, 2: 1})

        with pytest.raises(InvalidGiveawayError, match="at most 99"):
            await lifecycle.complete("gw1")

        assert table.transactions == 0
        assert storage.get_giveaway("gw1").status == GiveawayStatus.ACTIVE
        assert completed == []


class TestFinishNow:
    @pytest.mark.asyncio
    async def test_owner_can_finish_early(
        self, lifecycle, storage, make_giveaway, add_participants
    ):
        make_giveaway("gw1", owner_id=42, end_at=NOW + timedelta(days=1))
        add_participants("gw1", {1: 1})

        result = await lifecycle.finish_now("gw1", 42)

        assert result.status == GiveawayStatus.FINISHED
        assert storage.get_giveaway("gw1").status == GiveawayStatus.FINISHED

    @pytest.mark.asyncio
    async def test_non_owner_rejected(self, lifecycle, storage, make_giveaway, add_participants):
        make_giveaway("gw1", owner_id=42)
        add_participants("gw1", {1: 1})

        with pytest.raises(PermissionDeniedError):
            await lifecycle.finish_now("gw1", 7)

        assert storage.get_giveaway("gw1").status == GiveawayStatus.ACTIVE
        assert storage.list_winners("gw1") == []

    @pytest.mark.asyncio
    async def test_finished_giveaway_rejected(self, lifecycle, make_giveaway):
        make_giveaway("gw1", owner_id=42, status=GiveawayStatus.FINISHED)

        with pytest.raises(IllegalTransitionError):
            await lifecycle.finish_now("gw1", 42)


class TestActivateAndCancel:
    @pytest.mark.asyncio
    async def test_activate_due_giveaway(self, lifecycle, storage, make_giveaway):
        make_giveaway(
            "gw1", status=GiveawayStatus.SCHEDULED, start_at=NOW - timedelta(seconds=1)
        )

        await lifecycle.activate("gw1")

        assert storage.get_giveaway("gw1").status == GiveawayStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_activate_before_start_rejected(self, lifecycle, storage, make_giveaway):
        make_giveaway(
            "gw1", status=GiveawayStatus.SCHEDULED, start_at=NOW + timedelta(hours=1)
        )

        with pytest.raises(IllegalTransitionError):
            await lifecycle.activate("gw1")
        assert storage.get_giveaway("gw1").status == GiveawayStatus.SCHEDULED

    @pytest.mark.asyncio
    async def test_activate_finished_rejected(self, lifecycle, storage, make_giveaway):
        make_giveaway("gw1", status=GiveawayStatus.FINISHED)

        with pytest.raises(IllegalTransitionError):
            await lifecycle.activate("gw1")
        assert storage.get_giveaway("gw1").status == GiveawayStatus.FINISHED

    @pytest.mark.asyncio
    async def test_cancel_scheduled(self, lifecycle, storage, make_giveaway):
        make_giveaway("gw1", status=GiveawayStatus.SCHEDULED)

        await lifecycle.cancel("gw1")

        assert storage.get_giveaway("gw1").status == GiveawayStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_cancel_finished_rejected(self, lifecycle, storage, make_giveaway):
        make_giveaway("gw1", status=GiveawayStatus.FINISHED)

        with pytest.raises(IllegalTransitionError):
            await lifecycle.cancel("gw1")
        assert storage.get_giveaway("gw1").status == GiveawayStatus.FINISHED

    @pytest.mark.asyncio
    async def test_owner_cancels_active(self, lifecycle, storage, make_giveaway):
        make_giveaway("gw1", owner_id=42)

        await lifecycle.cancel("gw1", requested_by=42)

        assert storage.get_giveaway("gw1").status == GiveawayStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_cancel_by_non_owner_rejected(self, lifecycle, storage, make_giveaway):
        make_giveaway("gw1", owner_id=42)

        with pytest.raises(PermissionDeniedError):
            await lifecycle.cancel("gw1", requested_by=7)
        assert storage.get_giveaway("gw1").status == GiveawayStatus.ACTIVE


class TestActivateDue:
    @pytest.mark.asyncio
    async def test_activates_only_due_scheduled(self, lifecycle, storage, make_giveaway):
        make_giveaway(
            "due", status=GiveawayStatus.SCHEDULED, start_at=NOW - timedelta(minutes=1)
        )
        make_giveaway(
            "later", status=GiveawayStatus.SCHEDULED, start_at=NOW + timedelta(minutes=1)
        )
        make_giveaway("draft", status=GiveawayStatus.DRAFT, start_at=NOW - timedelta(days=1))

        assert await lifecycle.activate_due() == ["due"]
        assert storage.get_giveaway("due").status == GiveawayStatus.ACTIVE
        assert storage.get_giveaway("later").status == GiveawayStatus.SCHEDULED
        assert storage.get_giveaway("draft").status == GiveawayStatus.DRAFT

    @pytest.mark.asyncio
    async def test_skips_giveaway_cancelled_after_scan(
        self, lifecycle, storage, table, make_giveaway, monkeypatch
    ):
        make_giveaway(
            "first", status=GiveawayStatus.SCHEDULED, start_at=NOW - timedelta(minutes=2)
        )
        make_giveaway(
            "second", status=GiveawayStatus.SCHEDULED, start_at=NOW - timedelta(minutes=1)
        )
        scan = storage.list_due_giveaways

        def scan_then_cancel(*args):
            due = scan(*args)
            table.items[("GIVEAWAY#first", "META")]["status"] = GiveawayStatus.CANCELLED
            return due

        monkeypatch.setattr(storage, "list_due_giveaways", scan_then_cancel)

        assert await lifecycle.activate_due() == ["second"]
        assert storage.get_giveaway("first").status == GiveawayStatus.CANCELLED
        assert storage.get_giveaway("second").status == GiveawayStatus.ACTIVE
