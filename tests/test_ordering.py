# tests/test_ordering.py
"""
Tests for day-indexed job ordering:
- sort_jobs_for_day / group_by_day
- plan_move (the reorder algorithm)
- OrderingStore proposed/confirmed phases
"""
from __future__ import annotations

import random
from datetime import date, time

import pytest

from conftest import DAY, NEXT_DAY, TZ, at, make_job
from poolroute.core.errors import NotFoundError
from poolroute.core.scheduling.domain import route_day
from poolroute.core.scheduling.ordering import (
    OrderingStore,
    group_by_day,
    plan_move,
    sort_jobs_for_day,
)
from poolroute.core.scheduling.pending import UNSET


def _ids(jobs):
    return [job.id for job in jobs]


def _orders(jobs):
    return [job.sort_order for job in jobs]


def _assert_contiguous(store: OrderingStore):
    for day in store.days():
        orders = sorted(_orders(store.jobs_for_day(day)))
        assert orders == list(range(len(orders))), f"{day}: {orders}"


# ---------------------------------------------------------------------------
# Sorting
# ---------------------------------------------------------------------------

class TestSortJobsForDay:
    def test_sort_order_wins_over_time(self):
        early = make_job("a", hour=8, sort_order=1)
        late = make_job("b", hour=15, sort_order=0)
        assert _ids(sort_jobs_for_day([early, late])) == ["b", "a"]

    def test_unranked_jobs_fall_back_to_time_after_ranked(self):
        ranked = make_job("a", hour=16, sort_order=0)
        unranked_late = make_job("b", hour=14)
        unranked_early = make_job("c", hour=7)
        assert _ids(sort_jobs_for_day([unranked_late, ranked, unranked_early])) == ["a", "c", "b"]

    def test_group_by_day_uses_dispatch_zone(self):
        # 23:30 in New York is already the next day in UTC
        late_evening = make_job("a", hour=23, minute=30)
        groups = group_by_day([late_evening], TZ)
        assert list(groups) == [DAY]


# ---------------------------------------------------------------------------
# plan_move
# ---------------------------------------------------------------------------

class TestPlanMoveSameDay:
    def test_move_first_after_second(self):
        jobs = [make_job("job-0", sort_order=0), make_job("job-1", sort_order=1)]

        result = plan_move(jobs, "job-0", DAY, TZ, anchor_id="job-1", position="after")

        by_id = {job.id: job for job in result.updated_jobs}
        assert by_id["job-1"].sort_order == 0
        assert by_id["job-0"].sort_order == 1
        assert result.patches["job-0"].sort_order == 1
        assert result.patches["job-1"].sort_order == 0

    def test_move_before_anchor(self):
        jobs = [make_job(f"j{i}", hour=8 + i, sort_order=i) for i in range(4)]

        result = plan_move(jobs, "j3", DAY, TZ, anchor_id="j1", position="before")

        store = OrderingStore(jobs, TZ)
        store.apply(result.updated_jobs)
        assert _ids(store.jobs_for_day(DAY)) == ["j0", "j3", "j1", "j2"]

    def test_only_changed_positions_are_patched(self):
        jobs = [make_job(f"j{i}", hour=8 + i, sort_order=i) for i in range(5)]

        result = plan_move(jobs, "j4", DAY, TZ, anchor_id="j3", position="before")

        # j0..j2 keep their ranks, only j3 and j4 swap
        assert set(result.patches) == {"j3", "j4"}

    def test_no_anchor_appends(self):
        jobs = [make_job(f"j{i}", hour=8 + i, sort_order=i) for i in range(3)]

        result = plan_move(jobs, "j0", DAY, TZ)

        store = OrderingStore(jobs, TZ)
        store.apply(result.updated_jobs)
        assert _ids(store.jobs_for_day(DAY)) == ["j1", "j2", "j0"]

    def test_same_day_does_not_touch_scheduled_date(self):
        jobs = [make_job("a", sort_order=0), make_job("b", hour=10, sort_order=1)]

        result = plan_move(jobs, "a", DAY, TZ, anchor_id="b", position="after")

        assert all(patch.scheduled_date is UNSET for patch in result.patches.values())

    def test_anchor_equal_to_job_is_noop(self):
        jobs = [make_job("a", sort_order=0), make_job("b", hour=10, sort_order=1)]

        result = plan_move(jobs, "a", DAY, TZ, anchor_id="a")

        assert not result.changed
        assert result.updated_jobs == []

    def test_moving_to_current_position_emits_nothing(self):
        jobs = [make_job("a", sort_order=0), make_job("b", hour=10, sort_order=1)]

        result = plan_move(jobs, "a", DAY, TZ, anchor_id="b", position="before")

        assert result.patches == {}

    def test_unknown_job_raises(self):
        with pytest.raises(NotFoundError):
            plan_move([make_job("a")], "missing", DAY, TZ)

    def test_inputs_are_not_mutated(self):
        jobs = [make_job("job-0", sort_order=0), make_job("job-1", sort_order=1)]

        plan_move(jobs, "job-0", DAY, TZ, anchor_id="job-1", position="after")

        assert _orders(jobs) == [0, 1]


class TestPlanMoveAcrossDays:
    def test_time_of_day_is_preserved(self):
        jobs = [make_job("a", DAY, 13, 45, sort_order=0)]

        result = plan_move(jobs, "a", NEXT_DAY, TZ)

        moved = {job.id: job for job in result.updated_jobs}["a"]
        local = moved.scheduled_date.astimezone(TZ)
        assert local.date() == NEXT_DAY
        assert local.time() == time(13, 45)
        assert result.patches["a"].scheduled_date == moved.scheduled_date

    def test_source_day_is_reindexed(self):
        jobs = [make_job(f"a{i}", DAY, 8 + i, sort_order=i) for i in range(3)]

        result = plan_move(jobs, "a0", NEXT_DAY, TZ)

        store = OrderingStore(jobs, TZ)
        store.apply(result.updated_jobs)
        assert _ids(store.jobs_for_day(DAY)) == ["a1", "a2"]
        assert _orders(store.jobs_for_day(DAY)) == [0, 1]
        assert _ids(store.jobs_for_day(NEXT_DAY)) == ["a0"]
        assert store.get("a0").sort_order == 0

    def test_insert_at_anchor_on_target_day(self):
        jobs = [
            make_job("a", DAY, 9, sort_order=0),
            make_job("b0", NEXT_DAY, 9, sort_order=0),
            make_job("b1", NEXT_DAY, 11, sort_order=1),
        ]

        result = plan_move(jobs, "a", NEXT_DAY, TZ, anchor_id="b1", position="before")

        store = OrderingStore(jobs, TZ)
        store.apply(result.updated_jobs)
        assert _ids(store.jobs_for_day(NEXT_DAY)) == ["b0", "a", "b1"]
        assert _orders(store.jobs_for_day(NEXT_DAY)) == [0, 1, 2]

    def test_unranked_target_day_uses_time_order_as_positions(self):
        jobs = [
            make_job("a", DAY, 9, sort_order=0),
            make_job("late", NEXT_DAY, 15),
            make_job("early", NEXT_DAY, 8),
        ]

        result = plan_move(jobs, "a", NEXT_DAY, TZ, anchor_id="late", position="before")

        store = OrderingStore(jobs, TZ)
        store.apply(result.updated_jobs)
        assert _ids(store.jobs_for_day(NEXT_DAY)) == ["early", "a", "late"]
        assert _orders(store.jobs_for_day(NEXT_DAY)) == [0, 1, 2]
        # every previously unranked job needs a rank now
        assert {"late", "early", "a"} <= set(result.patches)

    def test_anchor_on_other_day_appends(self):
        jobs = [
            make_job("a", DAY, 9, sort_order=0),
            make_job("b", DAY, 10, sort_order=1),
            make_job("c", NEXT_DAY, 9, sort_order=0),
        ]

        result = plan_move(jobs, "a", NEXT_DAY, TZ, anchor_id="b")

        store = OrderingStore(jobs, TZ)
        store.apply(result.updated_jobs)
        assert _ids(store.jobs_for_day(NEXT_DAY)) == ["c", "a"]

    def test_round_trip_restores_position(self):
        originals = [make_job(f"a{i}", DAY, 8 + i, sort_order=i) for i in range(4)]
        others = [make_job(f"b{i}", NEXT_DAY, 8 + i, sort_order=i) for i in range(2)]
        store = OrderingStore(originals + others, TZ)

        store.move("a1", NEXT_DAY, anchor_id="b1", position="after")
        store.move("a1", DAY, anchor_id="a2", position="before")

        assert _ids(store.jobs_for_day(DAY)) == ["a0", "a1", "a2", "a3"]
        assert _orders(store.jobs_for_day(DAY)) == [0, 1, 2, 3]
        assert store.get("a1").scheduled_date == at(DAY, 9)


class TestContiguityProperty:
    def test_random_moves_keep_every_day_contiguous(self):
        rng = random.Random(42)
        days = [date(2024, 6, d) for d in range(3, 7)]
        jobs = [
            make_job(f"{d.day}-{i}", d, 7 + i, sort_order=i if rng.random() < 0.7 else None)
            for d in days
            for i in range(rng.randint(1, 5))
        ]
        store = OrderingStore(jobs, TZ)
        touched: set[date] = set()

        for _ in range(60):
            job = rng.choice(list(store))
            target = rng.choice(days)
            anchors = store.jobs_for_day(target)
            anchor = rng.choice(anchors).id if anchors and rng.random() < 0.7 else None
            result = store.move(job.id, target, anchor_id=anchor, position=rng.choice(["before", "after"]))
            if result.changed:
                touched.update({result.source_day, result.target_day})

        for day in touched:
            orders = sorted(_orders(store.jobs_for_day(day)))
            assert orders == list(range(len(orders)))

    def test_total_job_count_is_stable(self):
        jobs = [make_job(f"j{i}", DAY, 8 + i, sort_order=i) for i in range(5)]
        store = OrderingStore(jobs, TZ)

        store.move("j0", NEXT_DAY)
        store.move("j3", NEXT_DAY, anchor_id="j0")

        assert len(store) == 5
        _assert_contiguous(store)


# ---------------------------------------------------------------------------
# OrderingStore
# ---------------------------------------------------------------------------

class TestOrderingStore:
    def test_move_changes_proposed_not_confirmed(self):
        store = OrderingStore([make_job("a", sort_order=0), make_job("b", hour=10, sort_order=1)], TZ)

        store.move("a", DAY, anchor_id="b", position="after")

        assert store.get("a").sort_order == 1
        assert store.confirmed("a").sort_order == 0
        assert store.is_dirty()

    def test_confirm_promotes_only_given_ids(self):
        store = OrderingStore([make_job("a", sort_order=0), make_job("b", hour=10, sort_order=1)], TZ)
        store.move("a", DAY, anchor_id="b", position="after")

        store.confirm(["a"])

        assert store.confirmed("a").sort_order == 1
        assert store.confirmed("b").sort_order == 1
        assert store.is_dirty()

    def test_rollback_restores_confirmed(self):
        store = OrderingStore([make_job("a", sort_order=0)], TZ)
        store.move("a", NEXT_DAY)

        store.rollback()

        assert route_day(store.get("a").scheduled_date, TZ) == DAY
        assert not store.is_dirty()

    def test_store_copies_input_jobs(self):
        job = make_job("a", sort_order=0)
        store = OrderingStore([job], TZ)

        store.update("a", technician_id="tech-9")

        assert job.technician_id == "tech-1"

    def test_update_unknown_job_raises(self):
        store = OrderingStore([], TZ)
        with pytest.raises(NotFoundError):
            store.update("nope", technician_id=None)

    def test_add_is_confirmed(self):
        store = OrderingStore([], TZ)
        store.add(make_job("new"))
        assert store.confirmed("new") is not None
        assert not store.is_dirty()
