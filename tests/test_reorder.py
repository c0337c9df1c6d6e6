"""Tests for optimistic in-day reordering and travel-time reconciliation."""

import pytest

from lazytravel.api.services.reorder import ReorderReconciler, merge_day_estimates
from lazytravel.api.services.trip_session import TripSession

from helpers import GatedEstimator, ids, make_stop


def two_day_session():
    return TripSession("trip-1", [
        make_stop("a", 1, travel="a-b"),
        make_stop("b", 1, travel="b-c"),
        make_stop("c", 1),
        make_stop("d", 2, travel="d-e"),
        make_stop("e", 2),
    ])


def day_view(session, day):
    return [(s.id, s.travel_time_next) for s in session.stops_for_day(day)]


class TestReorder:

    @pytest.mark.asyncio
    async def test_new_order_is_applied_before_estimates_arrive(self):
        session = two_day_session()
        estimator = GatedEstimator()
        reconciler = ReorderReconciler(session, estimator)

        task = reconciler.reorder(1, ["c", "a", "b"])

        # a->b survives the move, c->a is a new edge
        assert day_view(session, 1) == [("c", None), ("a", "a-b"), ("b", None)]
        assert reconciler.is_recalculating

        await estimator.started(1)
        estimator.release(0)
        await task

        assert estimator.calls == [["c", "a", "b"]]
        assert day_view(session, 1) == [("c", "c->a"), ("a", "a->b"), ("b", None)]
        assert not reconciler.is_recalculating

    @pytest.mark.asyncio
    async def test_other_days_are_untouched(self):
        session = two_day_session()
        estimator = GatedEstimator()
        reconciler = ReorderReconciler(session, estimator)

        reconciler.reorder(2, ["e", "d"])
        await estimator.started(1)
        estimator.release(0)
        await reconciler.wait_idle()

        assert day_view(session, 1) == [("a", "a-b"), ("b", "b-c"), ("c", None)]
        assert day_view(session, 2) == [("e", "e->d"), ("d", None)]
        assert ids(session.stops) == ["a", "b", "c", "e", "d"]

    @pytest.mark.asyncio
    async def test_accepts_stop_objects(self):
        session = two_day_session()
        estimator = GatedEstimator()
        reconciler = ReorderReconciler(session, estimator)
        b, a = session.get_stop("b"), session.get_stop("a")

        reconciler.reorder(1, [b, a, session.get_stop("c")])

        assert ids(session.stops_for_day(1)) == ["b", "a", "c"]
        await estimator.started(1)
        estimator.release(0)
        await reconciler.wait_idle()

    @pytest.mark.asyncio
    async def test_stale_estimate_does_not_override_newer_order(self):
        session = two_day_session()
        estimator = GatedEstimator()
        reconciler = ReorderReconciler(session, estimator)

        first = reconciler.reorder(1, ["c", "b", "a"])
        await estimator.started(1)
        second = reconciler.reorder(1, ["a", "c", "b"])
        await estimator.started(2)

        estimator.release(1)
        await second
        assert day_view(session, 1) == [("a", "a->c"), ("c", "c->b"), ("b", None)]

        estimator.release(0)
        await first

        # c->b is an edge of both orders, so the stale reply may refresh it
        assert ids(session.stops_for_day(1)) == ["a", "c", "b"]
        assert day_view(session, 1) == [("a", "a->c"), ("c", "c->b"), ("b", None)]

    @pytest.mark.asyncio
    async def test_edits_during_recalculation_are_kept(self):
        session = two_day_session()
        estimator = GatedEstimator()
        reconciler = ReorderReconciler(session, estimator)

        reconciler.reorder(1, ["c", "a", "b"])
        await estimator.started(1)
        session.update_stop("a", name="Renamed")
        session.add_stops([make_stop("x", 1)])
        session.delete_stop("e")

        estimator.release(0)
        await reconciler.wait_idle()

        assert day_view(session, 1) == [("c", "c->a"), ("a", "a->b"), ("b", None), ("x", None)]
        assert session.get_stop("a").name == "Renamed"
        assert ids(session.stops_for_day(2)) == ["d"]

    @pytest.mark.asyncio
    async def test_estimate_for_deleted_stop_is_dropped(self):
        session = two_day_session()
        estimator = GatedEstimator()
        reconciler = ReorderReconciler(session, estimator)

        reconciler.reorder(1, ["c", "a", "b"])
        await estimator.started(1)
        session.delete_stop("a")

        estimator.release(0)
        await reconciler.wait_idle()

        assert day_view(session, 1) == [("c", None), ("b", None)]

    @pytest.mark.asyncio
    async def test_failed_estimate_keeps_the_reorder(self):
        session = two_day_session()
        estimator = GatedEstimator()
        estimator.failures.add(0)
        reconciler = ReorderReconciler(session, estimator)

        reconciler.reorder(1, ["b", "c", "a"])
        await estimator.started(1)
        estimator.release(0)
        await reconciler.wait_idle()

        assert day_view(session, 1) == [("b", "b-c"), ("c", None), ("a", None)]
        assert not reconciler.is_recalculating

    @pytest.mark.asyncio
    async def test_unexpected_estimator_error_keeps_the_reorder(self, caplog):
        session = two_day_session()

        async def misconfigured(stops):
            raise ValueError("OPENAI_API_KEY not set")

        reconciler = ReorderReconciler(session, misconfigured)
        reconciler.reorder(1, ["c", "a", "b"])
        await reconciler.wait_idle()

        assert day_view(session, 1) == [("c", None), ("a", "a-b"), ("b", None)]
        assert "Unexpected error estimating travel for day 1" in caplog.text

    @pytest.mark.asyncio
    async def test_single_stop_day_needs_no_estimate(self):
        session = TripSession("trip-1", [make_stop("a", 1), make_stop("b", 2)])
        estimator = GatedEstimator()
        reconciler = ReorderReconciler(session, estimator)

        assert reconciler.reorder(2, ["b"]) is None
        assert estimator.calls == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("order", [["a", "b"], ["a", "b", "c", "d"], ["a", "a", "b"]])
    async def test_rejects_orders_that_are_not_a_permutation(self, order):
        session = two_day_session()
        reconciler = ReorderReconciler(session, GatedEstimator())

        with pytest.raises(ValueError):
            reconciler.reorder(1, order)
        assert session.version == 0


class TestMergeDayEstimates:

    def test_only_surviving_edges_are_labelled(self):
        current = [make_stop("a", 1), make_stop("c", 1, travel="keep"), make_stop("b", 1), make_stop("d", 2)]
        estimated = [make_stop("a", 1), make_stop("b", 1), make_stop("c", 1)]

        merged = merge_day_estimates(current, 1, estimated, ["a-b", "b-c"])

        assert [(s.id, s.travel_time_next) for s in merged] == [
            ("a", None), ("c", "keep"), ("b", None), ("d", None),
        ]

    def test_short_or_blank_estimates_leave_labels(self):
        current = [make_stop("a", 1, travel="old"), make_stop("b", 1, travel="old"), make_stop("c", 1)]

        merged = merge_day_estimates(current, 1, current, [""])

        assert [s.travel_time_next for s in merged] == ["old", "old", None]
