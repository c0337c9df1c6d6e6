# lazytravel/api/services/reorder.py
"""Drag-and-drop reordering inside one day, with background travel times.

The new order is applied to the session immediately. Travel-time estimates
for the new sequence are then fetched in a background task; when they arrive
they are merged into whatever the session holds *at that moment*, keyed by
day number and stop ids, never by a remembered list position. A slow reply
therefore cannot undo edits the user made while it was in flight.
"""

import asyncio
import functools
import logging
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Set, Union

from lazytravel.api import geocoding, llm
from lazytravel.api.config import get_travel_estimate_config
from lazytravel.api.errors import OracleError
from lazytravel.api.models import Stop, edge_labels, relabel_day, splice_day, stops_for_day
from lazytravel.api.services.trip_session import TripSession

logger = logging.getLogger(__name__)

Estimator = Callable[[Sequence[Stop]], Awaitable[List[Optional[str]]]]


def default_estimator() -> Estimator:
    """Travel-time estimator selected by ``TRAVEL_ESTIMATOR``."""
    config = get_travel_estimate_config()
    if config["estimator"] == "maps":
        return functools.partial(geocoding.estimate_travel_times, mode=config["mode"])
    return llm.estimate_travel_times


def merge_day_estimates(
    current: Sequence[Stop],
    day_number: int,
    estimated: Sequence[Stop],
    estimates: Sequence[Optional[str]],
) -> List[Stop]:
    """Put fresh travel labels on the current stops of ``day_number``.

    ``estimates[i]`` describes the edge ``estimated[i] -> estimated[i + 1]``.
    It is applied only if that edge still exists in the current day; other
    days, and the membership and order of this day, are left alone.
    """
    labels = {
        (a.id, b.id): label
        for a, b, label in zip(estimated, estimated[1:], estimates)
        if label
    }
    day_stops = relabel_day(stops_for_day(current, day_number), labels, clear_unknown=False)
    return splice_day(current, day_number, day_stops)


class ReorderReconciler:
    """Applies within-day reorders optimistically and reconciles estimates."""

    def __init__(self, session: TripSession, estimator: Optional[Estimator] = None):
        self.session = session
        self._estimate = estimator or default_estimator()
        self._pending: Dict[int, asyncio.Task] = {}
        self._tasks: Set[asyncio.Task] = set()

    @property
    def is_recalculating(self) -> bool:
        return bool(self._tasks)

    def reorder(self, day_number: int, new_order: Sequence[Union[Stop, str]]) -> Optional[asyncio.Task]:
        """Apply ``new_order`` to ``day_number`` and start a travel recompute.

        Args:
            day_number: Day being reordered
            new_order: The day's stops (or stop ids) in their new order

        Returns:
            The background recalculation task, or None when the day has
            fewer than two stops

        Raises:
            ValueError: If ``new_order`` is not a permutation of the day's stops
        """
        ids = [item if isinstance(item, str) else item.id for item in new_order]
        current_day = self.session.stops_for_day(day_number)
        if sorted(ids) != sorted(stop.id for stop in current_day):
            raise ValueError(f"New order for day {day_number} does not match its stops")

        by_id = {stop.id: stop for stop in current_day}
        previous_labels = edge_labels(current_day)
        reordered = relabel_day([by_id[stop_id] for stop_id in ids], previous_labels, clear_unknown=True)

        updated = self.session.apply(
            lambda current: splice_day(current, day_number, reordered),
            f"reorder day {day_number}",
        )
        if len(reordered) < 2:
            return None

        sequence = stops_for_day(updated, day_number)
        task = asyncio.get_running_loop().create_task(self._recalculate(day_number, sequence))
        if day_number in self._pending and not self._pending[day_number].done():
            logger.debug(f"Reorder of day {day_number} supersedes a pending recalculation")
        self._pending[day_number] = task
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _recalculate(self, day_number: int, sequence: List[Stop]) -> None:
        try:
            estimates = await self._estimate(sequence)
        except OracleError as exc:
            logger.error(f"Travel update failed for day {day_number}: {exc}")
            return
        except Exception:
            # The reorder itself is already applied and must stay.
            logger.exception(f"Unexpected error estimating travel for day {day_number}")
            return

        self.session.apply(
            lambda current: merge_day_estimates(current, day_number, sequence, estimates),
            f"travel times day {day_number}",
        )
        logger.info(f"Updated travel times for day {day_number} ({len(sequence)} stops)")

    async def wait_idle(self) -> None:
        """Wait until every recalculation started so far has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))


__all__ = ["ReorderReconciler", "merge_day_estimates", "default_estimator"]
