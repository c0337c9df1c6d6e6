# lazytravel/api/services/trip_session.py
"""The canonical, user-editable stop list of one trip."""

import logging
from typing import Callable, Iterable, List, Optional, Sequence, Tuple

from lazytravel.api.models import (
    Coordinate,
    Stop,
    Trip,
    distinct_cities,
    edge_labels,
    group_by_day,
    normalize_itinerary,
    relabel,
    stops_for_day,
    total_budget,
)

logger = logging.getLogger(__name__)

Change = Callable[[Tuple[Stop, ...]], Iterable[Stop]]
Listener = Callable[["TripSession"], None]


def merge_optimized(current: Sequence[Stop], optimized: Sequence[Stop]) -> List[Stop]:
    """Fold an optimizer result into the current list by stop id.

    Stops deleted while the optimizer ran stay deleted, stops added meanwhile
    keep their own day, and field edits made meanwhile are kept; only day
    numbers and travel labels come from ``optimized``.
    """
    latest = {stop.id: stop for stop in current}
    placed = [
        latest[stop.id].evolve(day_number=stop.day_number, travel_time_next=stop.travel_time_next)
        for stop in optimized
        if stop.id in latest
    ]
    placed_ids = {stop.id for stop in placed}
    newcomers = [stop for stop in current if stop.id not in placed_ids]
    return relabel(placed + newcomers, edge_labels(optimized), clear_unknown=True)


class TripSession:
    """Owns the stop list of a trip and applies every change copy-on-write.

    Each accepted change produces a new tuple, so anything holding the
    previous ``stops`` value keeps a consistent snapshot. Changes are
    functions of the *current* list, which lets asynchronous completions
    re-read state at the moment they are applied.
    """

    def __init__(
        self,
        trip_id: str,
        stops: Iterable[Stop] = (),
        *,
        title: str = "",
        anchor: Optional[Coordinate] = None,
    ):
        self.trip_id = trip_id
        self.title = title
        self.anchor = anchor
        self.version = 0
        self._stops: Tuple[Stop, ...] = tuple(normalize_itinerary(stops))
        self._listeners: List[Listener] = []

    @classmethod
    def from_trip(cls, trip: Trip) -> "TripSession":
        return cls(trip.id, trip.stops, title=trip.title, anchor=trip.anchor)

    @property
    def stops(self) -> Tuple[Stop, ...]:
        return self._stops

    @property
    def cities(self) -> List[str]:
        return distinct_cities(self._stops)

    @property
    def total_budget(self) -> Optional[float]:
        return total_budget(self._stops)

    def day_groups(self):
        return group_by_day(self._stops)

    def stops_for_day(self, day_number: int) -> List[Stop]:
        return stops_for_day(self._stops, day_number)

    def get_stop(self, stop_id: str) -> Stop:
        for stop in self._stops:
            if stop.id == stop_id:
                return stop
        raise KeyError(stop_id)

    def snapshot(self) -> Trip:
        return Trip(id=self.trip_id, title=self.title, stops=self._stops, anchor=self.anchor)

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def subscribe(self, listener: Listener) -> None:
        """Call ``listener(session)`` after every accepted change."""
        self._listeners.append(listener)

    def apply(self, change: Change, reason: str = "") -> Tuple[Stop, ...]:
        """Replace the stop list with ``change(current)``, normalized."""
        updated = tuple(normalize_itinerary(change(self._stops)))
        ids = [stop.id for stop in updated]
        if len(ids) != len(set(ids)):
            raise ValueError(f"Change {reason!r} would duplicate stop ids")

        self._stops = updated
        self.version += 1
        logger.debug(f"Trip {self.trip_id} v{self.version}: {reason or 'update'} ({len(updated)} stops)")

        for listener in self._listeners:
            listener(self)
        return updated

    def replace_all(self, stops: Iterable[Stop]) -> Tuple[Stop, ...]:
        stops = tuple(stops)
        return self.apply(lambda _: stops, "replace")

    def add_stops(self, stops: Iterable[Stop]) -> Tuple[Stop, ...]:
        """Append new stops; each joins the day it names (day 1 if none)."""
        new = tuple(stops)
        return self.apply(lambda current: current + new, f"add {len(new)}")

    def update_stop(self, stop_id: str, **changes) -> Stop:
        """Apply field ``changes`` to one stop.

        Raises:
            KeyError: If no stop has ``stop_id``
        """
        self.get_stop(stop_id)
        updated = self.apply(
            lambda current: [stop.evolve(**changes) if stop.id == stop_id else stop for stop in current],
            f"update {stop_id}",
        )
        return next(stop for stop in updated if stop.id == stop_id)

    def delete_stop(self, stop_id: str) -> None:
        """Remove one stop; its predecessor's travel label no longer applies.

        Raises:
            KeyError: If no stop has ``stop_id``
        """
        self.get_stop(stop_id)

        def without(current):
            remaining = [stop for stop in current if stop.id != stop_id]
            return relabel(remaining, edge_labels(current), clear_unknown=True)

        self.apply(without, f"delete {stop_id}")

    async def optimize(self, optimizer) -> Tuple[Stop, ...]:
        """Run ``optimizer`` on the current stops and merge the result.

        Raises:
            OptimizationError: If the optimizer fails; the list is unchanged
        """
        requested = self._stops
        optimized = await optimizer.optimize(requested)
        if len(requested) < 2:
            return self._stops
        return self.apply(lambda current: merge_optimized(current, optimized), "optimize")


__all__ = ["TripSession", "merge_optimized"]
