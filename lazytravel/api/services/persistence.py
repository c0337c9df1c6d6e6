# lazytravel/api/services/persistence.py
"""Storage contract for trips and the debounced bulk resync on top of it."""

import abc
import asyncio
import logging
import uuid
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

from lazytravel.api.config import get_autosave_config
from lazytravel.api.errors import PersistenceError
from lazytravel.api.models import Coordinate, Stop, Trip, group_by_day

logger = logging.getLogger(__name__)


class PersistenceAdapter(abc.ABC):
    """What the planner needs from the trip database."""

    @abc.abstractmethod
    async def get_trip(self, trip_id: str) -> Trip:
        """Load a trip with its stops in (day, order) order.

        Raises:
            KeyError: If the trip does not exist
        """

    @abc.abstractmethod
    async def list_stops(self, trip_id: str) -> List[Stop]:
        """All stops of the trip, ordered by day then order index."""

    @abc.abstractmethod
    async def list_days(self, trip_id: str) -> List[int]:
        """Day numbers that exist for the trip."""

    @abc.abstractmethod
    async def create_day(self, trip_id: str, day_number: int) -> None:
        """Create an (empty) day."""

    @abc.abstractmethod
    async def replace_day_assignment(self, stop_id: str, day_number: int, order_index: int) -> None:
        """Move a stop to ``day_number`` at ``order_index``."""

    @abc.abstractmethod
    async def save_stop(self, trip_id: str, stop: Stop, order_index: int) -> None:
        """Insert a stop or overwrite all of its fields."""

    @abc.abstractmethod
    async def delete_stop(self, stop_id: str) -> None:
        """Remove a stop."""


class InMemoryTripStore(PersistenceAdapter):
    """Dictionary-backed adapter, used in development and tests."""

    def __init__(self):
        self._trips: Dict[str, Tuple[str, Optional[Coordinate]]] = {}
        self._days: Dict[str, Set[int]] = {}
        # stop id -> (trip id, stop, order index)
        self._stops: Dict[str, Tuple[str, Stop, int]] = {}

    async def create_trip(
        self,
        title: str,
        stops: Iterable[Stop] = (),
        *,
        anchor: Optional[Coordinate] = None,
        trip_id: Optional[str] = None,
    ) -> Trip:
        trip_id = trip_id or uuid.uuid4().hex
        self._trips[trip_id] = (title, anchor)
        self._days[trip_id] = set()
        for day, day_stops in group_by_day(stops):
            await self.create_day(trip_id, day)
            for index, stop in enumerate(day_stops):
                await self.save_stop(trip_id, stop, index)
        logger.info(f"Created trip {trip_id} ({title!r})")
        return await self.get_trip(trip_id)

    async def set_anchor(self, trip_id: str, anchor: Optional[Coordinate]) -> None:
        title, _ = self._require_trip(trip_id)
        self._trips[trip_id] = (title, anchor)

    def _require_trip(self, trip_id: str) -> Tuple[str, Optional[Coordinate]]:
        if trip_id not in self._trips:
            raise KeyError(trip_id)
        return self._trips[trip_id]

    async def get_trip(self, trip_id: str) -> Trip:
        title, anchor = self._require_trip(trip_id)
        stops = await self.list_stops(trip_id)
        return Trip(id=trip_id, title=title, stops=tuple(stops), anchor=anchor)

    async def list_stops(self, trip_id: str) -> List[Stop]:
        self._require_trip(trip_id)
        rows = [(stop.effective_day, index, stop) for owner, stop, index in self._stops.values() if owner == trip_id]
        return [stop for _, _, stop in sorted(rows, key=lambda row: (row[0], row[1]))]

    async def list_days(self, trip_id: str) -> List[int]:
        self._require_trip(trip_id)
        return sorted(self._days[trip_id])

    async def create_day(self, trip_id: str, day_number: int) -> None:
        self._require_trip(trip_id)
        self._days[trip_id].add(day_number)

    async def replace_day_assignment(self, stop_id: str, day_number: int, order_index: int) -> None:
        if stop_id not in self._stops:
            raise PersistenceError(f"Unknown stop {stop_id}")
        trip_id, stop, _ = self._stops[stop_id]
        if day_number not in self._days[trip_id]:
            raise PersistenceError(f"Day {day_number} does not exist for trip {trip_id}")
        self._stops[stop_id] = (trip_id, stop.evolve(day_number=day_number), order_index)

    async def save_stop(self, trip_id: str, stop: Stop, order_index: int) -> None:
        self._require_trip(trip_id)
        if stop.effective_day not in self._days[trip_id]:
            raise PersistenceError(f"Day {stop.effective_day} does not exist for trip {trip_id}")
        self._stops[stop.id] = (trip_id, stop, order_index)

    async def delete_stop(self, stop_id: str) -> None:
        self._stops.pop(stop_id, None)


async def resync_trip(adapter: PersistenceAdapter, trip_id: str, stops: Sequence[Stop]) -> None:
    """Make the stored trip match ``stops``.

    Missing days are created, every stop gets its ``(day, order index)``,
    changed stops are rewritten and stops no longer present are deleted.
    """
    stored_positions = {}
    for day, day_stops in group_by_day(await adapter.list_stops(trip_id)):
        for index, stop in enumerate(day_stops):
            stored_positions[stop.id] = (stop, day, index)
    existing_days = set(await adapter.list_days(trip_id))

    writes = 0
    for day, day_stops in group_by_day(stops):
        if day not in existing_days:
            await adapter.create_day(trip_id, day)
            existing_days.add(day)
        for index, stop in enumerate(day_stops):
            stop = stop if stop.day_number else stop.evolve(day_number=day)
            stored = stored_positions.get(stop.id)
            if stored is None or stored[0].evolve(day_number=day) != stop:
                await adapter.save_stop(trip_id, stop, index)
                writes += 1
            elif stored[1:] != (day, index):
                await adapter.replace_day_assignment(stop.id, day, index)
                writes += 1

    current_ids = {stop.id for stop in stops}
    removed = [stop_id for stop_id in stored_positions if stop_id not in current_ids]
    for stop_id in removed:
        await adapter.delete_stop(stop_id)

    logger.info(f"Resynced trip {trip_id}: {writes} writes, {len(removed)} deletions")


class DebouncedAutoSaver:
    """Coalesces session changes into one resync per quiet period.

    Subscribe an instance to a ``TripSession``; every change restarts the
    debounce timer. A failed save is logged and retried on the next change.
    """

    def __init__(self, adapter: PersistenceAdapter, trip_id: str, delay: Optional[float] = None):
        self.adapter = adapter
        self.trip_id = trip_id
        self.delay = get_autosave_config()["debounce_seconds"] if delay is None else delay
        self._latest: Optional[Tuple[Stop, ...]] = None
        self._timer: Optional[asyncio.Task] = None
        self._saves: Set[asyncio.Task] = set()

    def __call__(self, session) -> None:
        self.schedule(session.stops)

    def schedule(self, stops: Sequence[Stop]) -> None:
        """Save ``stops`` once no newer change arrives within the delay."""
        self._latest = tuple(stops)
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
        self._timer = asyncio.get_running_loop().create_task(self._wait_then_save())

    async def _wait_then_save(self) -> None:
        await asyncio.sleep(self.delay)
        # Saving runs in its own task so a later schedule() cannot cancel it halfway.
        save = asyncio.get_running_loop().create_task(self._save(self._latest))
        self._saves.add(save)
        save.add_done_callback(self._saves.discard)

    async def _save(self, stops: Tuple[Stop, ...]) -> None:
        try:
            await resync_trip(self.adapter, self.trip_id, stops)
        except PersistenceError as exc:
            logger.error(f"Auto-save of trip {self.trip_id} failed, retrying on next change: {exc}")
        except Exception:
            logger.exception(f"Auto-save of trip {self.trip_id} failed, retrying on next change")

    async def flush(self) -> None:
        """Save the latest change now and wait for all saves to finish."""
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
            self._timer = None
            if self._latest is not None:
                await self._save(self._latest)
        if self._saves:
            await asyncio.gather(*list(self._saves))


__all__ = ["PersistenceAdapter", "InMemoryTripStore", "resync_trip", "DebouncedAutoSaver"]
