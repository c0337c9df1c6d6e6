# lazytravel/api/services/route_optimizer.py
"""Global re-ordering and day grouping of a trip's stops.

Three interchangeable strategies decide the order and the day of each stop:

* ``HeuristicStrategy`` – group by city, then chunk each city into days.
* ``OracleStrategy``    – delegate to the sequencing oracle (LLM).
* ``ClusterStrategy``   – bucket by distance tier around the trip anchor.

Which one runs is a deployment choice (``OPTIMIZER_STRATEGY``). The oracle
path fails the whole operation when the oracle fails; it never falls back to
the heuristic.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from lazytravel.api import llm
from lazytravel.api.config import get_optimizer_config
from lazytravel.api.errors import OptimizationError, OracleError, OracleResponseError
from lazytravel.api.models import Coordinate, Stop, normalize_itinerary
from lazytravel.api.services.clustering import apply_clustering, cluster_around_anchor, pack_groups

logger = logging.getLogger(__name__)

HEURISTIC_TRAVEL_LABEL = "~15 min"

Sequencer = Callable[[List[Dict[str, Any]]], Awaitable[Mapping[str, Any]]]


# ---------------------------------------------------------------------------
# Sequencing oracle result
# ---------------------------------------------------------------------------

def _as_index(value: Any, size: int) -> Optional[int]:
    try:
        index = int(value)
    except (TypeError, ValueError):
        return None
    return index if 0 <= index < size else None


def _as_day(value: Any) -> Optional[int]:
    try:
        day = int(value)
    except (TypeError, ValueError):
        return None
    return day if day >= 1 else None


@dataclass(frozen=True)
class SequencingResult:
    """What the sequencing oracle said, with every field optional.

    Indices refer to the request list. Anything the oracle left out means
    "no preference": day 1, no travel label, original relative order.
    """

    optimized_order: Tuple[int, ...] = ()
    day_of: Mapping[int, int] = field(default_factory=dict)
    travel_times: Mapping[int, str] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: Any, stop_ids: Sequence[str]) -> "SequencingResult":
        """Parse a raw oracle payload.

        Accepts ``optimizedOrder`` (list of indices), ``dayGrouping``
        (``{day: [indices]}``), ``travelTimeNext`` (``{index: label}`` or a list
        aligned with the request) and ``optimizedItems``
        (``[{id, dayNumber, travelTimeNext}]``). Invalid entries are skipped.

        Raises:
            OracleResponseError: If the payload or one of its fields has the
                wrong container type
        """
        if not isinstance(payload, Mapping):
            raise OracleResponseError(f"Sequencing reply must be an object, got {type(payload).__name__}")

        size = len(stop_ids)
        order = cls._parse_order(payload.get("optimizedOrder"), size)
        day_of = cls._parse_grouping(payload.get("dayGrouping"), size)
        travel_times = cls._parse_travel_times(payload.get("travelTimeNext"), size)

        items = payload.get("optimizedItems")
        if items is not None:
            if not isinstance(items, list):
                raise OracleResponseError("'optimizedItems' must be a list")
            index_of = {stop_id: i for i, stop_id in enumerate(stop_ids)}
            for item in items:
                if not isinstance(item, Mapping) or item.get("id") not in index_of:
                    continue
                index = index_of[item["id"]]
                day = _as_day(item.get("dayNumber"))
                if day and index not in day_of:
                    day_of[index] = day
                label = item.get("travelTimeNext")
                if isinstance(label, str) and label.strip() and index not in travel_times:
                    travel_times[index] = label.strip()

        return cls(optimized_order=tuple(order), day_of=day_of, travel_times=travel_times)

    @staticmethod
    def _parse_order(raw: Any, size: int) -> List[int]:
        if raw is None:
            return []
        if not isinstance(raw, list):
            raise OracleResponseError("'optimizedOrder' must be a list")
        order: List[int] = []
        for value in raw:
            index = _as_index(value, size)
            if index is None or index in order:
                logger.warning(f"Ignoring invalid or repeated index in optimizedOrder: {value!r}")
                continue
            order.append(index)
        return order

    @staticmethod
    def _parse_grouping(raw: Any, size: int) -> Dict[int, int]:
        if raw is None:
            return {}
        if not isinstance(raw, Mapping):
            raise OracleResponseError("'dayGrouping' must be an object")

        days = []
        for key, indices in raw.items():
            day = _as_day(key)
            if day is None or not isinstance(indices, list):
                logger.warning(f"Ignoring invalid dayGrouping entry for day {key!r}")
                continue
            days.append((day, indices))

        day_of: Dict[int, int] = {}
        for day, indices in sorted(days, key=lambda pair: pair[0]):
            for value in indices:
                index = _as_index(value, size)
                if index is None or index in day_of:
                    logger.warning(f"Ignoring invalid or repeated index {value!r} for day {day}")
                    continue
                day_of[index] = day
        return day_of

    @staticmethod
    def _parse_travel_times(raw: Any, size: int) -> Dict[int, str]:
        if raw is None:
            return {}
        if isinstance(raw, list):
            raw = dict(enumerate(raw))
        if not isinstance(raw, Mapping):
            raise OracleResponseError("'travelTimeNext' must be an object or a list")

        travel_times: Dict[int, str] = {}
        for key, label in raw.items():
            index = _as_index(key, size)
            if index is not None and isinstance(label, str) and label.strip():
                travel_times[index] = label.strip()
        return travel_times

    def day_for(self, index: int) -> int:
        return self.day_of.get(index, 1)

    def travel_time_for(self, index: int) -> Optional[str]:
        return self.travel_times.get(index)

    def visiting_order(self, size: int) -> List[int]:
        """Indices in suggested order; unmentioned ones follow in input order."""
        listed = set(self.optimized_order)
        return list(self.optimized_order) + [i for i in range(size) if i not in listed]


def build_sequencing_request(stops: Sequence[Stop]) -> List[Dict[str, Any]]:
    """Serialize stops for the sequencing oracle."""
    request = []
    for index, stop in enumerate(stops):
        entry: Dict[str, Any] = {"index": index, "id": stop.id, "placeName": stop.name, "city": stop.city}
        if stop.coordinate is not None:
            entry["lat"], entry["lng"] = stop.coordinate
        request.append(entry)
    return request


def apply_sequencing(stops: Sequence[Stop], result: SequencingResult) -> List[Stop]:
    """Assign days and travel labels from ``result`` and sort by day.

    The sort is stable, so stops sharing a day keep the oracle's suggested
    order, or the input order where the oracle gave none.
    """
    arranged = [
        stops[i].evolve(day_number=result.day_for(i), travel_time_next=result.travel_time_for(i))
        for i in result.visiting_order(len(stops))
    ]
    return normalize_itinerary(arranged)


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------

class HeuristicStrategy:
    """City grouping plus fixed-capacity day chunks; no external call."""

    name = "heuristic"

    def __init__(self, capacity: int = 8, travel_label: str = HEURISTIC_TRAVEL_LABEL):
        if capacity < 1:
            raise ValueError(f"Day capacity must be positive, got {capacity}")
        self.capacity = capacity
        self.travel_label = travel_label

    async def arrange(self, stops: Sequence[Stop]) -> List[Stop]:
        by_city: Dict[str, List[Stop]] = {}
        for stop in stops:
            by_city.setdefault(stop.city, []).append(stop)

        arranged = []
        for day, chunk in pack_groups(list(by_city.values()), self.capacity):
            last = len(chunk) - 1
            for i, stop in enumerate(chunk):
                arranged.append(
                    stop.evolve(day_number=day, travel_time_next=self.travel_label if i < last else None)
                )
        return arranged


class OracleStrategy:
    """Delegate ordering and grouping to the sequencing oracle."""

    name = "oracle"

    def __init__(self, sequencer: Optional[Sequencer] = None):
        self._sequencer = sequencer or llm.request_route_sequence

    async def arrange(self, stops: Sequence[Stop]) -> List[Stop]:
        try:
            payload = await self._sequencer(build_sequencing_request(stops))
            result = SequencingResult.from_payload(payload, [stop.id for stop in stops])
        except OracleError as exc:
            logger.error(f"Sequencing oracle failed: {exc}")
            raise OptimizationError(f"Route sequencing failed: {exc}") from exc

        missing = len(stops) - len(result.day_of)
        if missing:
            logger.warning(f"Sequencing oracle gave no day for {missing} of {len(stops)} stops; using day 1")
        return apply_sequencing(stops, result)


class ClusterStrategy:
    """Distance-tier clustering around the trip anchor."""

    name = "cluster"

    def __init__(self, anchor: Optional[Coordinate], capacity: int = 10):
        if capacity < 1:
            raise ValueError(f"Day capacity must be positive, got {capacity}")
        if anchor is None:
            logger.warning("Cluster strategy without an anchor; every stop counts as walking distance")
        self.anchor = anchor
        self.capacity = capacity

    async def arrange(self, stops: Sequence[Stop]) -> List[Stop]:
        clusters = cluster_around_anchor(stops, self.anchor, self.capacity)
        return apply_clustering(stops, clusters)


# ---------------------------------------------------------------------------
# Optimizer
# ---------------------------------------------------------------------------

class RouteOptimizer:
    """Reorders and day-groups a full stop set with one strategy."""

    def __init__(self, strategy):
        self.strategy = strategy

    async def optimize(self, stops: Sequence[Stop]) -> List[Stop]:
        """Return the stops re-ordered and re-grouped into days.

        The output holds exactly the input stops (by id) with updated
        ``day_number`` and ``travel_time_next``. Fewer than two stops are
        returned unchanged.

        Raises:
            OptimizationError: If the strategy's external call fails
        """
        stops = list(stops)
        if len(stops) < 2:
            return stops

        arranged = normalize_itinerary(await self.strategy.arrange(stops))

        if sorted(stop.id for stop in arranged) != sorted(stop.id for stop in stops):
            raise OptimizationError(f"{self.strategy.name} strategy changed the stop set")

        logger.info(
            f"Optimized {len(stops)} stops into {len({s.effective_day for s in arranged})} days "
            f"({self.strategy.name})"
        )
        return arranged


def build_optimizer(
    strategy: Optional[str] = None,
    *,
    anchor: Optional[Coordinate] = None,
    sequencer: Optional[Sequencer] = None,
) -> RouteOptimizer:
    """Create the optimizer selected by ``strategy`` or the configuration.

    Raises:
        ValueError: If the strategy name is unknown
    """
    config = get_optimizer_config()
    name = (strategy or config["strategy"]).lower()

    if name == "heuristic":
        return RouteOptimizer(HeuristicStrategy(config["heuristic_capacity"]))
    if name == "oracle":
        return RouteOptimizer(OracleStrategy(sequencer))
    if name == "cluster":
        return RouteOptimizer(ClusterStrategy(anchor, config["cluster_capacity"]))
    raise ValueError(f"Unknown optimizer strategy: {name}")


__all__ = [
    "HEURISTIC_TRAVEL_LABEL",
    "SequencingResult",
    "build_sequencing_request",
    "apply_sequencing",
    "HeuristicStrategy",
    "OracleStrategy",
    "ClusterStrategy",
    "RouteOptimizer",
    "build_optimizer",
]
