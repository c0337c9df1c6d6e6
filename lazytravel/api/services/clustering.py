# lazytravel/api/services/clustering.py
"""Distance classification and day packing around a trip anchor."""

import logging
from typing import List, Optional, Sequence, Tuple

from geopy.distance import great_circle

from lazytravel.api.models import ClusterResult, Coordinate, Stop, Tier

logger = logging.getLogger(__name__)

WALKING_LIMIT_METERS = 2000
TRANSIT_LIMIT_METERS = 10000
DEFAULT_CLUSTER_CAPACITY = 10
NEARBY_RADIUS_METERS = 2000

TIER_ORDER = (Tier.WALKING, Tier.TRANSIT, Tier.DAY_TRIP)


def distance_from_anchor(stop: Stop, anchor: Optional[Coordinate]) -> float:
    """Great-circle distance in meters, 0 when either point is unknown."""
    if anchor is None or stop.coordinate is None:
        return 0.0
    return great_circle(anchor, stop.coordinate).meters


def tier_for_distance(distance_meters: float) -> Tier:
    """Bucket a distance into its tier.

    < 2 km walking, 2-10 km transit, >= 10 km day trip.
    """
    if distance_meters < WALKING_LIMIT_METERS:
        return Tier.WALKING
    if distance_meters < TRANSIT_LIMIT_METERS:
        return Tier.TRANSIT
    return Tier.DAY_TRIP


def classify(stop: Stop, anchor: Optional[Coordinate]) -> Tier:
    """Classify ``stop`` by its distance to ``anchor``.

    Stops without coordinates (or trips without an anchor) count as distance
    0 and land in the walking tier rather than being pushed to the end.
    """
    return tier_for_distance(distance_from_anchor(stop, anchor))


def pack(stops: Sequence[Stop], capacity: int, start_day: int = 1) -> List[Tuple[int, List[Stop]]]:
    """Slice ``stops`` into consecutive days of at most ``capacity`` stops.

    Args:
        stops: Stops in the order they should be visited
        capacity: Maximum stops per day
        start_day: Day number given to the first chunk

    Returns:
        ``(day_number, stops)`` pairs; empty input gives an empty list

    Raises:
        ValueError: If capacity or start_day is not positive
    """
    if capacity < 1:
        raise ValueError(f"Day capacity must be positive, got {capacity}")
    if start_day < 1:
        raise ValueError(f"Day numbers start at 1, got {start_day}")

    return [
        (start_day + offset, list(stops[i:i + capacity]))
        for offset, i in enumerate(range(0, len(stops), capacity))
    ]


def pack_groups(groups: Sequence[Sequence[Stop]], capacity: int) -> List[Tuple[int, List[Stop]]]:
    """Pack several groups back to back; groups never share a day."""
    days: List[Tuple[int, List[Stop]]] = []
    for group in groups:
        days.extend(pack(group, capacity, start_day=len(days) + 1))
    return days


def cluster_around_anchor(
    stops: Sequence[Stop],
    anchor: Optional[Coordinate],
    capacity: int = DEFAULT_CLUSTER_CAPACITY,
) -> List[ClusterResult]:
    """Group stops into days by distance tier around ``anchor``.

    Stops are ordered nearest first, bucketed into walking / transit /
    day-trip tiers, and each tier is packed into its own run of days.
    """
    if not stops:
        return []

    by_distance = sorted(stops, key=lambda stop: distance_from_anchor(stop, anchor))
    tiers = {tier: [] for tier in TIER_ORDER}
    for stop in by_distance:
        tiers[classify(stop, anchor)].append(stop)

    clusters: List[ClusterResult] = []
    day_number = 1
    for tier in TIER_ORDER:
        for day, day_stops in pack(tiers[tier], capacity, start_day=day_number):
            clusters.append(ClusterResult(day_number=day, stops=tuple(day_stops), cluster_type=tier))
            day_number = day + 1

    logger.info(
        "Clustered %d stops into %d days (walking=%d, transit=%d, day_trip=%d)",
        len(stops),
        len(clusters),
        len(tiers[Tier.WALKING]),
        len(tiers[Tier.TRANSIT]),
        len(tiers[Tier.DAY_TRIP]),
    )
    return clusters


def apply_clustering(stops: Sequence[Stop], clusters: Sequence[ClusterResult]) -> List[Stop]:
    """Write cluster day numbers onto the stops, in cluster order.

    Travel labels are dropped because every day gets a new sequence. Stops
    that no cluster mentions keep their current assignment.
    """
    assigned = {}
    ordered: List[Stop] = []
    for cluster in clusters:
        for stop in cluster.stops:
            assigned[stop.id] = cluster.day_number
            ordered.append(stop.evolve(day_number=cluster.day_number, travel_time_next=None))

    untouched = [stop for stop in stops if stop.id not in assigned]
    current_ids = {stop.id for stop in stops}
    return untouched + [stop for stop in ordered if stop.id in current_ids]


def stops_near_anchor(
    stops: Sequence[Stop],
    anchor: Coordinate,
    radius_meters: float = NEARBY_RADIUS_METERS,
) -> List[Stop]:
    """Located stops within ``radius_meters`` of the anchor, nearest first."""
    located = [(distance_from_anchor(stop, anchor), stop) for stop in stops if stop.coordinate]
    return [stop for distance, stop in sorted(located, key=lambda pair: pair[0]) if distance <= radius_meters]


__all__ = [
    "WALKING_LIMIT_METERS",
    "TRANSIT_LIMIT_METERS",
    "DEFAULT_CLUSTER_CAPACITY",
    "distance_from_anchor",
    "tier_for_distance",
    "classify",
    "pack",
    "pack_groups",
    "cluster_around_anchor",
    "apply_clustering",
    "stops_near_anchor",
]
