"""Shared data structures for itinerary planning.

Every stop is an immutable value: edits, reorders and optimizations build
new ``Stop`` instances with ``Stop.evolve`` instead of mutating a shared one,
so an in-flight recompute can never observe a half-updated list.

The canonical itinerary is a flat sequence of stops kept sorted by day
number; within a day the list position is the stop's order index.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from enum import Enum
from itertools import groupby
from typing import Any, Dict, Iterable, List, NamedTuple, Optional, Sequence, Tuple


class Coordinate(NamedTuple):
    """A (latitude, longitude) pair in decimal degrees."""

    lat: float
    lng: float


class Tier(str, Enum):
    """Distance tier of a stop relative to the trip anchor."""

    WALKING = "walking"
    TRANSIT = "transit"
    DAY_TRIP = "day_trip"


@dataclass(frozen=True)
class TripSource:
    """A web page the extraction oracle used to verify a stop."""

    title: str
    uri: str

    def to_dict(self) -> dict:
        return {"title": self.title, "uri": self.uri}


@dataclass(frozen=True)
class Stop:
    """A single planned visit on a trip itinerary."""

    id: str
    name: str  # e.g. "Eiffel Tower"
    category: str = ""  # free text, only used to pick an icon
    city: str = ""
    lat: Optional[float] = None
    lng: Optional[float] = None
    cost: Optional[float] = None  # local currency
    currency: Optional[str] = None
    rating: Optional[float] = None
    description: Optional[str] = None
    address: Optional[str] = None
    website_url: Optional[str] = None
    image_url: Optional[str] = None
    original_context: str = ""
    is_verified: bool = False
    day_number: Optional[int] = None  # 1-based; None means unassigned
    travel_time_next: Optional[str] = None  # edge to the next stop of the day
    sources: Tuple[TripSource, ...] = field(default=())

    def __post_init__(self):
        if (self.lat is None) != (self.lng is None):
            raise ValueError(f"Stop {self.id!r} must have both lat and lng or neither")
        if self.cost is not None and self.cost < 0:
            raise ValueError(f"Stop {self.id!r} has a negative cost")
        if self.day_number is not None and self.day_number < 1:
            raise ValueError(f"Stop {self.id!r} has a non-positive day number")

    @property
    def coordinate(self) -> Optional[Coordinate]:
        if self.lat is None:
            return None
        return Coordinate(self.lat, self.lng)

    @property
    def effective_day(self) -> int:
        """Day number with the unassigned case folded into day 1."""
        return self.day_number or 1

    def evolve(self, **changes: Any) -> "Stop":
        """Return a copy of this stop with ``changes`` applied."""
        return replace(self, **changes)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "placeName": self.name,
            "category": self.category,
            "city": self.city,
            "lat": self.lat,
            "lng": self.lng,
            "cost": self.cost,
            "currency": self.currency,
            "rating": self.rating,
            "description": self.description,
            "address": self.address,
            "websiteUrl": self.website_url,
            "imageUrl": self.image_url,
            "originalContext": self.original_context,
            "isVerified": self.is_verified,
            "dayNumber": self.day_number,
            "travelTimeNext": self.travel_time_next,
            "sources": [source.to_dict() for source in self.sources],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Stop":
        """Build a stop from the camelCase wire shape.

        Raises:
            ValueError: If the name is missing or a field has an invalid value
        """
        name = data.get("placeName") or data.get("name")
        if not name:
            raise ValueError("Stop requires a placeName")

        day_number = data.get("dayNumber")
        sources = tuple(
            TripSource(title=s.get("title") or "Source", uri=s["uri"])
            for s in data.get("sources") or ()
            if isinstance(s, dict) and s.get("uri")
        )
        return cls(
            id=str(data.get("id") or uuid.uuid4().hex),
            name=str(name),
            category=str(data.get("category") or ""),
            city=str(data.get("city") or ""),
            lat=_optional_float(data.get("lat")),
            lng=_optional_float(data.get("lng")),
            cost=_optional_float(data.get("cost")),
            currency=data.get("currency") or None,
            rating=_optional_float(data.get("rating")),
            description=data.get("description") or None,
            address=data.get("address") or None,
            website_url=data.get("websiteUrl") or None,
            image_url=data.get("imageUrl") or None,
            original_context=str(data.get("originalContext") or ""),
            is_verified=bool(data.get("isVerified", False)),
            day_number=int(day_number) if day_number not in (None, "") else None,
            travel_time_next=data.get("travelTimeNext") or None,
            sources=sources,
        )


def _optional_float(value: Any) -> Optional[float]:
    # LLM output sometimes carries the literal string "null"
    if value is None or value == "" or value == "null":
        return None
    return float(value)


@dataclass(frozen=True)
class ClusterResult:
    """One day bucket produced by anchor-distance clustering."""

    day_number: int
    stops: Tuple[Stop, ...]
    cluster_type: Tier

    def to_dict(self) -> dict:
        return {
            "dayNumber": self.day_number,
            "clusterType": self.cluster_type.value,
            "stops": [stop.to_dict() for stop in self.stops],
        }


@dataclass(frozen=True)
class Trip:
    """The persisted aggregate a set of stops belongs to."""

    id: str
    title: str = ""
    stops: Tuple[Stop, ...] = ()
    anchor: Optional[Coordinate] = None

    @property
    def cities(self) -> List[str]:
        return distinct_cities(self.stops)

    @property
    def total_budget(self) -> Optional[float]:
        return total_budget(self.stops)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "cities": self.cities,
            "totalBudget": self.total_budget,
            "anchor": {"lat": self.anchor.lat, "lng": self.anchor.lng} if self.anchor else None,
            "stops": [stop.to_dict() for stop in self.stops],
        }


# ---------------------------------------------------------------------------
# Day-group helpers
# ---------------------------------------------------------------------------

def distinct_cities(stops: Iterable[Stop]) -> List[str]:
    """Cities in first-seen order."""
    return list(dict.fromkeys(stop.city for stop in stops if stop.city))


def total_budget(stops: Iterable[Stop]) -> Optional[float]:
    total = sum(stop.cost or 0 for stop in stops)
    return total if total > 0 else None


def sort_by_day(stops: Iterable[Stop]) -> List[Stop]:
    """Stable sort by day number; order inside a day is preserved."""
    return sorted(stops, key=lambda stop: stop.effective_day)


def group_by_day(stops: Iterable[Stop]) -> List[Tuple[int, List[Stop]]]:
    """Group stops into ``(day_number, stops)`` pairs, ascending by day."""
    return [(day, list(group)) for day, group in groupby(sort_by_day(stops), key=lambda s: s.effective_day)]


def stops_for_day(stops: Iterable[Stop], day_number: int) -> List[Stop]:
    return [stop for stop in stops if stop.effective_day == day_number]


def normalize_itinerary(stops: Iterable[Stop]) -> List[Stop]:
    """Sort by day and clear the travel label on the last stop of each day."""
    result: List[Stop] = []
    for _, day_stops in group_by_day(stops):
        *head, last = day_stops
        result.extend(head)
        result.append(last.evolve(travel_time_next=None) if last.travel_time_next else last)
    return result


def splice_day(stops: Sequence[Stop], day_number: int, day_stops: Sequence[Stop]) -> List[Stop]:
    """Replace the stops of ``day_number`` with ``day_stops``.

    Stops of every other day keep their relative order; the new group is
    placed by day number, not by any remembered list position.
    """
    others = [stop for stop in stops if stop.effective_day != day_number]
    moved = [
        stop if stop.day_number == day_number else stop.evolve(day_number=day_number)
        for stop in day_stops
    ]
    return normalize_itinerary(others + moved)


Edge = Tuple[str, str]


def edge_labels(stops: Iterable[Stop]) -> Dict[Edge, str]:
    """Travel labels keyed by ``(from_id, to_id)`` for consecutive stops of a day."""
    labels: Dict[Edge, str] = {}
    for _, day_stops in group_by_day(stops):
        for a, b in zip(day_stops, day_stops[1:]):
            if a.travel_time_next:
                labels[(a.id, b.id)] = a.travel_time_next
    return labels


def relabel_day(day_stops: Sequence[Stop], labels: Dict[Edge, str], *, clear_unknown: bool) -> List[Stop]:
    """Attach ``labels`` to the edges of one day that still exist.

    A label describes the edge to the next stop, so it is only valid while
    that edge is present. Edges without a label keep theirs unless
    ``clear_unknown`` is set. The last stop never carries a label.
    """
    result: List[Stop] = []
    for i, stop in enumerate(day_stops):
        if i == len(day_stops) - 1:
            label = None
        else:
            edge = (stop.id, day_stops[i + 1].id)
            label = labels.get(edge, None if clear_unknown else stop.travel_time_next)
        result.append(stop if label == stop.travel_time_next else stop.evolve(travel_time_next=label))
    return result


def relabel(stops: Iterable[Stop], labels: Dict[Edge, str], *, clear_unknown: bool) -> List[Stop]:
    """``relabel_day`` applied to every day of ``stops``."""
    result: List[Stop] = []
    for _, day_stops in group_by_day(stops):
        result.extend(relabel_day(day_stops, labels, clear_unknown=clear_unknown))
    return result


# A trip itinerary grouped for display: one list per day.
Itinerary = List[Tuple[int, List[Stop]]]

__all__ = [
    "Coordinate",
    "Tier",
    "TripSource",
    "Stop",
    "ClusterResult",
    "Trip",
    "Itinerary",
    "distinct_cities",
    "total_budget",
    "sort_by_day",
    "group_by_day",
    "stops_for_day",
    "normalize_itinerary",
    "splice_day",
    "edge_labels",
    "relabel_day",
    "relabel",
]
