# lazytravel/api/geocoding.py
from __future__ import annotations

import asyncio
import logging
import time
from functools import lru_cache
from typing import Dict, List, Optional, Sequence

import googlemaps
from googlemaps.exceptions import ApiError, HTTPError, Timeout, TransportError

from lazytravel.api.config import get_google_maps_config
from lazytravel.api.errors import OracleError
from lazytravel.api.models import Stop

logger = logging.getLogger(__name__)

_gmaps: googlemaps.Client | None = None

MAPS_ERRORS = (ApiError, HTTPError, Timeout, TransportError)

# Suffix appended to distance-matrix durations, e.g. "12 mins walk"
MODE_LABELS = {
    "walking": "walk",
    "driving": "drive",
    "transit": "transit",
    "bicycling": "ride",
}


def _get_client() -> googlemaps.Client | None:
    """Return a cached googlemaps.Client instance, or None without a key."""
    global _gmaps
    if _gmaps is None:
        api_key = get_google_maps_config().get("api_key", "")
        if not api_key:
            logger.error("No Google Maps API key found in config")
            return None
        logger.info(f"Initializing Google Maps client with key: {api_key[:6]}...")
        _gmaps = googlemaps.Client(key=api_key)
    return _gmaps


def _query_for(stop: Stop) -> str:
    return f"{stop.name}, {stop.city}" if stop.city else stop.name


@lru_cache(maxsize=1000)
def get_coordinates_for_place(place: str) -> tuple[float, float] | None:
    """Resolve a free-text place name to (lat, lng) or None if not found."""
    client = _get_client()
    if client is None:
        return None

    try:
        logger.debug(f"Geocoding place: {place}")
        results = client.geocode(place, language="en")
    except MAPS_ERRORS as e:
        logger.error(f"Geocoding error for '{place}': {e}")
        return None

    if not results:
        logger.warning(f"No results found for place: {place}")
        return None

    loc = results[0]["geometry"]["location"]
    logger.debug(f"Geocoded {place} to {loc['lat']}, {loc['lng']}")
    return loc["lat"], loc["lng"]


def batch_geocode_stops(stops: Sequence[Stop]) -> Dict[str, tuple[float, float]]:
    """Geocode every stop lacking coordinates.

    Returns:
        Dictionary mapping stop ids to (lat, lng) coordinates
    """
    results = {}
    start_time = time.time()
    pending = [stop for stop in stops if stop.coordinate is None]

    for stop in pending:
        coords = get_coordinates_for_place(_query_for(stop))
        if coords:
            results[stop.id] = coords
        else:
            logger.warning(f"Failed to geocode '{stop.name}'")

    duration = time.time() - start_time
    logger.info(f"Batch geocoded {len(results)}/{len(pending)} stops in {duration:.2f}s")
    return results


async def fill_missing_coordinates(stops: Sequence[Stop]) -> List[Stop]:
    """Return ``stops`` with coordinates attached wherever geocoding succeeds.

    Stops that already have coordinates, or that cannot be resolved, are
    returned unchanged.
    """
    if all(stop.coordinate is not None for stop in stops):
        return list(stops)

    found = await asyncio.to_thread(batch_geocode_stops, stops)
    return [
        stop.evolve(lat=found[stop.id][0], lng=found[stop.id][1]) if stop.id in found else stop
        for stop in stops
    ]


def _distance_matrix_labels(stops: Sequence[Stop], mode: str) -> List[Optional[str]]:
    client = _get_client()
    if client is None:
        raise OracleError("Google Maps client unavailable")

    places = [stop.coordinate or _query_for(stop) for stop in stops]
    try:
        matrix = client.distance_matrix(places[:-1], places[1:], mode=mode, language="en")
    except MAPS_ERRORS as e:
        raise OracleError(f"Distance matrix request failed: {e}") from e

    suffix = MODE_LABELS.get(mode, mode)
    labels: List[Optional[str]] = []
    for i, row in enumerate(matrix.get("rows", [])[: len(stops) - 1]):
        element = row["elements"][i]
        if element.get("status") == "OK":
            labels.append(f"{element['duration']['text']} {suffix}")
        else:
            labels.append(None)
    return (labels + [None] * len(stops))[: len(stops) - 1]


async def estimate_travel_times(stops: Sequence[Stop], mode: str = "walking") -> List[Optional[str]]:
    """Travel labels for consecutive stops from the distance-matrix API."""
    if len(stops) < 2:
        return []
    return await asyncio.to_thread(_distance_matrix_labels, stops, mode)


# Re-export for clean imports elsewhere
__all__ = [
    "get_coordinates_for_place",
    "batch_geocode_stops",
    "fill_missing_coordinates",
    "estimate_travel_times",
]
