"""LLM helper functions for LazyTravel.

Every external "oracle" the planner relies on is an OpenAI chat completion
that must answer in strict JSON:

* extraction  – free text / screenshot / AR capture → candidate stops
* sequencing  – stop list → optimized order and day grouping
* estimates   – ordered stops → travel-time label per consecutive pair
* weather     – city names → short forecast label

The client is created lazily so that importing the package never needs an
API key; tests patch ``_chat_json`` instead.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Dict, List, Optional, Sequence

import openai
from openai import AsyncOpenAI
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from lazytravel.api.config import get_chat_model, get_openai_api_key, get_optimizer_config
from lazytravel.api.errors import OracleError, OracleResponseError
from lazytravel.api.models import Stop

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# OpenAI client initialisation
# ---------------------------------------------------------------------------

_client: AsyncOpenAI | None = None

_ORACLE_CONFIG = get_optimizer_config()

RETRYABLE_ERRORS = (
    openai.APIConnectionError,
    openai.APITimeoutError,
    openai.RateLimitError,
    openai.InternalServerError,
)


def _get_client() -> AsyncOpenAI:
    """Return a cached AsyncOpenAI instance."""
    global _client
    if _client is None:
        _client = AsyncOpenAI(
            api_key=get_openai_api_key(),
            timeout=_ORACLE_CONFIG["oracle_timeout_seconds"],
        )
        logger.info("Initialized OpenAI client (model=%s)", get_chat_model())
    return _client


@retry(
    retry=retry_if_exception_type(RETRYABLE_ERRORS),
    stop=stop_after_attempt(_ORACLE_CONFIG["oracle_max_attempts"]),
    wait=wait_exponential(multiplier=1, min=1, max=8),
    reraise=True,
)
async def _create_completion(messages: List[Dict[str, Any]], temperature: float) -> str:
    response = await _get_client().chat.completions.create(
        model=get_chat_model(),
        messages=messages,
        temperature=temperature,
        response_format={"type": "json_object"},
    )
    return response.choices[0].message.content or ""


async def _chat_json(system: str, content: Any, temperature: float = 0.2) -> Dict[str, Any]:
    """Run one JSON-mode completion and return the decoded object.

    Raises:
        OracleError: If the call fails after retries
        OracleResponseError: If the reply is not a JSON object
    """
    messages = [
        {"role": "system", "content": system},
        {"role": "user", "content": content},
    ]
    try:
        raw_content = await _create_completion(messages, temperature)
    except (openai.OpenAIError, asyncio.TimeoutError) as exc:
        logger.error("OpenAI call failed: %s", exc)
        raise OracleError(str(exc)) from exc

    return _parse_response(raw_content)


def _parse_response(content: str) -> Dict[str, Any]:
    """Decode the model's raw JSON string into an object."""
    try:
        payload = json.loads(content)
    except json.JSONDecodeError as exc:
        logger.error("Failed to parse LLM response: %s", exc)
        raise OracleResponseError(f"Reply is not valid JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise OracleResponseError(f"Expected a JSON object, got {type(payload).__name__}")
    return payload


def _image_content(base64_image: str, instruction: str) -> List[Dict[str, Any]]:
    return [
        {"type": "text", "text": instruction},
        {"type": "image_url", "image_url": {"url": f"data:image/jpeg;base64,{base64_image}"}},
    ]


# ---------------------------------------------------------------------------
# Prompt construction helpers
# ---------------------------------------------------------------------------

STOP_SCHEMA = (
    '{"placeName": <str>, "category": <str>, "city": <str>, "originalContext": <str|null>, '
    '"rating": <number|null>, "description": <str|null>, "websiteUrl": <str|null>, '
    '"address": <str|null>, "cost": <number|null>, "currency": <str|null>, '
    '"lat": <number|null>, "lng": <number|null>, '
    '"sources": [{"title": <str>, "uri": <str>}]}'
)

EXTRACTION_SYSTEM = (
    "You extract travel stops from user notes. Only list real, verifiable places. "
    f'Reply in strict JSON with the schema: {{"items": [{STOP_SCHEMA}]}}'
)

LANDMARK_SYSTEM = (
    "You identify the landmark or place shown in a photo taken on a trip. "
    f'Reply in strict JSON with the schema: {{"item": {STOP_SCHEMA} | null}}'
)

SEQUENCING_SYSTEM = (
    "You are a travel route planner. Order the activities to minimise backtracking, "
    "keep nearby places together and follow a natural daily rhythm "
    "(breakfast, sightseeing, lunch, museum, dinner). Group 8-10 activities per day. "
    "Reply in strict JSON with the schema: "
    '{"optimizedOrder": [<index>], "dayGrouping": {"<dayNumber>": [<index>]}, '
    '"travelTimeNext": {"<index>": <str>}} '
    "where every index refers to the input list and travelTimeNext is the travel "
    "time from that activity to the next one on the same day, e.g. '12 min walk'."
)

ESTIMATE_SYSTEM = (
    "You estimate travel times between consecutive stops of a day plan. "
    "For N stops return exactly N-1 short labels such as '15 min walk' or "
    "'25 min metro', one per consecutive pair, in order. "
    'Reply in strict JSON with the schema: {"estimates": [<str>]}'
)

WEATHER_SYSTEM = (
    "You give the typical or current weather for cities, very short like '22°C, Sunny'. "
    'Reply in strict JSON with the schema: {"forecasts": [{"city": <str>, "weather": <str>}]}'
)


# ---------------------------------------------------------------------------
# Response parsing
# ---------------------------------------------------------------------------

def parse_extracted_items(items: Any, *, verified: bool = True, context: str = "") -> List[Stop]:
    """Turn extraction items into stops, discarding unusable items whole.

    An item is kept only if it names a place and a city and has either both
    coordinates or none.
    """
    if not isinstance(items, list):
        raise OracleResponseError("Extraction reply has no 'items' list")

    stops: List[Stop] = []
    for item in items:
        if not isinstance(item, dict) or not item.get("placeName") or not item.get("city"):
            logger.warning(f"Discarding extracted item without placeName/city: {item!r}")
            continue
        data = dict(item, id=None, dayNumber=item.get("dayNumber"), isVerified=verified)
        if context and not data.get("originalContext"):
            data["originalContext"] = context
        try:
            stops.append(Stop.from_dict(data))
        except (TypeError, ValueError) as exc:
            logger.warning(f"Discarding extracted item {item.get('placeName')!r}: {exc}")
    return stops


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

async def extract_stops_from_text(text: str) -> List[Stop]:
    """Extract candidate stops from free-text travel notes."""
    logger.debug("Extracting stops from %d characters of text", len(text))
    payload = await _chat_json(EXTRACTION_SYSTEM, f"Extract travel stops. Notes: {text}")
    stops = parse_extracted_items(payload.get("items", []))
    logger.info(f"Extracted {len(stops)} stops from text")
    return stops


async def extract_stops_from_image(base64_image: str) -> List[Stop]:
    """Extract candidate stops from a screenshot of a travel post."""
    payload = await _chat_json(
        EXTRACTION_SYSTEM,
        _image_content(base64_image, "Extract travel stops from this screenshot with names and coordinates."),
    )
    stops = parse_extracted_items(payload.get("items", []))
    logger.info(f"Extracted {len(stops)} stops from screenshot")
    return stops


async def identify_landmark(base64_image: str) -> Optional[Stop]:
    """Identify a single landmark from a camera capture."""
    payload = await _chat_json(
        LANDMARK_SYSTEM,
        _image_content(base64_image, "Identify this landmark. Return details and coordinates."),
    )
    item = payload.get("item")
    if not item:
        return None
    stops = parse_extracted_items([item], context="AR Scan")
    return stops[0] if stops else None


async def request_route_sequence(activities: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Ask the sequencing oracle to order and group ``activities``.

    Returns the raw payload; interpreting it is the optimizer's job.
    """
    logger.debug("Calling sequencing oracle: model=%s activities=%d", get_chat_model(), len(activities))
    return await _chat_json(SEQUENCING_SYSTEM, f"Activities: {json.dumps(activities, ensure_ascii=False)}")


async def estimate_travel_times(stops: Sequence[Stop]) -> List[Optional[str]]:
    """Return one travel label per consecutive pair of ``stops``.

    The result always has ``len(stops) - 1`` entries; pairs the model did not
    cover are ``None``.
    """
    if len(stops) < 2:
        return []
    places = [f"{stop.name}, {stop.city}" if stop.city else stop.name for stop in stops]
    payload = await _chat_json(ESTIMATE_SYSTEM, f"Stops in order: {json.dumps(places, ensure_ascii=False)}")

    estimates = payload.get("estimates")
    if not isinstance(estimates, list):
        raise OracleResponseError("Estimate reply has no 'estimates' list")
    return align_estimates(estimates, len(stops) - 1)


def align_estimates(estimates: Sequence[Any], expected: int) -> List[Optional[str]]:
    """Pad or truncate ``estimates`` to ``expected`` labels; blanks become None."""
    labels = [str(e).strip() if isinstance(e, (str, int, float)) and str(e).strip() else None for e in estimates]
    if len(labels) != expected:
        logger.warning(f"Expected {expected} travel estimates, got {len(labels)}")
    return (labels + [None] * expected)[:expected]


async def get_weather_forecast(cities: Sequence[str]) -> Dict[str, str]:
    """Short weather label per city. Never raises; failures yield ``{}``."""
    if not cities:
        return {}
    try:
        payload = await _chat_json(WEATHER_SYSTEM, f"Cities: {', '.join(cities)}")
    except OracleError as exc:
        logger.error(f"Weather lookup failed: {exc}")
        return {}

    forecasts = payload.get("forecasts") or []
    return {
        f["city"]: f["weather"]
        for f in forecasts
        if isinstance(f, dict) and f.get("city") and f.get("weather")
    }


__all__ = [
    "extract_stops_from_text",
    "extract_stops_from_image",
    "identify_landmark",
    "request_route_sequence",
    "estimate_travel_times",
    "align_estimates",
    "get_weather_forecast",
    "parse_extracted_items",
]
