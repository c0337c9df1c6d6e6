# lazytravel/api/services/import_service.py
"""Service layer for turning notes, screenshots and camera captures into stops."""

import logging
from typing import Awaitable, Callable, List, Optional, Sequence

from lazytravel.api import llm
from lazytravel.api.errors import ExtractionError, OracleError
from lazytravel.api.geocoding import fill_missing_coordinates
from lazytravel.api.models import Stop
from lazytravel.api.services.trip_session import TripSession

logger = logging.getLogger(__name__)


class ImportService:
    """Runs the extraction oracle and adds what it finds to a trip.

    Either every extracted stop is added or, on failure, none is.
    """

    def __init__(
        self,
        session: TripSession,
        *,
        geocode_missing: bool = False,
        extract_text: Optional[Callable[[str], Awaitable[List[Stop]]]] = None,
        extract_image: Optional[Callable[[str], Awaitable[List[Stop]]]] = None,
        identify: Optional[Callable[[str], Awaitable[Optional[Stop]]]] = None,
    ):
        self.session = session
        self.geocode_missing = geocode_missing
        self._extract_text = extract_text or llm.extract_stops_from_text
        self._extract_image = extract_image or llm.extract_stops_from_image
        self._identify = identify or llm.identify_landmark

    async def _prepare(self, stops: Sequence[Stop]) -> List[Stop]:
        if self.geocode_missing:
            return await fill_missing_coordinates(stops)
        return list(stops)

    async def import_text(self, text: str) -> List[Stop]:
        """Extract stops from free text and append them to the trip.

        Raises:
            ExtractionError: If the extraction oracle fails
        """
        if not text or not text.strip():
            return []

        try:
            stops = await self._extract_text(text)
        except OracleError as e:
            logger.error(f"Text analysis failed: {e}")
            raise ExtractionError("Analysis failed.") from e

        stops = await self._prepare(stops)
        self.session.add_stops(stops)
        return stops

    async def import_image(self, base64_image: str) -> List[Stop]:
        """Extract stops from a screenshot and append them to the trip.

        Raises:
            ExtractionError: If the extraction oracle fails
        """
        if not base64_image:
            raise ValueError("No image provided")

        try:
            stops = await self._extract_image(base64_image)
        except OracleError as e:
            logger.error(f"Screenshot analysis failed: {e}")
            raise ExtractionError("Reading failed.") from e

        stops = await self._prepare(stops)
        self.session.add_stops(stops)
        return stops

    async def import_ar_capture(self, base64_image: str) -> Optional[Stop]:
        """Identify a landmark from a camera frame and add it to the last day.

        Returns:
            The added stop, or None if nothing was recognised

        Raises:
            ExtractionError: If the extraction oracle fails
        """
        if not base64_image:
            raise ValueError("No image provided")

        try:
            landmark = await self._identify(base64_image)
        except OracleError as e:
            logger.error(f"AR capture analysis failed: {e}")
            raise ExtractionError("AR error.") from e

        if landmark is None:
            logger.info("AR capture did not match a landmark")
            return None

        (landmark,) = await self._prepare([landmark])

        def append_to_last_day(current):
            day = current[-1].effective_day if current else 1
            return current + (landmark.evolve(day_number=day),)

        updated = self.session.apply(append_to_last_day, f"ar capture {landmark.id}")
        return next(stop for stop in updated if stop.id == landmark.id)


__all__ = ["ImportService"]
