# lazytravel/routes/trips.py
"""Trip routes and blueprint configuration."""

import logging

from flask import Blueprint, jsonify, request

from lazytravel.api import llm
from lazytravel.api.config import get_optimizer_config
from lazytravel.api.errors import ExtractionError, OptimizationError
from lazytravel.api.models import Coordinate, Trip
from lazytravel.api.services.clustering import (
    NEARBY_RADIUS_METERS,
    apply_clustering,
    cluster_around_anchor,
    stops_near_anchor,
)
from lazytravel.api.services.import_service import ImportService
from lazytravel.api.services.persistence import PersistenceAdapter, resync_trip
from lazytravel.api.services.reorder import ReorderReconciler
from lazytravel.api.services.route_optimizer import build_optimizer
from lazytravel.api.services.trip_session import TripSession

logger = logging.getLogger(__name__)


class TripNotFound(Exception):
    pass


def _anchor_from_body(trip: Trip):
    data = request.get_json(silent=True) or {}
    anchor = data.get("anchor")
    if anchor:
        try:
            return Coordinate(float(anchor["lat"]), float(anchor["lng"]))
        except (KeyError, TypeError, ValueError) as e:
            raise ValueError("anchor requires numeric lat and lng") from e
    return trip.anchor


def create_trip_blueprint(store: PersistenceAdapter):
    """Create and configure the trip blueprint.

    Args:
        store: Persistence adapter holding the trips

    Returns:
        Configured Flask Blueprint
    """
    trips_bp = Blueprint("trips", __name__, url_prefix="/api")

    async def load_trip(trip_id):
        try:
            return await store.get_trip(trip_id)
        except KeyError as e:
            raise TripNotFound(trip_id) from e

    async def load_session(trip_id):
        return TripSession.from_trip(await load_trip(trip_id))

    async def save(session):
        await resync_trip(store, session.trip_id, session.stops)
        return jsonify({"success": True, "trip": session.snapshot().to_dict()})

    def bad_request(error):
        return jsonify({"error": str(error)}), 400

    @trips_bp.errorhandler(TripNotFound)
    def trip_not_found(error):
        return jsonify({"error": f"Trip not found: {error.args[0]}"}), 404

    @trips_bp.route("/trips/<trip_id>")
    async def get_trip(trip_id):
        """Return a trip with its stops, cities and budget."""
        trip = await load_trip(trip_id)
        return jsonify(trip.to_dict())

    @trips_bp.route("/trips/<trip_id>/optimize", methods=["POST"])
    async def optimize(trip_id):
        """Re-order and day-group every stop of the trip."""
        session = await load_session(trip_id)
        strategy = (request.get_json(silent=True) or {}).get("strategy")
        try:
            optimizer = build_optimizer(strategy, anchor=session.anchor)
        except ValueError as e:
            return bad_request(e)

        try:
            await session.optimize(optimizer)
        except OptimizationError as e:
            logger.error(f"Error optimizing trip {trip_id}: {e}")
            return jsonify({"error": "Optimization failed."}), 502

        return await save(session)

    @trips_bp.route("/trips/<trip_id>/clusters/preview", methods=["POST"])
    async def preview_clusters(trip_id):
        """Distance-tier day buckets around the anchor, without saving."""
        trip = await load_trip(trip_id)
        try:
            anchor = _anchor_from_body(trip)
        except ValueError as e:
            return bad_request(e)
        if anchor is None:
            return jsonify({"error": "Trip anchor (hotel) not set"}), 400

        clusters = cluster_around_anchor(trip.stops, anchor, get_optimizer_config()["cluster_capacity"])
        return jsonify({"success": True, "clusters": [c.to_dict() for c in clusters]})

    @trips_bp.route("/trips/<trip_id>/clusters/apply", methods=["POST"])
    async def apply_clusters(trip_id):
        """Assign days from distance-tier clustering and save."""
        session = await load_session(trip_id)
        try:
            anchor = _anchor_from_body(session.snapshot())
        except ValueError as e:
            return bad_request(e)
        if anchor is None:
            return jsonify({"error": "Trip anchor (hotel) not set"}), 400

        clusters = cluster_around_anchor(session.stops, anchor, get_optimizer_config()["cluster_capacity"])
        session.apply(lambda current: apply_clustering(current, clusters), "apply clustering")
        return await save(session)

    @trips_bp.route("/trips/<trip_id>/nearby")
    async def nearby(trip_id):
        """Stops within ``radius`` meters of the trip anchor."""
        trip = await load_trip(trip_id)
        if trip.anchor is None:
            return jsonify({"error": "Trip anchor (hotel) not set"}), 400

        radius = request.args.get("radius", default=NEARBY_RADIUS_METERS, type=float)
        stops = stops_near_anchor(trip.stops, trip.anchor, radius)
        return jsonify({"success": True, "stops": [s.to_dict() for s in stops]})

    @trips_bp.route("/trips/<trip_id>/days/<int:day_number>/reorder", methods=["POST"])
    async def reorder(trip_id, day_number):
        """Reorder one day and refresh its travel times before saving."""
        data = request.get_json(silent=True) or {}
        stop_ids = data.get("stopIds")
        if not isinstance(stop_ids, list):
            return jsonify({"error": "stopIds list is required"}), 400

        session = await load_session(trip_id)
        reconciler = ReorderReconciler(session)
        try:
            reconciler.reorder(day_number, [str(stop_id) for stop_id in stop_ids])
        except ValueError as e:
            return bad_request(e)

        # The new order is stored even if the travel estimates never arrive.
        await resync_trip(store, trip_id, session.stops)
        await reconciler.wait_idle()
        return await save(session)

    @trips_bp.route("/trips/<trip_id>/import/<source>", methods=["POST"])
    async def import_stops(trip_id, source):
        """Extract stops from text, a screenshot or an AR capture."""
        data = request.get_json(silent=True) or {}
        session = await load_session(trip_id)
        if source in ("image", "ar-scan") and not data.get("image"):
            return jsonify({"error": "No image provided"}), 400
        importer = ImportService(session, geocode_missing=bool(data.get("geocode")))

        try:
            if source == "text":
                added = await importer.import_text(data.get("text", ""))
            elif source == "image":
                added = await importer.import_image(data.get("image", ""))
            elif source == "ar-scan":
                landmark = await importer.import_ar_capture(data.get("image", ""))
                added = [landmark] if landmark else []
            else:
                return jsonify({"error": f"Unknown import source: {source}"}), 404
        except ExtractionError as e:
            return jsonify({"error": str(e)}), 502

        await resync_trip(store, trip_id, session.stops)
        return jsonify({"success": True, "added": [s.to_dict() for s in added]})

    @trips_bp.route("/trips/<trip_id>/weather")
    async def weather(trip_id):
        """Short weather label for each city of the trip."""
        trip = await load_trip(trip_id)
        return jsonify({"forecasts": await llm.get_weather_forecast(trip.cities)})

    @trips_bp.route("/health")
    def health():
        """Health check endpoint."""
        return jsonify({"status": "ok", "service": "lazytravel"})

    return trips_bp


__all__ = ["create_trip_blueprint"]
