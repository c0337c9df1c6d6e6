"""Tests for the trip JSON routes."""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from lazytravel.api import llm
from lazytravel.api.errors import OracleError
from lazytravel.api.models import Coordinate
from lazytravel.api.services.persistence import InMemoryTripStore
from main import create_app

from helpers import PARIS, make_stop, north_of


@pytest.fixture
def store():
    store = InMemoryTripStore()
    near_lat, _ = north_of(PARIS, 500)
    far_lat, _ = north_of(PARIS, 30000)
    asyncio.run(store.create_trip(
        "Paris weekend",
        [
            make_stop("louvre", 1, travel="louvre-orsay", lat=near_lat, lng=PARIS[1], cost=22),
            make_stop("orsay", 1, lat=near_lat, lng=PARIS[1]),
            make_stop("versailles", 2, city="Versailles", lat=far_lat, lng=PARIS[1]),
        ],
        trip_id="t1",
    ))
    return store


@pytest.fixture
def client(store):
    app = create_app(store)
    app.config["TESTING"] = True
    return app.test_client()


def stored(store):
    return asyncio.run(store.get_trip("t1"))


class TestTripRoutes:

    def test_health(self, client):
        assert client.get("/api/health").get_json()["status"] == "ok"

    def test_get_trip(self, client):
        data = client.get("/api/trips/t1").get_json()

        assert [s["id"] for s in data["stops"]] == ["louvre", "orsay", "versailles"]
        assert data["cities"] == ["Paris", "Versailles"]
        assert data["totalBudget"] == 22

    def test_unknown_trip(self, client):
        assert client.get("/api/trips/nope").status_code == 404

    def test_optimize_with_heuristic(self, client, store):
        response = client.post("/api/trips/t1/optimize", json={"strategy": "heuristic"})

        assert response.status_code == 200
        days = {s.id: s.day_number for s in stored(store).stops}
        assert days == {"louvre": 1, "orsay": 1, "versailles": 2}

    def test_optimize_failure_keeps_trip(self, client, store):
        before = stored(store).stops
        with patch.object(llm, "request_route_sequence", AsyncMock(side_effect=OracleError("down"))):
            response = client.post("/api/trips/t1/optimize", json={"strategy": "oracle"})

        assert response.status_code == 502
        assert response.get_json() == {"error": "Optimization failed."}
        assert stored(store).stops == before

    def test_unknown_strategy(self, client):
        response = client.post("/api/trips/t1/optimize", json={"strategy": "genetic"})
        assert response.status_code == 400

    def test_reorder_updates_travel_times(self, client, store):
        estimator = AsyncMock(return_value=["9 mins walk"])
        with patch("lazytravel.api.services.reorder.default_estimator", return_value=estimator):
            response = client.post("/api/trips/t1/days/1/reorder", json={"stopIds": ["orsay", "louvre"]})

        assert response.status_code == 200
        day_one = [(s.id, s.travel_time_next) for s in stored(store).stops if s.day_number == 1]
        assert day_one == [("orsay", "9 mins walk"), ("louvre", None)]

    def test_reorder_is_saved_when_estimates_fail(self, client, store):
        estimator = AsyncMock(side_effect=ValueError("OPENAI_API_KEY not set"))
        with patch("lazytravel.api.services.reorder.default_estimator", return_value=estimator):
            response = client.post("/api/trips/t1/days/1/reorder", json={"stopIds": ["orsay", "louvre"]})

        assert response.status_code == 200
        day_one = [(s.id, s.travel_time_next) for s in stored(store).stops if s.day_number == 1]
        assert day_one == [("orsay", None), ("louvre", None)]

    def test_configuration_errors_are_server_errors(self, client):
        client.application.config["PROPAGATE_EXCEPTIONS"] = False
        with patch.object(llm, "request_route_sequence", AsyncMock(side_effect=ValueError("OPENAI_API_KEY not set"))):
            response = client.post("/api/trips/t1/optimize", json={"strategy": "oracle"})

        assert response.status_code == 500

    def test_reorder_rejects_wrong_ids(self, client):
        response = client.post("/api/trips/t1/days/1/reorder", json={"stopIds": ["orsay"]})
        assert response.status_code == 400

        response = client.post("/api/trips/t1/days/1/reorder", json={})
        assert response.status_code == 400


class TestClusterRoutes:

    def test_preview_uses_anchor_from_body(self, client, store):
        body = {"anchor": {"lat": PARIS[0], "lng": PARIS[1]}}
        data = client.post("/api/trips/t1/clusters/preview", json=body).get_json()

        assert [(c["dayNumber"], c["clusterType"]) for c in data["clusters"]] == [(1, "walking"), (2, "day_trip")]
        assert stored(store).stops[2].day_number == 2

    def test_apply_uses_trip_anchor(self, client, store):
        asyncio.run(store.set_anchor("t1", Coordinate(*north_of(PARIS, 30000))))

        assert client.post("/api/trips/t1/clusters/apply").status_code == 200

        days = {s.id: s.day_number for s in stored(store).stops}
        assert days == {"versailles": 1, "louvre": 2, "orsay": 2}

    def test_missing_anchor(self, client):
        assert client.post("/api/trips/t1/clusters/preview").status_code == 400
        assert client.get("/api/trips/t1/nearby").status_code == 400

    def test_bad_anchor(self, client):
        response = client.post("/api/trips/t1/clusters/preview", json={"anchor": {"lat": "x"}})
        assert response.status_code == 400

    def test_nearby(self, client, store):
        asyncio.run(store.set_anchor("t1", Coordinate(*PARIS)))

        data = client.get("/api/trips/t1/nearby?radius=1000").get_json()

        assert [s["id"] for s in data["stops"]] == ["louvre", "orsay"]


class TestImportRoutes:

    def test_text_import(self, client, store):
        with patch.object(llm, "extract_stops_from_text", AsyncMock(return_value=[make_stop("pompidou")])):
            response = client.post("/api/trips/t1/import/text", json={"text": "Centre Pompidou"})

        assert [s["id"] for s in response.get_json()["added"]] == ["pompidou"]
        assert "pompidou" in [s.id for s in stored(store).stops]

    def test_extraction_failure(self, client, store):
        with patch.object(llm, "extract_stops_from_image", AsyncMock(side_effect=OracleError("quota"))):
            response = client.post("/api/trips/t1/import/image", json={"image": "aGVsbG8="})

        assert response.status_code == 502
        assert response.get_json() == {"error": "Reading failed."}
        assert len(stored(store).stops) == 3

    def test_unknown_source(self, client):
        assert client.post("/api/trips/t1/import/fax", json={}).status_code == 404

    def test_image_required(self, client):
        assert client.post("/api/trips/t1/import/ar-scan", json={}).status_code == 400

    def test_weather(self, client):
        with patch.object(llm, "get_weather_forecast", AsyncMock(return_value={"Paris": "18°C, Cloudy"})) as forecast:
            data = client.get("/api/trips/t1/weather").get_json()

        assert data == {"forecasts": {"Paris": "18°C, Cloudy"}}
        forecast.assert_awaited_once_with(["Paris", "Versailles"])
