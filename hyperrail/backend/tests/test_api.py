"""
tests/test_api.py

FastAPI route tests using TestClient (synchronous).
Injects a LinkedConnectionsRepository backed by an in-memory fake source,
so no upstream server is needed.
"""

from __future__ import annotations

import hashlib
from datetime import datetime, timedelta, timezone
from urllib.parse import quote

import pytest
from fastapi.testclient import TestClient

from hyperrail.backend.api.main import create_app, set_repository
from hyperrail.backend.api.routes.connections import _get_repo
from hyperrail.backend.config import settings
from hyperrail.backend.connections.errors import (
    Cancelled,
    MalformedRecord,
    SourceUnavailable,
)
from hyperrail.backend.connections.models import RawPage
from hyperrail.backend.connections.repository import LinkedConnectionsRepository
from hyperrail.backend.storage.cache import MemoryCache

UTC = timezone.utc


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

class StaticSource:
    """Two records per page, fresh for ten minutes, etag = page start HHMM."""

    def __init__(self) -> None:
        self.calls: list[datetime] = []

    async def fetch_page(self, departure_time: datetime) -> RawPage:
        self.calls.append(departure_time)
        now = datetime.now(UTC)
        data = tuple(
            {
                "@id": f"{departure_time:%H%M}-{i}",
                "departureStop": "http://irail.be/stations/NMBS/008821006",
                "arrivalStop": "http://irail.be/stations/NMBS/008892007",
                "departureTime": (departure_time + timedelta(minutes=i)).isoformat(),
                "arrivalTime": (departure_time + timedelta(minutes=i + 30)).isoformat(),
                "departureDelay": f"{i * 120}S",
                "gtfs:trip": "http://irail.be/vehicle/IC1515",
            }
            for i in range(2)
        )
        return RawPage(
            data=data,
            created_at=now - timedelta(minutes=1),
            expires_at=now + timedelta(minutes=10),
            etag=f"{departure_time:%H%M}",
            previous="prev",
            next="next",
        )


class FailingRepo:
    def __init__(self, exc: Exception) -> None:
        self.exc = exc

    async def get_window(self, *args, **kwargs):
        raise self.exc

    async def get_by_limit(self, *args, **kwargs):
        raise self.exc

    async def get_page(self, *args, **kwargs):
        raise self.exc

    async def get_filtered(self, *args, **kwargs):
        raise self.exc


class RecordingRepo:
    """Records which operation ran and with what deadline, then times out."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, float | None]] = []

    async def _record(self, method: str, timeout: float | None):
        self.calls.append((method, timeout))
        raise Cancelled("deadline")

    async def get_window(self, *args, timeout=None, **kwargs):
        await self._record("get_window", timeout)

    async def get_by_limit(self, *args, timeout=None, **kwargs):
        await self._record("get_by_limit", timeout)

    async def get_page(self, *args, timeout=None, **kwargs):
        await self._record("get_page", timeout)

    async def get_filtered(self, *args, timeout=None, **kwargs):
        await self._record("get_filtered", timeout)


@pytest.fixture
def source():
    return StaticSource()


@pytest.fixture
def client(source):
    repo = LinkedConnectionsRepository(source=source, cache=MemoryCache())
    set_repository(repo)
    app = create_app()
    with TestClient(app) as c:
        yield c, app


def sha(*etags: str) -> str:
    return hashlib.sha256("".join(etags).encode("utf-8")).hexdigest()


T = "2018-01-01T10:23:00Z"


# ---------------------------------------------------------------------------
# Health check
# ---------------------------------------------------------------------------

def test_health(client):
    c, _ = client
    resp = c.get("/health")
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "ok"
    assert "pages_fetched" in body["metrics"]


# ---------------------------------------------------------------------------
# GET /api/connections
# ---------------------------------------------------------------------------

class TestGetConnections:

    def test_window_response(self, client, source):
        c, _ = client
        resp = c.get("/api/connections", params={"departureTime": T, "window": 1200})
        assert resp.status_code == 200
        body = resp.json()
        assert [x["@id"] for x in body["connections"]] == ["1020-0", "1020-1", "1030-0", "1030-1"]
        assert body["connections"][1]["departureDelay"] == 120
        assert body["connections"][0]["gtfs:trip"] == "http://irail.be/vehicle/IC1515"
        assert body["etag"] == sha("1020", "1030")
        assert body["previous"] is None
        assert body["next"] is None
        assert len(source.calls) == 2

    def test_cache_headers(self, client):
        c, _ = client
        resp = c.get("/api/connections", params={"departureTime": T})
        assert resp.headers["etag"] == f'"{sha("1020")}"'
        assert resp.headers["cache-control"].startswith("public, max-age=")
        max_age = int(resp.headers["cache-control"].split("=")[1])
        assert 0 < max_age <= 600
        assert resp.headers["expires"].endswith("GMT")
        assert resp.headers["last-modified"].endswith("GMT")

    def test_limit_wins_over_window(self, client, source):
        c, _ = client
        resp = c.get("/api/connections", params={"departureTime": T, "window": 600, "limit": 3})
        assert resp.status_code == 200
        assert len(resp.json()["connections"]) == 4
        assert len(source.calls) == 2

    def test_if_none_match_returns_304(self, client):
        c, _ = client
        first = c.get("/api/connections", params={"departureTime": T})
        resp = c.get(
            "/api/connections",
            params={"departureTime": T},
            headers={"If-None-Match": first.headers["etag"]},
        )
        assert resp.status_code == 304
        assert resp.content == b""
        assert resp.headers["etag"] == first.headers["etag"]

    def test_stale_if_none_match_returns_body(self, client):
        c, _ = client
        resp = c.get(
            "/api/connections",
            params={"departureTime": T},
            headers={"If-None-Match": '"something-else"'},
        )
        assert resp.status_code == 200

    def test_defaults_to_now(self, client, source):
        c, _ = client
        resp = c.get("/api/connections")
        assert resp.status_code == 200
        assert source.calls[0].minute % 10 == 0

    @pytest.mark.parametrize("params", [{"window": 0}, {"limit": 0}, {"window": 10**9}, {"limit": 5001}])
    def test_invalid_params_rejected(self, client, params):
        c, _ = client
        resp = c.get("/api/connections", params=params)
        assert resp.status_code == 422


# ---------------------------------------------------------------------------
# GET /api/connections/page
# ---------------------------------------------------------------------------

class TestGetConnectionsPage:

    def test_single_page_has_links(self, client):
        c, _ = client
        resp = c.get("/api/connections/page", params={"departureTime": T})
        assert resp.status_code == 200
        body = resp.json()
        assert body["etag"] == "1020"
        assert body["previous"] == "prev"
        assert body["next"] == "next"
        assert resp.headers["etag"] == '"1020"'


# ---------------------------------------------------------------------------
# GET /api/connections/raw
# ---------------------------------------------------------------------------

class TestRawConnections:

    def test_records_passed_through_unchanged(self, client):
        c, _ = client
        resp = c.get("/api/connections/raw", params={"departureTime": T})
        assert resp.status_code == 200
        body = resp.json()
        assert [x["@id"] for x in body] == ["1020-0", "1020-1"]
        assert body[1]["departureDelay"] == "120S"
        assert "arrivalDelay" not in body[0]
        assert resp.headers["etag"] == '"1020"'

    def test_if_none_match_returns_304(self, client):
        c, _ = client
        resp = c.get(
            "/api/connections/raw",
            params={"departureTime": T},
            headers={"If-None-Match": '"1020"'},
        )
        assert resp.status_code == 304


# ---------------------------------------------------------------------------
# GET /api/connections/{key}/{operator}/{value}
# ---------------------------------------------------------------------------

class TestFilteredConnections:

    def test_filter_by_delay(self, client):
        c, _ = client
        resp = c.get("/api/connections/departureDelay/%3E%3D/60", params={"departureTime": T})
        assert resp.status_code == 200
        body = resp.json()
        assert [x["@id"] for x in body] == ["1020-1"]
        assert body[0]["arrivalDelay"] == 0
        assert resp.headers["etag"] == '"1020"'

    def test_filter_by_equality(self, client):
        c, _ = client
        resp = c.get("/api/connections/@id/=/1020-0", params={"departureTime": T})
        assert resp.status_code == 200
        assert [x["@id"] for x in resp.json()] == ["1020-0"]

    def test_filter_by_stop_uri(self, client, source):
        c, _ = client
        stop = quote("http://irail.be/stations/NMBS/008821006", safe="")
        resp = c.get(f"/api/connections/departureStop/=/{stop}", params={"departureTime": T})
        assert resp.status_code == 200
        assert [x["@id"] for x in resp.json()] == ["1020-0", "1020-1"]

    def test_filter_by_trip_uri_no_match(self, client):
        c, _ = client
        trip = quote("http://irail.be/vehicle/IC2020", safe="")
        resp = c.get(f"/api/connections/gtfs:trip/=/{trip}", params={"departureTime": T})
        assert resp.status_code == 200
        assert resp.json() == []

    def test_repeated_filters_fetch_page_once(self, client, source):
        c, _ = client
        c.get("/api/connections/departureDelay/%3E/0", params={"departureTime": T})
        c.get("/api/connections/departureDelay/=/0", params={"departureTime": T})
        assert len(source.calls) == 1

    def test_unknown_operator_is_client_error(self, client, source):
        c, _ = client
        resp = c.get("/api/connections/departureDelay/~=/60", params={"departureTime": T})
        assert resp.status_code == 400
        assert resp.json()["error"] == "InvalidFilterOperator"
        assert source.calls == []


# ---------------------------------------------------------------------------
# Error mapping
# ---------------------------------------------------------------------------

class TestErrorMapping:

    @pytest.mark.parametrize("exc,status", [
        (SourceUnavailable("upstream down"), 503),
        (MalformedRecord("departureStop", "c1"), 502),
        (Cancelled("deadline"), 504),
    ])
    def test_repository_errors(self, client, exc, status):
        c, app = client
        app.dependency_overrides[_get_repo] = lambda: FailingRepo(exc)
        try:
            resp = c.get("/api/connections", params={"departureTime": T, "window": 1200})
            assert resp.status_code == status
            assert resp.json()["error"] == type(exc).__name__
            resp = c.get("/api/connections/page", params={"departureTime": T})
            assert resp.status_code == status
            resp = c.get("/api/connections/raw", params={"departureTime": T})
            assert resp.status_code == status
            resp = c.get("/api/connections/departureDelay/%3E/0", params={"departureTime": T})
            assert resp.status_code == status
        finally:
            app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# Request deadline
# ---------------------------------------------------------------------------

class TestRequestDeadline:

    @pytest.mark.parametrize("path,method", [
        ("/api/connections", "get_window"),
        ("/api/connections/page", "get_page"),
        ("/api/connections/raw", "get_filtered"),
        ("/api/connections/departureDelay/%3E/0", "get_filtered"),
    ])
    def test_every_route_passes_request_timeout(self, client, path, method):
        c, app = client
        repo = RecordingRepo()
        app.dependency_overrides[_get_repo] = lambda: repo
        try:
            resp = c.get(path, params={"departureTime": T})
            assert resp.status_code == 504
            assert repo.calls == [(method, settings.REQUEST_TIMEOUT_SECONDS)]
        finally:
            app.dependency_overrides.clear()
