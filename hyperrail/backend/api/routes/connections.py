"""
api/routes/connections.py

GET /api/connections                          — window (or limit) page
GET /api/connections/page                     — single upstream page with links
GET /api/connections/raw                      — unfiltered upstream records
GET /api/connections/{key}/{operator}/{value} — raw records matching a predicate

All routes accept ?departureTime=<ISO-8601> (default: now) and answer with
Expires / Cache-Control / Last-Modified / ETag headers. A matching
If-None-Match gets an empty 304.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated, Any

from fastapi import APIRouter, Depends, Header, Query, Response
from fastapi.responses import JSONResponse

from ...config import settings
from ...connections.models import Page, RawPage
from ...connections.repository import LinkedConnectionsRepository
from ...connections.time_window import PAGE_SIZE_SECONDS
from ..serializers import ConnectionsPageResponse, cache_headers, etag_matches

router = APIRouter(prefix="/connections", tags=["connections"])


def _get_repo() -> LinkedConnectionsRepository:
    """FastAPI dependency — replaced in tests via app.dependency_overrides."""
    from ..main import get_repository
    return get_repository()


def _departure_time(value: datetime | None) -> datetime:
    if value is None:
        return datetime.now(timezone.utc)
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _not_modified(headers: dict[str, str]) -> Response:
    return Response(status_code=304, headers=headers)


def _page_response(page: Page, if_none_match: str | None) -> Response:
    headers = cache_headers(page.created_at, page.expires_at, page.etag)
    if etag_matches(if_none_match, page.etag):
        return _not_modified(headers)
    body = ConnectionsPageResponse.from_page(page).model_dump(mode="json", by_alias=True)
    return JSONResponse(body, headers=headers)


def _raw_response(raw: RawPage, if_none_match: str | None) -> Response:
    headers = cache_headers(raw.created_at, raw.expires_at, raw.etag)
    if etag_matches(if_none_match, raw.etag):
        return _not_modified(headers)
    return JSONResponse([dict(entry) for entry in raw.data], headers=headers)


@router.get("", response_model=ConnectionsPageResponse)
async def get_connections(
    departure_time: Annotated[datetime | None, Query(alias="departureTime")] = None,
    window:  Annotated[int,        Query(ge=1, le=settings.MAX_WINDOW_SECONDS)] = PAGE_SIZE_SECONDS,
    limit:   Annotated[int | None, Query(ge=1, le=settings.MAX_LIMIT_RESULTS)] = None,
    if_none_match: Annotated[str | None, Header()] = None,
    repo: LinkedConnectionsRepository = Depends(_get_repo),
) -> Response:
    """Return connections for a time window, or the first ``limit`` results."""
    start = _departure_time(departure_time)
    if limit is not None:
        page = await repo.get_by_limit(start, limit, timeout=settings.REQUEST_TIMEOUT_SECONDS)
    else:
        page = await repo.get_window(start, window, timeout=settings.REQUEST_TIMEOUT_SECONDS)
    return _page_response(page, if_none_match)


@router.get("/page", response_model=ConnectionsPageResponse)
async def get_connections_page(
    departure_time: Annotated[datetime | None, Query(alias="departureTime")] = None,
    if_none_match: Annotated[str | None, Header()] = None,
    repo: LinkedConnectionsRepository = Depends(_get_repo),
) -> Response:
    """Return the single upstream page containing departureTime, with links."""
    page = await repo.get_page(
        _departure_time(departure_time), timeout=settings.REQUEST_TIMEOUT_SECONDS
    )
    return _page_response(page, if_none_match)


@router.get("/raw", response_model=list[dict[str, Any]])
async def get_raw_connections(
    departure_time: Annotated[datetime | None, Query(alias="departureTime")] = None,
    if_none_match: Annotated[str | None, Header()] = None,
    repo: LinkedConnectionsRepository = Depends(_get_repo),
) -> Response:
    """Return the upstream page records unfiltered, exactly as delivered."""
    raw = await repo.get_filtered(
        _departure_time(departure_time), None, None, None,
        timeout=settings.REQUEST_TIMEOUT_SECONDS,
    )
    return _raw_response(raw, if_none_match)

@router.get("/{key}/{operator}/{value:path}", response_model=list[dict[str, Any]])
async def get_filtered_connections(
    key: str,
    operator: str,
    value: str,
    departure_time: Annotated[datetime | None, Query(alias="departureTime")] = None,
    if_none_match: Annotated[str | None, Header()] = None,
    repo: LinkedConnectionsRepository = Depends(_get_repo),
) -> Response:
    """Return raw records for which ``record[key] <operator> value`` holds."""
    raw = await repo.get_filtered(
        _departure_time(departure_time), key, operator, value,
        timeout=settings.REQUEST_TIMEOUT_SECONDS,
    )
    return _raw_response(raw, if_none_match)
