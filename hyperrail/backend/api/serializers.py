"""
api/serializers.py

Response models and HTTP cache-header transcription for connection pages.
"""

from __future__ import annotations

from datetime import datetime, timezone
from email.utils import format_datetime

from pydantic import BaseModel, Field

from ..connections.models import ConnectionRecord, Page


class ConnectionResponse(BaseModel):
    id: str = Field(serialization_alias="@id")
    departureStop: str
    arrivalStop: str
    departureTime: datetime
    arrivalTime: datetime
    departureDelay: int = 0
    arrivalDelay: int = 0
    direction: str = ""
    trip: str = Field("", serialization_alias="gtfs:trip")
    route: str = Field("", serialization_alias="gtfs:route")

    @classmethod
    def from_record(cls, record: ConnectionRecord) -> "ConnectionResponse":
        return cls(
            id=record.id,
            departureStop=record.departure_stop,
            arrivalStop=record.arrival_stop,
            departureTime=record.departure_time,
            arrivalTime=record.arrival_time,
            departureDelay=record.departure_delay,
            arrivalDelay=record.arrival_delay,
            direction=record.direction,
            trip=record.trip_id,
            route=record.route_id,
        )


class ConnectionsPageResponse(BaseModel):
    connections: list[ConnectionResponse]
    createdAt: datetime
    expiresAt: datetime
    etag: str
    previous: str | None = None
    next: str | None = None

    @classmethod
    def from_page(cls, page: Page) -> "ConnectionsPageResponse":
        return cls(
            connections=[ConnectionResponse.from_record(c) for c in page.connections],
            createdAt=page.created_at,
            expiresAt=page.expires_at,
            etag=page.etag,
            previous=page.previous,
            next=page.next,
        )


class HealthResponse(BaseModel):
    status: str
    metrics: dict[str, int] = {}


# ---------------------------------------------------------------------------
# Cache headers
# ---------------------------------------------------------------------------

def quote_etag(etag: str) -> str:
    """Wrap an etag in double quotes unless it already is a quoted/weak tag."""
    if etag.startswith('"') or etag.startswith('W/"'):
        return etag
    return f'"{etag}"'


def etag_matches(if_none_match: str | None, etag: str) -> bool:
    """True when an If-None-Match header value covers ``etag``."""
    if not if_none_match:
        return False
    quoted = quote_etag(etag)
    candidates = {tag.strip() for tag in if_none_match.split(",")}
    return "*" in candidates or quoted in candidates or etag in candidates


def _http_date(dt: datetime) -> str:
    return format_datetime(dt.astimezone(timezone.utc), usegmt=True)


def cache_headers(
    created_at: datetime,
    expires_at: datetime,
    etag: str,
    now: datetime | None = None,
) -> dict[str, str]:
    """
    Transcribe page metadata into Expires / Cache-Control / Last-Modified /
    ETag. max-age is floored at 0 for already-expired pages.
    """
    now = now or datetime.now(timezone.utc)
    max_age = max(0, int((expires_at - now).total_seconds()))
    return {
        "Expires": _http_date(expires_at),
        "Cache-Control": f"public, max-age={max_age}",
        "Last-Modified": _http_date(created_at),
        "ETag": quote_etag(etag),
    }
