"""
connections/models.py

Data models for the linked-connections layer.

RawPage          — one upstream page, exactly as the raw source delivered it
ConnectionRecord — a single departure → arrival event, delays normalised
Page             — what callers get back: one page, or several stitched together

All three are frozen once constructed. A combined Page never carries
previous/next links; those only make sense for a single upstream page.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Mapping

from .errors import MalformedRecord

# Upstream JSON-LD keys for the fields every record must carry
_REQUIRED_KEYS = ("@id", "departureStop", "arrivalStop", "departureTime", "arrivalTime")
DELAY_KEYS = ("departureDelay", "arrivalDelay")


# ---------------------------------------------------------------------------
# Field parsing helpers
# ---------------------------------------------------------------------------

def parse_delay(value: Any) -> int:
    """
    Normalise an upstream delay to integer seconds.

    Accepts ints, numeric strings and duration strings with a trailing
    unit suffix ("120S"). Raises ValueError for anything else.
    """
    if value is None:
        return 0
    if isinstance(value, bool):
        raise ValueError(f"not a delay: {value!r}")
    if isinstance(value, (int, float)):
        return int(value)
    text = str(value).strip()
    if text[-1:] in ("S", "s"):
        text = text[:-1]
    return int(float(text))


def parse_timestamp(value: Any) -> datetime:
    """Parse an upstream ISO-8601 time; naive values are taken as UTC."""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    else:
        parsed = datetime.fromisoformat(str(value).strip())
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def isoformat_utc(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.000Z")


# ---------------------------------------------------------------------------
# RawPage — upstream page
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class RawPage:
    """
    A single upstream page of raw connection records.

    ``data`` holds the record maps in upstream order. Callers that need to
    modify records must copy them first.
    """

    data: tuple[Mapping[str, Any], ...]
    created_at: datetime
    expires_at: datetime
    etag: str
    previous: str | None = None
    next: str | None = None


# ---------------------------------------------------------------------------
# ConnectionRecord — one departure → arrival event
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ConnectionRecord:
    """
    One departure → arrival event, with delays in integer seconds.

    departure_time <= arrival_time is not checked; upstream data is
    taken as-is.
    """

    id: str
    departure_stop: str
    arrival_stop: str
    departure_time: datetime
    arrival_time: datetime
    departure_delay: int = 0
    arrival_delay: int = 0
    direction: str = ""
    trip_id: str = ""
    route_id: str = ""

    @classmethod
    def from_raw(cls, entry: Mapping[str, Any]) -> "ConnectionRecord":
        """
        Map an upstream JSON-LD record onto a ConnectionRecord.

        Raises MalformedRecord when a required field is absent or a
        time/delay field cannot be parsed.
        """
        if not isinstance(entry, Mapping):
            raise MalformedRecord("record", reason="is not an object")
        record_id = entry.get("@id")
        for key in _REQUIRED_KEYS:
            if entry.get(key) in (None, ""):
                raise MalformedRecord(key, record_id)

        try:
            departure_time = parse_timestamp(entry["departureTime"])
        except (TypeError, ValueError):
            raise MalformedRecord("departureTime", record_id, reason="unparseable") from None
        try:
            arrival_time = parse_timestamp(entry["arrivalTime"])
        except (TypeError, ValueError):
            raise MalformedRecord("arrivalTime", record_id, reason="unparseable") from None

        delays: dict[str, int] = {}
        for key in DELAY_KEYS:
            try:
                delays[key] = parse_delay(entry.get(key, 0))
            except (TypeError, ValueError):
                raise MalformedRecord(key, record_id, reason="unparseable") from None

        return cls(
            id=str(record_id),
            departure_stop=str(entry["departureStop"]),
            arrival_stop=str(entry["arrivalStop"]),
            departure_time=departure_time,
            arrival_time=arrival_time,
            departure_delay=delays["departureDelay"],
            arrival_delay=delays["arrivalDelay"],
            direction=str(entry.get("direction") or ""),
            trip_id=str(entry.get("gtfs:trip") or ""),
            route_id=str(entry.get("gtfs:route") or ""),
        )


# ---------------------------------------------------------------------------
# Page — domain page returned to callers
# ---------------------------------------------------------------------------

@dataclass(frozen=True, eq=False)
class Page:
    """
    Connections for one or more consecutive upstream pages.

    Identity is the etag: two Pages compare equal (and hash equal) when
    their etags match, regardless of when they were built.
    """

    connections: tuple[ConnectionRecord, ...]
    created_at: datetime
    expires_at: datetime
    etag: str
    previous: str | None = None
    """Link to the preceding upstream page. Single pages only."""

    next: str | None = None
    """Link to the following upstream page. Single pages only."""

    page_count: int = field(default=1, compare=False)
    """Number of upstream pages this Page was built from."""

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Page):
            return NotImplemented
        return self.etag == other.etag

    def __hash__(self) -> int:
        return hash(self.etag)

    def __len__(self) -> int:
        return len(self.connections)

    def __repr__(self) -> str:
        return (
            f"Page(etag={self.etag!r} "
            f"connections={len(self.connections)} "
            f"pages={self.page_count} "
            f"expires={self.expires_at.isoformat()})"
        )
