"""
connections/time_window.py

Page-boundary arithmetic for the upstream's fixed 600-second pages.

Any two timestamps inside the same 10-minute bucket round to the same
boundary, so they share cache keys and upstream page requests.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Iterator

PAGE_SIZE_SECONDS = 600
PAGE_SIZE = timedelta(seconds=PAGE_SIZE_SECONDS)


def round_down(departure_time: datetime) -> datetime:
    """
    Floor a timestamp to the start of its 10-minute page.

    Seconds and microseconds are cleared, the minute is rounded down to a
    multiple of 10. The result is always in UTC; naive datetimes are taken
    as UTC.

        >>> round_down(datetime(2018, 1, 1, 10, 23, 45, tzinfo=timezone.utc))
        datetime.datetime(2018, 1, 1, 10, 20, tzinfo=datetime.timezone.utc)
    """
    if departure_time.tzinfo is None:
        departure_time = departure_time.replace(tzinfo=timezone.utc)
    else:
        departure_time = departure_time.astimezone(timezone.utc)
    return departure_time.replace(
        minute=departure_time.minute - departure_time.minute % 10,
        second=0,
        microsecond=0,
    )


def unix_timestamp(departure_time: datetime) -> int:
    if departure_time.tzinfo is None:
        departure_time = departure_time.replace(tzinfo=timezone.utc)
    return int(departure_time.timestamp())


def page_boundaries(start: datetime) -> Iterator[datetime]:
    """Yield successive page starts beginning at round_down(start)."""
    boundary = round_down(start)
    while True:
        yield boundary
        boundary = boundary + PAGE_SIZE


def page_cache_key(departure_time: datetime) -> str:
    return f"page|{unix_timestamp(round_down(departure_time))}"


def window_cache_key(departure_time: datetime, window_seconds: int) -> str:
    return f"window|{unix_timestamp(round_down(departure_time))}|{window_seconds}"


def limit_cache_key(departure_time: datetime, limit: int) -> str:
    return f"limit|{unix_timestamp(round_down(departure_time))}|{limit}"


def raw_cache_key(departure_time: datetime) -> str:
    return f"raw|{unix_timestamp(round_down(departure_time))}"
