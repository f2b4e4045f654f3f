"""
connections/repository.py

LinkedConnectionsRepository — read-only access to real-time linked connections.

Builds arbitrarily large results out of the upstream's fixed 600s pages:

  get_page      one upstream page, cached until its own expiresAt
  get_window    consecutive pages covering N seconds
  get_by_limit  consecutive pages until at least N connections are collected
  get_filtered  one raw page, reduced to the records matching a predicate

Caching:
  - Raw pages (for get_filtered) live under their own key until the
    upstream expiresAt, so filters never cost more than one fetch per page.
  - Single pages are cached until the upstream expiresAt and then served
    without re-validation.
  - Combined pages (window / limit) are cached for a short fixed TTL. A
    hit is only served directly while now < page.expires_at; after that
    the constituent pages are re-read and the combined etag recomputed.
    If the etag did not change, the cached instance is returned so its
    created_at (and therefore Last-Modified) stays stable.

Concurrency: no locking. Two concurrent misses on one key both build and
store a page; the last put() wins.
"""

from __future__ import annotations

import asyncio
import dataclasses
import hashlib
import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Awaitable, Callable, TypeVar

from ..metrics import METRICS
from .errors import Cancelled, MalformedRecord
from .filter import check_operator, filter_records
from .models import ConnectionRecord, Page, RawPage
from .time_window import (
    PAGE_SIZE_SECONDS,
    limit_cache_key,
    page_boundaries,
    page_cache_key,
    raw_cache_key,
    round_down,
    window_cache_key,
)

if TYPE_CHECKING:
    from ..source.base import RawPageSource
    from ..storage.cache import CacheStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

COMBINED_CACHE_TTL_SECONDS = 120
MAX_LIMIT_PAGES = 144


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def combine_etags(etags: list[str]) -> str:
    """Fingerprint for a combined page: sha256 over the concatenated etags."""
    return hashlib.sha256("".join(etags).encode("utf-8")).hexdigest()


class LinkedConnectionsRepository:
    """
    Args:
        source:             Upstream raw page provider.
        cache:              Shared key/value store with TTL support.
        combined_ttl:       Cache lifetime (seconds) of window/limit pages.
        max_limit_pages:    Upper bound on pages scanned by get_by_limit().
        clock:              Wall-clock source, overridable for tests.
    """

    def __init__(
        self,
        source: RawPageSource,
        cache: CacheStore,
        combined_ttl: int = COMBINED_CACHE_TTL_SECONDS,
        max_limit_pages: int = MAX_LIMIT_PAGES,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._source = source
        self._cache = cache
        self.combined_ttl = combined_ttl
        self.max_limit_pages = max_limit_pages
        self._clock = clock

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def get_page(
        self,
        departure_time: datetime,
        timeout: float | None = None,
    ) -> Page:
        """
        Return the single upstream page containing ``departure_time``.

        Raises:
            SourceUnavailable: the upstream fetch failed.
            MalformedRecord:   a record lacks a required field.
            Cancelled:         ``timeout`` expired before the page arrived.
        """
        return await self._with_deadline(self._load_page(departure_time), timeout)

    async def get_window(
        self,
        departure_time: datetime,
        window: int = PAGE_SIZE_SECONDS,
        timeout: float | None = None,
    ) -> Page:
        """
        Return all connections departing in ``[t, t + window)``, where t is
        ``departure_time`` rounded down to a page boundary.

        Windows that are not a multiple of 600s are widened to the next
        full page.

        Raises:
            ValueError:        window is not positive.
            Cancelled:         ``timeout`` expired before all pages arrived.
            SourceUnavailable, MalformedRecord: from the first failing page.
        """
        if window <= 0:
            raise ValueError(f"window must be positive, got {window}")
        departure_time = round_down(departure_time)
        cache_key = window_cache_key(departure_time, window)

        def covered(seconds: int, count: int, pages: int) -> bool:
            return seconds >= window

        return await self._with_deadline(
            self._aggregate(cache_key, departure_time, covered), timeout
        )

    async def get_by_limit(
        self,
        departure_time: datetime,
        limit: int,
        timeout: float | None = None,
    ) -> Page:
        """
        Return at least ``limit`` connections starting at ``departure_time``.

        Whole pages are fetched until the count reaches ``limit``, so the
        result may hold more than ``limit`` connections. The scan stops
        after ``max_limit_pages`` pages even if the limit was not reached.

        Raises:
            ValueError:        limit is not positive.
            Cancelled:         ``timeout`` expired before all pages arrived.
            SourceUnavailable, MalformedRecord: from the first failing page.
        """
        if limit <= 0:
            raise ValueError(f"limit must be positive, got {limit}")
        departure_time = round_down(departure_time)
        cache_key = limit_cache_key(departure_time, limit)

        def satisfied(seconds: int, count: int, pages: int) -> bool:
            if pages >= self.max_limit_pages:
                if count < limit:
                    logger.info(
                        "Limit scan stopped after %d pages with %d/%d connections",
                        pages, count, limit,
                    )
                return True
            return count >= limit

        return await self._with_deadline(
            self._aggregate(cache_key, departure_time, satisfied), timeout
        )

    async def get_filtered(
        self,
        departure_time: datetime,
        key: str | None,
        operator: str | None,
        value: Any,
        timeout: float | None = None,
    ) -> RawPage:
        """
        Return the raw page for ``departure_time`` keeping only records for
        which ``record[key] <operator> value`` holds.

        If any of key / operator / value is missing the raw page is returned
        as-is. Raw pages are cached under their own key until the upstream
        expiresAt, apart from the mapped pages get_page() serves.

        Raises:
            InvalidFilterOperator: operator is not one of = != < <= > >=.
            SourceUnavailable:     the upstream fetch failed.
            Cancelled:             ``timeout`` expired before the page arrived.
        """
        if not key or not operator or value is None or value == "":
            return await self._with_deadline(self._load_raw(departure_time), timeout)

        check_operator(operator)
        raw = await self._with_deadline(self._load_raw(departure_time), timeout)
        kept = filter_records(raw.data, key, operator, value)
        return dataclasses.replace(raw, data=tuple(kept))

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _load_page(self, departure_time: datetime) -> Page:
        departure_time = round_down(departure_time)
        cache_key = page_cache_key(departure_time)

        cached = self._cache.get(cache_key)
        if cached is not None:
            METRICS.page_cache_hits.inc()
            logger.debug("Page cache HIT key=%s", cache_key)
            return cached

        raw = await self._source.fetch_page(departure_time)
        page = Page(
            connections=self._map_records(raw),
            created_at=raw.created_at,
            expires_at=raw.expires_at,
            etag=raw.etag,
            previous=raw.previous,
            next=raw.next,
        )

        ttl = (page.expires_at - self._clock()).total_seconds()
        self._cache.put(cache_key, page, ttl)
        return page

    async def _load_raw(self, departure_time: datetime) -> RawPage:
        departure_time = round_down(departure_time)
        cache_key = raw_cache_key(departure_time)

        cached = self._cache.get(cache_key)
        if cached is not None:
            METRICS.page_cache_hits.inc()
            logger.debug("Raw page cache HIT key=%s", cache_key)
            return cached

        raw = await self._source.fetch_page(departure_time)
        ttl = (raw.expires_at - self._clock()).total_seconds()
        self._cache.put(cache_key, raw, ttl)
        return raw

    def _map_records(self, raw: RawPage) -> tuple[ConnectionRecord, ...]:
        try:
            return tuple(ConnectionRecord.from_raw(entry) for entry in raw.data)
        except MalformedRecord as exc:
            METRICS.malformed_records.inc()
            logger.warning("Raw page %s rejected: %s", raw.etag, exc)
            raise

    async def _aggregate(
        self,
        cache_key: str,
        start: datetime,
        done: Callable[[int, int, int], bool],
    ) -> Page:
        """
        Stitch consecutive pages from ``start`` until ``done(seconds, count,
        pages)`` holds, with the combined-page caching policy.
        """
        previous: Page | None = self._cache.get(cache_key)
        if previous is not None and self._clock() < previous.expires_at:
            METRICS.combined_cache_hits.inc()
            logger.debug("Combined cache HIT key=%s", cache_key)
            return previous

        connections: list[ConnectionRecord] = []
        etags: list[str] = []
        expires_at: datetime | None = None
        pages = 0

        for boundary in page_boundaries(start):
            if done(pages * PAGE_SIZE_SECONDS, len(connections), pages):
                break
            page = await self._load_page(boundary)
            connections.extend(page.connections)
            etags.append(page.etag)
            if expires_at is None or page.expires_at < expires_at:
                expires_at = page.expires_at
            pages += 1

        etag = combine_etags(etags)
        if previous is not None and previous.etag == etag:
            METRICS.combined_unchanged.inc()
            logger.debug("Combined page unchanged key=%s etag=%s", cache_key, etag)
            return previous

        now = self._clock()
        combined = Page(
            connections=tuple(connections),
            created_at=now,
            expires_at=expires_at if expires_at is not None else now,
            etag=etag,
            page_count=pages,
        )
        self._cache.put(cache_key, combined, self.combined_ttl)
        METRICS.combined_built.inc()
        logger.debug(
            "Combined page built key=%s pages=%d connections=%d",
            cache_key, pages, len(connections),
        )
        return combined

    async def _with_deadline(self, aw: Awaitable[T], timeout: float | None) -> T:
        if timeout is None:
            return await aw
        try:
            async with asyncio.timeout(timeout):
                return await aw
        except TimeoutError as exc:
            logger.warning("Request cancelled after %.1fs deadline", timeout)
            raise Cancelled(f"deadline of {timeout}s exceeded") from exc
