"""
source/http.py

Async HTTP client for the upstream linked-connections server.

Responsibilities:
  - GET <base_url>?departureTime=<ISO-8601> for one 600s page
  - Pull records from "@graph" and page links from "hydra:previous/next"
  - Derive createdAt / expiresAt / etag from the response cache headers
  - Turn every transport or protocol failure into SourceUnavailable

Usage:
    source = HttpRawSource(base_url="https://graph.irail.be/sncb/connections")
    raw = await source.fetch_page(datetime.now(timezone.utc))
"""

from __future__ import annotations

import hashlib
import logging
import re
from datetime import datetime, timedelta, timezone
from email.utils import parsedate_to_datetime
from typing import Callable

import httpx

from ..connections.errors import MalformedRecord, SourceUnavailable
from ..connections.models import RawPage, isoformat_utc
from ..connections.time_window import round_down
from ..metrics import METRICS

logger = logging.getLogger(__name__)

_MAX_AGE_RE = re.compile(r"max-age\s*=\s*(\d+)", re.IGNORECASE)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _http_date(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        parsed = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class HttpRawSource:
    """
    Fetches raw pages over HTTP with httpx.

    Args:
        base_url:     Upstream connections endpoint.
        timeout:      Per-request timeout in seconds.
        default_ttl:  Freshness assumed when the upstream sends no
                      Cache-Control max-age or Expires header.
        transport:    Optional httpx transport (tests use MockTransport).
        clock:        Wall-clock source, overridable for tests.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        default_ttl: int = 60,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.default_ttl = default_ttl
        self._transport = transport
        self._clock = clock

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def fetch_page(self, departure_time: datetime) -> RawPage:
        """
        Fetch the upstream page containing ``departure_time``.

        Raises:
            SourceUnavailable: network error, timeout, non-2xx or non-JSON body.
            MalformedRecord:   the document has no "@graph" list.
        """
        params = {"departureTime": isoformat_utc(round_down(departure_time))}
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout,
                transport=self._transport,
                headers={"Accept": "application/ld+json, application/json"},
            ) as client:
                resp = await client.get(self.base_url, params=params)
                resp.raise_for_status()
                body = resp.json()
        except httpx.HTTPStatusError as exc:
            METRICS.source_errors.inc()
            logger.warning(
                "Upstream returned HTTP %d for %s", exc.response.status_code, params["departureTime"]
            )
            raise SourceUnavailable(
                f"upstream returned HTTP {exc.response.status_code}",
                status=exc.response.status_code,
            ) from exc
        except httpx.HTTPError as exc:
            METRICS.source_errors.inc()
            logger.warning("Upstream fetch failed for %s: %s", params["departureTime"], exc)
            raise SourceUnavailable(f"upstream fetch failed: {exc}") from exc
        except ValueError as exc:
            METRICS.source_errors.inc()
            logger.warning("Upstream sent non-JSON body for %s", params["departureTime"])
            raise SourceUnavailable("upstream sent a non-JSON body") from exc

        if not isinstance(body, dict) or not isinstance(body.get("@graph"), list):
            METRICS.malformed_records.inc()
            raise MalformedRecord("@graph")

        METRICS.pages_fetched.inc()
        page = self._build_page(body, resp)
        logger.info(
            "Fetched upstream page %s — %d records, etag=%s",
            params["departureTime"], len(page.data), page.etag,
        )
        return page

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _build_page(self, body: dict, resp: httpx.Response) -> RawPage:
        now = self._clock()
        created_at = _http_date(resp.headers.get("last-modified")) or now
        return RawPage(
            data=tuple(body["@graph"]),
            created_at=created_at,
            expires_at=self._expires_at(resp, now),
            etag=resp.headers.get("etag") or hashlib.sha256(resp.content).hexdigest(),
            previous=body.get("hydra:previous"),
            next=body.get("hydra:next"),
        )

    def _expires_at(self, resp: httpx.Response, now: datetime) -> datetime:
        """max-age wins over Expires; neither means default_ttl from now."""
        match = _MAX_AGE_RE.search(resp.headers.get("cache-control", ""))
        if match:
            return now + timedelta(seconds=int(match.group(1)))
        expires = _http_date(resp.headers.get("expires"))
        if expires is not None:
            return expires
        return now + timedelta(seconds=self.default_ttl)
