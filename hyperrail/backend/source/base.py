"""
source/base.py

Contract for upstream raw page providers.
"""

from __future__ import annotations

from datetime import datetime
from typing import Protocol, runtime_checkable

from ..connections.models import RawPage


@runtime_checkable
class RawPageSource(Protocol):
    """
    Supplies one upstream page of raw connection records.

    Implementations raise SourceUnavailable when the page cannot be
    fetched. Transport and retry policy are theirs to decide.
    """

    async def fetch_page(self, departure_time: datetime) -> RawPage:
        ...
