"""
connections/__init__.py

Public API for the connections sub-package.
"""

from .errors import (
    Cancelled,
    ConnectionsError,
    InvalidFilterOperator,
    MalformedRecord,
    SourceUnavailable,
)
from .models import ConnectionRecord, Page, RawPage
from .repository import LinkedConnectionsRepository
from .time_window import PAGE_SIZE_SECONDS, round_down

__all__ = [
    "LinkedConnectionsRepository",
    "ConnectionRecord",
    "Page",
    "RawPage",
    "PAGE_SIZE_SECONDS",
    "round_down",
    "ConnectionsError",
    "SourceUnavailable",
    "MalformedRecord",
    "InvalidFilterOperator",
    "Cancelled",
]
