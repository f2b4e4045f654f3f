"""
connections/errors.py

Error taxonomy for the connections repository.

    ConnectionsError
      ├── SourceUnavailable      upstream fetch failed (transient, retryable)
      ├── MalformedRecord        upstream page parsed but a record is unusable
      ├── InvalidFilterOperator  client supplied an unknown comparison operator
      └── Cancelled              caller deadline expired mid-aggregation
"""

from __future__ import annotations


class ConnectionsError(Exception):
    """Base class for every error raised by the connections layer."""


class SourceUnavailable(ConnectionsError):
    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class MalformedRecord(ConnectionsError):
    def __init__(self, field: str, record_id: str | None = None, reason: str = "missing") -> None:
        super().__init__(f"record {record_id or '<unknown>'!s}: field {field!r} {reason}")
        self.field = field
        self.record_id = record_id


class InvalidFilterOperator(ConnectionsError):
    def __init__(self, operator: str) -> None:
        super().__init__(f"unknown filter operator {operator!r}")
        self.operator = operator


class Cancelled(ConnectionsError):
    """Raised when the caller's deadline fires before aggregation completes."""
