"""source/__init__.py"""
from .base import RawPageSource
from .http import HttpRawSource

__all__ = ["RawPageSource", "HttpRawSource"]
