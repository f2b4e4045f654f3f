"""storage/__init__.py"""
from .cache import CacheStore, MemoryCache

__all__ = ["CacheStore", "MemoryCache"]
