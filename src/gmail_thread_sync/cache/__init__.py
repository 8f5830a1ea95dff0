"""Local SQLite cache of synced threads."""

from .repository import CacheStats, ThreadCacheRepository

__all__ = ["CacheStats", "ThreadCacheRepository"]
