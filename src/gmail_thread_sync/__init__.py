"""Gmail Thread Sync - local conversation state for a Gmail desktop client.

This package synchronizes Gmail threads into a local SQLite cache, reconciles
incremental fetches with cached state, optionally cleans message content with
an AI formatter, and builds RFC 2822 replies with correct threading headers.
"""

__version__ = "0.1.0"

from gmail_thread_sync.config import Settings, get_settings

__all__ = ["Settings", "get_settings", "__version__"]
