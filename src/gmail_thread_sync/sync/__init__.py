"""Thread reconciliation, sanitized-body preservation and sync state.

The orchestrator lives in :mod:`gmail_thread_sync.sync.orchestrator`.
"""

from .preservation import SanitizedKind, SanitizedValue, resolve_sanitized
from .reconciler import FetchResult, fetch_changed_threads, fetch_unseen_threads, merge_threads
from .state import SyncSnapshot, SyncState

__all__ = [
    "FetchResult",
    "SanitizedKind",
    "SanitizedValue",
    "SyncSnapshot",
    "SyncState",
    "fetch_changed_threads",
    "fetch_unseen_threads",
    "merge_threads",
    "resolve_sanitized",
]
