"""Observable sync state published to the presentation layer."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field, replace

import structlog

from gmail_thread_sync.models import ComposeDraft, ComposeMode, MailThread

logger = structlog.get_logger()


@dataclass(frozen=True)
class SyncSnapshot:
    """Immutable view of everything the UI renders."""

    threads: tuple[MailThread, ...] = ()
    is_refreshing: bool = False
    error_message: str | None = None
    selected_thread_id: str | None = None
    has_more: bool = True
    owner_email: str = ""
    compose_mode: ComposeMode = ComposeMode.NONE
    reply_thread_id: str | None = None
    draft: ComposeDraft = field(default_factory=ComposeDraft)

    @property
    def selected_thread(self) -> MailThread | None:
        return self.thread(self.selected_thread_id) if self.selected_thread_id else None

    def thread(self, thread_id: str) -> MailThread | None:
        for t in self.threads:
            if t.id == thread_id:
                return t
        return None

    def evolve(self, **changes) -> SyncSnapshot:
        return replace(self, **changes)


Observer = Callable[[SyncSnapshot], None]


class SyncState:
    """Holds the current snapshot and notifies observers on every publish."""

    def __init__(self, initial: SyncSnapshot | None = None) -> None:
        self._snapshot = initial or SyncSnapshot()
        self._observers: list[Observer] = []

    @property
    def snapshot(self) -> SyncSnapshot:
        return self._snapshot

    def subscribe(self, observer: Observer) -> Callable[[], None]:
        """Register ``observer``; the returned callable unsubscribes it."""
        self._observers.append(observer)

        def unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return unsubscribe

    def publish(self, snapshot: SyncSnapshot) -> None:
        self._snapshot = snapshot
        for observer in list(self._observers):
            try:
                observer(snapshot)
            except Exception:
                logger.exception("sync_observer_failed")

    def update(self, **changes) -> SyncSnapshot:
        snapshot = self._snapshot.evolve(**changes)
        self.publish(snapshot)
        return snapshot
