"""Sync orchestrator.

This module provides the single owner of the synced thread collection. It
drives refreshes (determine what is stale, fetch, decode, clean, merge,
persist, publish), the compose/send actions and AI formatting, and publishes
every state change as an immutable :class:`SyncSnapshot`.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Iterable
from datetime import datetime, timezone

import structlog

from gmail_thread_sync.ai.pipeline import SanitizationPipeline
from gmail_thread_sync.ai.plain_text import sanitize_plain_text
from gmail_thread_sync.cache.repository import ThreadCacheRepository
from gmail_thread_sync.config import Settings
from gmail_thread_sync.exceptions import CacheError, MailSyncError, ValidationError
from gmail_thread_sync.gmail.client import GmailClient
from gmail_thread_sync.gmail.parsing import thread_to_domain
from gmail_thread_sync.gmail.rfc2822 import (
    build_new_message,
    build_reply_to_message,
    encode_for_transport,
)
from gmail_thread_sync.models import ComposeDraft, ComposeMode, EmailAddress, MailMessage, MailThread
from gmail_thread_sync.models.gmail_api import GmailThread
from gmail_thread_sync.sync.reconciler import (
    FetchResult,
    fetch_changed_threads,
    fetch_unseen_threads,
    history_snapshot,
    merge_threads,
)
from gmail_thread_sync.sync.state import Observer, SyncSnapshot, SyncState

logger = structlog.get_logger()


def error_text(exc: BaseException) -> str:
    """Text for the UI error slot."""
    if isinstance(exc, MailSyncError):
        return exc.user_message
    return str(exc) or exc.__class__.__name__


class SyncOrchestrator:
    """Owner of the synced thread collection.

    All mutations of the published state happen on the event loop that owns
    the orchestrator and are serialized by an ``asyncio.Lock``; network,
    decode and AI work is awaited outside of it.
    """

    def __init__(
        self,
        gateway: GmailClient,
        cache: ThreadCacheRepository | None = None,
        pipeline: SanitizationPipeline | None = None,
        settings: Settings | None = None,
        *,
        state: SyncState | None = None,
        text_sanitizer: Callable[[str], str] = sanitize_plain_text,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            gateway: Gmail API client.
            cache: Thread cache. If None, nothing is persisted.
            pipeline: AI formatting pipeline. If None, AI formatting is disabled.
            settings: Application settings. If None, uses default settings.
            state: Observable state holder. If None, a fresh one is created.
            text_sanitizer: Plain-text sanitizer applied to every fetched body.
        """
        from gmail_thread_sync.config import get_settings

        self.settings = settings or get_settings()
        self.gateway = gateway
        self.cache = cache
        self.pipeline = pipeline or SanitizationPipeline()
        self.state = state or SyncState()
        self._text_sanitizer = text_sanitizer
        self._lock = asyncio.Lock()
        logger.info(
            "sync_orchestrator_initialized",
            fetch_strategy=self.settings.fetch_strategy,
            cache_write_strategy=self.settings.cache_write_strategy,
            ai_available=self.pipeline.is_available,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> SyncOrchestrator:
        """Wire the default collaborators (Google token file, SQLite cache, OpenRouter)."""
        from gmail_thread_sync.gmail.auth import GoogleTokenProvider

        cache = ThreadCacheRepository(settings.cache_db_path)
        cache.initialize()
        return cls(
            GmailClient(GoogleTokenProvider(settings), settings),
            cache,
            SanitizationPipeline.from_settings(settings),
            settings,
        )

    @property
    def snapshot(self) -> SyncSnapshot:
        return self.state.snapshot

    def subscribe(self, observer: Observer) -> Callable[[], None]:
        return self.state.subscribe(observer)

    async def close(self) -> None:
        await self.gateway.aclose()
        await self.pipeline.aclose()

    async def load_cached(self) -> int:
        """Rebuild the in-memory collection from the cache.

        Returns:
            Number of threads loaded.
        """
        if self.cache is None:
            return 0
        try:
            threads = await asyncio.to_thread(self.cache.load_threads)
        except (CacheError, OSError) as exc:
            logger.warning("thread_cache_load_failed", error=str(exc))
            return 0

        async with self._lock:
            self.state.update(threads=tuple(threads))
        logger.info("thread_cache_loaded", thread_count=len(threads))
        return len(threads)

    async def refresh(self, count: int | None = None) -> bool:
        """Refresh with the configured page size as default target."""
        return await self.fetch_recent(count or self.settings.thread_page_size)

    async def fetch_recent(self, count: int) -> bool:
        """Fetch up to ``count`` new or changed threads and merge them in.

        A request while a refresh is already running is ignored.

        Returns:
            True if a refresh ran (successfully or not), False if it was rejected.
        """
        if self.snapshot.is_refreshing:
            logger.debug("refresh_rejected", reason="already_refreshing")
            return False
        self.state.update(is_refreshing=True, error_message=None)

        try:
            await self._ensure_owner_email()

            known = history_snapshot(self.snapshot.threads)
            try:
                result = await self._fetch(known, count)
                fetched = self._prepare(result.threads)
            except Exception as exc:
                logger.exception("refresh_failed", error=str(exc))
                self.state.update(is_refreshing=False, error_message=error_text(exc))
                return True

            if not fetched:
                logger.info("refresh_no_changes", known_threads=len(known))
                self.state.update(is_refreshing=False)
                return True

            async with self._lock:
                merged = merge_threads(self.snapshot.threads, fetched)
                await self._persist(merged, {t.id for t in fetched})
                self.state.update(
                    threads=tuple(merged), has_more=result.has_more, is_refreshing=False
                )

            logger.info(
                "refresh_complete",
                fetched=len(fetched),
                total_threads=len(merged),
                has_more=result.has_more,
            )
            return True
        finally:
            if self.snapshot.is_refreshing:
                self.state.update(is_refreshing=False)

    async def refresh_thread(self, thread_id: str) -> bool:
        """Refetch one thread. Failures are logged and otherwise ignored."""
        try:
            raw = await self.gateway.get_thread(thread_id)
            (thread,) = self._prepare([raw])
        except Exception as exc:
            logger.warning("thread_refresh_failed", thread_id=thread_id, error=str(exc))
            return False

        async with self._lock:
            merged = merge_threads(self.snapshot.threads, [thread])
            await self._persist(merged, {thread.id})
            self.state.update(threads=tuple(merged))
        return True

    async def clear_cache(self) -> None:
        """Wipe the cache and the in-memory collection."""
        async with self._lock:
            if self.cache is not None:
                await asyncio.to_thread(self.cache.clear)
            self.state.update(
                threads=(),
                selected_thread_id=None,
                has_more=True,
                error_message=None,
                compose_mode=ComposeMode.NONE,
                reply_thread_id=None,
                draft=ComposeDraft(),
            )

    def select_thread(self, thread_id: str | None) -> None:
        if thread_id is not None and self.snapshot.thread(thread_id) is None:
            raise ValidationError(f"Unknown thread: {thread_id}")
        self.state.update(selected_thread_id=thread_id)

    async def _fetch(self, known: dict[str, str | None], count: int) -> FetchResult:
        options = {
            "label_ids": self.settings.sync_label_ids,
            "query": self.settings.sync_query,
            "page_size": self.settings.thread_page_size,
            "concurrency": self.settings.fetch_concurrency,
        }
        if self.settings.fetch_strategy == "accumulate":
            return await fetch_unseen_threads(self.gateway, known.keys(), count, **options)
        return await fetch_changed_threads(self.gateway, known, count, **options)

    def _prepare(self, raw_threads: Iterable[GmailThread]) -> list[MailThread]:
        owner = self.snapshot.owner_email
        threads = []
        for raw in raw_threads:
            thread = thread_to_domain(raw, owner)
            threads.append(thread.with_messages([self._clean_body(m) for m in thread.messages]))
        return threads

    def _clean_body(self, message: MailMessage) -> MailMessage:
        source = message.body_html or message.body_plain
        if source is None:
            return message
        return message.model_copy(update={"body_plain": self._text_sanitizer(source)})

    async def _persist(self, merged: list[MailThread], thread_ids: set[str]) -> None:
        if self.cache is None:
            return
        to_save = [t for t in merged if t.id in thread_ids]
        try:
            await asyncio.to_thread(
                self.cache.save_threads, to_save, self.settings.cache_write_strategy
            )
        except (CacheError, OSError) as exc:
            logger.error("thread_cache_persist_failed", thread_count=len(to_save), error=str(exc))

    async def _ensure_owner_email(self) -> str:
        if self.snapshot.owner_email:
            return self.snapshot.owner_email
        try:
            profile = await self.gateway.get_profile()
        except Exception as exc:
            logger.warning("owner_profile_fetch_failed", error=str(exc))
            return ""
        self.state.update(owner_email=profile.email_address)
        return profile.email_address

    def start_new_message(self) -> None:
        self.state.update(
            compose_mode=ComposeMode.NEW_MESSAGE, reply_thread_id=None, draft=ComposeDraft()
        )

    def start_reply(self, thread_id: str | None = None) -> None:
        """Enter reply mode for ``thread_id`` (default: the selected thread)."""
        thread_id = thread_id or self.snapshot.selected_thread_id
        if thread_id is None or self.snapshot.thread(thread_id) is None:
            raise ValidationError("No thread selected to reply to")
        self.state.update(
            compose_mode=ComposeMode.REPLY,
            reply_thread_id=thread_id,
            selected_thread_id=thread_id,
            draft=ComposeDraft(),
        )

    def update_draft(self, **changes) -> ComposeDraft:
        draft = self.snapshot.draft.model_copy(update=changes)
        self.state.update(draft=draft)
        return draft

    def cancel_compose(self) -> None:
        self.state.update(compose_mode=ComposeMode.NONE, reply_thread_id=None, draft=ComposeDraft())

    async def send_draft(self) -> bool:
        """Send the current draft as a new message.

        Returns:
            True if the message was sent. Errors populate ``error_message``.
        """
        draft = self.snapshot.draft
        if not draft.can_send:
            self.state.update(error_message="Add a recipient and a message before sending.")
            return False

        try:
            sender = await self._sender()
            raw = build_new_message(
                sender,
                draft.recipients,
                draft.subject,
                draft.body,
                draft.cc_recipients,
                domain=self.settings.message_id_domain,
            )
            sent = await self.gateway.send_message(encode_for_transport(raw))
        except Exception as exc:
            logger.exception("send_draft_failed", error=str(exc))
            self.state.update(error_message=error_text(exc))
            return False

        logger.info("message_sent", message_id=sent.id, thread_id=sent.thread_id)
        self.state.update(
            compose_mode=ComposeMode.NONE,
            reply_thread_id=None,
            draft=ComposeDraft(),
            error_message=None,
        )
        if sent.thread_id:
            await self.refresh_thread(sent.thread_id)
            if self.snapshot.thread(sent.thread_id) is not None:
                self.state.update(selected_thread_id=sent.thread_id)
        return True

    async def send_reply(self, body: str) -> bool:
        """Reply to the last message of the reply (or selected) thread.

        Returns:
            True if the reply was sent. Errors populate ``error_message``.
        """
        snapshot = self.snapshot
        thread_id = (
            snapshot.reply_thread_id
            if snapshot.compose_mode is ComposeMode.REPLY
            else snapshot.selected_thread_id
        )
        thread = snapshot.thread(thread_id) if thread_id else None
        if thread is None or not thread.messages:
            self.state.update(error_message="Select a conversation to reply to.")
            return False
        if not body.strip():
            self.state.update(error_message="Write a message before sending.")
            return False

        parent = thread.messages[-1]
        try:
            sender = await self._sender()
            raw = build_reply_to_message(
                parent, sender, body, domain=self.settings.message_id_domain
            )
            sent = await self.gateway.send_message(encode_for_transport(raw), thread_id=thread.id)
        except Exception as exc:
            logger.exception("send_reply_failed", thread_id=thread.id, error=str(exc))
            self.state.update(error_message=error_text(exc))
            return False

        logger.info("reply_sent", message_id=sent.id, thread_id=thread.id)
        self.state.update(
            compose_mode=ComposeMode.NONE,
            reply_thread_id=None,
            draft=ComposeDraft(),
            error_message=None,
        )
        await self.refresh_thread(thread.id)
        return True

    async def _sender(self) -> EmailAddress:
        owner = await self._ensure_owner_email()
        if not owner:
            raise ValidationError("Unable to determine your email address")
        return EmailAddress(email=owner)

    async def format_thread(self, thread_id: str) -> int:
        """Run AI formatting over messages of ``thread_id`` lacking a sanitized body.

        Returns:
            Number of messages that received a sanitized body.
        """
        if not self.pipeline.is_available:
            logger.debug("ai_format_unavailable", thread_id=thread_id)
            return 0
        thread = self.snapshot.thread(thread_id)
        if thread is None:
            return 0

        pending = {
            m.id: m.body_plain or m.snippet
            for m in thread.messages
            if m.sanitized_body is None and (m.body_plain or m.snippet)
        }
        if not pending:
            return 0

        results = await self.pipeline.sanitize_messages(pending.items())
        # Unchanged output means formatting was skipped or failed.
        formatted = {mid: text for mid, text in results.items() if text and text != pending[mid]}
        if not formatted:
            return 0

        now = datetime.now(timezone.utc)
        async with self._lock:
            current = self.snapshot.thread(thread_id)
            if current is None:
                return 0
            messages = [
                m.model_copy(update={"sanitized_body": formatted[m.id], "sanitized_at": now})
                if m.id in formatted
                else m
                for m in current.messages
            ]
            updated = current.with_messages(messages)
            threads = tuple(updated if t.id == thread_id else t for t in self.snapshot.threads)

            if self.cache is not None:
                try:
                    await asyncio.to_thread(self.cache.set_sanitized_bodies, formatted, now)
                except (CacheError, OSError) as exc:
                    logger.error("sanitized_persist_failed", thread_id=thread_id, error=str(exc))

            self.state.update(threads=threads)

        logger.info("thread_formatted", thread_id=thread_id, message_count=len(formatted))
        return len(formatted)
