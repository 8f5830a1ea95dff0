"""Thread reconciliation: decide what to fetch and merge it into the collection.

Two fetch strategies are provided:

* ``fetch_unseen_threads`` (accumulate-new) collects threads whose id is not
  known yet and ignores changes to known threads.
* ``fetch_changed_threads`` (incremental-update) also refetches known threads
  whose ``historyId`` moved since the last sync.

Both page through the remote thread list until ``target_count`` threads are
collected or pagination is exhausted.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Coroutine, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol

import structlog

from gmail_thread_sync.models import MailThread
from gmail_thread_sync.models.gmail_api import GmailThread, GmailThreadListResponse, GmailThreadSummary
from gmail_thread_sync.sync.preservation import preserve_thread_sanitized

logger = structlog.get_logger()


class ThreadGateway(Protocol):
    """The subset of the Gmail gateway used by the reconciler."""

    async def list_threads(
        self,
        label_ids: Sequence[str] = (),
        query: str | None = None,
        page_token: str | None = None,
        max_results: int = 50,
    ) -> GmailThreadListResponse: ...

    async def get_thread(self, thread_id: str, format: str = "full") -> GmailThread: ...


@dataclass(frozen=True)
class FetchResult:
    """Threads fetched by a strategy and whether more remain remotely."""

    threads: list[GmailThread] = field(default_factory=list)
    has_more: bool = False


async def fetch_unseen_threads(
    gateway: ThreadGateway,
    known_ids: Iterable[str],
    target_count: int,
    *,
    label_ids: Sequence[str] = (),
    query: str | None = None,
    page_size: int = 50,
    concurrency: int = 5,
) -> FetchResult:
    """Collect up to ``target_count`` threads whose ids are not in ``known_ids``."""
    known = set(known_ids)
    return await _collect(
        gateway,
        lambda summary: summary.id not in known,
        target_count,
        label_ids=label_ids,
        query=query,
        page_size=page_size,
        concurrency=concurrency,
        strategy="accumulate",
    )


async def fetch_changed_threads(
    gateway: ThreadGateway,
    known_history: Mapping[str, str | None],
    target_count: int,
    *,
    label_ids: Sequence[str] = (),
    query: str | None = None,
    page_size: int = 50,
    concurrency: int = 5,
) -> FetchResult:
    """Collect up to ``target_count`` threads that are new or changed.

    A known thread is refetched only when its summary ``historyId`` differs
    from the known one; a missing token on either side counts as a change.
    """

    def needs_fetch(summary: GmailThreadSummary) -> bool:
        if summary.id not in known_history:
            return True
        known_token = known_history[summary.id]
        if known_token is None or summary.history_id is None:
            return True
        return summary.history_id != known_token

    return await _collect(
        gateway,
        needs_fetch,
        target_count,
        label_ids=label_ids,
        query=query,
        page_size=page_size,
        concurrency=concurrency,
        strategy="incremental",
    )


async def _collect(
    gateway: ThreadGateway,
    needs_fetch: Callable[[GmailThreadSummary], bool],
    target_count: int,
    *,
    label_ids: Sequence[str],
    query: str | None,
    page_size: int,
    concurrency: int,
    strategy: str,
) -> FetchResult:
    if target_count <= 0:
        return FetchResult()

    collected: list[GmailThread] = []
    seen: set[str] = set()
    semaphore = asyncio.Semaphore(concurrency)
    page_token: str | None = None
    pages = 0

    async def fetch(summary: GmailThreadSummary) -> GmailThread:
        async with semaphore:
            return await gateway.get_thread(summary.id)

    while True:
        page = await gateway.list_threads(
            label_ids=label_ids, query=query, page_token=page_token, max_results=page_size
        )
        pages += 1

        candidates: list[GmailThreadSummary] = []
        for summary in page.threads:
            if summary.id in seen or not needs_fetch(summary):
                continue
            seen.add(summary.id)
            candidates.append(summary)

        remaining = target_count - len(collected)
        batch, leftover = candidates[:remaining], candidates[remaining:]
        if batch:
            collected.extend(await _fetch_all([fetch(s) for s in batch]))

        page_token = page.next_page_token
        if len(collected) >= target_count or not page_token:
            has_more = bool(leftover) or page_token is not None
            logger.info(
                "threads_fetched",
                strategy=strategy,
                fetched=len(collected),
                target=target_count,
                pages=pages,
                has_more=has_more,
            )
            return FetchResult(threads=collected, has_more=has_more)


async def _fetch_all(fetches: list[Coroutine[Any, Any, GmailThread]]) -> list[GmailThread]:
    """Run detail fetches concurrently, keeping order.

    On the first failure the remaining fetches are cancelled and awaited
    before the error is re-raised.
    """
    tasks = [asyncio.ensure_future(f) for f in fetches]
    try:
        return list(await asyncio.gather(*tasks))
    except BaseException:
        pending = [t for t in tasks if not t.done()]
        for task in pending:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        if pending:
            logger.debug("thread_fetches_cancelled", cancelled=len(pending))
        raise


def history_snapshot(threads: Iterable[MailThread]) -> dict[str, str | None]:
    """Map thread id to its last known historyId."""
    return {t.id: t.history_id for t in threads}


def merge_threads(
    existing: Iterable[MailThread],
    incoming: Iterable[MailThread],
) -> list[MailThread]:
    """Merge freshly fetched threads into an existing collection.

    Incoming threads replace existing ones with the same id wholesale, except
    that sanitized message bodies are carried forward. The result is
    deduplicated by id and stably sorted by last message date, newest first,
    so merging the same incoming set twice yields the same collection.
    """
    by_id: dict[str, MailThread] = {}
    for thread in existing:
        by_id.setdefault(thread.id, thread)

    for thread in incoming:
        previous = by_id.get(thread.id)
        if previous is not None:
            previous_messages = {m.id: m for m in previous.messages}
            thread = preserve_thread_sanitized(thread, previous_messages)
        by_id[thread.id] = thread

    return sorted(by_id.values(), key=lambda t: t.last_message_date, reverse=True)
