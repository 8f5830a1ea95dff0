"""AI formatting pipeline.

Wraps the AI content formatter so callers never see its failures: when the
backend is unavailable, misconfigured or failing, the input comes back
unchanged (it was already cleaned by the plain-text sanitizer at fetch time).
"""

from __future__ import annotations

import asyncio
import re
from collections.abc import Iterable
from typing import Protocol

import structlog

from gmail_thread_sync.config import Settings
from gmail_thread_sync.exceptions import MailSyncError

logger = structlog.get_logger()

MIN_CONTENT_LENGTH = 10

_BLANK_LINES_RE = re.compile(r"\n{3,}")
_SPACES_RE = re.compile(r" {2,}")


class ContentFormatter(Protocol):
    def is_available(self) -> bool: ...

    async def format(self, content: str) -> str: ...


class SanitizationPipeline:
    """Never-failing front for the AI content formatter."""

    def __init__(self, formatter: ContentFormatter | None = None, concurrency: int = 4) -> None:
        self._formatter = formatter
        self._concurrency = max(1, concurrency)

    @classmethod
    def from_settings(cls, settings: Settings) -> SanitizationPipeline:
        """Build the pipeline configured by ``settings``; AI stays off without a key."""
        if settings.ai_provider == "openrouter" and settings.ai_api_key:
            from gmail_thread_sync.ai.client import OpenRouterClient

            logger.debug("ai_formatting_enabled", provider=settings.ai_provider)
            return cls(OpenRouterClient(settings), concurrency=settings.ai_concurrency)
        logger.debug("ai_formatting_disabled", provider=settings.ai_provider)
        return cls(None, concurrency=settings.ai_concurrency)

    @property
    def is_available(self) -> bool:
        return self._formatter is not None and self._formatter.is_available()

    async def sanitize(self, content: str) -> str:
        """Format ``content`` with AI. Never raises; falls back to the input."""
        if len(content) <= MIN_CONTENT_LENGTH:
            logger.debug("ai_format_skipped", reason="too_short", length=len(content))
            return content
        if not self.is_available:
            return content

        try:
            result = await self._formatter.format(_preprocess(content))
        except MailSyncError as exc:
            logger.error("ai_format_failed", error=str(exc))
            return content
        except Exception as exc:  # noqa: BLE001
            logger.exception("ai_format_failed", error=str(exc))
            return content

        logger.debug("ai_format_succeeded", length=len(result))
        return result

    async def sanitize_messages(self, contents: Iterable[tuple[str, str]]) -> dict[str, str]:
        """Format many ``(message_id, content)`` pairs concurrently.

        Failures are isolated per message (the input is returned for it).
        """
        semaphore = asyncio.Semaphore(self._concurrency)

        async def run(message_id: str, content: str) -> tuple[str, str]:
            async with semaphore:
                return message_id, await self.sanitize(content)

        results = await asyncio.gather(*(run(mid, text) for mid, text in contents))
        return dict(results)

    async def aclose(self) -> None:
        close = getattr(self._formatter, "aclose", None)
        if close is not None:
            await close()


def _preprocess(content: str) -> str:
    result = _BLANK_LINES_RE.sub("\n\n", content)
    result = _SPACES_RE.sub(" ", result)
    return result.strip()
