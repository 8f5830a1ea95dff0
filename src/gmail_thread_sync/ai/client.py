"""OpenRouter client implementation.

This module provides a client for formatting email text as markdown through
an OpenRouter chat completions endpoint.
"""

from __future__ import annotations

import re
from typing import Any

import httpx
import structlog

from gmail_thread_sync.config import Settings
from gmail_thread_sync.exceptions import ConfigurationError, SanitizationError

logger = structlog.get_logger()


SYSTEM_PROMPT = (
    "You format email content as clean markdown. Keep the author's words, drop "
    "signatures, tracking footers, legal boilerplate and quoted replies. Do not "
    "add commentary, headings or a preamble. Output only the content."
)

_PREAMBLE_PATTERNS = [
    re.compile(
        r"^here('s| is) the (extracted|cleaned|sanitized|formatted|markdown|content|email).*?:\s*\n*",
        re.IGNORECASE,
    ),
    re.compile(r"^the (extracted|cleaned|sanitized|formatted) (content|email|markdown).*?:\s*\n*", re.IGNORECASE),
    re.compile(r"^(extracted|formatted) (content|email|markdown).*?:\s*\n*", re.IGNORECASE),
    re.compile(r"^below is the.*?:\s*\n*", re.IGNORECASE),
    re.compile(r"^i('ve| have) (extracted|formatted).*?:\s*\n*", re.IGNORECASE),
]
_MARKDOWN_IMAGE_RE = re.compile(r"!\[[^\]]*\]\([^)]*\)")
_HTML_TAG_RE = re.compile(r"<[^>]+>")
_BLANK_LINES_RE = re.compile(r"\n{3,}")


def postprocess_completion(content: str) -> str:
    """Strip LLM preambles, markdown images and stray HTML from a completion."""
    result = content.strip()
    for pattern in _PREAMBLE_PATTERNS:
        result = pattern.sub("", result)
    result = _MARKDOWN_IMAGE_RE.sub("", result)
    result = _HTML_TAG_RE.sub("", result)
    result = _BLANK_LINES_RE.sub("\n\n", result)
    return result.strip()


class OpenRouterClient:
    """OpenRouter chat completions client used as the AI content formatter."""

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        api_key: str | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            settings: Application settings. If None, uses default settings.
            api_key: API key overriding ``settings.ai_api_key``.
            http_client: Optional pre-configured HTTP client (used by tests).
        """
        from gmail_thread_sync.config import get_settings

        self.settings = settings or get_settings()
        self._api_key = api_key if api_key is not None else self.settings.ai_api_key
        self._http = http_client
        logger.info("openrouter_client_initialized", model=self.settings.ai_model)

    def is_available(self) -> bool:
        return bool(self._api_key)

    async def format(self, content: str) -> str:
        """Format ``content`` as markdown.

        Raises:
            ConfigurationError: If no API key is configured.
            SanitizationError: If the request fails or the response is unusable.
        """
        if not self._api_key:
            raise ConfigurationError("No API key configured for AI formatting")

        prompt = f"{SYSTEM_PROMPT}\n\n<input>\n{content}\n</input>\n\nOUTPUT:"
        payload = {
            "model": self.settings.ai_model,
            "messages": [{"role": "user", "content": prompt}],
        }
        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
            "X-Title": "gmail-thread-sync",
        }

        try:
            response = await self._client().post(
                self.settings.ai_base_url, json=payload, headers=headers
            )
        except httpx.InvalidURL as exc:
            raise SanitizationError(f"Invalid AI endpoint URL: {exc}") from exc
        except httpx.HTTPError as exc:
            raise SanitizationError(f"AI request failed: {exc}") from exc

        status = response.status_code
        if status == 401:
            raise SanitizationError("Invalid API key")
        if status == 429:
            raise SanitizationError("Rate limited")
        if 500 <= status <= 599:
            raise SanitizationError("AI service unavailable")
        if not 200 <= status <= 299:
            logger.error("openrouter_http_error", status=status, body=response.text[:500])
            raise SanitizationError(f"HTTP {status}")

        try:
            data: dict[str, Any] = response.json()
            text = data["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise SanitizationError("Invalid response from AI service") from exc
        if not isinstance(text, str):
            raise SanitizationError("Invalid response from AI service")

        return postprocess_completion(text)

    def _client(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(timeout=self.settings.ai_timeout)
        return self._http

    async def aclose(self) -> None:
        if self._http is not None:
            await self._http.aclose()
            self._http = None
