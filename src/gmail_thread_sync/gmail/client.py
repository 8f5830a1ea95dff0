"""Gmail API client implementation.

This module provides an async gateway to the Gmail REST API.

Notes:
    Every request asks the injected token provider for a bearer token, so an
    expired access token is refreshed transparently between retries. All calls
    pass through :func:`gmail_thread_sync.utils.retry.with_retry`.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from typing import Any, TypeVar

import httpx
import pydantic
import structlog

from gmail_thread_sync.config import Settings
from gmail_thread_sync.exceptions import (
    AuthenticationError,
    GmailAPIError,
    GmailDecodeError,
    InvalidRequestError,
    MailSyncError,
)
from gmail_thread_sync.models.gmail_api import (
    GmailHistoryListResponse,
    GmailLabelsResponse,
    GmailProfile,
    GmailSentMessage,
    GmailThread,
    GmailThreadListResponse,
)
from gmail_thread_sync.utils.retry import RetryPolicy, with_retry

logger = structlog.get_logger()

TokenProvider = Callable[[], Awaitable[str]]
ModelT = TypeVar("ModelT", bound=pydantic.BaseModel)


class GmailClient:
    """Gmail API client for thread, profile, label and send operations."""

    def __init__(
        self,
        token_provider: TokenProvider,
        settings: Settings | None = None,
        *,
        http_client: httpx.AsyncClient | None = None,
        retry_policy: RetryPolicy | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Initialize Gmail client.

        Args:
            token_provider: Async callable returning a currently valid bearer token.
            settings: Application settings. If None, uses default settings.
            http_client: Optional pre-configured httpx client (tests use a mock transport).
            retry_policy: Retry policy. If None, built from settings.
            sleep: Sleep used between retries.
        """
        from gmail_thread_sync.config import get_settings

        self.settings = settings or get_settings()
        self.retry_policy = retry_policy or RetryPolicy.from_settings(self.settings)
        self._token_provider = token_provider
        self._http = http_client
        self._owns_http = http_client is None
        self._sleep = sleep
        self._base_url = self.settings.gmail_api_base_url.rstrip("/")
        self._user_id = self.settings.gmail_user_id
        logger.info("gmail_client_initialized", base_url=self._base_url)

    async def __aenter__(self) -> GmailClient:
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:  # noqa: ANN001
        await self.aclose()

    async def aclose(self) -> None:
        """Close the underlying HTTP client if this instance created it."""
        if self._http is not None and self._owns_http:
            await self._http.aclose()
            self._http = None

    async def list_threads(
        self,
        label_ids: Sequence[str] = (),
        query: str | None = None,
        page_token: str | None = None,
        max_results: int = 50,
    ) -> GmailThreadListResponse:
        """List thread summaries, one page at a time.

        Args:
            label_ids: Only return threads carrying all of these labels.
            query: Gmail search query string.
            page_token: Token of the page to fetch (from a previous response).
            max_results: Page size.

        Returns:
            One page of thread summaries plus the next page token.

        Raises:
            GmailAPIError: If the API request fails.
        """
        params: list[tuple[str, str]] = [("maxResults", str(max_results))]
        params.extend(("labelIds", label) for label in label_ids)
        if query:
            params.append(("q", query))
        if page_token:
            params.append(("pageToken", page_token))

        logger.debug("listing_threads", label_ids=list(label_ids), query=query, page_token=page_token)
        return await self._request(
            "GET", f"users/{self._user_id}/threads", GmailThreadListResponse, params=params
        )

    async def get_thread(self, thread_id: str, format: str = "full") -> GmailThread:
        """Get a full thread including messages and MIME payloads."""
        logger.debug("getting_thread", thread_id=thread_id, format=format)
        return await self._request(
            "GET",
            f"users/{self._user_id}/threads/{thread_id}",
            GmailThread,
            params=[("format", format)],
        )

    async def get_profile(self) -> GmailProfile:
        """Get the authenticated user's profile."""
        return await self._request("GET", f"users/{self._user_id}/profile", GmailProfile)

    async def list_labels(self) -> GmailLabelsResponse:
        """List all labels of the mailbox."""
        return await self._request("GET", f"users/{self._user_id}/labels", GmailLabelsResponse)

    async def list_history(self, start_history_id: str) -> GmailHistoryListResponse:
        """List mailbox history records newer than ``start_history_id``."""
        return await self._request(
            "GET",
            f"users/{self._user_id}/history",
            GmailHistoryListResponse,
            params=[("startHistoryId", start_history_id)],
        )

    async def send_message(self, raw: str, thread_id: str | None = None) -> GmailSentMessage:
        """Send a base64url-encoded RFC 2822 message.

        Args:
            raw: Transport form of the message (see ``rfc2822.encode_for_transport``).
            thread_id: Existing thread to attach the message to (replies).

        Returns:
            The id and thread id of the sent message.
        """
        body: dict[str, Any] = {"raw": raw}
        if thread_id:
            body["threadId"] = thread_id

        logger.info("sending_message", thread_id=thread_id, raw_length=len(raw))
        return await self._request(
            "POST", f"users/{self._user_id}/messages/send", GmailSentMessage, json=body
        )

    async def _request(
        self,
        method: str,
        path: str,
        response_model: type[ModelT],
        *,
        params: list[tuple[str, str]] | None = None,
        json: dict[str, Any] | None = None,
    ) -> ModelT:
        async def attempt() -> ModelT:
            return await self._execute(method, path, response_model, params=params, json=json)

        return await with_retry(
            attempt, self.retry_policy, sleep=self._sleep, name=f"{method} {path}"
        )

    async def _execute(
        self,
        method: str,
        path: str,
        response_model: type[ModelT],
        *,
        params: list[tuple[str, str]] | None,
        json: dict[str, Any] | None,
    ) -> ModelT:
        try:
            token = await self._token_provider()
        except MailSyncError:
            raise
        except Exception as exc:  # noqa: BLE001
            raise AuthenticationError(str(exc)) from exc

        headers = {"Accept": "application/json", "Authorization": f"Bearer {token}"}
        url = f"{self._base_url}/{path}"

        try:
            response = await self._client().request(
                method, url, params=params, json=json, headers=headers
            )
        except (httpx.InvalidURL, httpx.UnsupportedProtocol) as exc:
            raise InvalidRequestError(str(exc)) from exc

        if not response.is_success:
            logger.warning(
                "gmail_api_http_error",
                method=method,
                path=path,
                status=response.status_code,
            )
            raise GmailAPIError(response.status_code, response.text)

        try:
            return response_model.model_validate(response.json())
        except ValueError as exc:
            # json.JSONDecodeError and pydantic.ValidationError are both ValueErrors.
            logger.exception("gmail_api_decode_failed", method=method, path=path)
            raise GmailDecodeError(f"Could not decode {path} response: {exc}") from exc

    def _client(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(timeout=self.settings.request_timeout)
            self._owns_http = True
        return self._http
