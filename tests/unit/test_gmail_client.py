"""Unit tests for the Gmail API client."""

from __future__ import annotations

import json

import httpx
import pytest

from gmail_thread_sync.exceptions import (
    AuthenticationError,
    GmailAPIError,
    GmailDecodeError,
    InvalidRequestError,
)
from gmail_thread_sync.gmail.client import GmailClient


async def _token() -> str:
    return "test-token"


async def _no_sleep(delay: float) -> None:
    return None


def _client(mock_settings, handler, **kwargs) -> GmailClient:
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return GmailClient(_token, mock_settings, http_client=http, sleep=_no_sleep, **kwargs)


class TestGmailClient:
    """Test suite for GmailClient class."""

    @pytest.mark.asyncio
    async def test_list_threads_sends_bearer_token_and_params(self, mock_settings) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(
                200,
                json={
                    "threads": [{"id": "t1", "snippet": "hi", "historyId": "11"}],
                    "nextPageToken": "p2",
                    "resultSizeEstimate": 1,
                },
            )

        client = _client(mock_settings, handler)
        page = await client.list_threads(
            label_ids=["INBOX", "UNREAD"], query="from:bob", page_token="p1", max_results=10
        )

        request = seen[0]
        assert request.headers["Authorization"] == "Bearer test-token"
        assert request.url.path == "/gmail/v1/users/me/threads"
        assert request.url.params.get_list("labelIds") == ["INBOX", "UNREAD"]
        assert request.url.params["q"] == "from:bob"
        assert request.url.params["pageToken"] == "p1"
        assert request.url.params["maxResults"] == "10"
        assert page.next_page_token == "p2"
        assert page.threads[0].history_id == "11"

    @pytest.mark.asyncio
    async def test_list_labels(self, mock_settings) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/gmail/v1/users/me/labels"
            return httpx.Response(
                200,
                json={
                    "labels": [
                        {"id": "INBOX", "name": "INBOX", "type": "system"},
                        {
                            "id": "Label_1",
                            "name": "Receipts",
                            "type": "user",
                            "labelListVisibility": "labelShow",
                        },
                    ]
                },
            )

        labels = await _client(mock_settings, handler).list_labels()

        assert [label.id for label in labels.labels] == ["INBOX", "Label_1"]
        assert labels.labels[1].name == "Receipts"
        assert labels.labels[1].label_list_visibility == "labelShow"

    @pytest.mark.asyncio
    async def test_list_history_sends_start_id(self, mock_settings) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/gmail/v1/users/me/history"
            assert request.url.params["startHistoryId"] == "100"
            return httpx.Response(
                200,
                json={
                    "history": [
                        {
                            "id": "101",
                            "messagesAdded": [
                                {"message": {"id": "m9", "threadId": "t9", "labelIds": ["UNREAD"]}}
                            ],
                        }
                    ],
                    "historyId": "105",
                },
            )

        history = await _client(mock_settings, handler).list_history("100")

        assert history.history_id == "105"
        assert history.next_page_token is None
        added = history.history[0].messages_added[0].message
        assert (added.id, added.thread_id, added.label_ids) == ("m9", "t9", ["UNREAD"])

    @pytest.mark.asyncio
    async def test_get_thread_requests_full_format(self, mock_settings, gmail_message_data) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/gmail/v1/users/me/threads/t1"
            assert request.url.params["format"] == "full"
            return httpx.Response(
                200, json={"id": "t1", "historyId": "5", "messages": [gmail_message_data()]}
            )

        thread = await _client(mock_settings, handler).get_thread("t1")

        assert thread.id == "t1"
        assert thread.messages[0].thread_id == "t1"

    @pytest.mark.asyncio
    async def test_get_profile(self, mock_settings) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"emailAddress": "me@example.com", "historyId": "9"})

        profile = await _client(mock_settings, handler).get_profile()

        assert profile.email_address == "me@example.com"

    @pytest.mark.asyncio
    async def test_send_message_posts_raw_and_thread_id(self, mock_settings) -> None:
        bodies: list[dict] = []

        def handler(request: httpx.Request) -> httpx.Response:
            assert request.method == "POST"
            assert request.url.path == "/gmail/v1/users/me/messages/send"
            bodies.append(json.loads(request.content))
            return httpx.Response(200, json={"id": "s1", "threadId": "t1", "labelIds": ["SENT"]})

        sent = await _client(mock_settings, handler).send_message("cmF3", thread_id="t1")

        assert bodies == [{"raw": "cmF3", "threadId": "t1"}]
        assert sent.thread_id == "t1"

    @pytest.mark.asyncio
    async def test_send_message_without_thread_id(self, mock_settings) -> None:
        bodies: list[dict] = []

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append(json.loads(request.content))
            return httpx.Response(200, json={"id": "s1", "threadId": "t9"})

        await _client(mock_settings, handler).send_message("cmF3")

        assert bodies == [{"raw": "cmF3"}]

    @pytest.mark.asyncio
    async def test_retries_server_errors_then_succeeds(self, mock_settings) -> None:
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            if calls == 1:
                return httpx.Response(503, text="Service Unavailable")
            return httpx.Response(200, json={"emailAddress": "me@example.com"})

        profile = await _client(mock_settings, handler).get_profile()

        assert calls == 2
        assert profile.email_address == "me@example.com"

    @pytest.mark.asyncio
    async def test_retries_connect_errors(self, mock_settings) -> None:
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            if calls <= 2:
                raise httpx.ConnectError("connection refused", request=request)
            return httpx.Response(200, json={"emailAddress": "me@example.com"})

        await _client(mock_settings, handler).get_profile()

        assert calls == 3

    @pytest.mark.asyncio
    async def test_rate_limit_surfaces_after_retries(self, mock_settings) -> None:
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            return httpx.Response(429, text="Too Many Requests")

        with pytest.raises(GmailAPIError) as excinfo:
            await _client(mock_settings, handler).get_profile()

        assert calls == mock_settings.max_retries + 1
        assert excinfo.value.status == 429
        assert "Too many requests" in excinfo.value.user_message

    @pytest.mark.asyncio
    async def test_client_errors_are_not_retried(self, mock_settings) -> None:
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            return httpx.Response(404, text="Not Found")

        with pytest.raises(GmailAPIError) as excinfo:
            await _client(mock_settings, handler).get_thread("missing")

        assert calls == 1
        assert excinfo.value.status == 404
        assert excinfo.value.body == "Not Found"

    @pytest.mark.asyncio
    async def test_unauthorized_maps_to_session_expired(self, mock_settings) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(401, text="Unauthorized")

        with pytest.raises(GmailAPIError) as excinfo:
            await _client(mock_settings, handler).get_profile()

        assert "session has expired" in excinfo.value.user_message

    @pytest.mark.asyncio
    async def test_malformed_json_raises_decode_error(self, mock_settings) -> None:
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            return httpx.Response(200, text="<html>not json</html>")

        with pytest.raises(GmailDecodeError) as excinfo:
            await _client(mock_settings, handler).get_profile()

        assert calls == 1
        assert excinfo.value.user_message == "Invalid response from server"

    @pytest.mark.asyncio
    async def test_unexpected_shape_raises_decode_error(self, mock_settings) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"threads": "nope"})

        with pytest.raises(GmailDecodeError):
            await _client(mock_settings, handler).list_threads()

    @pytest.mark.asyncio
    async def test_invalid_base_url_raises_invalid_request(self, mock_settings) -> None:
        settings = mock_settings.model_copy(update={"gmail_api_base_url": "ftp://gmail.test/v1"})

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.UnsupportedProtocol("ftp is not supported", request=request)

        client = _client(settings, handler)

        with pytest.raises(InvalidRequestError) as excinfo:
            await client.get_profile()

        assert excinfo.value.user_message == "Invalid request URL"

    @pytest.mark.asyncio
    async def test_token_provider_failure_raises_authentication_error(self, mock_settings) -> None:
        async def broken_token() -> str:
            raise RuntimeError("keychain locked")

        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("no request expected")

        http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        client = GmailClient(broken_token, mock_settings, http_client=http, sleep=_no_sleep)

        with pytest.raises(AuthenticationError):
            await client.get_profile()

    @pytest.mark.asyncio
    async def test_aclose_keeps_injected_http_client_open(self, mock_settings) -> None:
        http = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200)))
        client = GmailClient(_token, mock_settings, http_client=http)

        await client.aclose()

        assert not http.is_closed
        await http.aclose()
