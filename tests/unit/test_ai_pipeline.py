"""Unit tests for the OpenRouter client and the AI formatting pipeline."""

from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from gmail_thread_sync.ai.client import OpenRouterClient, postprocess_completion
from gmail_thread_sync.ai.pipeline import SanitizationPipeline
from gmail_thread_sync.exceptions import ConfigurationError, SanitizationError


def _completion(content: str) -> dict:
    return {"choices": [{"message": {"role": "assistant", "content": content}}]}


def _openrouter(mock_settings, handler, api_key: str | None = "sk-test") -> OpenRouterClient:
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return OpenRouterClient(mock_settings, api_key=api_key, http_client=http)


class FakeFormatter:
    def __init__(self, available: bool = True, fail_on: set[str] | None = None) -> None:
        self.available = available
        self.fail_on = fail_on or set()
        self.calls: list[str] = []
        self.in_flight = 0
        self.max_in_flight = 0

    def is_available(self) -> bool:
        return self.available

    async def format(self, content: str) -> str:
        self.calls.append(content)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(0)
            if content in self.fail_on:
                raise SanitizationError("boom")
            return f"**{content}**"
        finally:
            self.in_flight -= 1


def test_postprocess_strips_preamble_images_and_html() -> None:
    raw = (
        "Here's the cleaned email content:\n\n"
        "Hi **Bob**,\n\n\n\n![logo](https://cdn.example.com/logo.png)<span>See you</span>"
    )

    assert postprocess_completion(raw) == "Hi **Bob**,\n\nSee you"


def test_postprocess_keeps_regular_content() -> None:
    assert postprocess_completion("  Just text  ") == "Just text"


class TestOpenRouterClient:
    """Test suite for OpenRouterClient."""

    @pytest.mark.asyncio
    async def test_format_posts_chat_completion(self, mock_settings) -> None:
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json=_completion("Here is the formatted email:\nHello"))

        client = _openrouter(mock_settings, handler)
        result = await client.format("hello there, friend")

        assert result == "Hello"
        request = requests[0]
        assert str(request.url) == mock_settings.ai_base_url
        assert request.headers["Authorization"] == "Bearer sk-test"
        payload = json.loads(request.content)
        assert payload["model"] == mock_settings.ai_model
        assert "<input>\nhello there, friend\n</input>" in payload["messages"][0]["content"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [401, 429, 500, 418])
    async def test_http_errors_raise_sanitization_error(self, mock_settings, status) -> None:
        client = _openrouter(mock_settings, lambda r: httpx.Response(status, text="nope"))

        with pytest.raises(SanitizationError):
            await client.format("some content here")

    @pytest.mark.asyncio
    async def test_invalid_payload_raises_sanitization_error(self, mock_settings) -> None:
        client = _openrouter(mock_settings, lambda r: httpx.Response(200, json={"choices": []}))

        with pytest.raises(SanitizationError):
            await client.format("some content here")

    @pytest.mark.asyncio
    async def test_transport_errors_raise_sanitization_error(self, mock_settings) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("offline", request=request)

        with pytest.raises(SanitizationError):
            await _openrouter(mock_settings, handler).format("some content here")

    @pytest.mark.asyncio
    async def test_malformed_base_url_raises_sanitization_error(self, mock_settings) -> None:
        settings = mock_settings.model_copy(update={"ai_base_url": "http://[::1/v1"})
        client = _openrouter(settings, lambda r: httpx.Response(200, json=_completion("x")))

        with pytest.raises(SanitizationError):
            await client.format("some content here")

    @pytest.mark.asyncio
    async def test_missing_key_raises_configuration_error(self, mock_settings) -> None:
        client = _openrouter(mock_settings, lambda r: httpx.Response(200), api_key="")

        assert not client.is_available()
        with pytest.raises(ConfigurationError):
            await client.format("some content here")


class TestSanitizationPipeline:
    """Test suite for SanitizationPipeline."""

    @pytest.mark.asyncio
    async def test_formats_with_preprocessing(self) -> None:
        formatter = FakeFormatter()
        pipeline = SanitizationPipeline(formatter)

        result = await pipeline.sanitize("  Hello   world\n\n\n\nBye  ")

        assert formatter.calls == ["Hello world\n\nBye"]
        assert result == "**Hello world\n\nBye**"

    @pytest.mark.asyncio
    async def test_short_content_is_skipped(self) -> None:
        formatter = FakeFormatter()

        assert await SanitizationPipeline(formatter).sanitize("Thanks!") == "Thanks!"
        assert formatter.calls == []

    @pytest.mark.asyncio
    async def test_unavailable_backend_is_a_no_op(self) -> None:
        text = "A long enough message body"

        assert await SanitizationPipeline(None).sanitize(text) == text
        assert await SanitizationPipeline(FakeFormatter(available=False)).sanitize(text) == text
        assert not SanitizationPipeline(None).is_available

    @pytest.mark.asyncio
    async def test_failures_return_input(self) -> None:
        text = "A long enough message body"
        pipeline = SanitizationPipeline(FakeFormatter(fail_on={text}))

        assert await pipeline.sanitize(text) == text

    @pytest.mark.asyncio
    async def test_sanitize_messages_isolates_failures_and_bounds_concurrency(self) -> None:
        formatter = FakeFormatter(fail_on={"message number 2"})
        pipeline = SanitizationPipeline(formatter, concurrency=2)
        contents = [(f"m{i}", f"message number {i}") for i in range(6)]

        results = await pipeline.sanitize_messages(contents)

        assert results["m2"] == "message number 2"
        assert results["m0"] == "**message number 0**"
        assert len(results) == 6
        assert formatter.max_in_flight <= 2

    def test_from_settings_without_key_disables_ai(self, mock_settings) -> None:
        settings = mock_settings.model_copy(update={"ai_provider": "openrouter", "ai_api_key": None})

        assert not SanitizationPipeline.from_settings(settings).is_available

    def test_from_settings_with_key_enables_ai(self, mock_settings) -> None:
        settings = mock_settings.model_copy(update={"ai_provider": "openrouter", "ai_api_key": "sk"})

        assert SanitizationPipeline.from_settings(settings).is_available

    def test_provider_none_disables_ai(self, mock_settings) -> None:
        settings = mock_settings.model_copy(update={"ai_provider": "none", "ai_api_key": "sk"})

        assert not SanitizationPipeline.from_settings(settings).is_available

    @pytest.mark.asyncio
    async def test_malformed_base_url_is_a_no_op(self, mock_settings) -> None:
        settings = mock_settings.model_copy(update={"ai_base_url": "http://[::1/v1"})
        client = _openrouter(settings, lambda r: httpx.Response(200, json=_completion("x")))
        pipeline = SanitizationPipeline(client)
        text = "A long enough message body"

        assert await pipeline.sanitize(text) == text
        assert await pipeline.sanitize_messages([("m1", text), ("m2", text)]) == {
            "m1": text,
            "m2": text,
        }

    @pytest.mark.asyncio
    async def test_unexpected_formatter_errors_are_isolated(self) -> None:
        class BrokenFormatter(FakeFormatter):
            async def format(self, content: str) -> str:
                if content == "message number 1":
                    raise RuntimeError("unexpected")
                return await super().format(content)

        pipeline = SanitizationPipeline(BrokenFormatter())

        results = await pipeline.sanitize_messages(
            [("m0", "message number 0"), ("m1", "message number 1")]
        )

        assert results == {"m0": "**message number 0**", "m1": "message number 1"}
