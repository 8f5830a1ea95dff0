"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import base64
from datetime import datetime, timezone

import pytest

from gmail_thread_sync.exceptions import GmailAPIError
from gmail_thread_sync.models import EmailAddress, MailMessage, MailThread
from gmail_thread_sync.models.gmail_api import (
    GmailProfile,
    GmailSentMessage,
    GmailThread,
    GmailThreadListResponse,
    GmailThreadSummary,
)


def b64url(text: str) -> str:
    return base64.urlsafe_b64encode(text.encode("utf-8")).decode("ascii").rstrip("=")


@pytest.fixture
def mock_settings(tmp_path):
    """Provide settings isolated from the environment and the working directory."""
    from gmail_thread_sync.config import Settings

    return Settings(
        _env_file=None,
        gmail_api_base_url="https://gmail.test/gmail/v1",
        gmail_token_path=tmp_path / "token.json",
        gmail_credentials_path=tmp_path / "credentials.json",
        gmail_allow_interactive=False,
        cache_db_path=tmp_path / "cache.sqlite3",
        max_retries=2,
        retry_base_delay=0.0,
        ai_provider="none",
        log_level="DEBUG",
        debug=True,
    )


@pytest.fixture
def gmail_message_data():
    """Factory for Gmail API message payloads (wire format)."""

    def build(
        message_id: str = "m1",
        thread_id: str = "t1",
        *,
        sender: str = "Alice Example <alice@example.com>",
        to: str = "me@example.com",
        cc: str | None = None,
        subject: str = "Lunch on Friday",
        date: str = "Mon, 01 Jan 2024 10:00:00 +0000",
        plain: str | None = "See you at noon.",
        html: str | None = None,
        label_ids: tuple[str, ...] = ("INBOX",),
        message_id_header: str | None = None,
        references: str | None = None,
    ) -> dict:
        headers = [
            {"name": "From", "value": sender},
            {"name": "To", "value": to},
            {"name": "Subject", "value": subject},
            {"name": "Date", "value": date},
        ]
        if cc:
            headers.append({"name": "Cc", "value": cc})
        if message_id_header:
            headers.append({"name": "Message-ID", "value": message_id_header})
        if references:
            headers.append({"name": "References", "value": references})

        parts = []
        if plain is not None:
            parts.append({"mimeType": "text/plain", "body": {"data": b64url(plain)}})
        if html is not None:
            parts.append({"mimeType": "text/html", "body": {"data": b64url(html)}})

        return {
            "id": message_id,
            "threadId": thread_id,
            "labelIds": list(label_ids),
            "snippet": (plain or "")[:40],
            "payload": {
                "mimeType": "multipart/alternative",
                "headers": headers,
                "body": {"size": 0},
                "parts": parts,
            },
        }

    return build


@pytest.fixture
def gmail_thread(gmail_message_data):
    """Factory for GmailThread wire models with one message per given date."""

    def build(
        thread_id: str,
        history_id: str | None = "100",
        dates: tuple[str, ...] = ("Mon, 01 Jan 2024 10:00:00 +0000",),
        **message_kwargs,
    ) -> GmailThread:
        messages = [
            gmail_message_data(f"{thread_id}-m{i}", thread_id, date=date, **message_kwargs)
            for i, date in enumerate(dates)
        ]
        return GmailThread.model_validate(
            {"id": thread_id, "historyId": history_id, "messages": messages}
        )

    return build


@pytest.fixture
def make_message():
    """Factory for domain messages."""

    def build(
        id_: str = "m1",
        thread_id: str = "t1",
        *,
        date: datetime | None = None,
        sender: EmailAddress | None = None,
        **kwargs,
    ) -> MailMessage:
        return MailMessage(
            id=id_,
            thread_id=thread_id,
            sender=sender or EmailAddress(name="Alice", email="alice@example.com"),
            to=kwargs.pop("to", (EmailAddress(email="me@example.com"),)),
            subject=kwargs.pop("subject", "Hello"),
            date=date or datetime(2024, 1, 1, 10, 0, tzinfo=timezone.utc),
            snippet=kwargs.pop("snippet", "Hello there"),
            **kwargs,
        )

    return build


@pytest.fixture
def make_thread(make_message):
    """Factory for domain threads with a single message at ``day`` of January 2024."""

    def build(thread_id: str, day: int = 1, history_id: str | None = "1", **message_kwargs) -> MailThread:
        message = make_message(
            f"{thread_id}-m0",
            thread_id,
            date=datetime(2024, 1, day, 10, 0, tzinfo=timezone.utc),
            **message_kwargs,
        )
        return MailThread(id=thread_id, history_id=history_id, messages=(message,))

    return build


class FakeGateway:
    """In-memory stand-in for GmailClient.

    Threads are listed in the given order; page tokens are stringified offsets.
    """

    def __init__(
        self,
        threads: list[GmailThread] | None = None,
        *,
        page_size: int | None = None,
        owner_email: str = "me@example.com",
    ) -> None:
        self.threads: dict[str, GmailThread] = {}
        self.order: list[str] = []
        self.page_size = page_size
        self.owner_email = owner_email
        self.list_calls: list[str | None] = []
        self.get_calls: list[str] = []
        self.sent: list[tuple[str, str | None]] = []
        self.list_error: Exception | None = None
        self.get_errors: dict[str, Exception] = {}
        self.profile_error: Exception | None = None
        self.send_error: Exception | None = None
        for thread in threads or []:
            self.put(thread)

    def put(self, thread: GmailThread, *, first: bool = False) -> None:
        if thread.id not in self.threads:
            if first:
                self.order.insert(0, thread.id)
            else:
                self.order.append(thread.id)
        self.threads[thread.id] = thread

    async def list_threads(self, label_ids=(), query=None, page_token=None, max_results=50):
        self.list_calls.append(page_token)
        if self.list_error is not None:
            raise self.list_error
        size = self.page_size or max_results
        start = int(page_token or 0)
        ids = self.order[start : start + size]
        next_token = str(start + size) if start + size < len(self.order) else None
        return GmailThreadListResponse(
            threads=[
                GmailThreadSummary(id=i, history_id=self.threads[i].history_id) for i in ids
            ],
            next_page_token=next_token,
        )

    async def get_thread(self, thread_id: str, format: str = "full") -> GmailThread:
        self.get_calls.append(thread_id)
        if thread_id in self.get_errors:
            raise self.get_errors[thread_id]
        if thread_id not in self.threads:
            raise GmailAPIError(404, "Not Found")
        return self.threads[thread_id]

    async def get_profile(self) -> GmailProfile:
        if self.profile_error is not None:
            raise self.profile_error
        return GmailProfile(email_address=self.owner_email)

    async def send_message(self, raw: str, thread_id: str | None = None) -> GmailSentMessage:
        if self.send_error is not None:
            raise self.send_error
        self.sent.append((raw, thread_id))
        return GmailSentMessage(id=f"sent{len(self.sent)}", thread_id=thread_id or "t-sent")

    async def aclose(self) -> None:
        return None


@pytest.fixture
def fake_gateway():
    return FakeGateway
