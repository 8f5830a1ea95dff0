"""Domain models for Gmail Thread Sync.

This module contains Pydantic models for the synced conversation state.
Threads and messages are immutable snapshots; use ``model_copy(update=...)``
to derive changed versions.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

UNREAD_LABEL = "UNREAD"

# Sort key for threads without any message.
DISTANT_PAST = datetime.min.replace(tzinfo=timezone.utc)


class EmailAddress(BaseModel):
    """An email address with an optional display name."""

    model_config = ConfigDict(frozen=True)

    name: str | None = Field(default=None, description="Display name")
    email: str = Field(description="Email address")

    @property
    def display_name(self) -> str:
        """Display name, falling back to the address."""
        if self.name:
            return self.name
        return self.email

    def is_same_as(self, other: EmailAddress | str) -> bool:
        """Compare email addresses case-insensitively."""
        other_email = other.email if isinstance(other, EmailAddress) else other
        return self.email.lower() == other_email.lower()


class MailMessage(BaseModel):
    """A single message of a conversation."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(description="Gmail message ID")
    thread_id: str = Field(description="Gmail thread ID")
    sender: EmailAddress = Field(description="From address")
    to: tuple[EmailAddress, ...] = Field(default=(), description="To addresses")
    cc: tuple[EmailAddress, ...] = Field(default=(), description="Cc addresses")
    subject: str = Field(default="", description="Subject header")
    date: datetime = Field(description="Parsed Date header (timezone aware)")
    snippet: str = Field(default="", description="Gmail snippet")
    body_plain: str | None = Field(default=None, description="Plain text body")
    body_html: str | None = Field(default=None, description="HTML body")
    label_ids: tuple[str, ...] = Field(default=(), description="Gmail label IDs")
    message_id: str | None = Field(default=None, description="Message-ID header")
    references: str | None = Field(default=None, description="References header")
    sanitized_body: str | None = Field(
        default=None, description="AI-cleaned markdown body (write-once)"
    )
    sanitized_at: datetime | None = Field(
        default=None, description="When sanitized_body was computed"
    )
    owner_email: str = Field(default="", description="Authenticated user's address")

    @property
    def is_unread(self) -> bool:
        return UNREAD_LABEL in self.label_ids

    @property
    def is_from_owner(self) -> bool:
        """Whether this message was sent by the authenticated user."""
        return bool(self.owner_email) and self.sender.is_same_as(self.owner_email)

    @property
    def display_body(self) -> str:
        """Body for display: sanitized, then plain text, then the snippet."""
        if self.sanitized_body is not None:
            return self.sanitized_body
        if self.body_plain is not None:
            return self.body_plain
        return self.snippet


class MailThread(BaseModel):
    """A conversation: an ordered (oldest first) sequence of messages."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(description="Gmail thread ID")
    history_id: str | None = Field(
        default=None, description="Opaque change token; None means always refetch"
    )
    messages: tuple[MailMessage, ...] = Field(default=(), description="Messages, oldest first")

    @property
    def last_message_date(self) -> datetime:
        if not self.messages:
            return DISTANT_PAST
        return max(m.date for m in self.messages)

    @property
    def unread_count(self) -> int:
        return sum(1 for m in self.messages if m.is_unread)

    @property
    def snippet(self) -> str:
        return self.messages[-1].snippet if self.messages else ""

    @property
    def subject(self) -> str:
        return self.messages[0].subject if self.messages else ""

    @property
    def primary_sender(self) -> EmailAddress | None:
        return self.messages[0].sender if self.messages else None

    def with_messages(self, messages: list[MailMessage] | tuple[MailMessage, ...]) -> MailThread:
        """Return a copy with replaced messages."""
        return self.model_copy(update={"messages": tuple(messages)})


class ComposeMode(str, Enum):
    """Compose mode for the reading pane."""

    NONE = "none"
    NEW_MESSAGE = "new_message"
    REPLY = "reply"


class ComposeDraft(BaseModel):
    """Draft data for composing messages."""

    model_config = ConfigDict(frozen=True)

    recipients: tuple[EmailAddress, ...] = Field(default=())
    cc_recipients: tuple[EmailAddress, ...] = Field(default=())
    subject: str = Field(default="")
    body: str = Field(default="")

    @property
    def has_content(self) -> bool:
        """True if the draft has anything worth preserving."""
        return bool(self.body.strip() or self.subject.strip() or self.recipients)

    @property
    def can_send(self) -> bool:
        """True if the draft has the minimum required fields to send."""
        return bool(self.recipients) and bool(self.body.strip())


__all__ = [
    "ComposeDraft",
    "ComposeMode",
    "DISTANT_PAST",
    "EmailAddress",
    "MailMessage",
    "MailThread",
    "UNREAD_LABEL",
]
