"""Carry AI-sanitized bodies forward across re-fetches.

A freshly fetched message never carries a ``sanitized_body``; the value is
computed locally and owned by the cache. Whenever a message is written again
its sanitized content is resolved with the precedence
explicit (fresh) > previously persisted (preserved) > absent.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum

from gmail_thread_sync.models import MailMessage, MailThread


class SanitizedKind(str, Enum):
    ABSENT = "absent"
    PRESERVED = "preserved"
    FRESH = "fresh"


@dataclass(frozen=True)
class SanitizedValue:
    """Resolved sanitized body of a message being written."""

    kind: SanitizedKind
    value: str | None = None
    sanitized_at: datetime | None = None

    @classmethod
    def absent(cls) -> SanitizedValue:
        return cls(SanitizedKind.ABSENT)

    @classmethod
    def preserved(cls, value: str, sanitized_at: datetime | None) -> SanitizedValue:
        return cls(SanitizedKind.PRESERVED, value, sanitized_at)

    @classmethod
    def fresh(cls, value: str, sanitized_at: datetime) -> SanitizedValue:
        return cls(SanitizedKind.FRESH, value, sanitized_at)


def resolve_sanitized(
    incoming: str | None,
    previous: str | None,
    previous_at: datetime | None = None,
    *,
    incoming_at: datetime | None = None,
    now: datetime | None = None,
) -> SanitizedValue:
    """Decide which sanitized body a re-written message keeps.

    Args:
        incoming: ``sanitized_body`` of the message being written.
        previous: Previously stored ``sanitized_body`` for the same message id.
        previous_at: Timestamp stored with ``previous``.
        incoming_at: Timestamp carried by the incoming message, if any.
        now: Timestamp to stamp on fresh values without their own timestamp.
    """
    if incoming is not None:
        return SanitizedValue.fresh(incoming, incoming_at or now or datetime.now(timezone.utc))
    if previous is not None:
        return SanitizedValue.preserved(previous, previous_at)
    return SanitizedValue.absent()


def apply_sanitized(message: MailMessage, resolved: SanitizedValue) -> MailMessage:
    """Return ``message`` carrying the resolved sanitized body."""
    if resolved.kind is SanitizedKind.ABSENT:
        return message
    if message.sanitized_body == resolved.value and message.sanitized_at == resolved.sanitized_at:
        return message
    return message.model_copy(
        update={"sanitized_body": resolved.value, "sanitized_at": resolved.sanitized_at}
    )


def preserve_thread_sanitized(
    incoming: MailThread,
    previous_messages: Mapping[str, MailMessage],
) -> MailThread:
    """Carry sanitized bodies from ``previous_messages`` onto ``incoming``.

    Messages whose incoming value is set keep it unchanged (including its
    timestamp), so re-merging an already merged thread is a no-op.
    """
    changed = False
    messages: list[MailMessage] = []
    for message in incoming.messages:
        previous = previous_messages.get(message.id)
        if message.sanitized_body is None and previous is not None:
            resolved = resolve_sanitized(None, previous.sanitized_body, previous.sanitized_at)
            updated = apply_sanitized(message, resolved)
            changed = changed or updated is not message
            messages.append(updated)
        else:
            messages.append(message)

    if not changed:
        return incoming
    return incoming.with_messages(messages)
