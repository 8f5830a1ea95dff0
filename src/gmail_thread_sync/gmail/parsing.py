"""Helpers for decoding Gmail API threads into domain models."""

from __future__ import annotations

import base64
import binascii
from datetime import datetime, timezone
from email.utils import getaddresses, parsedate_to_datetime

import structlog

from gmail_thread_sync.models import EmailAddress, MailMessage, MailThread
from gmail_thread_sync.models.gmail_api import GmailMessage, GmailThread, MessageHeader, MessagePayload

logger = structlog.get_logger()


def decode_base64url(data: str) -> str | None:
    """Decode a base64url string (padding optional) into UTF-8 text."""
    padded = data + "=" * (-len(data) % 4)
    try:
        raw = base64.urlsafe_b64decode(padded.encode("ascii"))
    except (binascii.Error, ValueError):
        return None
    return raw.decode("utf-8", errors="replace")


def _header_map(headers: list[MessageHeader]) -> dict[str, str]:
    result: dict[str, str] = {}
    for h in headers:
        # Gmail can include duplicates; keep the first.
        result.setdefault(h.name.lower(), h.value)
    return result


def parse_address(value: str | None) -> EmailAddress | None:
    """Parse ``"Display Name <addr>"`` or a bare ``addr``."""
    addresses = parse_address_list(value)
    return addresses[0] if addresses else None


def parse_address_list(value: str | None) -> list[EmailAddress]:
    """Parse a comma separated address header into EmailAddress values."""
    if not value:
        return []
    result: list[EmailAddress] = []
    for name, addr in getaddresses([value]):
        addr = addr.strip()
        if not addr:
            continue
        name = name.strip()
        result.append(EmailAddress(name=name or None, email=addr))
    return result


def parse_date(value: str | None) -> datetime | None:
    """Parse an RFC 822 date header into a timezone aware datetime."""
    if not value:
        return None
    try:
        parsed = parsedate_to_datetime(value.strip())
    except (TypeError, ValueError, IndexError, OverflowError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def extract_bodies(payload: MessagePayload | None) -> tuple[str | None, str | None]:
    """Return the first text/plain and first text/html bodies of a MIME tree.

    Walks depth-first, inspecting each part before its children. Once a body
    of a given type is found it is never overwritten.
    """
    plain: str | None = None
    html: str | None = None
    if payload is None:
        return plain, html

    stack = [payload]
    while stack and (plain is None or html is None):
        part = stack.pop()
        mime = part.mime_type.lower()
        data = part.body.data if part.body is not None else None
        if data:
            if plain is None and mime == "text/plain":
                plain = decode_base64url(data)
            elif html is None and mime == "text/html":
                html = decode_base64url(data)
        stack.extend(reversed(part.parts))

    return plain, html


def message_to_domain(message: GmailMessage, owner_email: str = "") -> MailMessage:
    """Convert a Gmail API message (format=full) to a MailMessage.

    Args:
        message: Gmail API message.
        owner_email: Address of the authenticated user.

    Returns:
        MailMessage: Decoded domain message. A missing or unparseable Date
        header falls back to the current time.
    """
    payload = message.payload
    hm = _header_map(payload.headers if payload is not None else [])

    date = parse_date(hm.get("date"))
    if date is None:
        logger.debug("message_date_unparseable", message_id=message.id, value=hm.get("date"))
        date = datetime.now(timezone.utc)

    plain, html = extract_bodies(payload)

    return MailMessage(
        id=message.id,
        thread_id=message.thread_id,
        sender=parse_address(hm.get("from")) or EmailAddress(email=""),
        to=tuple(parse_address_list(hm.get("to"))),
        cc=tuple(parse_address_list(hm.get("cc"))),
        subject=hm.get("subject") or "",
        date=date,
        snippet=message.snippet or "",
        body_plain=plain,
        body_html=html,
        label_ids=tuple(message.label_ids),
        message_id=(hm.get("message-id") or "").strip() or None,
        references=(hm.get("references") or "").strip() or None,
        owner_email=owner_email,
    )


def thread_to_domain(thread: GmailThread, owner_email: str = "") -> MailThread:
    """Convert a Gmail API thread into a MailThread.

    Duplicate message ids are dropped (first occurrence wins); messages are
    ordered oldest first.
    """
    seen: set[str] = set()
    messages: list[MailMessage] = []
    for raw in thread.messages:
        if raw.id in seen:
            continue
        seen.add(raw.id)
        messages.append(message_to_domain(raw, owner_email))

    messages.sort(key=lambda m: m.date)
    return MailThread(id=thread.id, history_id=thread.history_id, messages=tuple(messages))
