"""Build RFC 2822 plain-text messages for the Gmail send API.

Bodies are quoted-printable (RFC 2045) with CRLF line endings and soft line
breaks keeping every line within 76 columns. Replies carry ``In-Reply-To`` and
``References`` so every mail client threads them under the parent message.
"""

from __future__ import annotations

import base64
import binascii
import time
import uuid
from collections.abc import Sequence
from datetime import datetime
from email.utils import format_datetime, formataddr

from gmail_thread_sync.models import EmailAddress, MailMessage

CRLF = "\r\n"
DEFAULT_MESSAGE_ID_DOMAIN = "gmail-thread-sync.local"

_HEADER_SPECIALS = set('()<>@,;:\\".[]')


def generate_message_id(domain: str = DEFAULT_MESSAGE_ID_DOMAIN) -> str:
    """Return a fresh ``<uuid.timestamp@domain>`` Message-ID."""
    return f"<{uuid.uuid4()}.{int(time.time())}@{domain}>"


def fallback_message_id(message: MailMessage) -> str:
    """Message-ID used when the parent message has no Message-ID header."""
    return f"<{message.id}@mail.gmail.com>"


def needs_header_encoding(value: str) -> bool:
    """Whether a header value contains non-ASCII or control characters."""
    return any(ord(ch) > 127 or ord(ch) < 32 for ch in value)


def encode_header(value: str) -> str:
    """RFC 2047 base64-encode a header value if it is not plain ASCII."""
    if needs_header_encoding(value):
        encoded = base64.b64encode(value.encode("utf-8")).decode("ascii")
        return f"=?UTF-8?B?{encoded}?="
    return value


def format_address(address: EmailAddress) -> str:
    """Format an address for a header, encoding or quoting the name as needed."""
    name = address.name
    if not name:
        return address.email
    if needs_header_encoding(name):
        return f"{encode_header(name)} <{address.email}>"
    if any(ch in _HEADER_SPECIALS for ch in name):
        return formataddr((name, address.email))
    return f"{name} <{address.email}>"


def format_address_list(addresses: Sequence[EmailAddress]) -> str:
    return ", ".join(format_address(a) for a in addresses)


def encode_quoted_printable(text: str) -> str:
    """Quoted-printable encode a text body.

    Line breaks are preserved (emitted as CRLF), ``=`` and non-printable or
    non-ASCII bytes become ``=XX``, and longer lines are soft-wrapped with
    ``=`` + CRLF so no line exceeds 76 columns.
    """
    normalized = text.replace("\r\n", "\n").replace("\r", "\n")
    encoded = binascii.b2a_qp(normalized.encode("utf-8"), quotetabs=False, istext=True)
    return encoded.decode("ascii").replace("\n", CRLF)


def decode_quoted_printable(text: str) -> str:
    """Decode a quoted-printable body back to text with ``\\n`` line endings."""
    raw = binascii.a2b_qp(text.encode("ascii"))
    return raw.decode("utf-8", errors="replace").replace("\r\n", "\n")


def reply_subject(subject: str) -> str:
    """Prefix ``Re:`` unless the subject already carries it."""
    if subject[:3].lower() == "re:":
        return subject
    return f"Re: {subject}"


def _build(
    headers: list[tuple[str, str]],
    body: str,
) -> str:
    lines = [f"{name}: {value}" for name, value in headers]
    lines.append("MIME-Version: 1.0")
    lines.append("Content-Type: text/plain; charset=utf-8")
    lines.append("Content-Transfer-Encoding: quoted-printable")
    lines.append("")
    lines.append(encode_quoted_printable(body))
    return CRLF.join(lines)


def _address_headers(
    sender: EmailAddress,
    to: Sequence[EmailAddress],
    cc: Sequence[EmailAddress],
) -> list[tuple[str, str]]:
    headers = [("From", format_address(sender)), ("To", format_address_list(to))]
    if cc:
        headers.append(("Cc", format_address_list(cc)))
    return headers


def build_new_message(
    sender: EmailAddress,
    to: Sequence[EmailAddress],
    subject: str,
    body: str,
    cc: Sequence[EmailAddress] = (),
    *,
    message_id: str | None = None,
    domain: str = DEFAULT_MESSAGE_ID_DOMAIN,
    date: datetime | None = None,
) -> str:
    """Build a new (unthreaded) RFC 2822 message."""
    headers = _address_headers(sender, to, cc)
    headers.append(("Subject", encode_header(subject)))
    headers.append(("Message-ID", message_id or generate_message_id(domain)))
    headers.append(("Date", format_datetime(date or datetime.now().astimezone())))
    return _build(headers, body)


def build_reply(
    sender: EmailAddress,
    to: Sequence[EmailAddress],
    subject: str,
    body: str,
    in_reply_to: str,
    references: str | None,
    cc: Sequence[EmailAddress] = (),
    *,
    message_id: str | None = None,
    domain: str = DEFAULT_MESSAGE_ID_DOMAIN,
    date: datetime | None = None,
) -> str:
    """Build a reply with threading headers.

    ``References`` is the parent's chain followed by the parent's Message-ID,
    or just the parent's Message-ID when there is no prior chain.
    """
    headers = _address_headers(sender, to, cc)
    headers.append(("Subject", encode_header(reply_subject(subject))))
    headers.append(("Message-ID", message_id or generate_message_id(domain)))
    headers.append(("Date", format_datetime(date or datetime.now().astimezone())))
    headers.append(("In-Reply-To", in_reply_to))
    chain = (references or "").strip()
    headers.append(("References", f"{chain} {in_reply_to}" if chain else in_reply_to))
    return _build(headers, body)


def build_reply_to_message(
    parent: MailMessage,
    sender: EmailAddress,
    body: str,
    *,
    to: Sequence[EmailAddress] | None = None,
    cc: Sequence[EmailAddress] = (),
    message_id: str | None = None,
    domain: str = DEFAULT_MESSAGE_ID_DOMAIN,
) -> str:
    """Build a reply to ``parent``.

    Without explicit recipients the reply goes to the parent's sender, or to
    the parent's recipients when the parent was sent by ``sender`` itself.
    """
    if to is None:
        if parent.sender.is_same_as(sender) and parent.to:
            to = parent.to
        else:
            to = (parent.sender,)
    in_reply_to = parent.message_id or fallback_message_id(parent)
    return build_reply(
        sender,
        to,
        parent.subject,
        body,
        in_reply_to,
        parent.references,
        cc,
        message_id=message_id,
        domain=domain,
    )


def encode_for_transport(raw: str) -> str:
    """Base64url-encode a message for the Gmail ``raw`` field (no padding)."""
    return base64.urlsafe_b64encode(raw.encode("utf-8")).decode("ascii").rstrip("=")
