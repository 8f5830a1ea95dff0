"""HTML/plain text to clean plain text extraction.

This runs at fetch time for every message. The AI formatter (if configured)
is layered on top of its output later.
"""

from __future__ import annotations

import re

from bs4 import BeautifulSoup

_TAG_RE = re.compile(r"</?[a-zA-Z][a-zA-Z0-9]*(?:\s[^<>]*)?/?>")
_ATTRIBUTION_RE = re.compile(r"^\s*On .+ wrote:\s*$", re.IGNORECASE)
_INLINE_SPACE_RE = re.compile(r"[ \t\f\v\u00a0]+")
_BLANK_LINES_RE = re.compile(r"\n{3,}")

_DROPPED_TAGS = ("script", "style", "head", "title", "noscript", "template", "blockquote")
_QUOTE_CLASSES = ("gmail_quote", "gmail_attr", "yahoo_quoted")

_BLOCK_TAGS = (
    "p", "div", "br", "li", "tr", "h1", "h2", "h3", "h4", "h5", "h6", "pre", "table", "ul", "ol",
)


def looks_like_html(text: str) -> bool:
    return bool(_TAG_RE.search(text))


def html_to_text(html: str) -> str:
    """Extract visible text from HTML, dropping scripts, styles and quoted replies."""
    soup = BeautifulSoup(html, "html.parser")

    for tag in soup(list(_DROPPED_TAGS)):
        tag.decompose()
    for css_class in _QUOTE_CLASSES:
        for tag in soup.find_all(class_=css_class):
            tag.decompose()

    for tag in soup.find_all("br"):
        tag.replace_with("\n")
    for tag in soup.find_all(list(_BLOCK_TAGS)):
        tag.insert_before("\n")
        tag.insert_after("\n")

    return soup.get_text()


def strip_quoted_reply(text: str) -> str:
    """Drop ``>``-quoted lines and the ``On ... wrote:`` attribution line."""
    kept = [
        line
        for line in text.split("\n")
        if not line.lstrip().startswith(">") and not _ATTRIBUTION_RE.match(line)
    ]
    return "\n".join(kept)


def normalize_whitespace(text: str) -> str:
    """Collapse runs of spaces and blank lines, trim every line and the whole text."""
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    lines = [_INLINE_SPACE_RE.sub(" ", line).strip() for line in text.split("\n")]
    return _BLANK_LINES_RE.sub("\n\n", "\n".join(lines)).strip()


def sanitize_plain_text(text: str | None) -> str:
    """Turn an HTML or plain-text email body into clean plain text.

    Idempotent on plain input: text without tags skips HTML
    parsing. Escaped markup inside HTML (``&lt;b&gt;``) comes out as
    literal tags, which a second pass would treat as HTML.
    """
    if not text:
        return ""
    if looks_like_html(text):
        text = html_to_text(text)
    return normalize_whitespace(strip_quoted_reply(text))
