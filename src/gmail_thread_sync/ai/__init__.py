"""Content cleanup: plain-text extraction and optional AI formatting."""

from .pipeline import SanitizationPipeline
from .plain_text import sanitize_plain_text

__all__ = ["SanitizationPipeline", "sanitize_plain_text"]
