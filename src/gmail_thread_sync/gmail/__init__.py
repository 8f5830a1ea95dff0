"""Gmail REST API gateway, message codec and OAuth token provider."""

from .client import GmailClient, TokenProvider
from .parsing import message_to_domain, thread_to_domain

__all__ = ["GmailClient", "TokenProvider", "message_to_domain", "thread_to_domain"]
