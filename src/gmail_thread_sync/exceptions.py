"""Custom exceptions for Gmail Thread Sync."""

from __future__ import annotations


class MailSyncError(Exception):
    """Base exception for all Gmail Thread Sync errors."""

    @property
    def user_message(self) -> str:
        """Message suitable for showing in the UI error slot."""
        return str(self)


class GmailAPIError(MailSyncError):
    """Exception raised when the Gmail API answers with a non-2xx status."""

    def __init__(self, status: int, body: str | None = None) -> None:
        self.status = status
        self.body = body
        super().__init__(f"Gmail API request failed with HTTP {status}")

    @property
    def user_message(self) -> str:
        status = self.status
        if status == 401:
            return "Your session has expired. Please sign in again."
        if status == 403:
            return "Access denied. Check your Gmail permissions."
        if status == 404:
            return "The requested resource was not found."
        if status == 429:
            return "Too many requests. Please wait a moment and try again."
        if 500 <= status <= 599:
            return "Gmail servers are temporarily unavailable. Please try again later."
        return f"Request failed (error {status}). Please try again."


class GmailDecodeError(MailSyncError):
    """Exception raised when a Gmail API response cannot be decoded."""

    @property
    def user_message(self) -> str:
        return "Invalid response from server"


class InvalidRequestError(MailSyncError):
    """Exception raised when a request cannot be built (e.g. malformed URL)."""

    @property
    def user_message(self) -> str:
        return "Invalid request URL"


class AuthenticationError(MailSyncError):
    """Exception raised for authentication failures."""

    @property
    def user_message(self) -> str:
        return "Your session has expired. Please sign in again."


class ConfigurationError(MailSyncError):
    """Exception raised for configuration related errors."""


class SanitizationError(MailSyncError):
    """Exception raised when AI content formatting fails."""


class CacheError(MailSyncError):
    """Exception raised for local cache failures."""


class ValidationError(MailSyncError):
    """Exception raised for data validation errors (e.g. incomplete drafts)."""
