"""OAuth token provider backed by google-auth.

The sync core only needs "give me a valid bearer token" and "am I signed in".
This provider keeps the OAuth token in a local JSON file, refreshes it when it
expires and can launch the installed-app browser flow when no usable token
exists. The google-auth calls are synchronous and run in a worker thread.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any

import structlog

from gmail_thread_sync.config import Settings
from gmail_thread_sync.exceptions import AuthenticationError, ConfigurationError

logger = structlog.get_logger()


class GoogleTokenProvider:
    """Async callable returning a valid Gmail access token."""

    def __init__(self, settings: Settings | None = None) -> None:
        from gmail_thread_sync.config import get_settings

        self.settings = settings or get_settings()
        self._credentials: Any | None = None
        self._lock = asyncio.Lock()

    async def __call__(self) -> str:
        """Return a currently valid access token, refreshing it if needed.

        Raises:
            ConfigurationError: If the OAuth client credentials file is missing.
            AuthenticationError: If the token cannot be loaded or refreshed.
        """
        async with self._lock:
            creds = self._credentials
            if creds is None or not creds.valid:
                creds = await asyncio.to_thread(self._load_credentials)
                self._credentials = creds
            return creds.token

    def is_authenticated(self) -> bool:
        """Whether a usable (valid or refreshable) token is available."""
        creds = self._credentials
        if creds is None:
            creds = self._read_token_file(Path(self.settings.gmail_token_path))
        if creds is None:
            return False
        return bool(creds.valid or (creds.expired and creds.refresh_token))

    def sign_out(self) -> None:
        """Forget the cached token and delete the token file."""
        self._credentials = None
        token_path = Path(self.settings.gmail_token_path)
        if token_path.exists():
            token_path.unlink()
        logger.info("gmail_signed_out", token_path=str(token_path))

    def _load_credentials(self) -> Any:
        from google.auth.exceptions import GoogleAuthError
        from google.auth.transport.requests import Request

        token_path = Path(self.settings.gmail_token_path)
        creds = self._read_token_file(token_path)

        try:
            if creds is not None and creds.expired and creds.refresh_token:
                logger.info("gmail_token_refresh_started")
                creds.refresh(Request())
                self._write_token_file(token_path, creds)

            if creds is None or not creds.valid:
                creds = self._run_interactive_flow()
                self._write_token_file(token_path, creds)
        except GoogleAuthError as exc:
            logger.exception("gmail_authentication_failed", error=str(exc))
            raise AuthenticationError(str(exc)) from exc

        return creds

    def _read_token_file(self, token_path: Path) -> Any | None:
        from google.oauth2.credentials import Credentials

        if not token_path.exists():
            return None
        try:
            return Credentials.from_authorized_user_file(
                str(token_path), scopes=[self.settings.gmail_scope]
            )
        except ValueError as exc:
            logger.warning("gmail_token_file_invalid", token_path=str(token_path), error=str(exc))
            return None

    def _write_token_file(self, token_path: Path, creds: Any) -> None:
        token_path.parent.mkdir(parents=True, exist_ok=True)
        token_path.write_text(creds.to_json(), encoding="utf-8")

    def _run_interactive_flow(self) -> Any:
        from google_auth_oauthlib.flow import InstalledAppFlow

        credentials_path = Path(self.settings.gmail_credentials_path)
        if not self.settings.gmail_allow_interactive:
            raise AuthenticationError(
                "Gmail OAuth token is missing or invalid and interactive auth is disabled."
            )
        if not credentials_path.exists():
            raise ConfigurationError(
                f"Gmail credentials file not found: {credentials_path}. "
                "Download OAuth client credentials from the Google Cloud Console."
            )

        logger.info(
            "gmail_authentication_started",
            credentials_path=str(credentials_path),
            scope=self.settings.gmail_scope,
        )
        flow = InstalledAppFlow.from_client_secrets_file(
            str(credentials_path), scopes=[self.settings.gmail_scope]
        )
        creds = flow.run_local_server(port=0)
        logger.info("gmail_authentication_completed")
        return creds
