"""Operator token authentication for feed control endpoints."""

from __future__ import annotations

import secrets
from typing import Optional

from enrollment_telemetry.utils.config import Settings, get_settings


class AuthenticationError(Exception):
    """Base authentication failure."""


class AdminTokenNotConfiguredError(AuthenticationError):
    """Raised when ADMIN_TOKEN is missing."""


class InvalidAdminTokenError(AuthenticationError):
    """Raised when provided token is invalid."""


class OperatorAuthService:
    """Exchanges the operator admin token for short session tokens.

    When ``ADMIN_TOKEN`` is unset, control endpoints are open, which is the
    expected setup for local simulated runs.
    """

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or get_settings()
        self._session_tokens: set[str] = set()

    @property
    def auth_enabled(self) -> bool:
        return bool(self._settings.admin_token)

    def _expected_token(self) -> str:
        if not self._settings.admin_token:
            raise AdminTokenNotConfiguredError(
                "ADMIN_TOKEN is not configured. Set ADMIN_TOKEN in environment variables."
            )
        return self._settings.admin_token

    def login(self, provided_admin_token: str) -> str:
        expected = self._expected_token()
        if not secrets.compare_digest(provided_admin_token, expected):
            raise InvalidAdminTokenError("Invalid admin token")
        session_token = secrets.token_urlsafe(32)
        self._session_tokens.add(session_token)
        return session_token

    def logout(self, bearer_token: str) -> None:
        self._session_tokens.discard(bearer_token)

    def validate_bearer_token(self, bearer_token: str) -> None:
        if not self.auth_enabled:
            return
        if not self._session_tokens:
            raise InvalidAdminTokenError("No active session. Login first.")
        if not any(secrets.compare_digest(bearer_token, token) for token in self._session_tokens):
            raise InvalidAdminTokenError("Invalid bearer token")
