"""
core/errors.py -- Exception taxonomy for the credential core.

Every error the vault raises derives from VaultError so the API layer can
tell credential problems apart from programming errors. None of these
exceptions ever carries a token, a client secret, or a decrypted blob in its
message -- provider response bodies are attached as attributes for
server-side logging only and must not be echoed to browsers.

Layer rule: no imports from api/, vault/, or providers/.
"""

from __future__ import annotations

from typing import Any


class VaultError(Exception):
    """Base class for credential-core errors."""


class ConfigurationError(VaultError):
    """A required setting (encryption key, OAuth client id/secret) is missing or invalid."""

    def __init__(self, setting: str, message: str | None = None) -> None:
        self.setting = setting
        super().__init__(message or f"{setting} is not configured.")


class DecryptionError(VaultError):
    """A stored blob could not be decrypted (wrong key, corruption, tampering)."""


class ExchangeError(VaultError):
    """The authorization-code exchange (or an essential follow-up lookup) failed.

    reason is the opaque code placed in the ?error= redirect parameter.
    status/body hold the provider response for server-side logs.
    """

    def __init__(self, reason: str, status: int | None = None, body: Any = None) -> None:
        self.reason = reason
        self.status = status
        self.body = body
        super().__init__(f"OAuth exchange failed ({reason}, status={status})")


class RefreshError(VaultError):
    """A stored refresh token did not produce a new access token."""

    def __init__(self, provider: str, status: int | None = None, body: Any = None) -> None:
        self.provider = provider
        self.status = status
        self.body = body
        super().__init__(f"{provider} token refresh failed (status={status})")


class UpstreamAPIError(VaultError):
    """A provider API call failed after a credential was obtained.

    status distinguishes "my credential is bad" (401/403) from "the request
    itself was rejected" (400/404/422...).
    """

    def __init__(self, provider: str, status: int | None, body: Any = None) -> None:
        self.provider = provider
        self.status = status
        self.body = body
        if status is None:
            super().__init__(f"{provider} API unreachable")
        else:
            super().__init__(f"{provider} API returned HTTP {status}")


class CredentialUnavailableError(VaultError):
    """A caller needed a usable credential and none exists for the active mode."""
