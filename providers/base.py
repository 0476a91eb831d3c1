"""
providers/base.py -- Shared OAuth exchange machinery for all providers.

Each provider module subclasses Provider and fills in endpoints, scopes and
the exchange() step. Authorization URLs (and their CSRF state value) are
built with authlib's OAuth2Session, which only formats the URL here -- the
token calls themselves go through core.fetcher so every provider shares one
session, one timeout, and one place for tests to patch.

Redirect URI: {APP_URL}/api/v1/auth/<provider>/callback. The same string is
sent in the authorization request and the code exchange; providers reject
the exchange if the two differ by a single byte.

Layer rule: no imports from api/ or vault/.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any, ClassVar, Optional

import requests
from authlib.integrations.requests_client import OAuth2Session

from core.config import Settings
from core.errors import ConfigurationError, ExchangeError
from core.fetcher import HTTPResult
from core.models import StoredRecord

logger = logging.getLogger("pmconnect.providers")

CALLBACK_PATH = "/api/v1/auth/{provider}/callback"


class Provider:
    """One OAuth provider: authorize URL, code exchange, optional refresh."""

    name: ClassVar[str]
    label: ClassVar[str]
    authorize_endpoint: ClassVar[str]
    scope: ClassVar[str]
    authorize_params: ClassVar[dict[str, str]] = {}

    # Settings attribute names for the OAuth client pair.
    client_id_setting: ClassVar[str]
    client_secret_setting: ClassVar[str]

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def client_id(self, settings: Settings) -> str:
        value = getattr(settings, self.client_id_setting)
        if not value:
            raise ConfigurationError(self.client_id_setting.upper())
        return value

    def client_secret(self, settings: Settings) -> str:
        value = getattr(settings, self.client_secret_setting)
        if not value:
            raise ConfigurationError(self.client_secret_setting.upper())
        return value

    def is_configured(self, settings: Settings) -> bool:
        return bool(getattr(settings, self.client_id_setting) and getattr(settings, self.client_secret_setting))

    def redirect_uri(self, settings: Settings) -> str:
        return settings.app_base_url + CALLBACK_PATH.format(provider=self.name)

    # ------------------------------------------------------------------
    # Authorization request
    # ------------------------------------------------------------------

    def authorize_url(self, settings: Settings) -> tuple[str, str]:
        """Return (consent URL, state). The caller stores state in the session.

        Raises ConfigurationError when the OAuth client id is not set.
        """
        client = OAuth2Session(
            client_id=self.client_id(settings),
            scope=self.scope,
            redirect_uri=self.redirect_uri(settings),
        )
        url, state = client.create_authorization_url(self.authorize_endpoint, **self.authorize_params)
        return url, state

    # ------------------------------------------------------------------
    # Code exchange
    # ------------------------------------------------------------------

    def exchange(self, code: str, settings: Settings) -> StoredRecord:
        """Trade an authorization code for the record to persist.

        Raises:
            ExchangeError: token endpoint rejected the code, or an essential
                lookup failed. reason is safe to show in a redirect URL.
            ConfigurationError: client id/secret not configured.
        """
        raise NotImplementedError

    # ------------------------------------------------------------------
    # Helpers for subclasses
    # ------------------------------------------------------------------

    def _essential(self, reason: str, fn: Callable[..., HTTPResult], *args: Any, **kwargs: Any) -> HTTPResult:
        """Run an HTTP call whose network failure aborts the exchange."""
        try:
            return fn(*args, **kwargs)
        except requests.RequestException as exc:
            raise ExchangeError(reason, body=str(exc)) from exc

    def _optional(self, what: str, fn: Callable[..., HTTPResult], *args: Any, **kwargs: Any) -> Optional[HTTPResult]:
        """Run a non-essential lookup. Any failure means "field absent"."""
        try:
            result = fn(*args, **kwargs)
        except requests.RequestException as exc:
            logger.warning("%s %s lookup failed: %s", self.name, what, exc)
            return None
        if not result.ok:
            logger.warning("%s %s lookup returned HTTP %d", self.name, what, result.status)
            return None
        return result
