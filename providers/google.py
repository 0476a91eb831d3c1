"""
providers/google.py -- Google OAuth 2.0 for Calendar access.

access_type=offline + prompt=consent make Google return a refresh token on
every consent, which is the only thing the stored record keeps. The access
token is re-minted from it on each resolution.

The email shown in the settings UI comes from the OpenID userinfo endpoint.
That lookup is cosmetic: if it fails, the record is stored without an email.
"""

from __future__ import annotations

import requests

from core import fetcher
from core.config import Settings
from core.errors import ExchangeError, RefreshError
from core.models import GOOGLE, GoogleRecord, TokenGrant
from providers.base import Provider

TOKEN_URL = "https://oauth2.googleapis.com/token"  # noqa: S105 -- URL, not a password
USERINFO_URL = "https://openidconnect.googleapis.com/v1/userinfo"
CALENDAR_API = "https://www.googleapis.com/calendar/v3"


class GoogleProvider(Provider):
    name = GOOGLE
    label = "Google Calendar"
    authorize_endpoint = "https://accounts.google.com/o/oauth2/v2/auth"
    scope = "openid email https://www.googleapis.com/auth/calendar"
    authorize_params = {"access_type": "offline", "prompt": "consent"}
    client_id_setting = "google_client_id"
    client_secret_setting = "google_client_secret"

    def exchange(self, code: str, settings: Settings) -> GoogleRecord:
        token = self._essential(
            "google_auth_failed",
            fetcher.post_form,
            TOKEN_URL,
            {
                "code": code,
                "client_id": self.client_id(settings),
                "client_secret": self.client_secret(settings),
                "redirect_uri": self.redirect_uri(settings),
                "grant_type": "authorization_code",
            },
        )
        if not token.ok or token.field("error"):
            raise ExchangeError("google_auth_failed", token.status, token.body)

        refresh_token = token.field("refresh_token")
        if not refresh_token:
            raise ExchangeError("google_no_refresh_token", token.status)

        email = None
        access_token = token.field("access_token")
        if access_token:
            info = self._optional("userinfo", fetcher.get_json, USERINFO_URL, headers=fetcher.bearer(access_token))
            if info is not None:
                email = info.field("email")

        return GoogleRecord(refresh_token=refresh_token, email=email)

    def refresh(self, refresh_token: str, settings: Settings) -> TokenGrant:
        """Mint a short-lived access token. Google does not rotate the refresh token."""
        data = {
            "client_id": self.client_id(settings),
            "client_secret": self.client_secret(settings),
            "refresh_token": refresh_token,
            "grant_type": "refresh_token",
        }
        try:
            result = fetcher.post_form(TOKEN_URL, data)
        except requests.RequestException as exc:
            raise RefreshError(GOOGLE, body=str(exc)) from exc

        access_token = result.field("access_token")
        if not result.ok or not access_token:
            raise RefreshError(GOOGLE, result.status, result.field("error_description", result.body))
        return TokenGrant(access_token=access_token, expires_in=result.field("expires_in"))
