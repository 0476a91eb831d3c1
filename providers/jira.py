"""
providers/jira.py -- Atlassian (Jira Cloud) OAuth 2.0 (3LO).

Exchange: POST JSON to the Atlassian token endpoint, then list accessible
resources and keep the first site (cloud id + site name). The site is
essential -- without a cloud id no API URL can be built -- so an empty list
fails the whole exchange with "no_jira_sites".

Refresh tokens rotate: every refresh returns a new refresh token and
invalidates the one presented. Persisting the new one is the resolver's job
(see vault/resolvers.resolve_jira).
"""

from __future__ import annotations

import logging

import requests

from core import fetcher
from core.config import Settings
from core.errors import ExchangeError, RefreshError
from core.models import JIRA, JiraRecord, TokenGrant
from providers.base import Provider

logger = logging.getLogger("pmconnect.providers.jira")

TOKEN_URL = "https://auth.atlassian.com/oauth/token"  # noqa: S105 -- URL, not a password
RESOURCES_URL = "https://api.atlassian.com/oauth/token/accessible-resources"
API_BASE = "https://api.atlassian.com/ex/jira/{cloud_id}/rest/api/3"


class JiraProvider(Provider):
    name = JIRA
    label = "Jira"
    authorize_endpoint = "https://auth.atlassian.com/authorize"
    scope = "read:jira-work write:jira-work read:jira-user offline_access"
    authorize_params = {"audience": "api.atlassian.com", "prompt": "consent"}
    client_id_setting = "jira_oauth_client_id"
    client_secret_setting = "jira_oauth_client_secret"

    def exchange(self, code: str, settings: Settings) -> JiraRecord:
        token = self._essential(
            "jira_token_failed",
            fetcher.post_json,
            TOKEN_URL,
            {
                "grant_type": "authorization_code",
                "client_id": self.client_id(settings),
                "client_secret": self.client_secret(settings),
                "code": code,
                "redirect_uri": self.redirect_uri(settings),
            },
        )
        access_token = token.field("access_token")
        if not token.ok or token.field("error") or not access_token:
            raise ExchangeError("jira_token_failed", token.status, token.body)

        refresh_token = token.field("refresh_token")
        if not refresh_token:
            # Without offline_access there is nothing durable to store.
            raise ExchangeError("jira_no_refresh_token", token.status)

        resources = self._essential(
            "no_jira_sites",
            fetcher.get_json,
            RESOURCES_URL,
            headers=fetcher.bearer(access_token),
        )
        sites = resources.body if resources.ok and isinstance(resources.body, list) else []
        if not sites or not sites[0].get("id"):
            raise ExchangeError("no_jira_sites", resources.status, resources.body)

        site = sites[0]
        logger.info("Jira connected to site %r", site.get("name", ""))
        return JiraRecord(refresh_token=refresh_token, cloud_id=site["id"], site_name=site.get("name", ""))

    def refresh(self, refresh_token: str, settings: Settings) -> TokenGrant:
        """Exchange a refresh token for a new access token AND a new refresh token.

        Raises RefreshError on any HTTP or network failure, ConfigurationError
        when the OAuth client pair is missing.
        """
        payload = {
            "grant_type": "refresh_token",
            "client_id": self.client_id(settings),
            "client_secret": self.client_secret(settings),
            "refresh_token": refresh_token,
        }
        try:
            result = fetcher.post_json(TOKEN_URL, payload)
        except requests.RequestException as exc:
            raise RefreshError(JIRA, body=str(exc)) from exc

        access_token = result.field("access_token")
        if not result.ok or not access_token:
            raise RefreshError(JIRA, result.status, result.body)
        return TokenGrant(
            access_token=access_token,
            refresh_token=result.field("refresh_token"),
            expires_in=result.field("expires_in"),
        )
