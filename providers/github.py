"""
providers/github.py -- GitHub OAuth App flow.

GitHub OAuth App tokens do not expire, so the stored access token is used
directly. The username is display-only; a failed /user lookup stores the
record without it.
"""

from __future__ import annotations

from core import fetcher
from core.config import Settings
from core.errors import ExchangeError
from core.models import GITHUB, GitHubRecord
from providers.base import Provider

TOKEN_URL = "https://github.com/login/oauth/access_token"  # noqa: S105 -- URL, not a password
API_BASE = "https://api.github.com"
API_HEADERS = {"Accept": "application/vnd.github+json", "X-GitHub-Api-Version": "2022-11-28"}


class GitHubProvider(Provider):
    name = GITHUB
    label = "GitHub"
    authorize_endpoint = "https://github.com/login/oauth/authorize"
    scope = "repo read:org"
    client_id_setting = "github_client_id"
    client_secret_setting = "github_client_secret"

    def exchange(self, code: str, settings: Settings) -> GitHubRecord:
        token = self._essential(
            "github_auth_failed",
            fetcher.post_json,
            TOKEN_URL,
            {
                "client_id": self.client_id(settings),
                "client_secret": self.client_secret(settings),
                "code": code,
                "redirect_uri": self.redirect_uri(settings),
            },
        )
        access_token = token.field("access_token")
        if not token.ok or token.field("error") or not access_token:
            raise ExchangeError("github_auth_failed", token.status, token.body)

        username = None
        user = self._optional(
            "user",
            fetcher.get_json,
            f"{API_BASE}/user",
            headers={**API_HEADERS, **fetcher.bearer(access_token)},
        )
        if user is not None:
            username = user.field("login")

        return GitHubRecord(access_token=access_token, username=username)
