"""
providers/slack.py -- Slack OAuth v2 (bot token install).

Slack answers the token call with HTTP 200 even on failure; success is the
"ok" field. The bot token it returns does not expire, so there is no refresh
step -- the stored record is used as-is by the resolver.
"""

from __future__ import annotations

from core import fetcher
from core.config import Settings
from core.errors import ExchangeError
from core.models import SLACK, SlackRecord
from providers.base import Provider

TOKEN_URL = "https://slack.com/api/oauth.v2.access"  # noqa: S105 -- URL, not a password
API_BASE = "https://slack.com/api"


class SlackProvider(Provider):
    name = SLACK
    label = "Slack"
    authorize_endpoint = "https://slack.com/oauth/v2/authorize"
    # Slack expects comma-separated scopes.
    scope = "chat:write,chat:write.public,channels:read"
    client_id_setting = "slack_client_id"
    client_secret_setting = "slack_client_secret"

    def exchange(self, code: str, settings: Settings) -> SlackRecord:
        result = self._essential(
            "slack_auth_failed",
            fetcher.post_form,
            TOKEN_URL,
            {
                "client_id": self.client_id(settings),
                "client_secret": self.client_secret(settings),
                "code": code,
                "redirect_uri": self.redirect_uri(settings),
            },
        )
        bot_token = result.field("access_token")
        if not result.ok or not result.field("ok") or not bot_token:
            raise ExchangeError("slack_auth_failed", result.status, result.field("error", result.body))

        team = result.field("team") or {}
        return SlackRecord(
            bot_token=bot_token,
            team_name=team.get("name") or "Workspace",
            team_id=team.get("id") or "",
        )
