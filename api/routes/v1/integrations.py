"""
api/routes/v1/integrations.py -- One authenticated call per provider.

Routes:
  GET  /api/v1/jira/myself       -- Jira user behind the active credential
  POST /api/v1/slack/messages    -- post a message as the bot
  GET  /api/v1/calendar/events   -- upcoming events on the primary calendar
  GET  /api/v1/github/user       -- GitHub user behind the active credential

These are the seam between the credential core and the provider business
logic that lives elsewhere. Each handler resolves a credential, makes one
call, and returns the provider JSON untouched. Errors map as:
  not connected / no usable token -> 409 not_connected
  provider rejected the call      -> 502 upstream_error (+ upstream_status)

Handlers are sync def so FastAPI runs them in its threadpool; the outbound
calls use the blocking requests session in core.fetcher.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

import requests
from fastapi import APIRouter, Depends, HTTPException, Query, Response

from api.dependencies import get_credential_store, get_settings
from api.errors import carry_cookies, error_response
from api.models import SlackMessageRequest
from core import fetcher
from core.config import Settings
from core.errors import CredentialUnavailableError, UpstreamAPIError, VaultError
from core.fetcher import HTTPResult
from core.models import GITHUB, GOOGLE, JIRA, SLACK, SlackStaticCredential
from providers.github import API_BASE as GITHUB_API
from providers.github import API_HEADERS as GITHUB_HEADERS
from providers.google import CALENDAR_API
from providers.slack import API_BASE as SLACK_API
from vault.request_builder import build_jira_request
from vault.resolvers import resolve_github, resolve_google, resolve_jira, resolve_slack
from vault.store import CredentialStore

router = APIRouter()


def _call(provider: str, fn: Callable[..., HTTPResult], *args: Any, **kwargs: Any) -> HTTPResult:
    """Run one provider call; non-2xx and network failures become UpstreamAPIError."""
    try:
        result = fn(*args, **kwargs)
    except requests.RequestException as exc:
        raise UpstreamAPIError(provider, None, str(exc)) from exc
    if not result.ok:
        raise UpstreamAPIError(provider, result.status, result.body)
    return result


def _not_connected(label: str) -> CredentialUnavailableError:
    return CredentialUnavailableError(f"{label} is not connected. Connect it in Settings.")


@router.get("/jira/myself")
def jira_myself(
    response: Response,
    settings: Settings = Depends(get_settings),
    store: CredentialStore = Depends(get_credential_store),
) -> Any:
    """Return the Jira account behind the active credential.

    resolve_jira() writes the rotated refresh token onto `response`. Raising
    would discard that response, so failures here are turned into an error
    response that carries the rotation cookie along.
    """
    cred = resolve_jira(store, response, settings)
    try:
        if not cred.connected:
            raise _not_connected("Jira")
        req = build_jira_request(cred, "/myself")
        return _call(JIRA, fetcher.get_json, req.url, headers=req.headers).body
    except VaultError as exc:
        return carry_cookies(response, error_response(exc))


@router.post("/slack/messages")
def slack_post_message(
    body: SlackMessageRequest,
    response: Response,
    settings: Settings = Depends(get_settings),
    store: CredentialStore = Depends(get_credential_store),
) -> Any:
    cred = resolve_slack(store, response, settings)
    if not cred.connected:
        raise _not_connected("Slack")
    channel = body.channel or (cred.channel_id if isinstance(cred, SlackStaticCredential) else None)
    if not channel:
        raise HTTPException(
            status_code=400,
            detail={"code": "missing_channel", "message": "No channel given and SLACK_CHANNEL_ID is not set."},
        )
    result = _call(
        SLACK,
        fetcher.post_json,
        f"{SLACK_API}/chat.postMessage",
        {"channel": channel, "text": body.text},
        headers=fetcher.bearer(cred.bot_token),
    )
    # Slack reports API failures as HTTP 200 with ok=false.
    if not result.field("ok"):
        raise UpstreamAPIError(SLACK, result.status, result.field("error", result.body))
    return result.body


@router.get("/calendar/events")
def calendar_events(
    response: Response,
    max_results: int = Query(default=20, ge=1, le=250),
    settings: Settings = Depends(get_settings),
    store: CredentialStore = Depends(get_credential_store),
) -> Any:
    cred = resolve_google(store, response, settings)
    if not cred.connected:
        raise _not_connected("Google Calendar")
    params = {
        "timeMin": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        "maxResults": max_results,
        "singleEvents": "true",
        "orderBy": "startTime",
    }
    return _call(
        GOOGLE,
        fetcher.get_json,
        f"{CALENDAR_API}/calendars/primary/events",
        headers=fetcher.bearer(cred.access_token),
        params=params,
    ).body


@router.get("/github/user")
def github_user(
    response: Response,
    settings: Settings = Depends(get_settings),
    store: CredentialStore = Depends(get_credential_store),
) -> Any:
    cred = resolve_github(store, response, settings)
    if not cred.connected:
        raise _not_connected("GitHub")
    headers = {**GITHUB_HEADERS, **fetcher.bearer(cred.access_token)}
    return _call(GITHUB, fetcher.get_json, f"{GITHUB_API}/user", headers=headers).body
