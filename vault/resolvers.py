"""
vault/resolvers.py -- Per-request credential resolution for each provider.

Every resolver follows the same order:

  1. Disabled flag set  -> NotConnected. Nothing else is consulted.
  2. Stored OAuth record -> OAuth credential (refreshing where the provider
     needs it).
  3. Static settings     -> static credential.
  4. Otherwise           -> NotConnected.

"connected" therefore means "some usable credential path exists", not "the
user went through OAuth". Callers that need to make a request must still
check for the token field -- see the Jira degrade policy below.

Jira rotation invariant:
  The Jira access token is never stored, so resolve_jira() refreshes on every
  call. Atlassian rotates the refresh token on each refresh and invalidates
  the old one. resolve_jira() therefore writes the rotated record onto the
  response it was given *in the same call* that performed the refresh. There
  is no code path that refreshes without persisting. Callers must return (or
  merge cookies from) that response, or the next request presents a spent
  token and the connection is lost for good.

Jira degrade policy:
  If the refresh fails, resolve_jira() returns JiraOAuthCredential with
  access_token=None. The connection still reports connected=True so the
  settings UI does not flicker to "disconnected" on a transient failure; the
  first real API call then fails with CredentialUnavailableError at the
  point of use. Google, whose refresh is also per-request, degrades to
  NotConnected instead.

Concurrency:
  Refreshes go through a process-wide SingleFlight keyed by
  (provider, sha256(refresh_token)) -- see vault/singleflight.py. A Jira
  grant reused from the grace window is followed forward to the newest
  rotation before it is written, so a late request never persists a spent
  refresh token over a live one.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from functools import lru_cache
from typing import Optional, TypeVar

from starlette.responses import Response

from core.config import Settings, get_settings
from core.errors import ConfigurationError, RefreshError
from core.models import (
    GITHUB,
    GOOGLE,
    JIRA,
    SLACK,
    GitHubCredential,
    GitHubOAuthCredential,
    GitHubRecord,
    GitHubStaticCredential,
    GoogleCredential,
    GoogleOAuthCredential,
    GoogleRecord,
    GoogleStaticCredential,
    JiraCredential,
    JiraOAuthCredential,
    JiraRecord,
    JiraStaticCredential,
    NotConnected,
    ResolvedCredential,
    SlackCredential,
    SlackOAuthCredential,
    SlackRecord,
    SlackStaticCredential,
    TokenGrant,
)
from providers import registry
from vault.singleflight import SingleFlight, refresh_key
from vault.store import CredentialStore

logger = logging.getLogger("pmconnect.vault.resolvers")

R = TypeVar("R")

Resolver = Callable[[CredentialStore, Response, Optional[Settings]], ResolvedCredential]


@lru_cache
def get_refresh_flight() -> SingleFlight[TokenGrant]:
    """Process-wide refresh single-flight. cache_clear() resets it in tests."""
    return SingleFlight(grace_seconds=get_settings().refresh_grace_seconds)


def _load(store: CredentialStore, provider: str, record_cls: Callable[..., R]) -> Optional[R]:
    data = store.get(provider)
    if data is None:
        return None
    try:
        return record_cls.from_dict(data)  # type: ignore[attr-defined]
    except ValueError as exc:
        logger.warning("Stored %s credential is malformed (%s); treating as not connected", provider, exc)
        return None


# ---------------------------------------------------------------------------
# Jira
# ---------------------------------------------------------------------------


def resolve_jira(store: CredentialStore, response: Response, settings: Optional[Settings] = None) -> JiraCredential:
    settings = settings or get_settings()
    if store.is_disabled(JIRA):
        return NotConnected()

    record = _load(store, JIRA, JiraRecord)
    if record is not None:
        return _refresh_jira(store, record, response, settings)

    if settings.jira_email and settings.jira_api_token and settings.jira_domain:
        return JiraStaticCredential(
            email=settings.jira_email,
            api_token=settings.jira_api_token,
            domain=settings.jira_domain,
            project_key=settings.jira_project_key or None,
        )
    return NotConnected()


def _refresh_jira(
    store: CredentialStore, record: JiraRecord, response: Response, settings: Settings
) -> JiraOAuthCredential:
    flight = get_refresh_flight()
    key = refresh_key(JIRA, record.refresh_token)
    try:
        grant = flight.do(key, lambda: registry.jira.refresh(record.refresh_token, settings))
    except (RefreshError, ConfigurationError) as exc:
        logger.warning("Jira token refresh failed for site %r: %s", record.site_name, exc)
        if isinstance(exc, RefreshError) and exc.body is not None:
            logger.debug("Jira refresh response body: %s", exc.body)
        return JiraOAuthCredential(access_token=None, cloud_id=record.cloud_id, site_name=record.site_name)

    grant = _newest_jira_grant(flight, grant, seen={key})
    rotated = JiraRecord(
        refresh_token=grant.refresh_token or record.refresh_token,
        cloud_id=record.cloud_id,
        site_name=record.site_name,
    )
    store.put(JIRA, rotated.to_dict(), response)
    return JiraOAuthCredential(access_token=grant.access_token, cloud_id=record.cloud_id, site_name=record.site_name)


def _newest_jira_grant(flight: SingleFlight[TokenGrant], grant: TokenGrant, seen: set) -> TokenGrant:
    """Follow rotations made by later requests since grant was issued.

    A request carrying an old cookie can be handed a grant from the grace
    window whose refresh token has already been spent. Writing that token
    back would overwrite the live one, so walk forward to the last grant.
    """
    while grant.refresh_token:
        key = refresh_key(JIRA, grant.refresh_token)
        if key in seen:
            break
        seen.add(key)
        newer = flight.completed(key)
        if newer is None or not newer.refresh_token:
            break
        grant = newer
    return grant


# ---------------------------------------------------------------------------
# Slack
# ---------------------------------------------------------------------------


def resolve_slack(store: CredentialStore, response: Response, settings: Optional[Settings] = None) -> SlackCredential:
    settings = settings or get_settings()
    if store.is_disabled(SLACK):
        return NotConnected()

    record = _load(store, SLACK, SlackRecord)
    if record is not None:
        return SlackOAuthCredential(bot_token=record.bot_token, team_name=record.team_name, team_id=record.team_id)

    if settings.slack_bot_token:
        return SlackStaticCredential(bot_token=settings.slack_bot_token, channel_id=settings.slack_channel_id or None)
    return NotConnected()


# ---------------------------------------------------------------------------
# Google Calendar
# ---------------------------------------------------------------------------


def resolve_google(store: CredentialStore, response: Response, settings: Optional[Settings] = None) -> GoogleCredential:
    settings = settings or get_settings()
    if store.is_disabled(GOOGLE):
        return NotConnected()

    # Both modes need the OAuth client pair to mint access tokens.
    if not registry.google.is_configured(settings):
        if store.get(GOOGLE) is not None:
            logger.warning("Stored Google credential ignored: GOOGLE_CLIENT_ID/GOOGLE_CLIENT_SECRET not configured")
        return NotConnected()

    record = _load(store, GOOGLE, GoogleRecord)
    if record is not None:
        access_token = _google_access_token(record.refresh_token, settings)
        if access_token is None:
            return NotConnected()
        return GoogleOAuthCredential(access_token=access_token, email=record.email)

    if settings.google_refresh_token:
        access_token = _google_access_token(settings.google_refresh_token, settings)
        if access_token is None:
            return NotConnected()
        return GoogleStaticCredential(access_token=access_token)
    return NotConnected()


def _google_access_token(refresh_token: str, settings: Settings) -> Optional[str]:
    key = refresh_key(GOOGLE, refresh_token)
    try:
        grant = get_refresh_flight().do(key, lambda: registry.google.refresh(refresh_token, settings))
    except RefreshError as exc:
        logger.warning("Google token refresh failed: %s", exc)
        return None
    return grant.access_token


# ---------------------------------------------------------------------------
# GitHub
# ---------------------------------------------------------------------------


def resolve_github(store: CredentialStore, response: Response, settings: Optional[Settings] = None) -> GitHubCredential:
    settings = settings or get_settings()
    if store.is_disabled(GITHUB):
        return NotConnected()

    record = _load(store, GITHUB, GitHubRecord)
    if record is not None:
        return GitHubOAuthCredential(access_token=record.access_token, username=record.username)

    if settings.github_token:
        return GitHubStaticCredential(access_token=settings.github_token)
    return NotConnected()


RESOLVERS: dict[str, Resolver] = {
    JIRA: resolve_jira,
    SLACK: resolve_slack,
    GOOGLE: resolve_google,
    GITHUB: resolve_github,
}
