"""
tests/conftest.py -- Shared test fixtures for PM Connect.

This module provides:
  - TEST_KEY environment setup: a fixed TOKEN_ENCRYPTION_KEY so blobs made
    in a test decrypt inside the app
  - cipher / make_settings / store_for_cookies: unit-level building blocks
  - client: TestClient with follow_redirects=False and a fresh cookie jar
  - use_settings: swap the Settings the routes see via dependency_overrides
  - begin_oauth / connect_jira: drive the OAuth start and callback routes
  - set_cookies: parse Set-Cookie headers into {name: (value, max_age)}

The environment must be set before any api/ import: api/main.py reads
ALLOWED_HOSTS and SECRET_KEY when the module is imported, and load_cipher()
reads TOKEN_ENCRYPTION_KEY on first use.
"""

from __future__ import annotations

import os
from collections.abc import Callable, Generator, Mapping
from http.cookies import SimpleCookie
from typing import Any, Optional
from unittest.mock import patch
from urllib.parse import parse_qs, urlparse

TEST_KEY = "0123456789abcdef" * 4

# CRITICAL: set before any core/api import.
os.environ["DEBUG"] = "true"
os.environ["TOKEN_ENCRYPTION_KEY"] = TEST_KEY
os.environ["ALLOWED_HOSTS"] = '["testserver", "localhost", "127.0.0.1"]'
os.environ["OAUTH_RATE_LIMIT"] = "1000/minute"
for _name in (
    "JIRA_OAUTH_CLIENT_ID",
    "JIRA_OAUTH_CLIENT_SECRET",
    "JIRA_EMAIL",
    "JIRA_API_TOKEN",
    "JIRA_DOMAIN",
    "SLACK_CLIENT_ID",
    "SLACK_CLIENT_SECRET",
    "SLACK_BOT_TOKEN",
    "GOOGLE_CLIENT_ID",
    "GOOGLE_CLIENT_SECRET",
    "GOOGLE_REFRESH_TOKEN",
    "GITHUB_CLIENT_ID",
    "GITHUB_CLIENT_SECRET",
    "GITHUB_TOKEN",
):
    os.environ.pop(_name, None)

import pytest
from fastapi.testclient import TestClient
from starlette.responses import Response

from api.main import app
from core.config import Settings, get_settings
from core.fetcher import HTTPResult
from vault.cipher import TokenCipher
from vault.resolvers import get_refresh_flight
from vault.store import CredentialStore

# OAuth client pairs used by tests that exercise the code exchange.
OAUTH_CLIENTS = {
    "jira_oauth_client_id": "jira-client",
    "jira_oauth_client_secret": "jira-secret",
    "slack_client_id": "slack-client",
    "slack_client_secret": "slack-secret",
    "google_client_id": "google-client",
    "google_client_secret": "google-secret",
    "github_client_id": "github-client",
    "github_client_secret": "github-secret",
}


@pytest.fixture(autouse=True)
def _fresh_refresh_flight() -> Generator[None, None, None]:
    """Each test starts with an empty refresh single-flight table."""
    get_refresh_flight.cache_clear()
    yield
    get_refresh_flight.cache_clear()


@pytest.fixture
def cipher() -> TokenCipher:
    return TokenCipher.from_hex(TEST_KEY)


@pytest.fixture
def make_settings() -> Callable[..., Settings]:
    """Build a Settings instance with test defaults plus overrides."""

    def _make(**overrides: Any) -> Settings:
        values: dict[str, Any] = {"debug": True, "token_encryption_key": TEST_KEY}
        values.update(overrides)
        return Settings(**values)

    return _make


@pytest.fixture
def store_for_cookies(cipher: TokenCipher) -> Callable[..., CredentialStore]:
    """Build a CredentialStore over a plain cookie dict, with records sealed on the way in.

    store_for_cookies(records={"jira": {...}}, cookies={"jira_disabled": "1"})
    """

    def _make(
        records: Optional[Mapping[str, dict[str, Any]]] = None,
        cookies: Optional[Mapping[str, str]] = None,
    ) -> CredentialStore:
        jar = dict(cookies or {})
        for provider, record in (records or {}).items():
            jar[f"{provider}_tokens"] = cipher.encrypt_json(record)
        return CredentialStore(jar, cipher)

    return _make


@pytest.fixture
def set_cookies() -> Callable[[Any], dict[str, tuple[str, Optional[int]]]]:
    """Parse every Set-Cookie header of a Starlette or httpx response.

    Returns {name: (value, max_age)}. SimpleCookie undoes the quoting
    Starlette applies to base64 values.
    """

    def _parse(response: Any) -> dict[str, tuple[str, Optional[int]]]:
        headers = response.headers
        raw = headers.getlist("set-cookie") if hasattr(headers, "getlist") else headers.get_list("set-cookie")
        parsed: dict[str, tuple[str, Optional[int]]] = {}
        for header in raw:
            jar: SimpleCookie = SimpleCookie()
            jar.load(header)
            for name, morsel in jar.items():
                max_age = morsel["max-age"]
                parsed[name] = (morsel.value, int(max_age) if max_age != "" else None)
        return parsed

    return _parse


@pytest.fixture
def response() -> Response:
    """A bare response for resolvers and the store to write cookies onto."""
    return Response()


@pytest.fixture
def client() -> Generator[TestClient, None, None]:
    """TestClient over the real app with a fresh cookie jar per test.

    follow_redirects=False: OAuth tests assert on Location headers and on
    cookies set by the redirect itself.
    """
    with TestClient(app, follow_redirects=False, raise_server_exceptions=True) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def begin_oauth() -> Callable[[TestClient, str], str]:
    """GET the start route for provider and return the state it stored in the session."""

    def _begin(client: TestClient, provider: str) -> str:
        resp = client.get(f"/api/v1/auth/{provider}")
        assert resp.status_code == 302
        return parse_qs(urlparse(resp.headers["location"]).query)["state"][0]

    return _begin


@pytest.fixture
def oauth_clients() -> dict[str, str]:
    return dict(OAUTH_CLIENTS)


@pytest.fixture
def connect_jira(begin_oauth: Callable[[TestClient, str], str]) -> Callable[..., Any]:
    """Run the full Jira OAuth flow against a client; returns the callback response.

    The exchange stores refreshToken=<refresh_token>, cloudId=cloud-1,
    siteName=acme. Routes must already see Jira OAuth client settings.
    """

    def _connect(client: TestClient, refresh_token: str = "rt-A") -> Any:
        state = begin_oauth(client, "jira")
        token = HTTPResult(200, {"access_token": "at-0", "refresh_token": refresh_token, "expires_in": 3600})
        sites = HTTPResult(200, [{"id": "cloud-1", "name": "acme"}])
        with patch("core.fetcher.post_json", return_value=token), patch("core.fetcher.get_json", return_value=sites):
            resp = client.get("/api/v1/auth/jira/callback", params={"code": "abc123", "state": state})
        assert resp.status_code == 302
        return resp

    return _connect


@pytest.fixture
def use_settings(make_settings: Callable[..., Settings]) -> Callable[..., Settings]:
    """Make routes see a Settings built from overrides; returns the instance."""

    def _use(**overrides: Any) -> Settings:
        settings = make_settings(**overrides)
        app.dependency_overrides[get_settings] = lambda: settings
        return settings

    return _use
