"""Unit tests for vault/resolvers.py -- per-request credential resolution.

Covers:
- disabled flag overrides both stored and static credentials
- stored OAuth record wins over static settings; static is the fallback
- Jira refresh persists the rotated refresh token on the same response
- concurrent and late requests with a stale cookie never write a spent token
- Jira refresh failure degrades to connected-without-token
- Google refreshes on every resolution and degrades to NotConnected
- Slack static-only configuration
- malformed stored records read as not connected

Provider HTTP is replaced by patching core.fetcher functions; no request
leaves the process.
"""

from __future__ import annotations

import threading
import time
from unittest.mock import patch

import requests
from starlette.responses import Response

from core.fetcher import HTTPResult
from core.models import (
    GitHubOAuthCredential,
    GitHubStaticCredential,
    GoogleOAuthCredential,
    GoogleStaticCredential,
    JiraOAuthCredential,
    JiraStaticCredential,
    NotConnected,
    SlackOAuthCredential,
    SlackStaticCredential,
)
from vault.resolvers import (
    RESOLVERS,
    get_refresh_flight,
    resolve_github,
    resolve_google,
    resolve_jira,
    resolve_slack,
)

JIRA_RECORD = {"refreshToken": "rt-A", "cloudId": "cloud-1", "siteName": "acme"}
JIRA_OAUTH = {"jira_oauth_client_id": "jira-client", "jira_oauth_client_secret": "jira-secret"}
JIRA_STATIC = {"jira_email": "pm@acme.test", "jira_api_token": "api-token", "jira_domain": "acme.atlassian.net"}
GOOGLE_OAUTH = {"google_client_id": "google-client", "google_client_secret": "google-secret"}


def _jira_grant(access: str, refresh: str | None) -> HTTPResult:
    body = {"access_token": access, "expires_in": 3600}
    if refresh:
        body["refresh_token"] = refresh
    return HTTPResult(200, body)


class TestDisabledFlag:
    def test_disabled_overrides_stored_record(self, store_for_cookies, response: Response, make_settings) -> None:
        store = store_for_cookies(
            records={"slack": {"botToken": "xoxb-1", "teamName": "Acme", "teamId": "T1"}},
            cookies={"slack_disabled": "1"},
        )
        assert isinstance(resolve_slack(store, response, make_settings()), NotConnected)

    def test_disabled_overrides_static_fallback(self, store_for_cookies, response: Response, make_settings) -> None:
        settings = make_settings(github_token="ghp-static", **JIRA_STATIC)
        store = store_for_cookies(cookies={"github_disabled": "1", "jira_disabled": "1"})
        assert isinstance(resolve_github(store, response, settings), NotConnected)
        assert isinstance(resolve_jira(store, response, settings), NotConnected)

    def test_disabled_jira_never_refreshes(self, store_for_cookies, response: Response, make_settings) -> None:
        store = store_for_cookies(records={"jira": JIRA_RECORD}, cookies={"jira_disabled": "1"})
        with patch("core.fetcher.post_json") as post:
            assert isinstance(resolve_jira(store, response, make_settings(**JIRA_OAUTH)), NotConnected)
        post.assert_not_called()


class TestFallbackOrder:
    def test_nothing_configured_is_not_connected(self, store_for_cookies, response: Response, make_settings) -> None:
        settings = make_settings()
        store = store_for_cookies()
        for name, resolve in RESOLVERS.items():
            cred = resolve(store, response, settings)
            assert cred.connected is False, name
            assert cred.mode == "none"

    def test_stored_github_wins_over_static(self, store_for_cookies, response: Response, make_settings) -> None:
        store = store_for_cookies(records={"github": {"accessToken": "gho-oauth", "username": "octo"}})
        cred = resolve_github(store, response, make_settings(github_token="ghp-static"))
        assert cred == GitHubOAuthCredential(access_token="gho-oauth", username="octo")
        assert cred.mode == "oauth"

    def test_github_static(self, store_for_cookies, response: Response, make_settings) -> None:
        cred = resolve_github(store_for_cookies(), response, make_settings(github_token="ghp-static"))
        assert cred == GitHubStaticCredential(access_token="ghp-static")
        assert cred.mode == "static"

    def test_slack_static_only(self, store_for_cookies, response: Response, make_settings) -> None:
        settings = make_settings(slack_bot_token="xoxb-static", slack_channel_id="C123")
        cred = resolve_slack(store_for_cookies(), response, settings)
        assert cred == SlackStaticCredential(bot_token="xoxb-static", channel_id="C123")
        assert cred.connected is True

    def test_stored_slack_record(self, store_for_cookies, response: Response, make_settings) -> None:
        store = store_for_cookies(records={"slack": {"botToken": "xoxb-1", "teamName": "Acme", "teamId": "T1"}})
        cred = resolve_slack(store, response, make_settings(slack_bot_token="xoxb-static"))
        assert cred == SlackOAuthCredential(bot_token="xoxb-1", team_name="Acme", team_id="T1")
        assert cred.display() == {"teamName": "Acme"}

    def test_jira_static_requires_all_fields(self, store_for_cookies, response: Response, make_settings) -> None:
        partial = make_settings(jira_email="pm@acme.test", jira_domain="acme.atlassian.net")
        assert isinstance(resolve_jira(store_for_cookies(), response, partial), NotConnected)

        full = make_settings(jira_project_key="PM", **JIRA_STATIC)
        cred = resolve_jira(store_for_cookies(), response, full)
        assert isinstance(cred, JiraStaticCredential)
        assert cred.project_key == "PM"
        assert cred.display() == {"siteName": "acme.atlassian.net"}

    def test_malformed_record_reads_as_absent(self, store_for_cookies, response: Response, make_settings) -> None:
        store = store_for_cookies(records={"github": {"username": "octo"}})
        assert isinstance(resolve_github(store, response, make_settings()), NotConnected)


class TestJiraRotation:
    def test_refresh_persists_rotated_token(
        self, cipher, store_for_cookies, response: Response, make_settings, set_cookies
    ) -> None:
        store = store_for_cookies(records={"jira": JIRA_RECORD})
        with patch("core.fetcher.post_json", return_value=_jira_grant("at-1", "rt-B")) as post:
            cred = resolve_jira(store, response, make_settings(**JIRA_OAUTH))

        assert cred == JiraOAuthCredential(access_token="at-1", cloud_id="cloud-1", site_name="acme")
        assert post.call_args.args[1]["refresh_token"] == "rt-A"
        assert post.call_args.args[1]["grant_type"] == "refresh_token"

        value, _max_age = set_cookies(response)["jira_tokens"]
        assert cipher.decrypt_json(value) == {"refreshToken": "rt-B", "cloudId": "cloud-1", "siteName": "acme"}

    def test_non_rotating_refresh_keeps_old_token(
        self, cipher, store_for_cookies, response: Response, make_settings, set_cookies
    ) -> None:
        store = store_for_cookies(records={"jira": JIRA_RECORD})
        with patch("core.fetcher.post_json", return_value=_jira_grant("at-1", None)):
            resolve_jira(store, response, make_settings(**JIRA_OAUTH))

        value, _max_age = set_cookies(response)["jira_tokens"]
        assert cipher.decrypt_json(value)["refreshToken"] == "rt-A"

    def test_stale_cookie_within_grace_reuses_refresh(
        self, cipher, store_for_cookies, make_settings, set_cookies
    ) -> None:
        """Two requests carrying the same pre-rotation token trigger one refresh.

        The second request still gets the rotated token written back, so
        whichever response the browser keeps last holds a live token.
        """
        settings = make_settings(**JIRA_OAUTH)
        first, second = Response(), Response()
        with patch("core.fetcher.post_json", return_value=_jira_grant("at-1", "rt-B")) as post:
            a = resolve_jira(store_for_cookies(records={"jira": JIRA_RECORD}), first, settings)
            b = resolve_jira(store_for_cookies(records={"jira": JIRA_RECORD}), second, settings)

        assert post.call_count == 1
        assert a.access_token == b.access_token == "at-1"
        for resp in (first, second):
            value, _max_age = set_cookies(resp)["jira_tokens"]
            assert cipher.decrypt_json(value)["refreshToken"] == "rt-B"

    def test_late_stale_cookie_writes_newest_token(
        self, cipher, store_for_cookies, make_settings, set_cookies
    ) -> None:
        """A request still carrying rt-A after A->B->C must not write rt-B back."""
        settings = make_settings(**JIRA_OAUTH)
        replies = [_jira_grant("at-1", "rt-B"), _jira_grant("at-2", "rt-C")]
        late = Response()
        with patch("core.fetcher.post_json", side_effect=replies) as post:
            resolve_jira(store_for_cookies(records={"jira": JIRA_RECORD}), Response(), settings)
            resolve_jira(store_for_cookies(records={"jira": {**JIRA_RECORD, "refreshToken": "rt-B"}}), Response(), settings)
            cred = resolve_jira(store_for_cookies(records={"jira": JIRA_RECORD}), late, settings)

        assert post.call_count == 2
        assert cred.access_token == "at-2"
        value, _max_age = set_cookies(late)["jira_tokens"]
        assert cipher.decrypt_json(value)["refreshToken"] == "rt-C"

    def test_concurrent_requests_share_one_refresh(
        self, cipher, store_for_cookies, make_settings, set_cookies
    ) -> None:
        settings = make_settings(**JIRA_OAUTH)
        get_refresh_flight()
        release = threading.Event()
        calls: list[tuple] = []

        def slow_token_endpoint(*args, **kwargs) -> HTTPResult:
            calls.append(args)
            release.wait(timeout=5)
            return _jira_grant("at-1", "rt-B")

        responses = [Response() for _ in range(6)]
        creds: list = []
        lock = threading.Lock()

        def worker(resp: Response) -> None:
            cred = resolve_jira(store_for_cookies(records={"jira": JIRA_RECORD}), resp, settings)
            with lock:
                creds.append(cred)

        with patch("core.fetcher.post_json", side_effect=slow_token_endpoint):
            threads = [threading.Thread(target=worker, args=(resp,)) for resp in responses]
            for t in threads:
                t.start()
            time.sleep(0.05)
            release.set()
            for t in threads:
                t.join(timeout=5)

        assert len(calls) == 1
        assert [c.access_token for c in creds] == ["at-1"] * len(responses)
        for resp in responses:
            value, _max_age = set_cookies(resp)["jira_tokens"]
            assert cipher.decrypt_json(value)["refreshToken"] == "rt-B"

    def test_refresh_failure_degrades_without_token(
        self, store_for_cookies, response: Response, make_settings, set_cookies
    ) -> None:
        store = store_for_cookies(records={"jira": JIRA_RECORD})
        with patch("core.fetcher.post_json", return_value=HTTPResult(400, {"error": "invalid_grant"})):
            cred = resolve_jira(store, response, make_settings(**JIRA_OAUTH))

        assert cred == JiraOAuthCredential(access_token=None, cloud_id="cloud-1", site_name="acme")
        assert cred.connected is True
        assert "jira_tokens" not in set_cookies(response)

    def test_network_failure_degrades_without_token(self, store_for_cookies, response: Response, make_settings) -> None:
        store = store_for_cookies(records={"jira": JIRA_RECORD})
        with patch("core.fetcher.post_json", side_effect=requests.ConnectionError("down")):
            cred = resolve_jira(store, response, make_settings(**JIRA_OAUTH))
        assert isinstance(cred, JiraOAuthCredential)
        assert cred.access_token is None

    def test_missing_client_config_degrades_without_token(
        self, store_for_cookies, response: Response, make_settings
    ) -> None:
        store = store_for_cookies(records={"jira": JIRA_RECORD})
        with patch("core.fetcher.post_json") as post:
            cred = resolve_jira(store, response, make_settings())
        post.assert_not_called()
        assert isinstance(cred, JiraOAuthCredential)
        assert cred.access_token is None

    def test_failure_is_retried_on_next_request(self, store_for_cookies, make_settings) -> None:
        settings = make_settings(**JIRA_OAUTH)
        replies = [HTTPResult(503, "unavailable"), _jira_grant("at-2", "rt-C")]
        with patch("core.fetcher.post_json", side_effect=replies) as post:
            first = resolve_jira(store_for_cookies(records={"jira": JIRA_RECORD}), Response(), settings)
            second = resolve_jira(store_for_cookies(records={"jira": JIRA_RECORD}), Response(), settings)
        assert post.call_count == 2
        assert first.access_token is None
        assert second.access_token == "at-2"


class TestGoogle:
    def test_stored_record_refreshes_to_access_token(
        self, store_for_cookies, response: Response, make_settings
    ) -> None:
        store = store_for_cookies(records={"google": {"refreshToken": "g-rt", "email": "pm@acme.test"}})
        with patch("core.fetcher.post_form", return_value=HTTPResult(200, {"access_token": "g-at"})) as post:
            cred = resolve_google(store, response, make_settings(**GOOGLE_OAUTH))

        assert cred == GoogleOAuthCredential(access_token="g-at", email="pm@acme.test")
        assert post.call_args.args[1]["refresh_token"] == "g-rt"
        assert cred.display() == {"email": "pm@acme.test"}

    def test_static_refresh_token(self, store_for_cookies, response: Response, make_settings) -> None:
        settings = make_settings(google_refresh_token="g-static", **GOOGLE_OAUTH)
        with patch("core.fetcher.post_form", return_value=HTTPResult(200, {"access_token": "g-at"})):
            cred = resolve_google(store_for_cookies(), response, settings)
        assert cred == GoogleStaticCredential(access_token="g-at")

    def test_refresh_failure_is_not_connected(self, store_for_cookies, response: Response, make_settings) -> None:
        store = store_for_cookies(records={"google": {"refreshToken": "g-rt"}})
        reply = HTTPResult(400, {"error": "invalid_grant", "error_description": "Token has been expired or revoked."})
        with patch("core.fetcher.post_form", return_value=reply):
            cred = resolve_google(store, response, make_settings(**GOOGLE_OAUTH))
        assert isinstance(cred, NotConnected)

    def test_missing_client_config_is_not_connected(
        self, store_for_cookies, response: Response, make_settings
    ) -> None:
        store = store_for_cookies(records={"google": {"refreshToken": "g-rt"}})
        with patch("core.fetcher.post_form") as post:
            cred = resolve_google(store, response, make_settings(google_refresh_token="g-static"))
        post.assert_not_called()
        assert isinstance(cred, NotConnected)

    def test_google_never_writes_cookies(
        self, store_for_cookies, response: Response, make_settings, set_cookies
    ) -> None:
        store = store_for_cookies(records={"google": {"refreshToken": "g-rt"}})
        with patch("core.fetcher.post_form", return_value=HTTPResult(200, {"access_token": "g-at"})):
            resolve_google(store, response, make_settings(**GOOGLE_OAUTH))
        assert set_cookies(response) == {}
