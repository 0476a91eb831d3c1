"""
fetcher.py -- All outbound HTTP to provider token, identity and REST endpoints.

Every call goes through one module-level requests.Session with a bounded
timeout (HTTP_TIMEOUT_SECONDS, default 10s). Nothing here retries: a failed
exchange or refresh is surfaced once, immediately, to the caller.

Functions return an HTTPResult instead of raising on non-2xx so callers can
decide which statuses are fatal -- Slack, for instance, reports OAuth
failures as HTTP 200 with {"ok": false}. Network-level failures (DNS,
refused connection, timeout) propagate as requests.RequestException.

Tests patch these functions (core.fetcher.post_json, ...) rather than the
session, so no real network call is ever made from the test suite.
"""

import logging
from dataclasses import dataclass
from typing import Any, Optional

import requests

from core.config import get_settings

logger = logging.getLogger("pmconnect.fetcher")

# Module-level session shared across all calls for connection pooling.
# max_redirects=3 replaces the requests default of 30 -- these are known
# provider APIs and token endpoints never legitimately redirect far.
_session = requests.Session()
_session.max_redirects = 3


@dataclass
class HTTPResult:
    """Status code plus decoded body (JSON when parseable, else text)."""

    status: int
    body: Any

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def field(self, name: str, default: Any = None) -> Any:
        """Return body[name] when the body is a JSON object, else default."""
        if isinstance(self.body, dict):
            return self.body.get(name, default)
        return default


def _timeout() -> float:
    return get_settings().http_timeout_seconds


def _decode(resp: requests.Response) -> HTTPResult:
    try:
        body: Any = resp.json()
    except ValueError:
        body = resp.text
    return HTTPResult(status=resp.status_code, body=body)


def post_json(url: str, payload: dict[str, Any], headers: Optional[dict[str, str]] = None) -> HTTPResult:
    """POST a JSON body. Used by the Jira and GitHub token endpoints."""
    merged = {"Content-Type": "application/json", "Accept": "application/json"}
    merged.update(headers or {})
    resp = _session.post(url, json=payload, headers=merged, timeout=_timeout())
    return _decode(resp)


def post_form(url: str, data: dict[str, str], headers: Optional[dict[str, str]] = None) -> HTTPResult:
    """POST an application/x-www-form-urlencoded body. Used by Slack and Google."""
    merged = {"Accept": "application/json"}
    merged.update(headers or {})
    resp = _session.post(url, data=data, headers=merged, timeout=_timeout())
    return _decode(resp)


def get_json(
    url: str,
    headers: Optional[dict[str, str]] = None,
    params: Optional[dict[str, Any]] = None,
) -> HTTPResult:
    """GET a JSON resource."""
    merged = {"Accept": "application/json"}
    merged.update(headers or {})
    resp = _session.get(url, headers=merged, params=params, timeout=_timeout())
    return _decode(resp)


def bearer(token: str) -> dict[str, str]:
    """Authorization header for a bearer token."""
    return {"Authorization": f"Bearer {token}"}
