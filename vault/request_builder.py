"""
vault/request_builder.py -- URL + auth header for a Jira REST call.

OAuth mode goes through Atlassian's API gateway keyed by cloud id with a
bearer token. Static mode talks to the tenant's own domain with basic auth
(email:api_token). Anything else raises -- a malformed request is never
built. Callers are expected to check credential.connected first; this is the
last line of defence, not the first.
"""

from __future__ import annotations

import base64
from dataclasses import dataclass

from core.errors import CredentialUnavailableError
from core.models import JiraCredential, JiraOAuthCredential, JiraStaticCredential
from providers.jira import API_BASE

_JSON_HEADERS = {"Content-Type": "application/json", "Accept": "application/json"}


@dataclass(frozen=True)
class JiraRequest:
    url: str
    headers: dict[str, str]


def build_jira_request(credential: JiraCredential, path: str) -> JiraRequest:
    """Build the request target for a Jira REST API v3 path such as "/myself".

    Raises:
        CredentialUnavailableError: not connected, or OAuth mode without an
            access token (refresh failed), or static mode missing a field.
    """
    if not path.startswith("/"):
        path = "/" + path

    if isinstance(credential, JiraOAuthCredential):
        if not credential.access_token or not credential.cloud_id:
            raise CredentialUnavailableError("Jira OAuth credential has no usable access token; reconnect Jira.")
        return JiraRequest(
            url=API_BASE.format(cloud_id=credential.cloud_id) + path,
            headers={"Authorization": f"Bearer {credential.access_token}", **_JSON_HEADERS},
        )

    if isinstance(credential, JiraStaticCredential):
        if not (credential.email and credential.api_token and credential.domain):
            raise CredentialUnavailableError("Jira static credential is incomplete.")
        basic = base64.b64encode(f"{credential.email}:{credential.api_token}".encode("utf-8")).decode("ascii")
        return JiraRequest(
            url=f"https://{credential.domain}/rest/api/3{path}",
            headers={"Authorization": f"Basic {basic}", **_JSON_HEADERS},
        )

    raise CredentialUnavailableError("No Jira credentials available.")
