"""
core/models.py -- Domain dataclasses for stored records and resolved credentials.

Two families live here:

  Stored records (JiraRecord, SlackRecord, GoogleRecord, GitHubRecord) are
  what gets encrypted into a provider cookie. to_dict()/from_dict() map to
  the persisted camelCase JSON shape. from_dict() raises ValueError when a
  required key is missing; the resolvers treat that exactly like an
  undecryptable blob ("not connected").

  Resolved credentials are a tagged union per provider. Each variant carries
  only the fields valid for its mode, so a static credential can never be
  mistaken for an OAuth one. mode and connected are class-level tags, not
  constructor fields.

Layer rule: pure data, no imports from api/, vault/, or providers/.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, ClassVar, Optional, Union

# ---------------------------------------------------------------------------
# Providers
# ---------------------------------------------------------------------------

JIRA = "jira"
SLACK = "slack"
GOOGLE = "google"
GITHUB = "github"

PROVIDERS: tuple[str, ...] = (JIRA, SLACK, GOOGLE, GITHUB)


def _require(data: dict[str, Any], key: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value:
        raise ValueError(f"stored record is missing {key!r}")
    return value


def _optional(data: dict[str, Any], key: str) -> Optional[str]:
    value = data.get(key)
    return value if isinstance(value, str) and value else None


# ---------------------------------------------------------------------------
# Stored records
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class JiraRecord:
    """Jira OAuth record. The access token is never stored -- it is large and
    short-lived, and is re-derived from the refresh token on every read."""

    refresh_token: str
    cloud_id: str
    site_name: str

    def to_dict(self) -> dict[str, Any]:
        return {"refreshToken": self.refresh_token, "cloudId": self.cloud_id, "siteName": self.site_name}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> JiraRecord:
        return cls(
            refresh_token=_require(data, "refreshToken"),
            cloud_id=_require(data, "cloudId"),
            site_name=data.get("siteName") or "",
        )


@dataclass(frozen=True)
class SlackRecord:
    bot_token: str
    team_name: str
    team_id: str

    def to_dict(self) -> dict[str, Any]:
        return {"botToken": self.bot_token, "teamName": self.team_name, "teamId": self.team_id}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SlackRecord:
        return cls(
            bot_token=_require(data, "botToken"),
            team_name=data.get("teamName") or "Workspace",
            team_id=data.get("teamId") or "",
        )


@dataclass(frozen=True)
class GoogleRecord:
    refresh_token: str
    email: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"refreshToken": self.refresh_token}
        if self.email:
            data["email"] = self.email
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> GoogleRecord:
        return cls(refresh_token=_require(data, "refreshToken"), email=_optional(data, "email"))


@dataclass(frozen=True)
class GitHubRecord:
    access_token: str
    username: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"accessToken": self.access_token}
        if self.username:
            data["username"] = self.username
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> GitHubRecord:
        return cls(access_token=_require(data, "accessToken"), username=_optional(data, "username"))


StoredRecord = Union[JiraRecord, SlackRecord, GoogleRecord, GitHubRecord]


# ---------------------------------------------------------------------------
# Token grant -- result of a code exchange or refresh call
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TokenGrant:
    access_token: str
    refresh_token: Optional[str] = None
    expires_in: Optional[int] = None


# ---------------------------------------------------------------------------
# Resolved credentials (per request, never persisted)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class NotConnected:
    connected: ClassVar[bool] = False
    mode: ClassVar[str] = "none"

    def display(self) -> dict[str, Any]:
        return {}


@dataclass(frozen=True)
class JiraOAuthCredential:
    """access_token is None when the refresh failed.

    The credential still reports connected=True so the settings UI does not
    flicker to "disconnected" on a transient refresh failure; the first real
    API call then fails its own auth and surfaces the error at the point of use.
    """

    connected: ClassVar[bool] = True
    mode: ClassVar[str] = "oauth"

    access_token: Optional[str]
    cloud_id: str
    site_name: str

    def display(self) -> dict[str, Any]:
        return {"siteName": self.site_name}


@dataclass(frozen=True)
class JiraStaticCredential:
    connected: ClassVar[bool] = True
    mode: ClassVar[str] = "static"

    email: str
    api_token: str
    domain: str
    project_key: Optional[str] = None

    def display(self) -> dict[str, Any]:
        return {"siteName": self.domain}


@dataclass(frozen=True)
class SlackOAuthCredential:
    connected: ClassVar[bool] = True
    mode: ClassVar[str] = "oauth"

    bot_token: str
    team_name: str
    team_id: str

    def display(self) -> dict[str, Any]:
        return {"teamName": self.team_name}


@dataclass(frozen=True)
class SlackStaticCredential:
    connected: ClassVar[bool] = True
    mode: ClassVar[str] = "static"

    bot_token: str
    channel_id: Optional[str] = None

    def display(self) -> dict[str, Any]:
        return {}


@dataclass(frozen=True)
class GoogleOAuthCredential:
    connected: ClassVar[bool] = True
    mode: ClassVar[str] = "oauth"

    access_token: str
    email: Optional[str] = None

    def display(self) -> dict[str, Any]:
        return {"email": self.email}


@dataclass(frozen=True)
class GoogleStaticCredential:
    connected: ClassVar[bool] = True
    mode: ClassVar[str] = "static"

    access_token: str

    def display(self) -> dict[str, Any]:
        return {}


@dataclass(frozen=True)
class GitHubOAuthCredential:
    connected: ClassVar[bool] = True
    mode: ClassVar[str] = "oauth"

    access_token: str
    username: Optional[str] = None

    def display(self) -> dict[str, Any]:
        return {"username": self.username}


@dataclass(frozen=True)
class GitHubStaticCredential:
    connected: ClassVar[bool] = True
    mode: ClassVar[str] = "static"

    access_token: str

    def display(self) -> dict[str, Any]:
        return {}


JiraCredential = Union[JiraOAuthCredential, JiraStaticCredential, NotConnected]
SlackCredential = Union[SlackOAuthCredential, SlackStaticCredential, NotConnected]
GoogleCredential = Union[GoogleOAuthCredential, GoogleStaticCredential, NotConnected]
GitHubCredential = Union[GitHubOAuthCredential, GitHubStaticCredential, NotConnected]
ResolvedCredential = Union[JiraCredential, SlackCredential, GoogleCredential, GitHubCredential]
