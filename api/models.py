"""
API request and response models for PM Connect REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in core/models.py, which
own the internal credential representation. Route handlers map between the two.

The status models carry display metadata only. There is deliberately no
field anywhere in this module that could hold a token.
"""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class DisconnectRequest(BaseModel):
    """Request body for POST /api/v1/auth/disconnect."""

    model_config = ConfigDict(str_strip_whitespace=True)

    service: str = Field(description="Provider to disconnect: jira, slack, google, or github.")


class SlackMessageRequest(BaseModel):
    """Request body for POST /api/v1/slack/messages.

    channel falls back to SLACK_CHANNEL_ID when the static credential is in use.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    text: str = Field(min_length=1, max_length=4000)
    channel: Optional[str] = None


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class ProviderStatus(BaseModel):
    """Connection state of one provider as seen by the settings UI.

    Display fields use the camelCase names the UI already reads.
    """

    connected: bool
    mode: str = "none"
    siteName: Optional[str] = None
    teamName: Optional[str] = None
    email: Optional[str] = None
    username: Optional[str] = None


class StatusResponse(BaseModel):
    """Response for GET /api/v1/auth/status."""

    jira: ProviderStatus
    slack: ProviderStatus
    google: ProviderStatus
    github: ProviderStatus


class DisconnectResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    disconnected: str


class OAuthProviderInfo(BaseModel):
    """One entry in GET /api/v1/auth/providers."""

    model_config = ConfigDict(frozen=True)

    name: str
    label: str


class ErrorDetail(BaseModel):
    """Machine-readable error payload.

    upstream_status is set only for upstream_error responses so a caller can
    tell a rejected credential (401/403) from a rejected request.
    """

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None
    upstream_status: Optional[int] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str
    providers: dict[str, Any] = Field(default_factory=dict)
