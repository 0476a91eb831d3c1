"""
api/routes/v1/auth.py -- Provider connection endpoints.

Routes:
  GET  /api/v1/auth/status               -- per-provider connection state (never tokens)
  GET  /api/v1/auth/providers            -- providers with an OAuth client configured
  POST /api/v1/auth/disconnect           -- clear stored credential + set disabled flag
  GET  /api/v1/auth/{provider}           -- redirect to the provider's consent screen
  GET  /api/v1/auth/{provider}/callback  -- code exchange, store credential, redirect

Route registration order: /auth/status and /auth/providers must be defined
before /auth/{provider} or FastAPI captures "status" as a provider name.

Callback failure policy:
  The browser arrives here from the provider's own UI, so every failure after
  the code check becomes a redirect to {APP_URL}/settings?error=<reason>.
  reason is an opaque code (e.g. jira_token_failed). Provider response bodies
  are logged server-side and never placed in the URL. Only a missing code
  gets a JSON 400, matching a request that did not come from a provider.

Security:
  [S1] OAuth state: the start route stores authlib's state value in the
       signed session; the callback requires an exact match (compare_digest)
       and pops it so a state value is single-use.
  [S2] Cache-Control: no-store on callback redirects -- they set credential
       cookies.
  [S3] OAuth start/callback are rate-limited per IP (OAUTH_RATE_LIMIT).
"""

from __future__ import annotations

import hmac
import logging
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from fastapi.responses import JSONResponse, RedirectResponse

from api.dependencies import get_credential_store, get_settings, require_provider, store_for
from api.limiter import limiter, oauth_rate_limit
from api.models import DisconnectRequest, DisconnectResponse, OAuthProviderInfo, ProviderStatus, StatusResponse
from core.config import Settings
from core.errors import ConfigurationError, ExchangeError
from core.models import PROVIDERS, NotConnected
from providers.registry import get_enabled_providers
from vault.resolvers import RESOLVERS
from vault.store import CredentialStore

logger = logging.getLogger("pmconnect.api.auth")

router = APIRouter()


def _state_key(provider: str) -> str:
    return f"oauth_state_{provider}"


def _settings_redirect(settings: Settings, **params: str) -> RedirectResponse:
    resp = RedirectResponse(f"{settings.app_base_url}/settings?{urlencode(params)}", status_code=302)
    resp.headers["Cache-Control"] = "no-store"  # [S2]
    return resp


# ---------------------------------------------------------------------------
# Read model
# ---------------------------------------------------------------------------


@router.get("/auth/status", response_model=StatusResponse, response_model_exclude_none=True)
def status(
    response: Response,
    settings: Settings = Depends(get_settings),
    store: CredentialStore = Depends(get_credential_store),
) -> StatusResponse:
    """Return connection state for every provider.

    Resolving Jira performs a refresh; the rotated refresh token is written
    onto this response (FastAPI merges cookies from the injected Response).
    A resolver that raises degrades only its own provider to not connected.
    """
    result: dict[str, ProviderStatus] = {}
    for name in PROVIDERS:
        try:
            cred = RESOLVERS[name](store, response, settings)
        except Exception:
            logger.exception("Resolving %s credential failed; reporting not connected", name)
            cred = NotConnected()
        result[name] = ProviderStatus(connected=cred.connected, mode=cred.mode, **cred.display())
    response.headers["Cache-Control"] = "no-store"
    return StatusResponse(**result)


@router.get("/auth/providers", response_model=list[OAuthProviderInfo])
def list_providers(settings: Settings = Depends(get_settings)) -> list[OAuthProviderInfo]:
    """Providers whose OAuth client id and secret are both configured."""
    return [OAuthProviderInfo(**p) for p in get_enabled_providers(settings)]


# ---------------------------------------------------------------------------
# Disconnect
# ---------------------------------------------------------------------------


@router.post("/auth/disconnect", response_model=DisconnectResponse)
def disconnect(
    body: DisconnectRequest,
    store: CredentialStore = Depends(get_credential_store),
) -> JSONResponse:
    """Clear the stored credential and set the disabled flag.

    The flag makes the resolver skip static fallback too, so a disconnected
    provider stays disconnected even when environment credentials exist.
    """
    if body.service not in PROVIDERS:
        raise HTTPException(
            status_code=400,
            detail={
                "code": "invalid_service",
                "message": f"Invalid service. Use: {', '.join(PROVIDERS)}.",
            },
        )
    resp = JSONResponse(content=DisconnectResponse(disconnected=body.service).model_dump())
    store.clear(body.service, resp)
    store.set_disabled(body.service, resp)
    logger.info("Provider %s disconnected", body.service)
    return resp


# ---------------------------------------------------------------------------
# OAuth flow
# ---------------------------------------------------------------------------


@limiter.limit(oauth_rate_limit)  # [S3] must be ABOVE @router to preserve FastAPI introspection
@router.get("/auth/{provider}", name="oauth_start")
def oauth_start(request: Request, provider: str, settings: Settings = Depends(get_settings)) -> RedirectResponse:
    """Redirect the browser to the provider's consent screen."""
    impl = require_provider(provider)
    try:
        url, state = impl.authorize_url(settings)
    except ConfigurationError as exc:
        logger.error("OAuth start for %s refused: %s", provider, exc)
        raise HTTPException(
            status_code=500,
            detail={"code": "not_configured", "message": str(exc)},
        ) from exc
    request.session[_state_key(provider)] = state  # [S1]
    return RedirectResponse(url, status_code=302)


@limiter.limit(oauth_rate_limit)  # [S3]
@router.get("/auth/{provider}/callback", name="oauth_callback")
def oauth_callback(request: Request, provider: str, settings: Settings = Depends(get_settings)) -> Response:
    """Complete the authorization-code flow.

    Flow:
      1. Validate provider; require ?code= (400 JSON if absent).
      2. Verify ?state= against the session [S1].
      3. Exchange code -> tokens (+ site / identity lookups) via the provider.
      4. Encrypt and store the record on the redirect response; this also
         clears the provider's disabled flag.
      5. Redirect to /settings?connected=<provider>.
    Any failure in 3-4 redirects to /settings?error=<reason>.
    """
    impl = require_provider(provider)
    params = request.query_params

    code = params.get("code")
    if not code:
        if params.get("error"):
            # User declined consent, or the provider refused the request.
            logger.info("%s authorization denied: %s", provider, params.get("error"))
            return _settings_redirect(settings, error=f"{provider}_denied")
        raise HTTPException(
            status_code=400,
            detail={"code": "missing_code", "message": "No authorization code provided."},
        )

    expected_state = request.session.pop(_state_key(provider), None)
    received_state = params.get("state", "")
    # Compare bytes: compare_digest rejects non-ASCII str input.
    if not expected_state or not hmac.compare_digest(expected_state.encode(), received_state.encode()):
        logger.warning("%s OAuth callback rejected: state mismatch", provider)
        return _settings_redirect(settings, error=f"{provider}_state_mismatch")

    try:
        record = impl.exchange(code, settings)
        resp = _settings_redirect(settings, connected=provider)
        store_for(request, settings).put(provider, record.to_dict(), resp)
    except ExchangeError as exc:
        logger.error(
            "%s OAuth exchange failed: reason=%s status=%s body=%r", provider, exc.reason, exc.status, exc.body
        )
        return _settings_redirect(settings, error=exc.reason)
    except ConfigurationError as exc:
        logger.error("%s OAuth callback cannot complete: %s", provider, exc)
        return _settings_redirect(settings, error=f"{provider}_not_configured")
    except Exception:
        logger.exception("%s OAuth callback failed unexpectedly", provider)
        return _settings_redirect(settings, error=f"{provider}_callback_error")

    logger.info("Provider %s connected via OAuth", provider)
    return resp
