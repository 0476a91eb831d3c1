"""
api/errors.py -- Error envelopes for credential-core exceptions.

api/main.py registers these as exception handlers. Route handlers that must
keep cookies already written to an injected Response (the Jira rotation
cookie) call error_response() directly and carry the cookies across with
carry_cookies(), because FastAPI discards the injected Response when a
handler raises.

Provider bodies are truncated before they reach the envelope: enough to
diagnose a rejected request, never a whole upstream page.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from fastapi.responses import JSONResponse
from starlette.responses import Response

from api.models import ErrorDetail, ErrorResponse
from core.errors import ConfigurationError, CredentialUnavailableError, UpstreamAPIError, VaultError

logger = logging.getLogger("pmconnect.api.errors")

_MAX_DETAIL = 1000


def _detail(body: Any) -> str | None:
    if body is None:
        return None
    text = body if isinstance(body, str) else json.dumps(body, default=str)
    return text[:_MAX_DETAIL]


def error_response(exc: VaultError) -> JSONResponse:
    """Map a VaultError to the standard {"error": {...}} envelope."""
    if isinstance(exc, UpstreamAPIError):
        logger.warning("%s", exc)
        status_code, detail = 502, ErrorDetail(
            code="upstream_error",
            message=f"{exc.provider} rejected the request." if exc.status else f"{exc.provider} is unreachable.",
            detail=_detail(exc.body),
            upstream_status=exc.status,
        )
    elif isinstance(exc, CredentialUnavailableError):
        status_code, detail = 409, ErrorDetail(code="not_connected", message=str(exc))
    elif isinstance(exc, ConfigurationError):
        logger.error("Configuration error: %s", exc)
        status_code, detail = 500, ErrorDetail(code="not_configured", message=str(exc))
    else:
        logger.error("Credential error: %s", exc)
        status_code, detail = 500, ErrorDetail(code="credential_error", message="Credential processing failed.")
    return JSONResponse(status_code=status_code, content=ErrorResponse(error=detail).model_dump())


def carry_cookies(source: Response, target: Response) -> Response:
    """Copy every Set-Cookie header from source onto target and return target."""
    for value in source.headers.getlist("set-cookie"):
        target.headers.append("set-cookie", value)
    return target
