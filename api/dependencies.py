"""
api/dependencies.py -- FastAPI Depends() helpers for the credential core.

get_credential_store() builds a fresh CredentialStore from the request's
cookies for every request. Nothing credential-related is cached across
requests; the cipher singleton is the only shared input.

get_settings is re-exported so route modules and test overrides
(app.dependency_overrides[get_settings]) refer to one callable.
"""

from __future__ import annotations

from fastapi import Depends, HTTPException, Request

from core.config import Settings, get_settings
from core.models import PROVIDERS
from providers.base import Provider
from providers.registry import get_provider
from vault.cipher import load_cipher
from vault.store import CredentialStore

__all__ = ["get_settings", "get_credential_store", "store_for", "require_provider"]


def store_for(request: Request, settings: Settings) -> CredentialStore:
    return CredentialStore(request.cookies, load_cipher(), secure=settings.secure_cookies)


def get_credential_store(request: Request, settings: Settings = Depends(get_settings)) -> CredentialStore:
    """Per-request store over the incoming cookies."""
    return store_for(request, settings)


def require_provider(provider: str) -> Provider:
    """Resolve a {provider} path segment or raise 404.

    Validating against the registry first means an arbitrary path segment
    never reaches a cookie name, a session key, or an outbound URL.
    """
    impl = get_provider(provider)
    if impl is None:
        raise HTTPException(
            status_code=404,
            detail={
                "code": "unknown_provider",
                "message": f"Unknown provider. Use one of: {', '.join(PROVIDERS)}.",
            },
        )
    return impl
