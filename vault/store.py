"""
vault/store.py -- Cookie-backed credential storage, one encrypted blob per provider.

Storage layout (per provider):
  <provider>_tokens    encrypted JSON record (see vault/cipher.py)
  <provider>_disabled  "1" when the user explicitly disconnected

Both cookies are httpOnly, SameSite=Lax, path "/", max-age one year, and
Secure when SECURE_COOKIES=true.

Pattern: the store is built per request from request.cookies and only ever
writes to the response object handed to put()/clear()/set_disabled(). There
is no process-level mutable state here -- the cipher key is the only shared
input and it is read-only after load.

put() also updates the store's own view of the cookies, so a second read in
the same request (e.g. status after a Jira refresh) sees the rotated record
rather than the one the browser sent.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any, Optional

from starlette.responses import Response

from core.errors import DecryptionError
from core.models import PROVIDERS
from vault.cipher import TokenCipher

logger = logging.getLogger("pmconnect.vault.store")

COOKIE_MAX_AGE = 60 * 60 * 24 * 365  # 1 year


def token_cookie(provider: str) -> str:
    return f"{provider}_tokens"


def disabled_cookie(provider: str) -> str:
    return f"{provider}_disabled"


def _check_provider(provider: str) -> None:
    if provider not in PROVIDERS:
        raise ValueError(f"Unknown provider: {provider!r}")


class CredentialStore:
    def __init__(self, cookies: Mapping[str, str], cipher: TokenCipher, secure: bool = False) -> None:
        self._cookies: dict[str, str] = dict(cookies)
        self._cipher = cipher
        self._secure = secure

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, provider: str) -> Optional[dict[str, Any]]:
        """Return the decrypted record for provider, or None.

        A missing cookie and an unreadable one are the same thing to callers:
        "not connected". Decryption failures are logged at warning level
        without the blob.
        """
        _check_provider(provider)
        blob = self._cookies.get(token_cookie(provider))
        if not blob:
            return None
        try:
            return self._cipher.decrypt_json(blob)
        except DecryptionError as exc:
            logger.warning("Stored %s credential is unreadable (%s); treating as not connected", provider, exc)
            return None

    def is_disabled(self, provider: str) -> bool:
        _check_provider(provider)
        return bool(self._cookies.get(disabled_cookie(provider)))

    # ------------------------------------------------------------------
    # Writes -- confined to the response passed in
    # ------------------------------------------------------------------

    def put(self, provider: str, record: dict[str, Any], response: Response) -> None:
        """Encrypt record into the provider cookie and clear the disabled flag."""
        _check_provider(provider)
        blob = self._cipher.encrypt_json(record)
        self._set(response, token_cookie(provider), blob, COOKIE_MAX_AGE)
        self._set(response, disabled_cookie(provider), "", 0)
        self._cookies[token_cookie(provider)] = blob
        self._cookies.pop(disabled_cookie(provider), None)

    def clear(self, provider: str, response: Response) -> None:
        """Delete the stored blob (zero max-age cookie)."""
        _check_provider(provider)
        self._set(response, token_cookie(provider), "", 0)
        self._cookies.pop(token_cookie(provider), None)

    def set_disabled(self, provider: str, response: Response) -> None:
        """Mark provider as explicitly disconnected, independent of clear()."""
        _check_provider(provider)
        self._set(response, disabled_cookie(provider), "1", COOKIE_MAX_AGE)
        self._cookies[disabled_cookie(provider)] = "1"

    def _set(self, response: Response, name: str, value: str, max_age: int) -> None:
        response.set_cookie(
            name,
            value=value,
            max_age=max_age,
            path="/",
            httponly=True,
            samesite="lax",
            secure=self._secure,
        )
