"""
vault/cipher.py -- AES-256-GCM encryption for stored credentials.

Blob format (base64, standard alphabet):

    nonce (12 bytes) || tag (16 bytes) || ciphertext

The cryptography library's AESGCM returns ciphertext||tag; encrypt() moves
the tag in front of the ciphertext so the layout is fixed-offset and
independent of payload length. decrypt() reverses it.

Security design decisions:
  Nonce: os.urandom(12) on every call. Reusing a nonce under one GCM key
      leaks the XOR of the plaintexts and breaks authenticity -- never derive
      it from the payload or a counter kept in a cookie.

  Fail closed: any decode, length, or tag failure raises DecryptionError.
      AESGCM verifies the tag before releasing any plaintext, so there is no
      partial-output path.

  Key: TOKEN_ENCRYPTION_KEY, 64 hex chars. Loaded once via load_cipher()
      (lru_cache singleton). Never logged, never returned to callers.

  No key rotation: changing TOKEN_ENCRYPTION_KEY makes every stored blob
      undecryptable. The store then treats those providers as not connected
      and users reconnect.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
import os
from functools import lru_cache
from typing import Any

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from core.config import get_settings
from core.errors import ConfigurationError, DecryptionError

logger = logging.getLogger("pmconnect.vault.cipher")

NONCE_LENGTH = 12
TAG_LENGTH = 16
KEY_LENGTH = 32


class TokenCipher:
    """Authenticated encryption of arbitrary payloads under one key."""

    def __init__(self, key: bytes) -> None:
        if len(key) != KEY_LENGTH:
            raise ConfigurationError(
                "TOKEN_ENCRYPTION_KEY",
                f"TOKEN_ENCRYPTION_KEY must decode to {KEY_LENGTH} bytes, got {len(key)}.",
            )
        self._aead = AESGCM(key)

    @classmethod
    def from_hex(cls, hex_key: str) -> TokenCipher:
        try:
            key = bytes.fromhex(hex_key)
        except ValueError as exc:
            raise ConfigurationError("TOKEN_ENCRYPTION_KEY", "TOKEN_ENCRYPTION_KEY must be hex encoded.") from exc
        return cls(key)

    def encrypt(self, plaintext: bytes | str) -> str:
        """Encrypt plaintext and return the base64 blob."""
        if isinstance(plaintext, str):
            plaintext = plaintext.encode("utf-8")
        nonce = os.urandom(NONCE_LENGTH)
        sealed = self._aead.encrypt(nonce, plaintext, None)
        ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]
        return base64.b64encode(nonce + tag + ciphertext).decode("ascii")

    def decrypt(self, blob: str) -> bytes:
        """Verify and decrypt a blob produced by encrypt().

        Raises:
            DecryptionError: blob is not base64, too short, tampered with,
                or was sealed under a different key.
        """
        try:
            raw = base64.b64decode(blob, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise DecryptionError("blob is not valid base64") from exc
        if len(raw) < NONCE_LENGTH + TAG_LENGTH:
            raise DecryptionError("blob is too short")

        nonce = raw[:NONCE_LENGTH]
        tag = raw[NONCE_LENGTH : NONCE_LENGTH + TAG_LENGTH]
        ciphertext = raw[NONCE_LENGTH + TAG_LENGTH :]
        try:
            return self._aead.decrypt(nonce, ciphertext + tag, None)
        except InvalidTag as exc:
            raise DecryptionError("authentication tag mismatch") from exc

    def encrypt_json(self, data: dict[str, Any]) -> str:
        return self.encrypt(json.dumps(data, separators=(",", ":")))

    def decrypt_json(self, blob: str) -> dict[str, Any]:
        """Decrypt a blob holding a JSON object.

        A blob that authenticates but does not hold a JSON object is treated
        as unreadable, the same as a tag failure.
        """
        plaintext = self.decrypt(blob)
        try:
            data = json.loads(plaintext.decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as exc:
            raise DecryptionError("blob does not contain JSON") from exc
        if not isinstance(data, dict):
            raise DecryptionError("blob does not contain a JSON object")
        return data


def generate_key() -> str:
    """Return a fresh random key, hex encoded, suitable for TOKEN_ENCRYPTION_KEY."""
    return AESGCM.generate_key(bit_length=KEY_LENGTH * 8).hex()


@lru_cache
def load_cipher() -> TokenCipher:
    """Return the process-wide cipher built from TOKEN_ENCRYPTION_KEY.

    Raises ConfigurationError when the key is absent. Called from the API
    lifespan so a misconfigured server refuses to start instead of failing on
    the first OAuth callback.

    In tests: call load_cipher.cache_clear() after changing the key.
    """
    hex_key = get_settings().token_encryption_key
    if not hex_key:
        raise ConfigurationError(
            "TOKEN_ENCRYPTION_KEY",
            "TOKEN_ENCRYPTION_KEY environment variable is required. Generate one with: python main.py keygen",
        )
    cipher = TokenCipher.from_hex(hex_key)
    logger.info("Token cipher initialized")
    return cipher
