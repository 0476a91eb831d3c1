"""Unit tests for vault/cipher.py -- AES-256-GCM token sealing.

Covers:
- encrypt/decrypt round trip for bytes, str and JSON records
- blob layout: nonce || tag || ciphertext, fresh nonce per call
- tamper detection on every region of the blob
- wrong key, malformed input, bad key material
- load_cipher() refuses to run without TOKEN_ENCRYPTION_KEY
"""

from __future__ import annotations

import base64

import pytest

from core.errors import ConfigurationError, DecryptionError
from vault import cipher as cipher_module
from vault.cipher import NONCE_LENGTH, TAG_LENGTH, TokenCipher, generate_key


def _flip(blob: str, index: int) -> str:
    """Flip one bit of the decoded blob and re-encode it."""
    raw = bytearray(base64.b64decode(blob))
    raw[index] ^= 0x01
    return base64.b64encode(bytes(raw)).decode("ascii")


class TestRoundTrip:
    def test_bytes_round_trip(self, cipher: TokenCipher) -> None:
        assert cipher.decrypt(cipher.encrypt(b"\x00\x01secret")) == b"\x00\x01secret"

    def test_str_is_utf8_encoded(self, cipher: TokenCipher) -> None:
        assert cipher.decrypt(cipher.encrypt("jira-refresh-é")) == "jira-refresh-é".encode("utf-8")

    def test_empty_payload(self, cipher: TokenCipher) -> None:
        blob = cipher.encrypt(b"")
        assert len(base64.b64decode(blob)) == NONCE_LENGTH + TAG_LENGTH
        assert cipher.decrypt(blob) == b""

    def test_json_record_round_trip(self, cipher: TokenCipher) -> None:
        record = {"refreshToken": "rt-1", "cloudId": "cloud-1", "siteName": "acme"}
        assert cipher.decrypt_json(cipher.encrypt_json(record)) == record

    def test_blob_layout_length(self, cipher: TokenCipher) -> None:
        raw = base64.b64decode(cipher.encrypt(b"x" * 40))
        assert len(raw) == NONCE_LENGTH + TAG_LENGTH + 40

    def test_nonce_unique_per_call(self, cipher: TokenCipher) -> None:
        """Same plaintext twice must give different blobs and different nonces."""
        a = cipher.encrypt(b"same")
        b = cipher.encrypt(b"same")
        assert a != b
        assert base64.b64decode(a)[:NONCE_LENGTH] != base64.b64decode(b)[:NONCE_LENGTH]


class TestTamperDetection:
    """A single flipped bit anywhere in the blob must fail closed."""

    @pytest.mark.parametrize("region", ["nonce", "tag", "ciphertext"])
    def test_bit_flip_rejected(self, cipher: TokenCipher, region: str) -> None:
        blob = cipher.encrypt(b"refresh-token-value")
        index = {"nonce": 0, "tag": NONCE_LENGTH, "ciphertext": NONCE_LENGTH + TAG_LENGTH}[region]
        with pytest.raises(DecryptionError):
            cipher.decrypt(_flip(blob, index))

    def test_wrong_key_rejected(self, cipher: TokenCipher) -> None:
        other = TokenCipher.from_hex(generate_key())
        with pytest.raises(DecryptionError):
            other.decrypt(cipher.encrypt(b"secret"))

    def test_truncated_blob_rejected(self, cipher: TokenCipher) -> None:
        short = base64.b64encode(b"\x00" * (NONCE_LENGTH + TAG_LENGTH - 1)).decode("ascii")
        with pytest.raises(DecryptionError):
            cipher.decrypt(short)

    def test_non_base64_rejected(self, cipher: TokenCipher) -> None:
        with pytest.raises(DecryptionError):
            cipher.decrypt("not base64 at all!")

    def test_non_object_json_rejected(self, cipher: TokenCipher) -> None:
        with pytest.raises(DecryptionError):
            cipher.decrypt_json(cipher.encrypt("[1, 2, 3]"))

    def test_non_json_plaintext_rejected(self, cipher: TokenCipher) -> None:
        with pytest.raises(DecryptionError):
            cipher.decrypt_json(cipher.encrypt(b"\xff\xfe"))


class TestKeyMaterial:
    def test_generate_key_is_64_hex_chars(self) -> None:
        key = generate_key()
        assert len(key) == 64
        assert bytes.fromhex(key)

    def test_short_key_rejected(self) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            TokenCipher(b"\x00" * 16)
        assert exc_info.value.setting == "TOKEN_ENCRYPTION_KEY"

    def test_non_hex_key_rejected(self) -> None:
        with pytest.raises(ConfigurationError):
            TokenCipher.from_hex("zz" * 32)

    def test_load_cipher_requires_key(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Without TOKEN_ENCRYPTION_KEY the loader raises instead of returning a cipher."""
        monkeypatch.setattr(cipher_module, "get_settings", lambda: _SettingsStub(""))
        cipher_module.load_cipher.cache_clear()
        try:
            with pytest.raises(ConfigurationError) as exc_info:
                cipher_module.load_cipher()
            assert "keygen" in str(exc_info.value)
        finally:
            cipher_module.load_cipher.cache_clear()

    def test_load_cipher_uses_configured_key(self, cipher: TokenCipher) -> None:
        cipher_module.load_cipher.cache_clear()
        loaded = cipher_module.load_cipher()
        assert loaded.decrypt(cipher.encrypt(b"shared")) == b"shared"


class _SettingsStub:
    def __init__(self, key: str) -> None:
        self.token_encryption_key = key
