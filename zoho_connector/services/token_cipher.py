"""Symmetric encryption for OAuth tokens kept in the local database."""

from __future__ import annotations

import base64
import hashlib

from cryptography.fernet import Fernet, InvalidToken


class TokenDecryptionError(ValueError):
    """Raised when a stored token cannot be decrypted with the current secret."""


class TokenCipher:
    """Fernet wrapper keyed by a SHA-256 digest of an arbitrary secret."""

    def __init__(self, *, secret: str) -> None:
        if not secret:
            raise ValueError("Token encryption secret must be provided.")
        key = base64.urlsafe_b64encode(hashlib.sha256(secret.encode("utf-8")).digest())
        self._fernet = Fernet(key)

    def encrypt(self, plaintext: str) -> str:
        return self._fernet.encrypt(plaintext.encode("utf-8")).decode("utf-8")

    def decrypt(self, ciphertext: str) -> str:
        try:
            plaintext = self._fernet.decrypt(ciphertext.encode("utf-8"))
        except InvalidToken as exc:
            raise TokenDecryptionError(
                "Stored token cannot be decrypted; was TOKEN_ENCRYPTION_SECRET rotated?"
            ) from exc
        return plaintext.decode("utf-8")


__all__ = ["TokenCipher", "TokenDecryptionError"]
