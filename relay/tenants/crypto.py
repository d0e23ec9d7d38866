"""Symmetric encryption of tenant channel credentials at rest."""

from __future__ import annotations

import logging

from cryptography.fernet import Fernet, InvalidToken

from ..errors import CredentialDecryptFailure

logger = logging.getLogger(__name__)


class CredentialCipher:
    """Fernet wrapper; ``key`` is a urlsafe base64 32-byte key."""

    def __init__(self, key: str | bytes | None) -> None:
        self._fernet = Fernet(key) if key else None

    @property
    def configured(self) -> bool:
        return self._fernet is not None

    @staticmethod
    def generate_key() -> str:
        return Fernet.generate_key().decode("ascii")

    def encrypt(self, plaintext: str) -> str:
        if self._fernet is None:
            raise CredentialDecryptFailure("CREDENTIAL_ENCRYPTION_KEY is not configured")
        return self._fernet.encrypt(plaintext.encode("utf-8")).decode("ascii")

    def decrypt(self, token: str) -> str:
        if self._fernet is None:
            raise CredentialDecryptFailure("CREDENTIAL_ENCRYPTION_KEY is not configured")
        try:
            return self._fernet.decrypt(token.encode("ascii")).decode("utf-8")
        except (InvalidToken, UnicodeError, ValueError) as exc:
            raise CredentialDecryptFailure("Stored credential could not be decrypted") from exc


__all__ = ["CredentialCipher"]
