from __future__ import annotations

import base64
import hashlib
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

from backend.config import settings


def _derive_fernet_key(secret: str) -> bytes:
    """
    Derive a urlsafe base64-encoded 32-byte key from an arbitrary secret.
    """
    digest = hashlib.sha256(secret.encode("utf-8")).digest()
    return base64.urlsafe_b64encode(digest)


def _build_fernet(key_override: Optional[str] = None) -> Fernet:
    """
    Build a Fernet instance from ENCRYPTION_KEY or SECRET_KEY fallback.
    Accepts either a pre-encoded Fernet key or an arbitrary secret which will be derived.
    """
    candidate = key_override or settings.ENCRYPTION_KEY or settings.SECRET_KEY
    try:
        return Fernet(candidate)
    except (ValueError, TypeError):
        return Fernet(_derive_fernet_key(candidate))


def mask_secret(secret: Optional[str]) -> str:
    """Log-safe description of a provider token or password."""
    if not secret:
        return "missing"
    return f"present (length: {len(secret)})"


class CredentialVault:
    """
    Encrypts provider passwords / API tokens stored on integration rows.
    Plaintext only exists in memory while an adapter is talking to the provider.
    """

    def __init__(self, key_override: Optional[str] = None):
        self._fernet = _build_fernet(key_override)

    def encrypt_secret(self, plaintext: Optional[str]) -> Optional[str]:
        if not plaintext:
            return None
        return self._fernet.encrypt(plaintext.encode("utf-8")).decode("utf-8")

    def decrypt_secret(self, token: Optional[str]) -> Optional[str]:
        if not token:
            return None
        try:
            return self._fernet.decrypt(token.encode("utf-8")).decode("utf-8")
        except InvalidToken as e:
            raise ValueError("Stored provider secret cannot be decrypted") from e


# Default instance for convenience
credential_vault = CredentialVault()
