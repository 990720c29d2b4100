"""
Credential encryption — encrypt / decrypt provider tokens at rest.

Uses Fernet (AES-128-CBC + HMAC-SHA256) from the ``cryptography`` library.
Each configured secret is stretched to a Fernet key with SHA-256, so any
passphrase works as ``ESP_TOKEN_SECRET``.  Decryption goes through a
``MultiFernet`` over every configured key, newest first, which is what lets
old ciphertext survive a key rotation.
"""

from __future__ import annotations

import hashlib
import logging
from base64 import urlsafe_b64encode
from typing import List, Optional, Sequence

from cryptography.fernet import Fernet, InvalidToken, MultiFernet

from config.settings import Settings
from esp.errors import ConfigurationError, CredentialDecryptionError
from esp.secrets import require_token_secrets

logger = logging.getLogger(__name__)


def derive_key(secret: str) -> bytes:
    """Map an arbitrary secret string to a urlsafe-base64 32-byte Fernet key."""
    return urlsafe_b64encode(hashlib.sha256(secret.encode("utf-8")).digest())


def _fernets(secrets: Sequence[str]) -> List[Fernet]:
    keys = [s for s in secrets if s]
    if not keys:
        raise ConfigurationError("No ESP token secrets configured")
    return [Fernet(derive_key(s)) for s in keys]


def encrypt(plaintext: str, secret: str) -> str:
    """Encrypt *plaintext* under *secret*; returns the Fernet token as text."""
    if not secret:
        raise ConfigurationError("Cannot encrypt without a secret")
    return Fernet(derive_key(secret)).encrypt(plaintext.encode("utf-8")).decode("ascii")


def decrypt(ciphertext: str, secrets: Sequence[str]) -> str:
    """
    Decrypt *ciphertext* with whichever of *secrets* produced it.

    Raises ``CredentialDecryptionError`` when no key matches or the
    ciphertext is malformed.
    """
    multi = MultiFernet(_fernets(secrets))
    try:
        return multi.decrypt(ciphertext.encode("ascii")).decode("utf-8")
    except (InvalidToken, UnicodeError, ValueError, TypeError) as exc:
        raise CredentialDecryptionError() from exc


def rotate(ciphertext: str, secrets: Sequence[str]) -> str:
    """Re-encrypt *ciphertext* under ``secrets[0]``, whichever key made it."""
    multi = MultiFernet(_fernets(secrets))
    try:
        return multi.rotate(ciphertext.encode("ascii")).decode("ascii")
    except (InvalidToken, UnicodeError, ValueError, TypeError) as exc:
        raise CredentialDecryptionError() from exc


def encrypt_token(plaintext: str, settings: Optional[Settings] = None) -> str:
    """Encrypt with the newest configured token secret."""
    return encrypt(plaintext, require_token_secrets(settings)[0])


def decrypt_token(ciphertext: str, settings: Optional[Settings] = None) -> str:
    """Decrypt with any configured token secret."""
    return decrypt(ciphertext, require_token_secrets(settings))
