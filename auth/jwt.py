"""
Bearer token creation and verification.

Tokens use the same ``payload.signature`` format as OAuth state
(base64url JSON, HMAC-SHA256), keyed with ``config.jwt_secret``
(env var: ``JWT_SECRET``).
"""

from __future__ import annotations

import time
from typing import Optional, Sequence

from fastapi import HTTPException, status

from auth.models import ROLES, Principal
from config.settings import Settings, config
from esp.signing import sign_payload, verify_payload


def create_token(
    user_id: str,
    role: str,
    account_keys: Sequence[str] = (),
    *,
    settings: Optional[Settings] = None,
) -> str:
    """Create a signed token for *user_id* carrying role and account scope."""
    settings = settings or config
    payload = {
        "sub": user_id,
        "role": role,
        "accountKeys": list(account_keys),
        "exp": int(time.time()) + settings.jwt_expiry_seconds,
    }
    return sign_payload(payload, settings.jwt_secret)


def verify_token(token: str, *, settings: Optional[Settings] = None) -> Principal:
    """
    Verify *token* and return its ``Principal``.

    Raises ``HTTPException(401)`` on invalid or expired tokens.
    """
    settings = settings or config
    payload = verify_payload(token, [settings.jwt_secret])
    if payload is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
    if not isinstance(payload.get("exp"), (int, float)) or payload["exp"] < time.time():
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token expired")

    role = payload.get("role")
    user_id = payload.get("sub")
    if role not in ROLES or not isinstance(user_id, str) or not user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token claims")
    account_keys = payload.get("accountKeys")
    return Principal(
        user_id=user_id,
        role=role,
        account_keys=[str(k) for k in account_keys] if isinstance(account_keys, list) else [],
    )
