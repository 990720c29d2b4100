"""
Signed payloads — ``base64url(json) "." base64url(HMAC-SHA256)``.

Used for OAuth state tokens and the service's bearer tokens.  The full
256-bit digest is kept and compared in constant time.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
from typing import Any, Dict, Optional, Sequence


def b64url_encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def b64url_decode(segment: str) -> bytes:
    padding = "=" * (-len(segment) % 4)
    return base64.urlsafe_b64decode((segment + padding).encode("ascii"))


def _signature(encoded_payload: str, secret: str) -> str:
    digest = hmac.new(secret.encode("utf-8"), encoded_payload.encode("utf-8"), hashlib.sha256).digest()
    return b64url_encode(digest)


def sign_payload(payload: Dict[str, Any], secret: str) -> str:
    encoded = b64url_encode(json.dumps(payload, separators=(",", ":")).encode("utf-8"))
    return f"{encoded}.{_signature(encoded, secret)}"


def verify_payload(token: str, secrets: Sequence[str]) -> Optional[Dict[str, Any]]:
    """
    Return the decoded payload if *token* was signed by any of *secrets*.

    Returns ``None`` on malformed input, signature mismatch, or a payload
    that is not a JSON object.
    """
    if not isinstance(token, str) or token.count(".") != 1:
        return None
    encoded, signature = token.split(".", 1)
    if not encoded or not signature:
        return None

    matched = False
    for secret in secrets:
        expected = _signature(encoded, secret).encode("ascii") if secret else b""
        if expected and hmac.compare_digest(expected, signature.encode("utf-8")):
            matched = True
            break
    if not matched:
        return None

    try:
        payload = json.loads(b64url_decode(encoded))
    except (ValueError, UnicodeDecodeError):
        return None
    return payload if isinstance(payload, dict) else None
