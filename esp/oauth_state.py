"""
OAuth state protocol — stateless, signed round-trip tokens.

A state token binds a provider and a tenant account key to an issue time
and a random nonce.  It is never stored; the callback verifies it with any
configured state secret.  Verification failures never raise and never
expose a reason to the caller: the reason is logged at DEBUG only.
"""

from __future__ import annotations

import hashlib
import logging
import secrets
import time
from dataclasses import dataclass
from typing import Any, Iterable, Optional

from config.settings import Settings, config
from esp.errors import UnregisteredProviderError
from esp.secrets import configured_oauth_state_secrets, require_oauth_state_secrets
from esp.signing import sign_payload, verify_payload
from esp.types import EspProvider, parse_provider

logger = logging.getLogger(__name__)

STATE_VERSION = 1
MAX_FUTURE_SKEW_MS = 60_000


@dataclass(frozen=True)
class OAuthStatePayload:
    provider: EspProvider
    account_key: str
    issued_at_ms: int
    nonce: str


def _state_key(secret: str) -> str:
    # Domain-separated so a state token can never double as a bearer token.
    return hashlib.sha256(f"{secret}:esp-oauth-state".encode("utf-8")).hexdigest()


def _reject(reason: str) -> None:
    logger.debug("OAuth state rejected: %s", reason)
    return None


def sign_state(
    provider: Any,
    account_key: str,
    *,
    issued_at: Optional[float] = None,
    settings: Optional[Settings] = None,
) -> str:
    """
    Issue a signed state token.

    Parameters
    ----------
    provider : EspProvider or str
    account_key : str
        Tenant the consent flow belongs to.
    issued_at : float, optional
        Issue time in epoch seconds (defaults to now).
    """
    resolved = parse_provider(provider)
    key = (account_key or "").strip()
    if not key:
        raise ValueError("account_key is required")
    ts_ms = int((time.time() if issued_at is None else issued_at) * 1000)
    payload = {
        "v": STATE_VERSION,
        "provider": resolved.value,
        "accountKey": key,
        "ts": ts_ms,
        "nonce": secrets.token_urlsafe(16),
    }
    secret = require_oauth_state_secrets(settings)[0]
    return sign_payload(payload, _state_key(secret))


def verify_state(
    token: Optional[str],
    *,
    expected_provider: Any = None,
    max_age_seconds: Optional[int] = None,
    registered: Optional[Iterable[EspProvider]] = None,
    now: Optional[float] = None,
    settings: Optional[Settings] = None,
) -> Optional[OAuthStatePayload]:
    """Return the verified payload, or ``None`` for any kind of failure."""
    settings = settings or config
    if not token or not isinstance(token, str):
        return _reject("missing token")

    secrets_ = configured_oauth_state_secrets(settings)
    if not secrets_:
        return _reject("no state secrets configured")

    payload = verify_payload(token, [_state_key(s) for s in secrets_])
    if payload is None:
        return _reject("bad format or signature")

    if payload.get("v") != STATE_VERSION:
        return _reject("unknown version")

    account_key = payload.get("accountKey")
    nonce = payload.get("nonce")
    ts = payload.get("ts")
    if not isinstance(account_key, str) or not account_key.strip():
        return _reject("empty account key")
    if not isinstance(nonce, str) or not nonce:
        return _reject("empty nonce")
    if not isinstance(ts, int) or isinstance(ts, bool):
        return _reject("bad timestamp")

    try:
        provider = parse_provider(payload.get("provider"), registered)
    except UnregisteredProviderError:
        return _reject("unregistered provider")

    now_ms = int((time.time() if now is None else now) * 1000)
    ttl = settings.esp_oauth_state_ttl_seconds if max_age_seconds is None else max_age_seconds
    if ts - now_ms > MAX_FUTURE_SKEW_MS:
        return _reject("issued in the future")
    if now_ms - ts > ttl * 1000:
        return _reject("expired")

    if expected_provider is not None:
        try:
            expected = parse_provider(expected_provider)
        except UnregisteredProviderError:
            return _reject("unknown expected provider")
        if expected is not provider:
            return _reject("provider mismatch")

    return OAuthStatePayload(
        provider=provider,
        account_key=account_key.strip(),
        issued_at_ms=ts,
        nonce=nonce,
    )


def resolve_oauth_provider_from_state(
    token: Optional[str],
    *,
    registered: Optional[Iterable[EspProvider]] = None,
    settings: Optional[Settings] = None,
) -> Optional[EspProvider]:
    payload = verify_state(token, registered=registered, settings=settings)
    return payload.provider if payload else None
