"""
Secret resolution — ordered key lists for credential encryption and
OAuth state signing.

The first entry of each list is the newest key (used to encrypt / sign);
every entry is accepted for decrypt / verify.  Lists are trimmed and
de-duplicated with order preserved.
"""

from __future__ import annotations

from typing import Iterable, List, Optional

from config.settings import Settings, config
from esp.errors import ConfigurationError


def _dedupe(values: Iterable[Optional[str]]) -> List[str]:
    seen: set[str] = set()
    ordered: List[str] = []
    for value in values:
        item = (value or "").strip()
        if item and item not in seen:
            seen.add(item)
            ordered.append(item)
    return ordered


def configured_token_secrets(settings: Optional[Settings] = None) -> List[str]:
    settings = settings or config
    return _dedupe([settings.esp_token_secret, *settings.token_secrets_previous])


def configured_oauth_state_secrets(settings: Optional[Settings] = None) -> List[str]:
    """State secrets first, then the token secrets as a fallback chain."""
    settings = settings or config
    return _dedupe(
        [
            settings.esp_oauth_state_secret,
            *settings.oauth_state_secrets_previous,
            *configured_token_secrets(settings),
        ]
    )


def require_token_secrets(settings: Optional[Settings] = None) -> List[str]:
    secrets = configured_token_secrets(settings)
    if not secrets:
        raise ConfigurationError("ESP_TOKEN_SECRET is not configured")
    return secrets


def require_oauth_state_secrets(settings: Optional[Settings] = None) -> List[str]:
    secrets = configured_oauth_state_secrets(settings)
    if not secrets:
        raise ConfigurationError(
            "ESP_OAUTH_STATE_SECRET (or ESP_TOKEN_SECRET) is not configured"
        )
    return secrets
