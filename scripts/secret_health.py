"""
Report which ESP secrets are configured.

    python -m scripts.secret_health

Exits non-zero when either the token or the OAuth-state key list is empty.
Only presence and key counts are printed, never values.
"""

from __future__ import annotations

import sys
from typing import Callable, Optional

from config.settings import Settings, config
from esp.secrets import configured_oauth_state_secrets, configured_token_secrets


def _yes_no(value: str) -> str:
    return "yes" if (value or "").strip() else "no"


def main(settings: Optional[Settings] = None, out: Callable[[str], None] = print) -> int:
    settings = settings or config
    token_secrets = configured_token_secrets(settings)
    state_secrets = configured_oauth_state_secrets(settings)

    out("ESP Secret Health")
    out("")
    out(f"ESP_TOKEN_SECRET: {_yes_no(settings.esp_token_secret)}")
    out(f"ESP_TOKEN_SECRETS_PREVIOUS: {len(settings.token_secrets_previous)}")
    out(f"ESP_OAUTH_STATE_SECRET: {_yes_no(settings.esp_oauth_state_secret)}")
    out(f"ESP_OAUTH_STATE_SECRETS_PREVIOUS: {len(settings.oauth_state_secrets_previous)}")
    out("")
    out(f"resolvedTokenSecretKeys: {len(token_secrets)}")
    out(f"resolvedOAuthStateSecretKeys: {len(state_secrets)}")
    out("")

    if not token_secrets or not state_secrets:
        out("status: ERROR (missing required secrets)")
        return 1
    if not settings.esp_oauth_state_secret:
        out("note: OAuth state is signed with ESP_TOKEN_SECRET; set ESP_OAUTH_STATE_SECRET to separate them")
    out("status: OK")
    return 0


if __name__ == "__main__":
    sys.exit(main())
