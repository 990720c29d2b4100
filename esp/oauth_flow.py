"""
OAuth round-trip services: build the consent URL, complete the callback.

``complete_oauth_callback`` never raises; every outcome is a UI redirect
URL carrying either ``esp_connected=true`` or a sanitized ``esp_error``.
"""

from __future__ import annotations

import logging
import re
from typing import Optional, Tuple
from urllib.parse import quote, urlencode

from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import Settings, config
from esp.adapters.ghl.oauth import GHL_AGENCY_ACCOUNT_KEY
from esp.connections import set_account_provider
from esp.errors import EspError, EspValidationError, MissingCapabilityError, UnregisteredProviderError
from esp.oauth_state import resolve_oauth_provider_from_state
from esp.registry import AdapterRegistry
from esp.types import EspAdapter, EspProvider

logger = logging.getLogger(__name__)

AGENCY_MODE = "agency"
ACCOUNT_MODE = "account"
MAX_ERROR_LENGTH = 200
GENERIC_FAILURE = "OAuth flow failed"
INVALID_STATE = "Invalid or expired state parameter"


def sanitize_error(message: Optional[str]) -> str:
    """Single line, bounded length, no control characters."""
    text = re.sub(r"\s+", " ", message or "").strip()
    text = "".join(ch for ch in text if ch.isprintable())
    return text[:MAX_ERROR_LENGTH] or GENERIC_FAILURE


# ── Authorization URL ─────────────────────────────────────────────────────


async def resolve_authorization_url(
    session: AsyncSession,
    registry: AdapterRegistry,
    *,
    account_key: Optional[str],
    provider: Optional[str] = None,
    mode: str = ACCOUNT_MODE,
) -> Tuple[EspProvider, str]:
    """
    Consent URL for *provider* (or the account's provider when omitted).

    ``mode="agency"`` requests a provider-level grant under the reserved
    agency account key; only adapters with ``supports_agency`` accept it.
    """
    mode = (mode or ACCOUNT_MODE).strip().lower()
    if mode not in (ACCOUNT_MODE, AGENCY_MODE):
        raise EspValidationError(f'mode must be "{ACCOUNT_MODE}" or "{AGENCY_MODE}"', 400)

    key = (account_key or "").strip()
    if mode == ACCOUNT_MODE and not key:
        raise EspValidationError("accountKey query parameter is required", 400)
    if mode == AGENCY_MODE and not provider:
        raise EspValidationError("provider is required for agency authorization", 400)

    if provider:
        adapter = registry.get_adapter(registry.parse_registered(provider))
    else:
        adapter = await registry.get_adapter_for_account(session, key)

    oauth = adapter.oauth
    if oauth is None:
        raise MissingCapabilityError(adapter.provider.value, "OAuth authorization")
    if mode == AGENCY_MODE:
        if not oauth.supports_agency:
            raise MissingCapabilityError(adapter.provider.value, "agency OAuth")
        key = GHL_AGENCY_ACCOUNT_KEY

    return adapter.provider, oauth.get_authorization_url(key)


# ── Callback ──────────────────────────────────────────────────────────────


def _url(settings: Settings, path: str, params: dict) -> str:
    return f"{settings.app_base_url.rstrip('/')}{path}?{urlencode(params)}"


def _accounts_error(settings: Settings, provider: Optional[str], message: str) -> str:
    params = {"esp_error": sanitize_error(message)}
    if provider:
        params["esp_provider"] = provider
    return _url(settings, "/subaccounts", params)


def _account_redirect(settings: Settings, account_key: str, provider: str, *, error: Optional[str] = None) -> str:
    params = {"esp_error": sanitize_error(error)} if error is not None else {"esp_connected": "true"}
    params.update({"esp_provider": provider, "tab": "integration"})
    return _url(settings, f"/settings/subaccounts/{quote(account_key, safe='')}", params)


def _agency_redirect(settings: Settings, provider: str, *, error: Optional[str] = None) -> str:
    params = {"esp_error": sanitize_error(error)} if error is not None else {"esp_connected": "true"}
    params.update({"esp_provider": provider, "esp_auth_mode": AGENCY_MODE, "tab": "custom-values"})
    return _url(settings, "/settings", params)


def _resolve_callback_adapter(
    registry: AdapterRegistry,
    provider: Optional[str],
    state: Optional[str],
    settings: Settings,
) -> Optional[EspAdapter]:
    if provider:
        return registry.get_adapter(registry.parse_registered(provider))
    inferred = resolve_oauth_provider_from_state(
        state or "", registered=registry.get_registered_providers(), settings=settings
    )
    return registry.get_adapter(inferred) if inferred else None


async def complete_oauth_callback(
    session: AsyncSession,
    registry: AdapterRegistry,
    *,
    provider: Optional[str],
    code: Optional[str],
    state: Optional[str],
    error: Optional[str] = None,
    error_description: Optional[str] = None,
    settings: Optional[Settings] = None,
) -> str:
    """
    Verify *state*, exchange *code*, persist the grant and return the UI
    redirect URL.

    The provider may be omitted; it is then read from the signed state.
    Location-name lookup is best effort.  Failures after state
    verification roll the session back.
    """
    settings = settings or config
    try:
        adapter = _resolve_callback_adapter(registry, provider, state, settings)
    except UnregisteredProviderError as exc:
        return _accounts_error(settings, provider, exc.message)
    if adapter is None:
        logger.warning("OAuth callback without provider and with unusable state")
        return _accounts_error(settings, None, INVALID_STATE)

    provider_id = adapter.provider.value
    oauth = adapter.oauth
    if oauth is None:
        return _accounts_error(settings, provider_id, f"{provider_id} does not support OAuth")

    account_key = (oauth.verify_state(state) if state else None) or ""
    is_agency = oauth.supports_agency and account_key == GHL_AGENCY_ACCOUNT_KEY

    if error:
        logger.warning(
            "%s OAuth callback error from provider (agency=%s, state_valid=%s)",
            provider_id,
            is_agency,
            bool(account_key),
        )
        message = error_description or error
        return _agency_redirect(settings, provider_id, error=message) if is_agency else _accounts_error(settings, provider_id, message)

    if not code or not state:
        logger.warning("%s OAuth callback missing code=%s state=%s", provider_id, bool(code), bool(state))
        message = "Missing authorization code"
        return _agency_redirect(settings, provider_id, error=message) if is_agency else _accounts_error(settings, provider_id, message)

    if not account_key:
        logger.warning("%s OAuth callback state verification failed (length=%d)", provider_id, len(state))
        return _accounts_error(settings, provider_id, INVALID_STATE)

    try:
        tokens = await oauth.exchange_code_for_tokens(code)
        location_name = ""
        if tokens.location_id:
            try:
                details = await oauth.fetch_location_details(tokens.access_token, tokens.location_id)
                location_name = details.get("name", "")
            except EspError as exc:
                logger.warning("Failed to fetch %s location details after OAuth: %s", provider_id, exc.message)

        await oauth.store_connection(
            session,
            account_key=account_key,
            location_id=tokens.location_id,
            location_name=location_name,
            tokens=tokens,
        )
        if not is_agency:
            await set_account_provider(session, account_key, adapter.provider)
    except Exception as exc:
        await session.rollback()
        logger.error("%s OAuth callback failed for %s: %s", provider_id, "(agency)" if is_agency else account_key, exc)
        message = exc.message if isinstance(exc, EspError) else GENERIC_FAILURE
        if is_agency:
            return _agency_redirect(settings, provider_id, error=message)
        return _account_redirect(settings, account_key, provider_id, error=message)

    logger.info(
        "%s OAuth success: account=%s location=%s scopes=%d",
        provider_id,
        "(agency)" if is_agency else account_key,
        tokens.location_id or "(none)",
        len(tokens.scopes),
    )
    if is_agency:
        return _agency_redirect(settings, provider_id)
    return _account_redirect(settings, account_key, provider_id)
