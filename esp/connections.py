"""
Connection services: connect with an API key, disconnect, validate.

These sit between the routes and the adapters.  Every failure surfaces
as an ``EspError`` whose ``status_code`` the route answers with.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from database.models import Account
from esp.errors import (
    EspConnectionError,
    EspError,
    EspValidationError,
    UnregisteredProviderError,
    status_from_message,
)
from esp.registry import AdapterRegistry, pick_most_recent
from esp.status import AccountConnectionStatus, get_esp_connections_status
from esp.types import EspAdapter, EspProvider, ValidationResult, normalize_provider_id

logger = logging.getLogger(__name__)

ANY_PROVIDER = "any"


@dataclass
class ConnectOutcome:
    provider: EspProvider
    account_id: Optional[str] = None
    account_name: Optional[str] = None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "success": True,
            "provider": self.provider.value,
            "accountId": self.account_id,
            "accountName": self.account_name,
        }


@dataclass
class DisconnectOutcome:
    provider: EspProvider
    removed: bool

    def as_dict(self) -> Dict[str, Any]:
        return {"success": True, "provider": self.provider.value, "removed": self.removed}


def _require_account_key(account_key: Optional[str]) -> str:
    key = (account_key or "").strip()
    if not key:
        raise EspConnectionError("accountKey is required", 400)
    return key


def _adapter_or_400(registry: AdapterRegistry, provider: Any) -> EspAdapter:
    try:
        return registry.get_adapter(registry.parse_registered(provider))
    except UnregisteredProviderError as exc:
        raise EspConnectionError(exc.message, 400) from exc


async def set_account_provider(session: AsyncSession, account_key: str, provider: EspProvider) -> None:
    """Record *provider* as the account's explicit choice, creating the row if needed."""
    account = await session.get(Account, account_key)
    if account is None:
        session.add(Account(key=account_key, name=account_key, esp_provider=provider.value))
    else:
        account.esp_provider = provider.value
    await session.flush()


def _most_recent_connected(status: AccountConnectionStatus, registry: AdapterRegistry, excluded=()) -> Optional[EspProvider]:
    candidates = [
        (provider, status.providers[provider].installed_at)
        for provider in status.connected_providers
        if provider not in excluded
    ]
    return pick_most_recent(candidates, registry.get_registered_providers())


# ── Connect ───────────────────────────────────────────────────────────────


async def connect_esp_connection(
    session: AsyncSession,
    registry: AdapterRegistry,
    *,
    account_key: Optional[str],
    provider: Any,
    api_key: Optional[str],
) -> ConnectOutcome:
    key = _require_account_key(account_key)
    adapter = _adapter_or_400(registry, provider)

    if adapter.connection is None:
        if adapter.oauth is not None:
            raise EspConnectionError(
                f"{adapter.provider.value} uses OAuth. Start with /api/v1/esp/oauth/authorize.", 501
            )
        raise EspConnectionError(
            f"{adapter.provider.value} connect flow is not supported by this endpoint", 501
        )

    try:
        result = await adapter.connection.connect(session, key, api_key or "")
    except EspError:
        raise
    except Exception as exc:
        message = str(exc) or "Failed to connect provider"
        logger.error("Connect %s for %s failed: %s", adapter.provider.value, key, message)
        raise EspConnectionError(message, status_from_message(message)) from exc

    await set_account_provider(session, key, adapter.provider)
    logger.info("Connected %s for account %s", adapter.provider.value, key)
    return ConnectOutcome(
        provider=adapter.provider,
        account_id=result.account_id,
        account_name=result.account_name,
    )


# ── Disconnect ────────────────────────────────────────────────────────────


async def _resolve_disconnect_provider(
    session: AsyncSession,
    registry: AdapterRegistry,
    account_key: str,
    provider: Any,
) -> EspProvider:
    if normalize_provider_id(provider) != ANY_PROVIDER:
        return _adapter_or_400(registry, provider).provider

    status = await get_esp_connections_status(session, registry, account_key)
    preferred = status.active_provider
    if status.providers.get(preferred) and status.providers[preferred].connected:
        return preferred
    return _most_recent_connected(status, registry) or preferred


async def disconnect_esp_connection(
    session: AsyncSession,
    registry: AdapterRegistry,
    *,
    account_key: Optional[str],
    provider: Any,
) -> DisconnectOutcome:
    """
    Remove the account's connection for *provider* (or ``"any"``: the
    active one).  When the removed provider was the account's explicit
    choice, the choice moves to the next most recent connection, else the
    registry default.
    """
    key = _require_account_key(account_key)
    resolved = await _resolve_disconnect_provider(session, registry, key, provider)
    adapter = registry.get_adapter(resolved)

    account = await session.get(Account, key)
    explicit_before = normalize_provider_id(account.esp_provider) if account else ""

    if adapter.connection is not None:
        removed = await adapter.connection.disconnect(session, key)
    elif adapter.oauth is not None:
        removed = await adapter.oauth.remove_connection(session, key)
    else:
        removed = False

    if removed and account is not None and explicit_before == resolved.value:
        status = await get_esp_connections_status(session, registry, key)
        fallback = _most_recent_connected(status, registry, excluded=(resolved,)) or registry.get_default_esp_provider()
        if fallback != resolved:
            account.esp_provider = fallback.value
            await session.flush()
            logger.info("Account %s provider fell back %s → %s", key, resolved.value, fallback.value)

    logger.info("Disconnect %s for %s: removed=%s", resolved.value, key, removed)
    return DisconnectOutcome(provider=resolved, removed=removed)


# ── Validate ──────────────────────────────────────────────────────────────


async def validate_esp_connection(
    session: AsyncSession,
    registry: AdapterRegistry,
    *,
    provider: Any = None,
    account_key: Optional[str] = None,
    api_key: Optional[str] = None,
) -> ValidationResult:
    """
    Validate credentials with the provider.  The provider comes from the
    request, or from the account when only ``account_key`` is given.
    """
    key = (account_key or "").strip()
    provider_id = normalize_provider_id(provider)
    if not provider_id and key:
        try:
            provider_id = (await registry.get_account_provider(session, key)).value
        except EspError as exc:
            logger.warning("Could not resolve provider for %s: %s", key, exc.message)
            provider_id = ""
    if not provider_id:
        supported = ", ".join(p.value for p in registry.get_registered_providers())
        raise EspValidationError(f"provider is required. Supported providers: {supported}", 400)

    adapter = _adapter_or_400(registry, provider_id)
    validation = adapter.validation
    if validation is None:
        raise EspValidationError(f'Validation flow not implemented for provider "{provider_id}"', 501)

    try:
        result = await validation.validate(session, account_key=key or None, api_key=api_key)
    except EspError:
        raise
    except Exception as exc:
        message = str(exc) or "Failed to validate credentials"
        raise EspValidationError(message, status_from_message(message)) from exc
    return result
