"""
Connection status resolver — what is connected for an account, how, and
which provider is active.

``resolve_connection_status`` is a pure function over already-loaded
rows; ``get_esp_connections_status`` loads the rows and calls it.  The
result is derived on every call and never cached.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from database.models import Account
from esp.credential_store import (
    as_utc,
    list_api_key_connections,
    list_oauth_connections,
    list_provider_oauth_credentials,
)
from esp.registry import AdapterRegistry, pick_most_recent
from esp.types import ConnectionType, EspProvider, normalize_provider_id

logger = logging.getLogger(__name__)


@dataclass
class ProviderConnectionStatus:
    provider: EspProvider
    connected: bool = False
    connection_type: ConnectionType = ConnectionType.NONE
    oauth_connected: bool = False
    location_id: Optional[str] = None
    location_name: Optional[str] = None
    scopes: List[str] = field(default_factory=list)
    account_id: Optional[str] = None
    account_name: Optional[str] = None
    installed_at: Optional[datetime] = None
    token_expires_at: Optional[datetime] = None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "provider": self.provider.value,
            "connected": self.connected,
            "connectionType": self.connection_type.value,
            "oauthConnected": self.oauth_connected,
            "locationId": self.location_id,
            "locationName": self.location_name,
            "scopes": list(self.scopes),
            "accountId": self.account_id,
            "accountName": self.account_name,
            "installedAt": self.installed_at.isoformat() if self.installed_at else None,
            "tokenExpiresAt": self.token_expires_at.isoformat() if self.token_expires_at else None,
        }


@dataclass
class AccountConnectionStatus:
    account_key: str
    connected_providers: List[EspProvider]
    active_provider: EspProvider
    active_connection: Optional[ProviderConnectionStatus]
    providers: Dict[EspProvider, ProviderConnectionStatus]

    def as_dict(self) -> Dict[str, Any]:
        return {
            "accountKey": self.account_key,
            "connectedProviders": [p.value for p in self.connected_providers],
            "accountProvider": self.active_provider.value,
            "activeConnection": self.active_connection.as_dict() if self.active_connection else None,
            "providers": {p.value: s.as_dict() for p, s in self.providers.items()},
        }


@dataclass(frozen=True)
class CustomValuesSyncReadiness:
    required_scopes: List[str]
    has_required_scopes: bool
    supports_custom_values: bool
    needs_reauthorization: bool
    ready_for_sync: bool

    def as_dict(self) -> Dict[str, Any]:
        return {
            "requiredScopes": list(self.required_scopes),
            "hasRequiredScopes": self.has_required_scopes,
            "supportsCustomValues": self.supports_custom_values,
            "needsReauthorization": self.needs_reauthorization,
            "readyForSync": self.ready_for_sync,
        }


def _scopes(value: Any) -> List[str]:
    if isinstance(value, str):
        return [s for s in value.replace(",", " ").split() if s]
    if isinstance(value, (list, tuple)):
        return [str(s) for s in value if str(s).strip()]
    return []


def _index_by_provider(rows: Iterable[Any], registry: AdapterRegistry) -> Dict[EspProvider, Any]:
    """Last-installed row per registered provider, ignoring arrival order."""
    indexed: Dict[EspProvider, Any] = {}
    for row in rows:
        provider_id = normalize_provider_id(getattr(row, "provider", None))
        if not registry.is_registered(provider_id):
            continue
        provider = EspProvider(provider_id)
        current = indexed.get(provider)
        if current is None or _ts(row) > _ts(current):
            indexed[provider] = row
    return indexed


def _ts(row: Any) -> float:
    value = getattr(row, "installed_at", None)
    return as_utc(value).timestamp() if value is not None else float("-inf")


def resolve_connection_status(
    registry: AdapterRegistry,
    *,
    account_key: str,
    explicit_provider: Optional[str],
    oauth_connections: Sequence[Any],
    api_key_connections: Sequence[Any],
    agency_credentials: Sequence[Any] = (),
) -> AccountConnectionStatus:
    """
    Derive per-provider and account-level connection status.

    Rows may be ORM objects or anything exposing the same attributes.
    """
    oauth_by_provider = _index_by_provider(oauth_connections, registry)
    api_by_provider = _index_by_provider(api_key_connections, registry)
    agency_by_provider = _index_by_provider(agency_credentials, registry)

    providers: Dict[EspProvider, ProviderConnectionStatus] = {}
    for provider in registry.get_registered_providers():
        adapter = registry.get_adapter(provider)
        status = ProviderConnectionStatus(provider=provider)
        oauth_row = oauth_by_provider.get(provider)
        api_row = api_by_provider.get(provider)
        agency_row = agency_by_provider.get(provider)

        if oauth_row is not None and adapter.capabilities.supports_oauth:
            status.connected = True
            status.connection_type = ConnectionType.OAUTH
            status.oauth_connected = True
            status.location_id = oauth_row.location_id or None
            status.location_name = oauth_row.location_name or None
            status.scopes = _scopes(oauth_row.scopes)
            status.installed_at = oauth_row.installed_at
            status.token_expires_at = oauth_row.token_expires_at
        elif api_row is not None and adapter.capabilities.supports_api_key:
            status.connected = True
            status.connection_type = ConnectionType.API_KEY
            status.installed_at = api_row.installed_at

        if api_row is not None and adapter.capabilities.supports_api_key:
            status.account_id = status.account_id or api_row.account_id or None
            status.account_name = status.account_name or api_row.account_name or None

        if status.oauth_connected and not status.scopes and agency_row is not None:
            status.scopes = _scopes(agency_row.scopes)

        providers[provider] = status

    connected_providers = [p for p, s in providers.items() if s.connected]

    explicit_id = normalize_provider_id(explicit_provider)
    if explicit_id and registry.is_registered(explicit_id):
        active = EspProvider(explicit_id)
    else:
        if explicit_id:
            logger.warning(
                "Account %s has unregistered ESP provider %r; ignoring", account_key, explicit_id
            )
        candidates = [(p, oauth_by_provider[p].installed_at) for p in oauth_by_provider]
        candidates += [(p, api_by_provider[p].installed_at) for p in api_by_provider]
        active = pick_most_recent(candidates, registry.get_registered_providers()) or registry.get_default_esp_provider()

    active_status = providers.get(active)
    return AccountConnectionStatus(
        account_key=account_key,
        connected_providers=connected_providers,
        active_provider=active,
        active_connection=active_status if active_status and active_status.connected else None,
        providers=providers,
    )


def resolve_custom_values_sync_readiness(
    supports_custom_values: bool,
    status: ProviderConnectionStatus,
    required_scopes: Optional[Sequence[str]] = None,
) -> CustomValuesSyncReadiness:
    required = list(required_scopes or [])
    granted = set(status.scopes)
    has_required = all(scope in granted for scope in required)
    needs_reauth = bool(
        supports_custom_values and status.oauth_connected and required and not has_required
    )
    return CustomValuesSyncReadiness(
        required_scopes=required,
        has_required_scopes=has_required,
        supports_custom_values=supports_custom_values,
        needs_reauthorization=needs_reauth,
        ready_for_sync=bool(supports_custom_values and status.connected and not needs_reauth),
    )


async def get_esp_connections_status(
    session: AsyncSession,
    registry: AdapterRegistry,
    account_key: str,
) -> AccountConnectionStatus:
    explicit = (
        await session.execute(select(Account.esp_provider).where(Account.key == account_key))
    ).scalar_one_or_none()
    oauth_rows = await list_oauth_connections(session, account_keys=[account_key])
    api_rows = await list_api_key_connections(session, account_keys=[account_key])
    agency_rows = await list_provider_oauth_credentials(session)
    return resolve_connection_status(
        registry,
        account_key=account_key,
        explicit_provider=explicit,
        oauth_connections=oauth_rows,
        api_key_connections=api_rows,
        agency_credentials=agency_rows,
    )
