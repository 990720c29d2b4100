"""
AdapterRegistry — provider → adapter table and per-account resolution.

Built once at start-up by ``esp.bootstrap.build_registry()``, frozen, and
handed to routes through ``app.state.registry``.  After ``freeze()`` the
table is a read-only mapping, so concurrent readers need no lock.
"""

from __future__ import annotations

import logging
from datetime import datetime
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import Settings, config
from database.models import Account, EspConnection, EspOAuthConnection
from esp.credential_store import as_utc
from esp.errors import (
    ConfigurationError,
    MissingCapabilityError,
    NoProvidersRegisteredError,
    UnregisteredProviderError,
)
from esp.types import EspAdapter, EspCredentials, EspProvider, normalize_provider_id, parse_provider

logger = logging.getLogger(__name__)

CAPABILITY_NAMES = (
    "oauth",
    "connection",
    "validation",
    "contacts",
    "campaigns",
    "templates",
    "custom_values",
    "custom_fields",
    "account_details_sync",
    "webhook",
)


def pick_most_recent(
    candidates: Iterable[Tuple[EspProvider, Optional[datetime]]],
    order: Sequence[EspProvider] = (),
) -> Optional[EspProvider]:
    """
    Provider with the latest install time.

    A missing timestamp sorts as the oldest possible value, so it only wins
    when nothing else has one.  Ties go to the provider earliest in *order*
    (registration order), then by id, so the answer never depends on the
    order candidates arrive in.
    """
    rank = {provider: index for index, provider in enumerate(order)}

    def sort_key(item: Tuple[EspProvider, Optional[datetime]]):
        provider, installed_at = item
        ts = as_utc(installed_at).timestamp() if installed_at is not None else float("-inf")
        return (-ts, rank.get(provider, len(rank)), provider.value)

    ranked = sorted(candidates, key=sort_key)
    return ranked[0][0] if ranked else None


class AdapterRegistry:
    """Registry of ESP adapters, keyed by provider."""

    def __init__(self, settings: Optional[Settings] = None):
        self._settings = settings or config
        self._adapters: Dict[EspProvider, EspAdapter] = {}
        self._frozen = False

    # ── Registration ────────────────────────────────────────────────────

    def register_adapter(self, adapter: EspAdapter) -> None:
        """Register *adapter*; a later registration for the same provider wins."""
        if self._frozen:
            raise ConfigurationError("ESP adapter registry is frozen")
        if adapter.provider in self._adapters:
            logger.warning("Replacing ESP adapter for %s", adapter.provider.value)
        self._adapters[adapter.provider] = adapter
        logger.info("ESP adapter registered: %s", adapter.provider.value)

    def freeze(self) -> None:
        if not self._frozen:
            self._adapters = MappingProxyType(dict(self._adapters))
            self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    @property
    def adapters(self) -> Mapping[EspProvider, EspAdapter]:
        return self._adapters

    # ── Lookup ──────────────────────────────────────────────────────────

    def get_adapter(self, provider: Any) -> EspAdapter:
        resolved = parse_provider(provider)
        adapter = self._adapters.get(resolved)
        if adapter is None:
            raise UnregisteredProviderError(resolved.value)
        return adapter

    def get_registered_providers(self) -> List[EspProvider]:
        return list(self._adapters.keys())

    def is_registered(self, provider: Any) -> bool:
        try:
            return parse_provider(provider) in self._adapters
        except UnregisteredProviderError:
            return False

    def parse_registered(self, provider: Any) -> EspProvider:
        """Validate an inbound provider id against the registered set."""
        return parse_provider(provider, self._adapters.keys())

    def get_default_esp_provider(self) -> EspProvider:
        """
        Configured ``DEFAULT_ESP_PROVIDER`` (must be registered), otherwise
        the first registered provider.
        """
        providers = self.get_registered_providers()
        configured = normalize_provider_id(self._settings.default_esp_provider)
        if configured:
            if self.is_registered(configured):
                return EspProvider(configured)
            registered = ", ".join(p.value for p in providers) or "(none)"
            raise ConfigurationError(
                f'Configured default ESP provider "{configured}" is not registered. '
                f"Registered providers: {registered}"
            )
        if providers:
            return providers[0]
        raise NoProvidersRegisteredError()

    # ── Per-account resolution ──────────────────────────────────────────

    async def _most_recent_connected_provider(
        self,
        session: AsyncSession,
        account_key: str,
    ) -> Optional[EspProvider]:
        candidates: List[Tuple[EspProvider, Optional[datetime]]] = []
        for model in (EspOAuthConnection, EspConnection):
            result = await session.execute(
                select(model.provider, model.installed_at).where(model.account_key == account_key)
            )
            for provider_id, installed_at in result.all():
                if self.is_registered(provider_id):
                    candidates.append((parse_provider(provider_id), installed_at))
        return pick_most_recent(candidates, self.get_registered_providers())

    async def get_account_provider(self, session: AsyncSession, account_key: str) -> EspProvider:
        """
        Which provider an account uses:

        1. ``Account.esp_provider`` when set (must be registered)
        2. the most recently installed OAuth / API-key connection
        3. the registry default
        """
        explicit = (
            await session.execute(select(Account.esp_provider).where(Account.key == account_key))
        ).scalar_one_or_none()
        explicit_id = normalize_provider_id(explicit)
        if explicit_id:
            if self.is_registered(explicit_id):
                return EspProvider(explicit_id)
            raise UnregisteredProviderError(
                explicit_id,
                f'Account "{account_key}" is configured with unregistered ESP provider "{explicit_id}"',
            )

        connected = await self._most_recent_connected_provider(session, account_key)
        return connected or self.get_default_esp_provider()

    async def get_adapter_for_account(self, session: AsyncSession, account_key: str) -> EspAdapter:
        return self.get_adapter(await self.get_account_provider(session, account_key))

    async def resolve_esp_credentials(
        self,
        session: AsyncSession,
        account_key: str,
    ) -> Optional[EspCredentials]:
        adapter = await self.get_adapter_for_account(session, account_key)
        contacts = self.require_capability(adapter, "contacts")
        return await contacts.resolve_credentials(session, account_key)

    @staticmethod
    def require_capability(adapter: EspAdapter, name: str) -> Any:
        """Return the capability module *name* or raise ``MissingCapabilityError``."""
        if name not in CAPABILITY_NAMES:
            raise ValueError(f"Unknown ESP capability: {name}")
        module = getattr(adapter, name)
        if module is None:
            raise MissingCapabilityError(adapter.provider.value, name.replace("_", " "))
        return module
