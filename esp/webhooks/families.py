"""
WebhookFamilyDispatcher — routes ``/webhooks/esp/{provider}/{family}``.

Handlers are indexed family → provider.  The table is filled from each
registered adapter's ``webhook_families`` at start-up and frozen; any
request for an unknown family, an unregistered provider or a provider
without a handler for the family is answered with 404.
"""

from __future__ import annotations

import logging
from types import MappingProxyType
from typing import Dict, List, Optional

from fastapi import Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from esp.errors import ConfigurationError
from esp.types import EspProvider, normalize_provider_id, parse_provider
from esp.webhooks.types import WebhookFamilyHandler

logger = logging.getLogger(__name__)

WEBHOOK_PATH_PREFIX = "/api/v1/webhooks/esp"


def _normalize_family(family: Optional[str]) -> str:
    return (family or "").strip().lower()


def build_webhook_endpoint(provider: str, family: str) -> str:
    return f"{WEBHOOK_PATH_PREFIX}/{provider}/{family}"


class WebhookFamilyDispatcher:
    def __init__(self) -> None:
        self._handlers: Dict[str, Dict[EspProvider, WebhookFamilyHandler]] = {}
        self._frozen = False

    def register(self, provider: EspProvider | str, family: str, handler: WebhookFamilyHandler) -> None:
        if self._frozen:
            raise ConfigurationError("Webhook dispatcher is frozen")
        resolved = parse_provider(provider)
        normalized = _normalize_family(family)
        if not normalized:
            raise ConfigurationError("Family is required to register a webhook family handler")
        self._handlers.setdefault(normalized, {})[resolved] = handler
        logger.info("Webhook handler registered: %s/%s", resolved.value, normalized)

    def freeze(self) -> None:
        if not self._frozen:
            self._handlers = MappingProxyType(
                {family: MappingProxyType(dict(handlers)) for family, handlers in self._handlers.items()}
            )
            self._frozen = True

    # ── Introspection ───────────────────────────────────────────────────

    def list_webhook_families(self) -> List[str]:
        return sorted(self._handlers.keys())

    def list_providers_for_family(self, family: str) -> List[str]:
        return sorted(p.value for p in self._handlers.get(_normalize_family(family), {}))

    def _resolve(self, provider: Optional[str], family: Optional[str]) -> Optional[WebhookFamilyHandler]:
        handlers = self._handlers.get(_normalize_family(family))
        if not handlers:
            return None
        provider_id = normalize_provider_id(provider)
        for registered, handler in handlers.items():
            if registered.value == provider_id:
                return handler
        return None

    def supports_provider_webhook_family(self, provider: Optional[str], family: Optional[str]) -> bool:
        return self._resolve(provider, family) is not None

    def list_webhook_endpoints_for_provider(self, provider: Optional[str]) -> Dict[str, str]:
        provider_id = normalize_provider_id(provider)
        if not provider_id:
            return {}
        return {
            family: build_webhook_endpoint(provider_id, family)
            for family in self.list_webhook_families()
            if self.supports_provider_webhook_family(provider_id, family)
        }

    # ── Dispatch ────────────────────────────────────────────────────────

    def _not_found(self, provider: str, family: str) -> JSONResponse:
        normalized = _normalize_family(family)
        if normalized not in self._handlers:
            return JSONResponse(
                {
                    "error": f'Webhook family "{family}" is not supported',
                    "supportedFamilies": self.list_webhook_families(),
                },
                status_code=404,
            )
        provider_id = normalize_provider_id(provider) or "unknown"
        return JSONResponse(
            {
                "error": f"{provider_id} does not support {normalized} webhooks",
                "supportedProviders": self.list_providers_for_family(normalized),
            },
            status_code=404,
        )

    def handle_get(self, provider: str, family: str, endpoint: str) -> JSONResponse:
        handler = self._resolve(provider, family)
        if handler is None:
            return self._not_found(provider, family)
        return handler.get(provider=normalize_provider_id(provider), endpoint=endpoint)

    async def handle_post(
        self,
        request: Request,
        provider: str,
        family: str,
        session: AsyncSession,
    ) -> JSONResponse:
        handler = self._resolve(provider, family)
        if handler is None:
            logger.info("Webhook for unsupported %s/%s rejected", provider, family)
            return self._not_found(provider, family)
        return await handler.post(request, session)
