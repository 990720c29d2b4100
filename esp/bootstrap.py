"""
Start-up wiring: build and freeze the adapter registry and the webhook
family dispatcher.
"""

from __future__ import annotations

import logging
from typing import Optional

import httpx

from config.settings import Settings, config
from esp.adapters.ghl import build_ghl_adapter
from esp.adapters.klaviyo import build_klaviyo_adapter
from esp.registry import AdapterRegistry
from esp.types import EspAdapter
from esp.webhooks.families import WebhookFamilyDispatcher

logger = logging.getLogger(__name__)

# flag on ``Capabilities`` → capability module that must back it
_CAPABILITY_FLAGS = {
    "contacts": "contacts",
    "campaigns": "campaigns",
    "templates": "templates",
    "custom_values": "custom_values",
    "custom_fields": "custom_fields",
    "webhooks": "webhook",
}


def check_adapter_consistency(adapter: EspAdapter) -> None:
    """Warn when advertised capability flags and attached modules disagree."""
    caps = adapter.capabilities
    for flag, module in _CAPABILITY_FLAGS.items():
        if getattr(caps, flag) != (getattr(adapter, module) is not None):
            logger.warning(
                "%s capability flag %s=%s does not match its %s module",
                adapter.provider.value,
                flag,
                getattr(caps, flag),
                module,
            )
    if caps.supports_oauth != (adapter.oauth is not None):
        logger.warning("%s auth=%s but oauth module mismatch", adapter.provider.value, caps.auth.value)
    if caps.webhooks and not adapter.webhook_families:
        logger.warning("%s advertises webhooks but registers no webhook families", adapter.provider.value)


def build_registry(
    settings: Optional[Settings] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> AdapterRegistry:
    settings = settings or config
    registry = AdapterRegistry(settings)
    for adapter in (build_ghl_adapter(settings, transport), build_klaviyo_adapter(settings, transport)):
        check_adapter_consistency(adapter)
        registry.register_adapter(adapter)
    registry.freeze()
    return registry


def build_webhook_dispatcher(registry: AdapterRegistry) -> WebhookFamilyDispatcher:
    dispatcher = WebhookFamilyDispatcher()
    for provider, adapter in registry.adapters.items():
        for family, handler in adapter.webhook_families.items():
            dispatcher.register(provider, family, handler)
    dispatcher.freeze()
    logger.info("Webhook families ready: %s", ", ".join(dispatcher.list_webhook_families()) or "(none)")
    return dispatcher
