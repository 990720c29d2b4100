"""
Klaviyo adapter — API-key auth, profiles, campaigns, templates and
email-stats webhooks.
"""

from __future__ import annotations

from typing import Optional

import httpx

from config.settings import Settings, config
from esp.adapters.http import ProviderHttp
from esp.adapters.klaviyo.auth import KlaviyoConnection, KlaviyoValidation
from esp.adapters.klaviyo.campaigns import KlaviyoCampaigns
from esp.adapters.klaviyo.constants import KLAVIYO_BASE
from esp.adapters.klaviyo.contacts import KlaviyoContacts
from esp.adapters.klaviyo.templates import KlaviyoTemplates
from esp.adapters.klaviyo.webhook import KlaviyoWebhook
from esp.types import AuthMode, Capabilities, EspAdapter, EspProvider
from esp.webhooks.klaviyo_email_stats import KlaviyoEmailStatsHandler
from esp.webhooks.types import EMAIL_STATS_FAMILY


def build_klaviyo_adapter(
    settings: Optional[Settings] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> EspAdapter:
    settings = settings or config
    http = ProviderHttp(EspProvider.KLAVIYO, KLAVIYO_BASE, settings=settings, transport=transport)
    webhook = KlaviyoWebhook(settings)
    return EspAdapter(
        provider=EspProvider.KLAVIYO,
        display_name="Klaviyo",
        capabilities=Capabilities(
            auth=AuthMode.API_KEY,
            contacts=True,
            campaigns=True,
            templates=True,
            webhooks=True,
        ),
        connection=KlaviyoConnection(http),
        validation=KlaviyoValidation(http),
        contacts=KlaviyoContacts(http),
        campaigns=KlaviyoCampaigns(http),
        templates=KlaviyoTemplates(http),
        webhook=webhook,
        webhook_families={EMAIL_STATS_FAMILY: KlaviyoEmailStatsHandler(webhook)},
    )
