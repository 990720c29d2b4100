"""
GoHighLevel adapter: OAuth, contacts, campaigns, templates, custom values,
custom fields, business-details sync and email-stats webhooks.
"""

from __future__ import annotations

from typing import Optional

import httpx

from config.settings import Settings, config
from esp.adapters.ghl.account_details import GhlAccountDetailsSync
from esp.adapters.ghl.campaigns import GhlCampaigns
from esp.adapters.ghl.contacts import GhlContacts
from esp.adapters.ghl.custom_fields import GhlCustomFields
from esp.adapters.ghl.custom_values import GhlCustomValues
from esp.adapters.ghl.oauth import GHL_AGENCY_ACCOUNT_KEY, GHL_BASE, REQUIRED_SCOPES, GhlOAuth
from esp.adapters.ghl.templates import GhlTemplates
from esp.adapters.ghl.validation import GhlValidation
from esp.adapters.ghl.webhook import GhlWebhook
from esp.adapters.http import ProviderHttp
from esp.types import AuthMode, Capabilities, EspAdapter, EspProvider
from esp.webhooks.ghl_email_stats import GhlEmailStatsHandler
from esp.webhooks.types import EMAIL_STATS_FAMILY

__all__ = ["GHL_AGENCY_ACCOUNT_KEY", "REQUIRED_SCOPES", "build_ghl_adapter"]


def build_ghl_adapter(
    settings: Optional[Settings] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> EspAdapter:
    settings = settings or config
    http = ProviderHttp(EspProvider.GHL, GHL_BASE, settings=settings, transport=transport)
    oauth = GhlOAuth(http, settings)
    webhook = GhlWebhook(settings)
    return EspAdapter(
        provider=EspProvider.GHL,
        display_name="GoHighLevel",
        capabilities=Capabilities(
            auth=AuthMode.OAUTH,
            contacts=True,
            campaigns=True,
            templates=True,
            webhooks=True,
            custom_values=True,
            custom_fields=True,
        ),
        oauth=oauth,
        validation=GhlValidation(oauth),
        contacts=GhlContacts(http, oauth),
        campaigns=GhlCampaigns(http),
        templates=GhlTemplates(http),
        custom_values=GhlCustomValues(http),
        custom_fields=GhlCustomFields(http),
        account_details_sync=GhlAccountDetailsSync(http, oauth),
        webhook=webhook,
        webhook_families={EMAIL_STATS_FAMILY: GhlEmailStatsHandler(webhook)},
    )
