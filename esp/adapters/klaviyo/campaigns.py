"""
Klaviyo email campaigns.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from esp.adapters.http import ProviderHttp, as_record, first_text
from esp.adapters.klaviyo.constants import klaviyo_headers
from esp.types import CampaignsCapability, EspCampaign, EspCredentials, EspProvider

_STATUS = {
    "draft": "draft",
    "scheduled": "scheduled",
    "sending": "sending",
    "sent": "sent",
    "cancelled": "canceled",
}


def map_status(status: str) -> str:
    return _STATUS.get((status or "").lower(), status or "unknown")


def _campaign(raw: Dict[str, Any], location_id: str) -> EspCampaign:
    attrs = as_record(raw.get("attributes"))
    return EspCampaign(
        id=first_text(raw, ("id",)),
        name=first_text(attrs, ("name",)) or "Untitled",
        status=map_status(first_text(attrs, ("status",))),
        location_id=location_id,
        created_at=first_text(attrs, ("created_at",)) or None,
        updated_at=first_text(attrs, ("updated_at",)) or None,
        sent_at=first_text(attrs, ("send_time",)) or None,
    )


class KlaviyoCampaigns(CampaignsCapability):
    provider = EspProvider.KLAVIYO

    def __init__(self, http: ProviderHttp):
        self._http = http

    async def fetch_campaigns(self, credentials: EspCredentials) -> List[EspCampaign]:
        campaigns: List[EspCampaign] = []
        url: Optional[str] = "/campaigns/"
        params: Optional[Dict[str, Any]] = {
            "filter": "equals(messages.channel,'email')",
            "sort": "-created_at",
        }
        while url:
            data = as_record(
                await self._http.request("GET", url, headers=klaviyo_headers(credentials.token), params=params)
            )
            rows = data.get("data")
            for row in rows if isinstance(rows, list) else []:
                campaigns.append(_campaign(as_record(row), credentials.location_id))
            url = as_record(data.get("links")).get("next") or None
            params = None
        return campaigns
