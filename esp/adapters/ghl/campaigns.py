"""
GoHighLevel scheduled email campaigns.
"""

from __future__ import annotations

from typing import Any, Dict, List

from esp.adapters.ghl.oauth import ghl_headers
from esp.adapters.http import ProviderHttp, as_record, first_text
from esp.types import CampaignsCapability, EspCampaign, EspCredentials, EspProvider

PAGE_SIZE = 100
MAX_PAGES = 20


def _campaign_rows(data: Any) -> List[Dict[str, Any]]:
    record = as_record(data)
    for key in ("schedules", "campaigns", "data", "items"):
        value = record.get(key)
        if isinstance(value, list):
            return [as_record(row) for row in value]
    return []


class GhlCampaigns(CampaignsCapability):
    provider = EspProvider.GHL

    def __init__(self, http: ProviderHttp):
        self._http = http

    async def fetch_campaigns(self, credentials: EspCredentials) -> List[EspCampaign]:
        campaigns: List[EspCampaign] = []
        offset = 0
        for _ in range(MAX_PAGES):
            data = await self._http.request(
                "GET",
                "/emails/schedule",
                headers=ghl_headers(credentials.token),
                params={"locationId": credentials.location_id, "limit": PAGE_SIZE, "offset": offset},
            )
            rows = _campaign_rows(data)
            for row in rows:
                campaign_id = first_text(row, ("campaignId", "id", "_id"))
                if not campaign_id:
                    continue
                campaigns.append(
                    EspCampaign(
                        id=campaign_id,
                        name=first_text(row, ("name", "title")) or campaign_id,
                        status=first_text(row, ("status",)),
                        location_id=credentials.location_id,
                        created_at=first_text(row, ("createdAt", "dateAdded")) or None,
                        updated_at=first_text(row, ("updatedAt", "dateUpdated")) or None,
                        sent_at=first_text(row, ("sentAt", "scheduledAt")) or None,
                    )
                )
            if len(rows) < PAGE_SIZE:
                break
            offset += PAGE_SIZE
        return campaigns
