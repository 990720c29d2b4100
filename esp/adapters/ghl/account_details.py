"""
Push tenant business details to the GHL location record.

``PUT /locations/{id}`` needs the agency-level ``locations.write`` scope,
so the agency grant is used; without one the sync is skipped.
"""

from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from esp.adapters.ghl.oauth import GhlOAuth, ghl_headers
from esp.adapters.http import ProviderHttp
from esp.errors import UpstreamProviderError
from esp.types import AccountDetailsSyncCapability, BusinessDetails, BusinessDetailsSyncResult, EspProvider

logger = logging.getLogger(__name__)

_FIELD_NAMES = {
    "name": "name",
    "email": "email",
    "phone": "phone",
    "address": "address",
    "city": "city",
    "state": "state",
    "postal_code": "postalCode",
    "website": "website",
    "timezone": "timezone",
}


class GhlAccountDetailsSync(AccountDetailsSyncCapability):
    provider = EspProvider.GHL

    def __init__(self, http: ProviderHttp, oauth: GhlOAuth):
        self._http = http
        self._oauth = oauth

    async def sync_business_details(
        self,
        session: AsyncSession,
        location_id: str,
        details: BusinessDetails,
    ) -> BusinessDetailsSyncResult:
        payload = {
            remote: getattr(details, local)
            for local, remote in _FIELD_NAMES.items()
            if getattr(details, local)
        }
        if not payload:
            return BusinessDetailsSyncResult(synced=False, warning="No business details to sync")

        agency = await self._oauth.get_valid_agency_token(session)
        if agency is None:
            logger.info("No GHL agency grant; business details for %s kept locally", location_id)
            return BusinessDetailsSyncResult(synced=False)

        try:
            await self._http.request(
                "PUT",
                f"/locations/{location_id}",
                headers={**ghl_headers(agency[0]), "Content-Type": "application/json"},
                json=payload,
            )
        except UpstreamProviderError as exc:
            return BusinessDetailsSyncResult(
                synced=False, warning=f"GHL sync failed: {exc.message}. Details saved locally."
            )
        return BusinessDetailsSyncResult(synced=True)
