"""
GoHighLevel connection validation (OAuth only).
"""

from __future__ import annotations

from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from esp import credential_store
from esp.adapters.ghl.oauth import GhlOAuth
from esp.errors import EspValidationError
from esp.types import ConnectionType, EspProvider, ValidationCapability, ValidationResult


class GhlValidation(ValidationCapability):
    provider = EspProvider.GHL

    def __init__(self, oauth: GhlOAuth):
        self._oauth = oauth

    async def validate(
        self,
        session: AsyncSession,
        *,
        account_key: Optional[str] = None,
        api_key: Optional[str] = None,
    ) -> ValidationResult:
        key = (account_key or "").strip()
        if not key:
            raise EspValidationError("accountKey is required for GHL OAuth validation", 400)

        token = await self._oauth.get_valid_token(session, key)
        if not token:
            raise EspValidationError("No OAuth connection found for this account. Connect via OAuth first.", 400)

        connection = await credential_store.get_oauth_connection(session, key, self.provider)
        if connection is None or not connection.location_id:
            raise EspValidationError("OAuth connection exists but no locationId is stored.", 400)

        location = await self._oauth.fetch_location_details(token, connection.location_id)
        return ValidationResult(provider=self.provider, mode=ConnectionType.OAUTH, location=location)
