"""
Klaviyo API-key authentication.

Keys are validated against ``GET /api/accounts/`` and stored encrypted in
``EspConnection``; the Klaviyo account id doubles as the location id.
"""

from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from esp import credential_store
from esp.adapters.http import ProviderHttp, as_record, first_text
from esp.adapters.klaviyo.constants import klaviyo_headers
from esp.errors import CredentialDecryptionError, EspValidationError
from esp.types import (
    ConnectionCapability,
    ConnectionType,
    ConnectResult,
    EspCredentials,
    EspProvider,
    ValidationCapability,
    ValidationResult,
)

logger = logging.getLogger(__name__)

DEFAULT_ACCOUNT_NAME = "Klaviyo Account"


async def validate_api_key(http: ProviderHttp, api_key: str) -> ConnectResult:
    """Check *api_key* against Klaviyo; returns the account id and display name."""
    data = await http.request("GET", "/accounts/", headers=klaviyo_headers(api_key))
    rows = as_record(data).get("data")
    account = as_record(rows[0]) if isinstance(rows, list) and rows else {}
    if not account:
        raise EspValidationError("Klaviyo returned no account data", 502)

    contact = as_record(as_record(account.get("attributes")).get("contact_information"))
    return ConnectResult(
        account_id=first_text(account, ("id",)) or None,
        account_name=first_text(contact, ("default_sender_name", "organization_name")) or DEFAULT_ACCOUNT_NAME,
    )


async def resolve_klaviyo_credentials(session: AsyncSession, account_key: str) -> Optional[EspCredentials]:
    row = await credential_store.get_api_key_connection(session, account_key, EspProvider.KLAVIYO)
    if row is None:
        return None
    try:
        api_key = credential_store.decrypt_api_key(row)
    except CredentialDecryptionError as exc:
        logger.warning("Failed to decrypt Klaviyo key for %s: %s", account_key, exc)
        return None
    return EspCredentials(
        provider=EspProvider.KLAVIYO,
        token=api_key,
        location_id=row.account_id or account_key,
    )


class KlaviyoConnection(ConnectionCapability):
    provider = EspProvider.KLAVIYO

    def __init__(self, http: ProviderHttp):
        self._http = http

    async def connect(self, session: AsyncSession, account_key: str, api_key: str) -> ConnectResult:
        api_key = (api_key or "").strip()
        if not api_key:
            raise EspValidationError("apiKey is required", 400)
        result = await validate_api_key(self._http, api_key)
        await credential_store.upsert_api_key_connection(
            session,
            account_key=account_key,
            provider=self.provider,
            api_key=api_key,
            account_id=result.account_id,
            account_name=result.account_name,
        )
        return result

    async def disconnect(self, session: AsyncSession, account_key: str) -> bool:
        return await credential_store.remove_api_key_connection(session, account_key, self.provider)


class KlaviyoValidation(ValidationCapability):
    provider = EspProvider.KLAVIYO

    def __init__(self, http: ProviderHttp):
        self._http = http

    async def validate(
        self,
        session: AsyncSession,
        *,
        account_key: Optional[str] = None,
        api_key: Optional[str] = None,
    ) -> ValidationResult:
        key = (api_key or "").strip()
        if not key and account_key:
            credentials = await resolve_klaviyo_credentials(session, account_key)
            key = credentials.token if credentials else ""
        if not key:
            raise EspValidationError("apiKey is required (or connect Klaviyo for this account first)", 400)

        result = await validate_api_key(self._http, key)
        return ValidationResult(
            provider=self.provider,
            mode=ConnectionType.API_KEY,
            account={"id": result.account_id or "", "name": result.account_name or DEFAULT_ACCOUNT_NAME},
        )
