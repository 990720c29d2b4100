"""
GoHighLevel contacts — credential resolution, counts and contact pages.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from esp import credential_store
from esp.adapters.ghl.oauth import GhlOAuth, ghl_headers
from esp.adapters.http import ProviderHttp, as_record, first_text
from esp.errors import CredentialDecryptionError, UpstreamProviderError
from esp.types import ContactsCapability, ContactsPage, EspCredentials, EspProvider, NormalizedContact

logger = logging.getLogger(__name__)

CONTACT_ENDPOINTS = ("/contacts/", "/contacts/search")


def extract_contact_rows(data: Any) -> List[Dict[str, Any]]:
    record = as_record(data)
    nested = as_record(record.get("data"))
    for candidate in (record.get("contacts"), nested.get("contacts"), record.get("data")):
        if isinstance(candidate, list):
            return [as_record(row) for row in candidate]
    return []


def extract_total(data: Any, default: int = 0) -> int:
    record = as_record(data)
    for candidate in (
        as_record(record.get("meta")).get("total"),
        record.get("total"),
        as_record(as_record(record.get("data")).get("meta")).get("total"),
    ):
        if isinstance(candidate, int) and not isinstance(candidate, bool):
            return candidate
    return default


def normalize_contact(raw: Dict[str, Any]) -> NormalizedContact:
    first = first_text(raw, ("firstName", "first_name"))
    last = first_text(raw, ("lastName", "last_name"))
    full = first_text(raw, ("contactName", "name", "fullName")) or " ".join(p for p in (first, last) if p)
    tags = raw.get("tags") if isinstance(raw.get("tags"), list) else []
    return NormalizedContact(
        id=first_text(raw, ("id", "_id")),
        first_name=first,
        last_name=last,
        full_name=full,
        email=first_text(raw, ("email",)),
        phone=first_text(raw, ("phone",)),
        tags=[str(t) for t in tags if str(t).strip()],
        date_added=first_text(raw, ("dateAdded", "createdAt")),
        source=first_text(raw, ("source",)),
    )


class GhlContacts(ContactsCapability):
    provider = EspProvider.GHL

    def __init__(self, http: ProviderHttp, oauth: GhlOAuth):
        self._http = http
        self._oauth = oauth

    async def resolve_credentials(self, session: AsyncSession, account_key: str) -> Optional[EspCredentials]:
        try:
            token = await self._oauth.get_valid_token(session, account_key)
        except CredentialDecryptionError as exc:
            logger.warning("Failed to resolve GHL credentials for %s: %s", account_key, exc)
            return None
        if not token:
            return None
        connection = await credential_store.get_oauth_connection(session, account_key, self.provider)
        if connection is None or not connection.location_id:
            return None
        return EspCredentials(provider=self.provider, token=token, location_id=connection.location_id)

    async def _get_first_ok(self, credentials: EspCredentials, params: Dict[str, Any]) -> Any:
        last_error: Optional[UpstreamProviderError] = None
        for endpoint in CONTACT_ENDPOINTS:
            try:
                return await self._http.request(
                    "GET", endpoint, headers=ghl_headers(credentials.token), params=params
                )
            except UpstreamProviderError as exc:
                last_error = exc
        raise last_error

    async def fetch_contact_count(self, credentials: EspCredentials) -> int:
        data = await self._get_first_ok(credentials, {"locationId": credentials.location_id, "limit": 1})
        return extract_total(data)

    async def request_contacts(self, credentials: EspCredentials, *, limit: int = 25, search: str = "") -> ContactsPage:
        params: Dict[str, Any] = {"locationId": credentials.location_id, "limit": limit}
        if search:
            params["query"] = search
        data = await self._get_first_ok(credentials, params)
        rows = extract_contact_rows(data)
        return ContactsPage(
            contacts=[normalize_contact(row) for row in rows],
            total=extract_total(data, default=len(rows)),
        )
