"""
Klaviyo profiles exposed as contacts.

Klaviyo has no count endpoint, so counts page through ``/profiles/``
with a minimal field set and stop at ``MAX_COUNTED_PROFILES``.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from esp.adapters.http import ProviderHttp, as_record, first_text
from esp.adapters.klaviyo.auth import resolve_klaviyo_credentials
from esp.adapters.klaviyo.constants import klaviyo_headers
from esp.types import ContactsCapability, ContactsPage, EspCredentials, EspProvider, NormalizedContact

logger = logging.getLogger(__name__)

MAX_COUNTED_PROFILES = 100_000
_PHONE = re.compile(r"^\d{10,}$")


def _is_phone(search: str) -> bool:
    return search.startswith("+") or bool(_PHONE.match(search))


def normalize_profile(raw: Dict[str, Any]) -> NormalizedContact:
    attrs = as_record(raw.get("attributes")) or raw
    props = as_record(attrs.get("properties"))
    first = first_text(attrs, ("first_name",))
    last = first_text(attrs, ("last_name",))
    email = first_text(attrs, ("email",))
    tags = props.get("tags") if isinstance(props.get("tags"), list) else []
    return NormalizedContact(
        id=first_text(raw, ("id",)),
        first_name=first,
        last_name=last,
        full_name=" ".join(p for p in (first, last) if p) or email,
        email=email,
        phone=first_text(attrs, ("phone_number",)),
        tags=[str(t) for t in tags],
        date_added=first_text(attrs, ("created",)),
        source=first_text(props, ("source", "Lead Source")),
    )


def _matches(contact: NormalizedContact, needle: str) -> bool:
    needle = needle.lower()
    return any(
        needle in value.lower()
        for value in (contact.first_name, contact.last_name, contact.email, contact.full_name)
    )


class KlaviyoContacts(ContactsCapability):
    provider = EspProvider.KLAVIYO

    def __init__(self, http: ProviderHttp):
        self._http = http

    async def resolve_credentials(self, session: AsyncSession, account_key: str) -> Optional[EspCredentials]:
        return await resolve_klaviyo_credentials(session, account_key)

    async def fetch_contact_count(self, credentials: EspCredentials) -> int:
        count = 0
        url: Optional[str] = "/profiles/"
        params: Optional[Dict[str, Any]] = {"page[size]": 100, "fields[profile]": "email"}
        while url:
            data = as_record(
                await self._http.request("GET", url, headers=klaviyo_headers(credentials.token), params=params)
            )
            rows = data.get("data")
            count += len(rows) if isinstance(rows, list) else 0
            if count >= MAX_COUNTED_PROFILES:
                logger.info("Klaviyo profile count capped at %d for %s", count, credentials.location_id)
                break
            url = as_record(data.get("links")).get("next") or None
            params = None
        return count

    async def request_contacts(self, credentials: EspCredentials, *, limit: int = 25, search: str = "") -> ContactsPage:
        search = (search or "").strip()
        params: Dict[str, Any] = {"page[size]": max(1, min(limit, 100)), "sort": "-created"}
        if "@" in search:
            params["filter"] = f'equals(email,"{search}")'
        elif search and _is_phone(search):
            params["filter"] = f'equals(phone_number,"{search}")'

        data = as_record(
            await self._http.request("GET", "/profiles/", headers=klaviyo_headers(credentials.token), params=params)
        )
        rows = data.get("data") if isinstance(data.get("data"), list) else []
        contacts = [normalize_profile(as_record(row)) for row in rows]

        # Klaviyo only filters on exact email / phone; names are matched here.
        if search and "filter" not in params:
            contacts = [c for c in contacts if _matches(c, search)]
        return ContactsPage(contacts=contacts, total=len(contacts))
