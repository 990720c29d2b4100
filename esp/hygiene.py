"""
Contact hygiene scan — sample each account's contacts and report invalid
and duplicate email addresses.

Accounts are scanned through ``run_with_concurrency_limit``; each task
opens its own session, so one slow or failing provider only affects its
own row of the report.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import Settings, config
from database.models import Account
from esp.concurrency import run_with_concurrency_limit
from esp.registry import AdapterRegistry
from esp.types import NormalizedContact

logger = logging.getLogger(__name__)

MIN_SAMPLE = 25
MAX_SAMPLE = 500
DEFAULT_SAMPLE = 200

_EMAIL = re.compile(r"^[^\s@]+@[^\s@.]+(\.[^\s@.]+)*\.[a-z]{2,}$")


def normalize_email(value: str) -> str:
    return (value or "").strip().lower()


def is_likely_deliverable(email: str) -> bool:
    return bool(_EMAIL.match(email)) and ".." not in email


def clamp_sample_size(value: Any) -> int:
    try:
        size = int(value)
    except (TypeError, ValueError):
        return DEFAULT_SAMPLE
    return max(MIN_SAMPLE, min(MAX_SAMPLE, size))


@dataclass
class AccountHygiene:
    account_key: str
    provider: str = "unknown"
    connected: bool = False
    sampled_contacts: int = 0
    valid_email_count: int = 0
    invalid_email_count: int = 0
    duplicate_email_count: int = 0
    contacts: List[NormalizedContact] = field(default_factory=list, repr=False)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "provider": self.provider,
            "connected": self.connected,
            "sampledContacts": self.sampled_contacts,
            "validEmailCount": self.valid_email_count,
            "invalidEmailCount": self.invalid_email_count,
            "duplicateEmailCount": self.duplicate_email_count,
        }


@dataclass
class HygieneReport:
    accounts: Dict[str, AccountHygiene]
    errors: Dict[str, str]
    duplicates: Dict[str, List[Dict[str, str]]]

    def as_dict(self) -> Dict[str, Any]:
        return {
            "accounts": {key: value.as_dict() for key, value in self.accounts.items()},
            "errors": dict(self.errors),
            "duplicates": self.duplicates,
            "meta": {
                "accountsScanned": len(self.accounts),
                "connectedAccounts": sum(1 for a in self.accounts.values() if a.connected),
                "duplicateEmails": len(self.duplicates),
            },
        }


async def list_scannable_account_keys(session: AsyncSession) -> List[str]:
    """Tenant keys, excluding reserved ``_``-prefixed ones."""
    result = await session.execute(select(Account.key).order_by(Account.key))
    return [key for key in result.scalars().all() if not key.startswith("_")]


async def _scan_account(
    session_factory: Callable[[], AsyncSession],
    registry: AdapterRegistry,
    account_key: str,
    sample_size: int,
) -> AccountHygiene:
    async with session_factory() as session:
        adapter = await registry.get_adapter_for_account(session, account_key)
        row = AccountHygiene(account_key=account_key, provider=adapter.provider.value)
        if adapter.contacts is None:
            return row
        credentials = await adapter.contacts.resolve_credentials(session, account_key)
    if credentials is None:
        return row

    page = await adapter.contacts.request_contacts(credentials, limit=sample_size)
    row.connected = True
    row.sampled_contacts = len(page.contacts)
    row.contacts = page.contacts
    return row


async def scan_contact_hygiene(
    session_factory: Callable[[], AsyncSession],
    registry: AdapterRegistry,
    account_keys: Sequence[str],
    *,
    sample_size: int = DEFAULT_SAMPLE,
    concurrency: Optional[int] = None,
    settings: Optional[Settings] = None,
) -> HygieneReport:
    """
    Scan *account_keys* with at most ``ESP_HYGIENE_CONCURRENCY`` provider
    calls in flight.  Duplicates are counted across all scanned accounts.
    """
    settings = settings or config
    limit = concurrency if concurrency is not None else settings.esp_hygiene_concurrency
    keys = list(dict.fromkeys(account_keys))
    tasks = [
        (lambda key=key: _scan_account(session_factory, registry, key, sample_size))
        for key in keys
    ]
    results = await run_with_concurrency_limit(tasks, limit)

    accounts: Dict[str, AccountHygiene] = {}
    errors: Dict[str, str] = {}
    buckets: Dict[str, List[Dict[str, str]]] = {}

    for key, result in zip(keys, results):
        if not result.ok:
            errors[key] = str(result.error) or "Failed to fetch contacts"
            accounts[key] = AccountHygiene(account_key=key, connected=True)
            continue
        row = result.value
        for contact in row.contacts:
            email = normalize_email(contact.email)
            if not email:
                continue
            if not is_likely_deliverable(email):
                row.invalid_email_count += 1
                continue
            row.valid_email_count += 1
            buckets.setdefault(email, []).append(
                {"accountKey": key, "contactId": contact.id, "fullName": contact.full_name}
            )
        accounts[key] = row

    duplicates = {email: entries for email, entries in buckets.items() if len(entries) > 1}
    for entries in duplicates.values():
        for entry in entries:
            accounts[entry["accountKey"]].duplicate_email_count += 1

    logger.info(
        "Hygiene scan: %d accounts, %d errors, %d duplicate emails", len(accounts), len(errors), len(duplicates)
    )
    return HygieneReport(accounts=accounts, errors=errors, duplicates=duplicates)
