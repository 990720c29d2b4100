"""
Tests for the contact hygiene scan.
"""

import httpx
import pytest

from database.models import Account
from database.session import async_session_factory
from esp.credential_store import upsert_api_key_connection
from esp.hygiene import (
    DEFAULT_SAMPLE,
    MAX_SAMPLE,
    MIN_SAMPLE,
    clamp_sample_size,
    is_likely_deliverable,
    list_scannable_account_keys,
    normalize_email,
    scan_contact_hygiene,
)

PROFILES = {
    "pk_a": [
        ("a1", "Ada", "ada@example.com"),
        ("a2", "Bad", "not-an-email"),
        ("a3", "Shared", "shared@example.com"),
        ("a4", "Blank", ""),
    ],
    "pk_b": [
        ("b1", "Other", "  Shared@Example.com "),
        ("b2", "Bob", "bob@example.org"),
    ],
}


def _profiles(request: httpx.Request) -> httpx.Response:
    key = request.headers["Authorization"].split()[-1]
    if key not in PROFILES:
        return httpx.Response(500, json={"errors": [{"detail": "upstream exploded"}]})
    data = [
        {"id": pid, "attributes": {"first_name": name, "email": email}}
        for pid, name, email in PROFILES[key]
    ]
    return httpx.Response(200, json={"data": data})


class TestEmailHelpers:
    def test_normalize_email(self):
        assert normalize_email("  Ada@Example.COM ") == "ada@example.com"
        assert normalize_email(None) == ""

    @pytest.mark.parametrize(
        "email,expected",
        [
            ("ada@example.com", True),
            ("first.last@mail.example.co", True),
            ("not-an-email", False),
            ("x@localhost", False),
            ("a..b@example.com", False),
            ("two@@example.com", False),
            ("spaced out@example.com", False),
        ],
    )
    def test_is_likely_deliverable(self, email, expected):
        assert is_likely_deliverable(email) is expected

    @pytest.mark.parametrize(
        "value,expected",
        [
            (None, DEFAULT_SAMPLE),
            ("abc", DEFAULT_SAMPLE),
            (1, MIN_SAMPLE),
            ("100", 100),
            (10_000, MAX_SAMPLE),
        ],
    )
    def test_clamp_sample_size(self, value, expected):
        assert clamp_sample_size(value) == expected


class TestScanContactHygiene:
    async def _seed(self, session):
        session.add_all(
            [
                Account(key="acct-a", name="A", esp_provider="klaviyo"),
                Account(key="acct-b", name="B", esp_provider="klaviyo"),
                Account(key="acct-c", name="C", esp_provider="klaviyo"),
                Account(key="acct-d", name="D", esp_provider="klaviyo"),
                Account(key="_internal", name="Reserved"),
            ]
        )
        await upsert_api_key_connection(session, account_key="acct-a", provider="klaviyo", api_key="pk_a")
        await upsert_api_key_connection(session, account_key="acct-b", provider="klaviyo", api_key="pk_b")
        await upsert_api_key_connection(session, account_key="acct-d", provider="klaviyo", api_key="pk_fail")
        await session.commit()

    @pytest.mark.asyncio
    async def test_reserved_keys_are_not_scannable(self, session):
        await self._seed(session)
        keys = await list_scannable_account_keys(session)
        assert keys == ["acct-a", "acct-b", "acct-c", "acct-d"]

    @pytest.mark.asyncio
    async def test_report_counts_and_duplicates(self, session, registry, provider_transport):
        await self._seed(session)
        provider_transport.responder = _profiles

        report = await scan_contact_hygiene(
            async_session_factory, registry, ["acct-a", "acct-b", "acct-c", "acct-d"], concurrency=2
        )

        a = report.accounts["acct-a"]
        assert a.connected is True
        assert a.provider == "klaviyo"
        assert a.sampled_contacts == 4
        assert a.valid_email_count == 2
        assert a.invalid_email_count == 1
        assert a.duplicate_email_count == 1

        b = report.accounts["acct-b"]
        assert b.valid_email_count == 2
        assert b.duplicate_email_count == 1

        assert report.accounts["acct-c"].connected is False
        assert report.accounts["acct-c"].sampled_contacts == 0

        assert set(report.errors) == {"acct-d"}
        assert "upstream exploded" in report.errors["acct-d"]

        assert list(report.duplicates) == ["shared@example.com"]
        assert {e["accountKey"] for e in report.duplicates["shared@example.com"]} == {"acct-a", "acct-b"}

    @pytest.mark.asyncio
    async def test_sample_size_is_sent_upstream(self, session, registry, provider_transport):
        await self._seed(session)
        provider_transport.responder = _profiles

        await scan_contact_hygiene(async_session_factory, registry, ["acct-a"], sample_size=50)
        assert provider_transport.requests[-1].url.params["page[size]"] == "50"

    @pytest.mark.asyncio
    async def test_as_dict_shape(self, session, registry, provider_transport):
        await self._seed(session)
        provider_transport.responder = _profiles

        report = await scan_contact_hygiene(async_session_factory, registry, ["acct-a", "acct-a", "acct-b"])
        body = report.as_dict()
        assert body["meta"] == {"accountsScanned": 2, "connectedAccounts": 2, "duplicateEmails": 1}
        assert body["accounts"]["acct-a"]["invalidEmailCount"] == 1
        assert "contacts" not in body["accounts"]["acct-a"]
