"""
Tests for the encrypted credential store.
"""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from database.models import EspConnection, EspOAuthConnection
from esp.credential_store import (
    decrypt_api_key,
    decrypt_oauth_tokens,
    get_api_key_connection,
    get_oauth_connection,
    get_provider_oauth_credential,
    list_api_key_connections,
    list_oauth_connections,
    remove_api_key_connection,
    remove_oauth_connection,
    remove_provider_oauth_credential,
    upsert_api_key_connection,
    upsert_oauth_connection,
    upsert_provider_oauth_credential,
)

EXPIRES = datetime(2030, 1, 1, tzinfo=timezone.utc)


class TestOAuthConnections:
    @pytest.mark.asyncio
    async def test_tokens_are_encrypted_at_rest(self, session):
        await upsert_oauth_connection(
            session,
            account_key="acct-1",
            provider="ghl",
            access_token="plain-access",
            refresh_token="plain-refresh",
            token_expires_at=EXPIRES,
            scopes=["contacts.readonly"],
            location_id="loc-1",
        )
        raw = (await session.execute(select(EspOAuthConnection))).scalar_one()
        assert raw.access_token != "plain-access"
        assert raw.refresh_token != "plain-refresh"
        tokens = decrypt_oauth_tokens(raw)
        assert tokens.access_token == "plain-access"
        assert tokens.refresh_token == "plain-refresh"

    @pytest.mark.asyncio
    async def test_upsert_keeps_install_time(self, session):
        installed = datetime(2024, 1, 1, tzinfo=timezone.utc)
        await upsert_oauth_connection(
            session,
            account_key="acct-1",
            provider="ghl",
            access_token="a1",
            refresh_token="r1",
            token_expires_at=EXPIRES,
            installed_at=installed,
        )
        await upsert_oauth_connection(
            session,
            account_key="acct-1",
            provider="GHL",
            access_token="a2",
            refresh_token="r2",
            token_expires_at=EXPIRES + timedelta(days=1),
            location_id="loc-2",
        )
        rows = await list_oauth_connections(session, account_keys=["acct-1"])
        assert len(rows) == 1
        assert rows[0].location_id == "loc-2"
        assert decrypt_oauth_tokens(rows[0]).access_token == "a2"
        assert rows[0].installed_at.replace(tzinfo=timezone.utc) == installed

    @pytest.mark.asyncio
    async def test_remove(self, session):
        await upsert_oauth_connection(
            session,
            account_key="acct-1",
            provider="ghl",
            access_token="a",
            refresh_token="r",
            token_expires_at=EXPIRES,
        )
        assert await remove_oauth_connection(session, "acct-1", "ghl") is True
        assert await remove_oauth_connection(session, "acct-1", "ghl") is False
        assert await get_oauth_connection(session, "acct-1", "ghl") is None

    @pytest.mark.asyncio
    async def test_list_filters(self, session):
        for key in ("acct-1", "acct-2"):
            await upsert_oauth_connection(
                session,
                account_key=key,
                provider="ghl",
                access_token="a",
                refresh_token="r",
                token_expires_at=EXPIRES,
            )
        assert len(await list_oauth_connections(session)) == 2
        assert len(await list_oauth_connections(session, account_keys=["acct-2"])) == 1
        assert await list_oauth_connections(session, account_keys=[]) == []
        assert await list_oauth_connections(session, provider="klaviyo") == []


class TestApiKeyConnections:
    @pytest.mark.asyncio
    async def test_round_trip(self, session):
        await upsert_api_key_connection(
            session,
            account_key="acct-1",
            provider="klaviyo",
            api_key="pk_live_123",
            account_id="KL1",
            account_name="Shop",
            metadata={"source": "test"},
        )
        row = await get_api_key_connection(session, "acct-1", "klaviyo")
        assert row.api_key != "pk_live_123"
        assert decrypt_api_key(row) == "pk_live_123"
        assert row.metadata_ == {"source": "test"}

    @pytest.mark.asyncio
    async def test_upsert_replaces_key(self, session):
        await upsert_api_key_connection(session, account_key="acct-1", provider="klaviyo", api_key="old")
        await upsert_api_key_connection(session, account_key="acct-1", provider="klaviyo", api_key="new")
        rows = (await session.execute(select(EspConnection))).scalars().all()
        assert len(rows) == 1
        assert decrypt_api_key(rows[0]) == "new"

    @pytest.mark.asyncio
    async def test_remove(self, session):
        await upsert_api_key_connection(session, account_key="acct-1", provider="klaviyo", api_key="k")
        assert await remove_api_key_connection(session, "acct-1", "klaviyo") is True
        assert await list_api_key_connections(session) == []


class TestProviderCredentials:
    @pytest.mark.asyncio
    async def test_one_per_provider(self, session):
        await upsert_provider_oauth_credential(
            session,
            provider="ghl",
            access_token="agency-1",
            refresh_token="refresh-1",
            token_expires_at=EXPIRES,
            subject_type="Company",
            subject_id="comp-1",
        )
        await upsert_provider_oauth_credential(
            session,
            provider="ghl",
            access_token="agency-2",
            refresh_token="refresh-2",
            token_expires_at=EXPIRES,
        )
        row = await get_provider_oauth_credential(session, "ghl")
        assert decrypt_oauth_tokens(row).access_token == "agency-2"
        assert await remove_provider_oauth_credential(session, "ghl") is True
        assert await get_provider_oauth_credential(session, "ghl") is None
