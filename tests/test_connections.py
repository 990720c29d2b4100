"""
Tests for connect / disconnect / validate services.
"""

from datetime import datetime, timedelta, timezone

import httpx
import pytest

from database.models import Account
from esp.connections import (
    connect_esp_connection,
    disconnect_esp_connection,
    set_account_provider,
    validate_esp_connection,
)
from esp.credential_store import get_api_key_connection, upsert_api_key_connection, upsert_oauth_connection
from esp.errors import EspConnectionError, EspValidationError, UpstreamProviderError
from esp.types import ConnectionType, EspProvider

T1 = datetime(2024, 5, 1, tzinfo=timezone.utc)


def _klaviyo_ok(request):
    return httpx.Response(
        200,
        json={"data": [{"id": "KL-1", "attributes": {"contact_information": {"organization_name": "Acme"}}}]},
    )


async def _ghl_connection(session, account_key="acct-1", installed_at=T1):
    await upsert_oauth_connection(
        session,
        account_key=account_key,
        provider="ghl",
        access_token="at",
        refresh_token="rt",
        token_expires_at=datetime.now(timezone.utc) + timedelta(days=1),
        location_id="loc-1",
        installed_at=installed_at,
    )


class TestConnect:
    @pytest.mark.asyncio
    async def test_klaviyo_connect_sets_account_provider(self, session, registry, provider_transport):
        provider_transport.responder = _klaviyo_ok
        outcome = await connect_esp_connection(
            session, registry, account_key="acct-1", provider="Klaviyo", api_key="pk_1"
        )
        assert outcome.as_dict() == {
            "success": True,
            "provider": "klaviyo",
            "accountId": "KL-1",
            "accountName": "Acme",
        }
        account = await session.get(Account, "acct-1")
        assert account.esp_provider == "klaviyo"

    @pytest.mark.asyncio
    async def test_oauth_provider_is_not_connectable_by_key(self, session, registry):
        with pytest.raises(EspConnectionError) as exc_info:
            await connect_esp_connection(session, registry, account_key="acct-1", provider="ghl", api_key="x")
        assert exc_info.value.status_code == 501
        assert "/api/v1/esp/oauth/authorize" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_unknown_provider(self, session, registry):
        with pytest.raises(EspConnectionError) as exc_info:
            await connect_esp_connection(session, registry, account_key="acct-1", provider="mailchimp", api_key="x")
        assert exc_info.value.status_code == 400

    @pytest.mark.asyncio
    async def test_account_key_required(self, session, registry):
        with pytest.raises(EspConnectionError) as exc_info:
            await connect_esp_connection(session, registry, account_key=" ", provider="klaviyo", api_key="x")
        assert exc_info.value.status_code == 400

    @pytest.mark.asyncio
    async def test_upstream_status_is_kept(self, session, registry, provider_transport):
        provider_transport.responder = lambda r: httpx.Response(401, json={"errors": [{"detail": "bad key"}]})
        with pytest.raises(UpstreamProviderError) as exc_info:
            await connect_esp_connection(session, registry, account_key="acct-1", provider="klaviyo", api_key="x")
        assert exc_info.value.status_code == 401
        assert await session.get(Account, "acct-1") is None


class TestDisconnect:
    @pytest.mark.asyncio
    async def test_explicit_provider_falls_back_to_other_connection(self, session, registry, provider_transport):
        await _ghl_connection(session, installed_at=T1)
        await upsert_api_key_connection(
            session, account_key="acct-1", provider="klaviyo", api_key="pk", installed_at=T1 + timedelta(hours=1)
        )
        await set_account_provider(session, "acct-1", EspProvider.KLAVIYO)

        outcome = await disconnect_esp_connection(session, registry, account_key="acct-1", provider="klaviyo")

        assert outcome.removed is True
        assert await get_api_key_connection(session, "acct-1", "klaviyo") is None
        account = await session.get(Account, "acct-1")
        assert account.esp_provider == "ghl"

    @pytest.mark.asyncio
    async def test_any_removes_active_provider(self, session, registry):
        await _ghl_connection(session)
        outcome = await disconnect_esp_connection(session, registry, account_key="acct-1", provider="any")
        assert outcome.provider is EspProvider.GHL
        assert outcome.removed is True

    @pytest.mark.asyncio
    async def test_nothing_to_remove(self, session, registry):
        outcome = await disconnect_esp_connection(session, registry, account_key="acct-1", provider="klaviyo")
        assert outcome.as_dict() == {"success": True, "provider": "klaviyo", "removed": False}

    @pytest.mark.asyncio
    async def test_last_connection_falls_back_to_default(self, session, registry):
        await upsert_api_key_connection(session, account_key="acct-1", provider="klaviyo", api_key="pk")
        await set_account_provider(session, "acct-1", EspProvider.KLAVIYO)
        await disconnect_esp_connection(session, registry, account_key="acct-1", provider="klaviyo")
        account = await session.get(Account, "acct-1")
        assert account.esp_provider == "ghl"


class TestValidate:
    @pytest.mark.asyncio
    async def test_provider_inferred_from_account(self, session, registry, provider_transport):
        provider_transport.responder = _klaviyo_ok
        await upsert_api_key_connection(session, account_key="acct-1", provider="klaviyo", api_key="pk")
        result = await validate_esp_connection(session, registry, account_key="acct-1")
        assert result.provider is EspProvider.KLAVIYO
        assert result.mode is ConnectionType.API_KEY

    @pytest.mark.asyncio
    async def test_provider_required_without_account(self, session, registry):
        with pytest.raises(EspValidationError) as exc_info:
            await validate_esp_connection(session, registry)
        assert exc_info.value.message == "provider is required. Supported providers: ghl, klaviyo"

    @pytest.mark.asyncio
    async def test_direct_api_key(self, session, registry, provider_transport):
        provider_transport.responder = _klaviyo_ok
        result = await validate_esp_connection(session, registry, provider="klaviyo", api_key="pk_direct")
        assert result.account == {"id": "KL-1", "name": "Acme"}
        assert provider_transport.requests[0].headers["Authorization"] == "Klaviyo-API-Key pk_direct"
