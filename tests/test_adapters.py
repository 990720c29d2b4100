"""
Tests for the GoHighLevel and Klaviyo adapters against a mocked provider API.
"""

import json
import time
from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from esp.adapters.http import ProviderHttp
from database.session import async_session_factory
from esp.adapters.klaviyo.constants import KLAVIYO_REVISION
from esp.credential_store import (
    decrypt_api_key,
    decrypt_oauth_tokens,
    get_api_key_connection,
    get_oauth_connection,
    get_provider_oauth_credential,
    upsert_oauth_connection,
    upsert_provider_oauth_credential,
)
from esp.errors import EspValidationError, UpstreamProviderError
from esp.oauth_state import verify_state
from esp.types import (
    BusinessDetails,
    ConnectionType,
    CustomValueInput,
    EspCredentials,
    EspProvider,
    TemplateInput,
)

GHL_CREDS = EspCredentials(provider=EspProvider.GHL, token="ghl-token", location_id="loc-1")
KLAVIYO_CREDS = EspCredentials(provider=EspProvider.KLAVIYO, token="pk_test", location_id="KL-1")


def _future(hours: int = 24) -> datetime:
    return datetime.now(timezone.utc) + timedelta(hours=hours)


def _form(request: httpx.Request) -> dict:
    return {k: v[0] for k, v in parse_qs(request.content.decode("utf-8")).items()}


class TestProviderHttp:
    @pytest.mark.asyncio
    async def test_error_carries_upstream_status(self):
        transport = httpx.MockTransport(lambda r: httpx.Response(401, json={"message": "Invalid JWT"}))
        http = ProviderHttp(EspProvider.GHL, "https://api.test", transport=transport)
        with pytest.raises(UpstreamProviderError) as exc_info:
            await http.request("GET", "/x")
        assert exc_info.value.status_code == 401
        assert exc_info.value.message == "ghl request failed (401): Invalid JWT"

    @pytest.mark.asyncio
    async def test_server_errors_become_bad_gateway(self):
        transport = httpx.MockTransport(lambda r: httpx.Response(503, text="down"))
        http = ProviderHttp(EspProvider.KLAVIYO, "https://api.test", transport=transport)
        with pytest.raises(UpstreamProviderError) as exc_info:
            await http.request("GET", "/x")
        assert exc_info.value.status_code == 502
        assert exc_info.value.upstream_status == 503

    @pytest.mark.asyncio
    async def test_json_api_error_detail(self):
        body = {"errors": [{"detail": "Missing scope", "title": "Forbidden"}]}
        transport = httpx.MockTransport(lambda r: httpx.Response(403, json=body))
        http = ProviderHttp(EspProvider.KLAVIYO, "https://api.test", transport=transport)
        with pytest.raises(UpstreamProviderError) as exc_info:
            await http.request("GET", "/x")
        assert exc_info.value.message.endswith(": Missing scope")

    @pytest.mark.asyncio
    async def test_allow_404_and_empty_body(self):
        transport = httpx.MockTransport(
            lambda r: httpx.Response(404) if r.url.path == "/missing" else httpx.Response(204)
        )
        http = ProviderHttp(EspProvider.GHL, "https://api.test", transport=transport)
        assert await http.request("GET", "/missing", allow_404=True) is None
        assert await http.request("DELETE", "/thing") is None

    def test_absolute_urls_pass_through(self):
        http = ProviderHttp(EspProvider.KLAVIYO, "https://a.klaviyo.com/api/")
        assert http.url("/profiles/") == "https://a.klaviyo.com/api/profiles/"
        assert http.url("https://a.klaviyo.com/api/profiles/?page=2") == "https://a.klaviyo.com/api/profiles/?page=2"


class TestGhlOAuth:
    def test_authorization_url(self, registry, settings):
        url = registry.get_adapter("ghl").oauth.get_authorization_url("acct-1")
        query = {k: v[0] for k, v in parse_qs(urlparse(url).query).items()}
        assert url.startswith("https://marketplace.gohighlevel.com/oauth/chooselocation?")
        assert query["client_id"] == "ghl-client"
        assert query["response_type"] == "code"
        assert "locations/customValues.write" in query["scope"].split(" ")
        payload = verify_state(query["state"], expected_provider="ghl", settings=settings)
        assert payload.account_key == "acct-1"

    @pytest.mark.asyncio
    async def test_exchange_code(self, registry, provider_transport):
        def respond(request):
            assert request.url.path == "/oauth/token"
            form = _form(request)
            assert form["grant_type"] == "authorization_code"
            assert form["code"] == "the-code"
            assert form["client_secret"] == "ghl-secret"
            return httpx.Response(
                200,
                json={
                    "access_token": "at",
                    "refresh_token": "rt",
                    "expires_in": 86399,
                    "scope": "contacts.readonly locations.readonly",
                    "locationId": "loc-1",
                },
            )

        provider_transport.responder = respond
        tokens = await registry.get_adapter("ghl").oauth.exchange_code_for_tokens("the-code")
        assert tokens.access_token == "at"
        assert tokens.location_id == "loc-1"
        assert tokens.scopes == ["contacts.readonly", "locations.readonly"]

    @pytest.mark.asyncio
    async def test_valid_token_without_refresh(self, session, registry, provider_transport):
        await upsert_oauth_connection(
            session,
            account_key="acct-1",
            provider="ghl",
            access_token="fresh",
            refresh_token="rt",
            token_expires_at=_future(),
            location_id="loc-1",
        )
        assert await registry.get_adapter("ghl").oauth.get_valid_token(session, "acct-1") == "fresh"
        assert provider_transport.requests == []

    @pytest.mark.asyncio
    async def test_expiring_token_is_refreshed_and_stored(self, session, registry, provider_transport):
        await upsert_oauth_connection(
            session,
            account_key="acct-1",
            provider="ghl",
            access_token="stale",
            refresh_token="rt-1",
            token_expires_at=datetime.now(timezone.utc) + timedelta(minutes=1),
            scopes=["contacts.readonly"],
            location_id="loc-1",
        )
        await session.commit()

        def respond(request):
            form = _form(request)
            assert form["grant_type"] == "refresh_token"
            assert form["refresh_token"] == "rt-1"
            return httpx.Response(200, json={"access_token": "renewed", "refresh_token": "rt-2", "expires_in": 3600})

        provider_transport.responder = respond
        assert await registry.get_adapter("ghl").oauth.get_valid_token(session, "acct-1") == "renewed"
        async with async_session_factory() as fresh:
            row = await get_oauth_connection(fresh, "acct-1", "ghl")
        tokens = decrypt_oauth_tokens(row)
        assert tokens.refresh_token == "rt-2"
        assert row.scopes == ["contacts.readonly"]
        # the caller's session sees the committed pair too
        mine = await get_oauth_connection(session, "acct-1", "ghl")
        assert decrypt_oauth_tokens(mine).access_token == "renewed"

    @pytest.mark.asyncio
    async def test_failed_refresh_falls_back_to_agency_location_token(self, session, registry, provider_transport):
        await upsert_oauth_connection(
            session,
            account_key="acct-1",
            provider="ghl",
            access_token="stale",
            refresh_token="revoked",
            token_expires_at=datetime.now(timezone.utc) - timedelta(hours=1),
            location_id="loc-1",
        )
        await upsert_provider_oauth_credential(
            session,
            provider="ghl",
            access_token="agency-at",
            refresh_token="agency-rt",
            token_expires_at=_future(),
            subject_id="comp-1",
        )

        def respond(request):
            if request.url.path == "/oauth/token":
                return httpx.Response(400, json={"error": "invalid_grant"})
            assert request.url.path == "/oauth/locationToken"
            assert request.headers["Authorization"] == "Bearer agency-at"
            assert json.loads(request.content) == {"locationId": "loc-1", "companyId": "comp-1"}
            return httpx.Response(200, json={"access_token": "minted", "expires_in": 3600})

        provider_transport.responder = respond
        oauth = registry.get_adapter("ghl").oauth
        assert await oauth.get_valid_token(session, "acct-1") == "minted"
        # second call is served from the location token cache
        provider_transport.requests.clear()
        assert await oauth.get_location_token(session, "loc-1") == "minted"
        assert provider_transport.requests == []

    @pytest.mark.asyncio
    async def test_no_connection(self, session, registry):
        assert await registry.get_adapter("ghl").oauth.get_valid_token(session, "nobody") is None

    @pytest.mark.asyncio
    async def test_expiring_agency_grant_is_refreshed_and_committed(self, session, registry, provider_transport):
        await upsert_provider_oauth_credential(
            session,
            provider="ghl",
            access_token="agency-old",
            refresh_token="agency-rt-1",
            token_expires_at=datetime.now(timezone.utc) + timedelta(seconds=30),
            subject_id="comp-1",
        )
        await session.commit()

        def respond(request):
            form = _form(request)
            assert form["refresh_token"] == "agency-rt-1"
            return httpx.Response(
                200, json={"access_token": "agency-new", "refresh_token": "agency-rt-2", "expires_in": 86399}
            )

        provider_transport.responder = respond
        oauth = registry.get_adapter("ghl").oauth
        assert await oauth.get_valid_agency_token(session) == ("agency-new", "comp-1")
        await session.rollback()

        async with async_session_factory() as fresh:
            stored = await get_provider_oauth_credential(fresh, "ghl")
        assert decrypt_oauth_tokens(stored).refresh_token == "agency-rt-2"

    @pytest.mark.asyncio
    async def test_expired_location_tokens_are_evicted(self, session, registry, provider_transport):
        oauth = registry.get_adapter("ghl").oauth
        oauth._location_tokens["loc-gone"] = ("old", time.time() - 10)
        oauth._location_tokens["loc-1"] = ("cached", time.time() + 3600)

        assert await oauth.get_location_token(session, "loc-1") == "cached"
        assert "loc-gone" not in oauth._location_tokens
        assert provider_transport.requests == []


class TestGhlValidation:
    @pytest.mark.asyncio
    async def test_requires_connection(self, session, registry):
        with pytest.raises(EspValidationError) as exc_info:
            await registry.get_adapter("ghl").validation.validate(session, account_key="acct-1")
        assert "Connect via OAuth first" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_reports_location(self, session, registry, provider_transport):
        provider_transport.responder = lambda r: httpx.Response(
            200, json={"location": {"id": "loc-1", "name": "Main Street", "email": "hi@example.com"}}
        )
        await upsert_oauth_connection(
            session,
            account_key="acct-1",
            provider="ghl",
            access_token="at",
            refresh_token="rt",
            token_expires_at=_future(),
            location_id="loc-1",
            location_name="Main Street",
        )
        result = await registry.get_adapter("ghl").validation.validate(session, account_key="acct-1")
        assert result.mode is ConnectionType.OAUTH
        assert result.location["id"] == "loc-1"
        assert result.location["name"] == "Main Street"


class TestGhlContacts:
    @pytest.mark.asyncio
    async def test_falls_back_to_search_endpoint(self, registry, provider_transport):
        def respond(request):
            if request.url.path == "/contacts/":
                return httpx.Response(404, json={"message": "Not found"})
            assert request.url.path == "/contacts/search"
            assert request.headers["Version"] == "2021-07-28"
            return httpx.Response(
                200,
                json={
                    "contacts": [
                        {"id": "c1", "firstName": "Ada", "lastName": "Lovelace", "email": "ada@example.com", "tags": ["vip"]}
                    ],
                    "meta": {"total": 42},
                },
            )

        provider_transport.responder = respond
        page = await registry.get_adapter("ghl").contacts.request_contacts(GHL_CREDS, limit=10, search="ada")
        assert page.total == 42
        assert page.contacts[0].full_name == "Ada Lovelace"
        assert page.contacts[0].tags == ["vip"]

    @pytest.mark.asyncio
    async def test_count(self, registry, provider_transport):
        provider_transport.responder = lambda r: httpx.Response(200, json={"contacts": [], "total": 7})
        assert await registry.get_adapter("ghl").contacts.fetch_contact_count(GHL_CREDS) == 7


class TestGhlCampaignsAndTemplates:
    @pytest.mark.asyncio
    async def test_campaigns(self, registry, provider_transport):
        def respond(request):
            assert request.url.path == "/emails/schedule"
            return httpx.Response(
                200,
                json={"schedules": [{"id": "s1", "name": "Spring Sale", "status": "complete"}, {"name": "no id"}]},
            )

        provider_transport.responder = respond
        campaigns = await registry.get_adapter("ghl").campaigns.fetch_campaigns(GHL_CREDS)
        assert [c.id for c in campaigns] == ["s1"]
        assert campaigns[0].location_id == "loc-1"

    @pytest.mark.asyncio
    async def test_missing_template(self, registry, provider_transport):
        provider_transport.responder = lambda r: httpx.Response(404, json={"message": "nope"})
        assert await registry.get_adapter("ghl").templates.fetch_template_by_id(GHL_CREDS, "t1") is None

    @pytest.mark.asyncio
    async def test_create_template(self, registry, provider_transport):
        def respond(request):
            body = json.loads(request.content)
            assert body == {"locationId": "loc-1", "name": "Welcome", "type": "html", "html": "<p>Hi</p>"}
            return httpx.Response(201, json={"id": "t-new"})

        provider_transport.responder = respond
        created = await registry.get_adapter("ghl").templates.create_template(
            GHL_CREDS, TemplateInput(name="Welcome", subject="Hello", html="<p>Hi</p>")
        )
        assert created.id == "t-new"
        assert created.name == "Welcome"
        assert created.subject == "Hello"


class TestGhlCustomValues:
    @pytest.mark.asyncio
    async def test_sync_diffs_remote_values(self, registry, provider_transport):
        calls = []

        def respond(request):
            calls.append((request.method, request.url.path))
            if request.method == "GET":
                return httpx.Response(
                    200,
                    json={
                        "customValues": [
                            {"id": "cv1", "name": "Brand Color", "fieldKey": "{{ custom_values.brand_color }}", "value": "red"},
                            {"id": "cv2", "name": "Old Promo", "value": "x"},
                            {"id": "cv3", "name": "Hand Made", "value": "keep"},
                            {"id": "cv4", "name": "Tagline", "fieldKey": "{{ custom_values.tagline }}", "value": "Same"},
                        ]
                    },
                )
            return httpx.Response(200, json={})

        provider_transport.responder = respond
        result = await registry.get_adapter("ghl").custom_values.sync_custom_values(
            GHL_CREDS,
            [
                CustomValueInput(name="Brand Color", field_key="{{ custom_values.brand_color }}", value="blue"),
                CustomValueInput(name="Tagline", field_key="{{ custom_values.tagline }}", value="Same"),
                CustomValueInput(name="Phone", field_key="{{ custom_values.phone }}", value="555"),
            ],
            managed_names=["Old Promo"],
        )
        assert result.updated == ["{{ custom_values.brand_color }}"]
        assert result.skipped == ["{{ custom_values.tagline }}"]
        assert result.created == ["{{ custom_values.phone }}"]
        assert result.deleted == ["Old Promo"]
        assert result.errors == []
        assert ("DELETE", "/locations/loc-1/customValues/cv2") in calls
        assert ("DELETE", "/locations/loc-1/customValues/cv3") not in calls

    @pytest.mark.asyncio
    async def test_fetch_failure_is_reported(self, registry, provider_transport):
        provider_transport.responder = lambda r: httpx.Response(401, json={"message": "scope"})
        result = await registry.get_adapter("ghl").custom_values.sync_custom_values(GHL_CREDS, [])
        assert result.errors[0]["fieldKey"] == "*"


class TestGhlCustomFields:
    @pytest.mark.asyncio
    async def test_list_normalizes_and_passes_model(self, registry, provider_transport):
        def respond(request):
            assert request.url.path == "/locations/loc-1/customFields"
            assert request.url.params["model"] == "contact"
            return httpx.Response(
                200,
                json={
                    "customFields": [
                        {"id": "f1", "name": "Pet Name", "fieldKey": "contact.pet_name", "dataType": "TEXT", "model": "contact"},
                        {"_id": "f2", "label": "Size", "type": "SINGLE_OPTIONS", "options": ["S", "M"]},
                    ]
                },
            )

        provider_transport.responder = respond
        fields = await registry.get_adapter("ghl").custom_fields.fetch_custom_fields(GHL_CREDS, " contact ")
        assert [f.id for f in fields] == ["f1", "f2"]
        assert fields[0].field_key == "contact.pet_name"
        assert fields[1].name == "Size"
        assert fields[1].data_type == "SINGLE_OPTIONS"
        assert fields[1].options == ["S", "M"]

    @pytest.mark.asyncio
    async def test_list_reads_nested_data_envelope(self, registry, provider_transport):
        provider_transport.responder = lambda r: httpx.Response(200, json={"data": {"fields": [{"id": "f9"}]}})
        fields = await registry.get_adapter("ghl").custom_fields.fetch_custom_fields(GHL_CREDS)
        assert [f.id for f in fields] == ["f9"]
        assert "model" not in provider_transport.requests[-1].url.params

    @pytest.mark.asyncio
    async def test_missing_field(self, registry, provider_transport):
        provider_transport.responder = lambda r: httpx.Response(404, json={"message": "nope"})
        assert await registry.get_adapter("ghl").custom_fields.fetch_custom_field(GHL_CREDS, "f1") is None

    @pytest.mark.asyncio
    async def test_create_sends_payload(self, registry, provider_transport):
        def respond(request):
            assert request.method == "POST"
            assert request.url.params["model"] == "opportunity"
            assert json.loads(request.content) == {"name": "Budget", "dataType": "MONETORY"}
            return httpx.Response(200, json={"customField": {"id": "f-new", "name": "Budget", "dataType": "MONETORY"}})

        provider_transport.responder = respond
        created = await registry.get_adapter("ghl").custom_fields.create_custom_field(
            GHL_CREDS, {"name": "Budget", "dataType": "MONETORY"}, "opportunity"
        )
        assert created.id == "f-new"
        assert created.data_type == "MONETORY"

    @pytest.mark.asyncio
    async def test_update_with_empty_body_reads_field_back(self, registry, provider_transport):
        def respond(request):
            assert request.url.path == "/locations/loc-1/customFields/f1"
            if request.method == "PUT":
                return httpx.Response(200)
            return httpx.Response(200, json={"field": {"id": "f1", "name": "Renamed"}})

        provider_transport.responder = respond
        updated = await registry.get_adapter("ghl").custom_fields.update_custom_field(
            GHL_CREDS, "f1", {"name": "Renamed"}
        )
        assert updated.name == "Renamed"
        assert [r.method for r in provider_transport.requests] == ["PUT", "GET"]

    @pytest.mark.asyncio
    async def test_delete(self, registry, provider_transport):
        provider_transport.responder = lambda r: httpx.Response(200, json={"succeded": True})
        await registry.get_adapter("ghl").custom_fields.delete_custom_field(GHL_CREDS, "f1")
        request = provider_transport.requests[-1]
        assert request.method == "DELETE"
        assert request.url.path == "/locations/loc-1/customFields/f1"


class TestGhlBusinessDetails:
    @pytest.mark.asyncio
    async def test_nothing_to_sync(self, session, registry):
        result = await registry.get_adapter("ghl").account_details_sync.sync_business_details(
            session, "loc-1", BusinessDetails()
        )
        assert result.synced is False
        assert result.warning == "No business details to sync"

    @pytest.mark.asyncio
    async def test_without_agency_grant(self, session, registry, provider_transport):
        result = await registry.get_adapter("ghl").account_details_sync.sync_business_details(
            session, "loc-1", BusinessDetails(name="Shop")
        )
        assert result.synced is False
        assert provider_transport.requests == []

    @pytest.mark.asyncio
    async def test_pushes_with_agency_token(self, session, registry, provider_transport):
        await upsert_provider_oauth_credential(
            session,
            provider="ghl",
            access_token="agency-at",
            refresh_token="agency-rt",
            token_expires_at=_future(),
        )

        def respond(request):
            assert request.method == "PUT"
            assert request.url.path == "/locations/loc-1"
            assert json.loads(request.content) == {"name": "Shop", "postalCode": "94107"}
            return httpx.Response(200, json={"location": {"id": "loc-1"}})

        provider_transport.responder = respond
        result = await registry.get_adapter("ghl").account_details_sync.sync_business_details(
            session, "loc-1", BusinessDetails(name="Shop", postal_code="94107")
        )
        assert result.synced is True

    @pytest.mark.asyncio
    async def test_upstream_failure_becomes_warning(self, session, registry, provider_transport):
        await upsert_provider_oauth_credential(
            session,
            provider="ghl",
            access_token="agency-at",
            refresh_token="agency-rt",
            token_expires_at=_future(),
        )
        provider_transport.responder = lambda r: httpx.Response(403, json={"message": "forbidden"})
        result = await registry.get_adapter("ghl").account_details_sync.sync_business_details(
            session, "loc-1", BusinessDetails(city="Austin")
        )
        assert result.synced is False
        assert result.warning.startswith("GHL sync failed: ghl request failed (403)")
        assert result.warning.endswith("Details saved locally.")


def _klaviyo_account(request):
    assert request.url.path == "/api/accounts/"
    assert request.headers["revision"] == KLAVIYO_REVISION
    assert request.headers["Authorization"] == "Klaviyo-API-Key pk_test"
    return httpx.Response(
        200,
        json={
            "data": [
                {
                    "type": "account",
                    "id": "KL-1",
                    "attributes": {"contact_information": {"default_sender_name": "Acme Shop"}},
                }
            ]
        },
    )


class TestKlaviyoConnection:
    @pytest.mark.asyncio
    async def test_connect_stores_encrypted_key(self, session, registry, provider_transport):
        provider_transport.responder = _klaviyo_account
        result = await registry.get_adapter("klaviyo").connection.connect(session, "acct-1", " pk_test ")
        assert result.account_id == "KL-1"
        assert result.account_name == "Acme Shop"
        row = await get_api_key_connection(session, "acct-1", "klaviyo")
        assert row.api_key != "pk_test"
        assert decrypt_api_key(row) == "pk_test"

    @pytest.mark.asyncio
    async def test_connect_rejects_bad_key(self, session, registry, provider_transport):
        provider_transport.responder = lambda r: httpx.Response(401, json={"errors": [{"detail": "Bad key"}]})
        with pytest.raises(UpstreamProviderError) as exc_info:
            await registry.get_adapter("klaviyo").connection.connect(session, "acct-1", "pk_bad")
        assert exc_info.value.status_code == 401
        assert await get_api_key_connection(session, "acct-1", "klaviyo") is None

    @pytest.mark.asyncio
    async def test_connect_requires_key(self, session, registry):
        with pytest.raises(EspValidationError):
            await registry.get_adapter("klaviyo").connection.connect(session, "acct-1", "  ")

    @pytest.mark.asyncio
    async def test_validate_with_stored_key(self, session, registry, provider_transport):
        provider_transport.responder = _klaviyo_account
        adapter = registry.get_adapter("klaviyo")
        await adapter.connection.connect(session, "acct-1", "pk_test")
        result = await adapter.validation.validate(session, account_key="acct-1")
        assert result.mode is ConnectionType.API_KEY
        assert result.account == {"id": "KL-1", "name": "Acme Shop"}

    @pytest.mark.asyncio
    async def test_credentials_use_account_id(self, session, registry, provider_transport):
        provider_transport.responder = _klaviyo_account
        adapter = registry.get_adapter("klaviyo")
        await adapter.connection.connect(session, "acct-1", "pk_test")
        credentials = await adapter.contacts.resolve_credentials(session, "acct-1")
        assert credentials.location_id == "KL-1"
        assert credentials.token == "pk_test"


class TestKlaviyoData:
    @pytest.mark.asyncio
    async def test_profile_count_follows_next_links(self, registry, provider_transport):
        def respond(request):
            if request.url.params.get("page[cursor]") == "2":
                return httpx.Response(200, json={"data": [{"id": "p3"}], "links": {"next": None}})
            return httpx.Response(
                200,
                json={
                    "data": [{"id": "p1"}, {"id": "p2"}],
                    "links": {"next": "https://a.klaviyo.com/api/profiles/?page%5Bcursor%5D=2"},
                },
            )

        provider_transport.responder = respond
        assert await registry.get_adapter("klaviyo").contacts.fetch_contact_count(KLAVIYO_CREDS) == 3

    @pytest.mark.asyncio
    async def test_email_search_uses_filter(self, registry, provider_transport):
        def respond(request):
            assert request.url.params["filter"] == 'equals(email,"ada@example.com")'
            return httpx.Response(
                200,
                json={
                    "data": [
                        {
                            "id": "p1",
                            "attributes": {"email": "ada@example.com", "first_name": "Ada", "last_name": "L"},
                        }
                    ]
                },
            )

        provider_transport.responder = respond
        page = await registry.get_adapter("klaviyo").contacts.request_contacts(
            KLAVIYO_CREDS, search="ada@example.com"
        )
        assert page.total == 1
        assert page.contacts[0].email == "ada@example.com"

    @pytest.mark.asyncio
    async def test_campaigns_map_status(self, registry, provider_transport):
        def respond(request):
            assert request.url.params["filter"] == "equals(messages.channel,'email')"
            return httpx.Response(
                200,
                json={
                    "data": [
                        {"id": "c1", "attributes": {"name": "Launch", "status": "Sent", "send_time": "2024-05-01"}},
                        {"id": "c2", "attributes": {"status": "Cancelled"}},
                    ]
                },
            )

        provider_transport.responder = respond
        campaigns = await registry.get_adapter("klaviyo").campaigns.fetch_campaigns(KLAVIYO_CREDS)
        assert [(c.id, c.name, c.status) for c in campaigns] == [("c1", "Launch", "sent"), ("c2", "Untitled", "canceled")]
        assert campaigns[0].location_id == "KL-1"

    @pytest.mark.asyncio
    async def test_create_template_sends_json_api_document(self, registry, provider_transport):
        def respond(request):
            assert request.headers["Content-Type"] == "application/vnd.api+json"
            body = json.loads(request.content)
            assert body["data"]["type"] == "template"
            assert body["data"]["attributes"] == {"name": "Welcome", "editor_type": "CODE", "html": "<p>Hi</p>"}
            return httpx.Response(
                201, json={"data": {"id": "T1", "attributes": {"name": "Welcome", "html": "<p>Hi</p>"}}}
            )

        provider_transport.responder = respond
        created = await registry.get_adapter("klaviyo").templates.create_template(
            KLAVIYO_CREDS, TemplateInput(name="Welcome", html="<p>Hi</p>", subject="Hey")
        )
        assert created.id == "T1"
        assert created.subject == "Hey"

    @pytest.mark.asyncio
    async def test_missing_template(self, registry, provider_transport):
        provider_transport.responder = lambda r: httpx.Response(404, json={"errors": []})
        assert await registry.get_adapter("klaviyo").templates.fetch_template_by_id(KLAVIYO_CREDS, "T9") is None
