"""
GoHighLevel OAuth — consent URL, code exchange, refresh, token storage.

Two grant shapes share one client:

* location grants, stored per account in ``EspOAuthConnection``;
* the agency grant (account key ``__ghl_agency__``), stored once in
  ``EspProviderOAuthCredential`` and used to mint short-lived location
  tokens when a location grant cannot be refreshed.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple
from urllib.parse import urlencode

from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import Settings, config
from database.session import async_session_factory
from esp import credential_store, oauth_state
from esp.adapters.http import ProviderHttp, as_record, first_text
from esp.errors import CredentialDecryptionError, EspValidationError, UpstreamProviderError
from esp.types import EspProvider, OAuthCapability, OAuthTokenSet

logger = logging.getLogger(__name__)

GHL_AUTH_URL = "https://marketplace.gohighlevel.com/oauth/chooselocation"
GHL_BASE = "https://services.leadconnectorhq.com"
GHL_TOKEN_PATH = "/oauth/token"
API_VERSION = "2021-07-28"

GHL_AGENCY_ACCOUNT_KEY = "__ghl_agency__"

TOKEN_REFRESH_BUFFER = timedelta(minutes=5)
LOCATION_TOKEN_REFRESH_BUFFER_SECONDS = 120

REQUIRED_SCOPES: List[str] = [
    "oauth.readonly",
    "oauth.write",
    "locations.readonly",
    "locations/customValues.readonly",
    "locations/customValues.write",
    "locations/customFields.readonly",
    "locations/customFields.write",
    "contacts.readonly",
    "contacts.write",
    "conversations.readonly",
    "conversations/message.readonly",
    "conversations.write",
    "conversations/message.write",
    "emails/schedule.readonly",
    "campaigns.readonly",
    "workflows.readonly",
    "users.readonly",
    "emails/builder.readonly",
    "emails/builder.write",
    "medias.readonly",
    "medias.write",
]


def ghl_headers(token: str) -> Dict[str, str]:
    return {
        "Authorization": f"Bearer {token}",
        "Version": API_VERSION,
        "Accept": "application/json",
    }


def _mask(value: str) -> str:
    value = value.strip()
    if not value:
        return "(missing)"
    if len(value) <= 6:
        return "*" * len(value)
    return f"{value[:4]}...{value[-4:]}"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class GhlOAuth(OAuthCapability):
    provider = EspProvider.GHL
    required_scopes = REQUIRED_SCOPES
    supports_agency = True

    def __init__(
        self,
        http: ProviderHttp,
        settings: Optional[Settings] = None,
        session_factory: Optional[Callable[[], AsyncSession]] = None,
    ):
        self._http = http
        self._settings = settings or config
        # refreshed grants commit independently of the caller's transaction
        self._session_factory = session_factory or async_session_factory
        self._location_tokens: Dict[str, Tuple[str, float]] = {}

    # ── Client configuration ────────────────────────────────────────────

    def _require(self, name: str) -> str:
        value = (getattr(self._settings, name) or "").strip()
        if not value:
            raise EspValidationError(f"{name.upper()} is required", 500)
        return value

    def is_configured(self) -> bool:
        return bool(
            self._settings.ghl_client_id
            and self._settings.ghl_client_secret
            and self._settings.ghl_redirect_uri
        )

    # ── State ───────────────────────────────────────────────────────────

    def sign_state(self, account_key: str) -> str:
        return oauth_state.sign_state(self.provider, account_key, settings=self._settings)

    def verify_state(self, state: str) -> Optional[str]:
        payload = oauth_state.verify_state(state, expected_provider=self.provider, settings=self._settings)
        return payload.account_key if payload else None

    # ── Consent / token endpoints ───────────────────────────────────────

    def get_authorization_url(self, account_key: str) -> str:
        params = {
            "client_id": self._require("ghl_client_id"),
            "redirect_uri": self._require("ghl_redirect_uri"),
            "response_type": "code",
            "scope": " ".join(REQUIRED_SCOPES),
            "state": self.sign_state(account_key),
        }
        return f"{GHL_AUTH_URL}?{urlencode(params)}"

    async def _token_request(self, form: Dict[str, str], action: str) -> OAuthTokenSet:
        client_id = self._require("ghl_client_id")
        form = {
            "client_id": client_id,
            "client_secret": self._require("ghl_client_secret"),
            "user_type": "Company",
            **form,
        }
        try:
            data = await self._http.request(
                "POST",
                GHL_TOKEN_PATH,
                headers={"Content-Type": "application/x-www-form-urlencoded", "Accept": "application/json"},
                data=form,
            )
        except UpstreamProviderError as exc:
            logger.error("GHL %s failed (%d) [clientId=%s]", action, exc.upstream_status, _mask(client_id))
            raise
        record = as_record(data)
        return OAuthTokenSet(
            access_token=str(record.get("access_token") or ""),
            refresh_token=str(record.get("refresh_token") or ""),
            expires_in=int(record.get("expires_in") or 3600),
            token_type=str(record.get("token_type") or "Bearer"),
            scope=str(record.get("scope") or ""),
            location_id=record.get("locationId"),
            company_id=record.get("companyId"),
            user_type=record.get("userType"),
        )

    async def exchange_code_for_tokens(self, code: str) -> OAuthTokenSet:
        return await self._token_request(
            {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": self._require("ghl_redirect_uri"),
            },
            "token exchange",
        )

    async def refresh_access_token(self, refresh_token: str) -> OAuthTokenSet:
        return await self._token_request(
            {"grant_type": "refresh_token", "refresh_token": refresh_token},
            "token refresh",
        )

    async def fetch_location_details(self, access_token: str, location_id: str) -> Dict[str, str]:
        data = await self._http.request("GET", f"/locations/{location_id}", headers=ghl_headers(access_token))
        record = as_record(data)
        location = as_record(record.get("location")) or record
        return {
            "id": first_text(location, ("id", "_id")) or location_id,
            "name": first_text(location, ("name", "businessName")),
            "email": first_text(location, ("email",)),
            "phone": first_text(location, ("phone",)),
            "address": first_text(location, ("address",)),
            "city": first_text(location, ("city",)),
            "state": first_text(location, ("state",)),
            "postalCode": first_text(location, ("postalCode", "postal_code", "zipCode")),
            "website": first_text(location, ("website",)),
            "timezone": first_text(location, ("timezone",)),
        }

    # ── Storage ─────────────────────────────────────────────────────────

    async def store_connection(
        self,
        session: AsyncSession,
        *,
        account_key: str,
        location_id: Optional[str],
        location_name: Optional[str],
        tokens: OAuthTokenSet,
    ) -> None:
        expires_at = _utcnow() + timedelta(seconds=tokens.expires_in)
        if account_key == GHL_AGENCY_ACCOUNT_KEY:
            if not tokens.access_token or not tokens.refresh_token:
                raise EspValidationError("Agency OAuth credential requires access_token and refresh_token")
            await credential_store.upsert_provider_oauth_credential(
                session,
                provider=self.provider,
                access_token=tokens.access_token,
                refresh_token=tokens.refresh_token,
                token_expires_at=expires_at,
                scopes=tokens.scopes,
                subject_type="agency",
                subject_id=tokens.company_id,
                settings=self._settings,
            )
            self._location_tokens.clear()
            return

        await credential_store.upsert_oauth_connection(
            session,
            account_key=account_key,
            provider=self.provider,
            access_token=tokens.access_token,
            refresh_token=tokens.refresh_token,
            token_expires_at=expires_at,
            scopes=tokens.scopes,
            location_id=location_id,
            location_name=location_name or None,
            settings=self._settings,
        )

    async def remove_connection(self, session: AsyncSession, account_key: str) -> bool:
        if account_key == GHL_AGENCY_ACCOUNT_KEY:
            self._location_tokens.clear()
            return await credential_store.remove_provider_oauth_credential(session, self.provider)
        connection = await credential_store.get_oauth_connection(session, account_key, self.provider)
        if connection is not None and connection.location_id:
            self._location_tokens.pop(connection.location_id, None)
        return await credential_store.remove_oauth_connection(session, account_key, self.provider)

    # ── Valid tokens ────────────────────────────────────────────────────

    async def get_valid_token(self, session: AsyncSession, account_key: str) -> Optional[str]:
        """
        Access token for the account's location grant, refreshed when it
        expires within five minutes.  Falls back to a location token minted
        from the agency grant when the refresh fails.
        """
        connection = await credential_store.get_oauth_connection(session, account_key, self.provider)
        if connection is None:
            return None

        expires_at = credential_store.as_utc(connection.token_expires_at)
        if expires_at - _utcnow() > TOKEN_REFRESH_BUFFER:
            return credential_store.decrypt_oauth_tokens(connection, self._settings).access_token

        try:
            current = credential_store.decrypt_oauth_tokens(connection, self._settings)
            tokens = await self.refresh_access_token(current.refresh_token)
            async with self._session_factory() as store:
                await credential_store.upsert_oauth_connection(
                    store,
                    account_key=account_key,
                    provider=self.provider,
                    access_token=tokens.access_token,
                    refresh_token=tokens.refresh_token or current.refresh_token,
                    token_expires_at=_utcnow() + timedelta(seconds=tokens.expires_in),
                    scopes=tokens.scopes or list(connection.scopes or []),
                    location_id=connection.location_id,
                    location_name=connection.location_name,
                    settings=self._settings,
                )
                await store.commit()
            await session.refresh(connection)
            logger.info("Refreshed GHL token for account %s", account_key)
            return tokens.access_token
        except (UpstreamProviderError, CredentialDecryptionError, EspValidationError) as exc:
            logger.warning("GHL token refresh failed for %s: %s", account_key, exc)

        if connection.location_id:
            minted = await self.get_location_token(session, connection.location_id)
            if minted:
                return minted
        return None

    async def get_valid_agency_token(self, session: AsyncSession) -> Optional[Tuple[str, Optional[str]]]:
        """``(access_token, company_id)`` for the agency grant, or ``None``."""
        credential = await credential_store.get_provider_oauth_credential(session, self.provider)
        if credential is None:
            return None

        expires_at = credential_store.as_utc(credential.token_expires_at)
        try:
            current = credential_store.decrypt_oauth_tokens(credential, self._settings)
        except CredentialDecryptionError:
            logger.error("GHL agency credential cannot be decrypted with configured secrets")
            return None
        if expires_at - _utcnow() > TOKEN_REFRESH_BUFFER:
            return current.access_token, credential.subject_id

        try:
            tokens = await self.refresh_access_token(current.refresh_token)
        except UpstreamProviderError as exc:
            logger.warning("GHL agency token refresh failed: %s", exc)
            return current.access_token, credential.subject_id
        async with self._session_factory() as store:
            await credential_store.upsert_provider_oauth_credential(
                store,
                provider=self.provider,
                access_token=tokens.access_token,
                refresh_token=tokens.refresh_token or current.refresh_token,
                token_expires_at=_utcnow() + timedelta(seconds=tokens.expires_in),
                scopes=tokens.scopes,
                subject_type=credential.subject_type or "agency",
                subject_id=credential.subject_id,
                settings=self._settings,
            )
            await store.commit()
        await session.refresh(credential)
        return tokens.access_token, credential.subject_id

    def _cached_location_token(self, location_id: str) -> Optional[str]:
        now = time.time()
        for expired in [key for key, (_, expires) in self._location_tokens.items() if expires <= now]:
            del self._location_tokens[expired]
        cached = self._location_tokens.get(location_id)
        if cached and cached[1] - now > LOCATION_TOKEN_REFRESH_BUFFER_SECONDS:
            return cached[0]
        return None

    async def get_location_token(self, session: AsyncSession, location_id: str) -> Optional[str]:
        cached = self._cached_location_token(location_id)
        if cached:
            return cached

        agency = await self.get_valid_agency_token(session)
        if agency is None:
            return None
        agency_token, subject_id = agency
        body: Dict[str, Any] = {"locationId": location_id}
        company_id = subject_id or self._settings.ghl_agency_company_id.strip()
        if company_id:
            body["companyId"] = company_id

        try:
            data = await self._http.request(
                "POST",
                "/oauth/locationToken",
                headers={**ghl_headers(agency_token), "Content-Type": "application/json"},
                json=body,
            )
        except UpstreamProviderError as exc:
            logger.error("GHL location token mint failed for %s: %s", location_id, exc)
            return None

        record = as_record(data)
        keys = ("access_token", "accessToken", "token", "locationAccessToken")
        token = first_text(record, keys) or first_text(as_record(record.get("data")), keys)
        if not token:
            logger.error("GHL location token response for %s carried no token", location_id)
            return None
        expires_in = int(record.get("expires_in") or record.get("expiresIn") or 3600)
        self._location_tokens[location_id] = (token, time.time() + expires_in)
        return token
