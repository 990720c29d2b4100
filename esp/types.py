"""
ESP types — provider identifiers, capability model and adapter descriptor.

An adapter is a fixed ``EspAdapter`` record whose optional fields hold the
capability modules a provider implements.  Callers test presence with
``adapter.contacts is not None`` (or ``registry.require_capability``); there
is no duck-typed shape guessing.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Mapping, Optional

from pydantic import BaseModel, Field

from esp.errors import UnregisteredProviderError

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from esp.webhooks.types import WebhookFamilyHandler


# ═══════════════════════════════════════════════════════════════════════════════
# Provider identifiers
# ═══════════════════════════════════════════════════════════════════════════════


class EspProvider(str, Enum):
    GHL = "ghl"
    KLAVIYO = "klaviyo"


def normalize_provider_id(value: Any) -> str:
    return value.strip().lower() if isinstance(value, str) else ""


def parse_provider(
    value: Any,
    registered: Optional[Iterable[EspProvider]] = None,
) -> EspProvider:
    """
    Normalise and validate a provider identifier from any ingestion path.

    Raises ``UnregisteredProviderError`` for empty, unknown, or (when
    *registered* is given) known-but-unregistered values.
    """
    if isinstance(value, EspProvider):
        provider = value
    else:
        normalized = normalize_provider_id(value)
        try:
            provider = EspProvider(normalized)
        except ValueError:
            raise UnregisteredProviderError(normalized or str(value or "")) from None
    if registered is not None and provider not in set(registered):
        raise UnregisteredProviderError(provider.value)
    return provider


class AuthMode(str, Enum):
    OAUTH = "oauth"
    API_KEY = "api-key"
    BOTH = "both"


class ConnectionType(str, Enum):
    OAUTH = "oauth"
    API_KEY = "api-key"
    NONE = "none"


@dataclass(frozen=True)
class Capabilities:
    auth: AuthMode
    contacts: bool = False
    campaigns: bool = False
    templates: bool = False
    webhooks: bool = False
    custom_values: bool = False
    custom_fields: bool = False

    @property
    def supports_oauth(self) -> bool:
        return self.auth in (AuthMode.OAUTH, AuthMode.BOTH)

    @property
    def supports_api_key(self) -> bool:
        return self.auth in (AuthMode.API_KEY, AuthMode.BOTH)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "auth": self.auth.value,
            "contacts": self.contacts,
            "campaigns": self.campaigns,
            "templates": self.templates,
            "webhooks": self.webhooks,
            "customValues": self.custom_values,
            "customFields": self.custom_fields,
        }


# ═══════════════════════════════════════════════════════════════════════════════
# Wire-level records
# ═══════════════════════════════════════════════════════════════════════════════


class EspCredentials(BaseModel):
    """Provider-agnostic resolved credentials."""

    provider: EspProvider
    token: str
    location_id: str


class OAuthTokenSet(BaseModel):
    access_token: str
    refresh_token: str
    expires_in: int = 3600
    token_type: str = "Bearer"
    scope: str = ""
    location_id: Optional[str] = None
    company_id: Optional[str] = None
    user_type: Optional[str] = None

    @property
    def scopes(self) -> List[str]:
        return [s for s in self.scope.split(" ") if s.strip()]


class NormalizedContact(BaseModel):
    id: str
    first_name: str = ""
    last_name: str = ""
    full_name: str = ""
    email: str = ""
    phone: str = ""
    tags: List[str] = Field(default_factory=list)
    date_added: str = ""
    source: str = ""


class ContactsPage(BaseModel):
    contacts: List[NormalizedContact] = Field(default_factory=list)
    total: int = 0


class EspCampaign(BaseModel):
    id: str
    name: str
    status: str = ""
    location_id: str = ""
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    sent_at: Optional[str] = None


class EspEmailTemplate(BaseModel):
    id: str
    name: str
    subject: Optional[str] = None
    preview_text: Optional[str] = None
    html: str = ""
    updated_at: Optional[str] = None


class TemplateInput(BaseModel):
    name: Optional[str] = None
    subject: Optional[str] = None
    preview_text: Optional[str] = None
    html: Optional[str] = None


class EspCustomValue(BaseModel):
    id: str
    name: str
    field_key: str = ""
    value: str = ""


class CustomValueInput(BaseModel):
    name: str
    field_key: str
    value: str


class EspCustomField(BaseModel):
    id: str
    name: str = ""
    field_key: str = ""
    data_type: str = ""
    model: str = ""
    placeholder: Optional[str] = None
    group_id: Optional[str] = None
    options: Optional[List[Any]] = None


class SyncResult(BaseModel):
    created: List[str] = Field(default_factory=list)
    updated: List[str] = Field(default_factory=list)
    deleted: List[str] = Field(default_factory=list)
    skipped: List[str] = Field(default_factory=list)
    errors: List[Dict[str, str]] = Field(default_factory=list)


class BusinessDetails(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = None
    website: Optional[str] = None
    timezone: Optional[str] = None


class BusinessDetailsSyncResult(BaseModel):
    synced: bool
    warning: Optional[str] = None


class ConnectResult(BaseModel):
    account_id: Optional[str] = None
    account_name: Optional[str] = None


class ValidationResult(BaseModel):
    provider: EspProvider
    mode: ConnectionType
    location: Optional[Dict[str, str]] = None
    account: Optional[Dict[str, str]] = None


# ═══════════════════════════════════════════════════════════════════════════════
# Capability modules
# ═══════════════════════════════════════════════════════════════════════════════


class OAuthCapability(ABC):
    provider: EspProvider
    required_scopes: List[str] = []
    supports_agency: bool = False

    @abstractmethod
    def get_authorization_url(self, account_key: str) -> str: ...

    @abstractmethod
    async def exchange_code_for_tokens(self, code: str) -> OAuthTokenSet: ...

    @abstractmethod
    async def refresh_access_token(self, refresh_token: str) -> OAuthTokenSet: ...

    @abstractmethod
    async def fetch_location_details(self, access_token: str, location_id: str) -> Dict[str, str]: ...

    @abstractmethod
    async def store_connection(
        self,
        session: "AsyncSession",
        *,
        account_key: str,
        location_id: Optional[str],
        location_name: Optional[str],
        tokens: OAuthTokenSet,
    ) -> None: ...

    @abstractmethod
    async def remove_connection(self, session: "AsyncSession", account_key: str) -> bool: ...

    @abstractmethod
    async def get_valid_token(self, session: "AsyncSession", account_key: str) -> Optional[str]: ...

    @abstractmethod
    def sign_state(self, account_key: str) -> str: ...

    @abstractmethod
    def verify_state(self, state: str) -> Optional[str]:
        """Return the account key bound to *state*, or ``None``."""


class ConnectionCapability(ABC):
    provider: EspProvider

    @abstractmethod
    async def connect(self, session: "AsyncSession", account_key: str, api_key: str) -> ConnectResult: ...

    @abstractmethod
    async def disconnect(self, session: "AsyncSession", account_key: str) -> bool: ...


class ValidationCapability(ABC):
    provider: EspProvider

    @abstractmethod
    async def validate(
        self,
        session: "AsyncSession",
        *,
        account_key: Optional[str] = None,
        api_key: Optional[str] = None,
    ) -> ValidationResult: ...


class ContactsCapability(ABC):
    provider: EspProvider

    @abstractmethod
    async def resolve_credentials(self, session: "AsyncSession", account_key: str) -> Optional[EspCredentials]: ...

    @abstractmethod
    async def fetch_contact_count(self, credentials: EspCredentials) -> int: ...

    @abstractmethod
    async def request_contacts(self, credentials: EspCredentials, *, limit: int = 25, search: str = "") -> ContactsPage: ...


class CampaignsCapability(ABC):
    provider: EspProvider

    @abstractmethod
    async def fetch_campaigns(self, credentials: EspCredentials) -> List[EspCampaign]: ...


class TemplatesCapability(ABC):
    provider: EspProvider

    @abstractmethod
    async def fetch_templates(self, credentials: EspCredentials) -> List[EspEmailTemplate]: ...

    @abstractmethod
    async def fetch_template_by_id(self, credentials: EspCredentials, template_id: str) -> Optional[EspEmailTemplate]: ...

    @abstractmethod
    async def create_template(self, credentials: EspCredentials, data: TemplateInput) -> EspEmailTemplate: ...

    @abstractmethod
    async def update_template(self, credentials: EspCredentials, template_id: str, data: TemplateInput) -> EspEmailTemplate: ...

    @abstractmethod
    async def delete_template(self, credentials: EspCredentials, template_id: str) -> None: ...


class CustomValuesCapability(ABC):
    provider: EspProvider

    @abstractmethod
    async def fetch_custom_values(self, credentials: EspCredentials) -> List[EspCustomValue]: ...

    @abstractmethod
    async def create_custom_value(self, credentials: EspCredentials, data: CustomValueInput) -> EspCustomValue: ...

    @abstractmethod
    async def update_custom_value(self, credentials: EspCredentials, custom_value_id: str, *, name: str, value: str) -> EspCustomValue: ...

    @abstractmethod
    async def delete_custom_value(self, credentials: EspCredentials, custom_value_id: str) -> None: ...

    @abstractmethod
    async def sync_custom_values(
        self,
        credentials: EspCredentials,
        desired: List[CustomValueInput],
        managed_names: Optional[List[str]] = None,
    ) -> SyncResult: ...


class CustomFieldsCapability(ABC):
    provider: EspProvider

    @abstractmethod
    async def fetch_custom_fields(self, credentials: EspCredentials, model: Optional[str] = None) -> List[EspCustomField]: ...

    @abstractmethod
    async def fetch_custom_field(self, credentials: EspCredentials, custom_field_id: str) -> Optional[EspCustomField]: ...

    @abstractmethod
    async def create_custom_field(
        self,
        credentials: EspCredentials,
        payload: Dict[str, Any],
        model: Optional[str] = None,
    ) -> EspCustomField: ...

    @abstractmethod
    async def update_custom_field(
        self,
        credentials: EspCredentials,
        custom_field_id: str,
        payload: Dict[str, Any],
    ) -> EspCustomField: ...

    @abstractmethod
    async def delete_custom_field(self, credentials: EspCredentials, custom_field_id: str) -> None: ...


class AccountDetailsSyncCapability(ABC):
    provider: EspProvider

    @abstractmethod
    async def sync_business_details(
        self,
        session: "AsyncSession",
        location_id: str,
        details: BusinessDetails,
    ) -> BusinessDetailsSyncResult: ...


class WebhookCapability(ABC):
    provider: EspProvider
    signature_header_candidates: tuple = ()

    @abstractmethod
    def verify_signature(self, raw_body: bytes, signature: str, headers: Mapping[str, str]) -> bool: ...


# ═══════════════════════════════════════════════════════════════════════════════
# Composite adapter
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class EspAdapter:
    provider: EspProvider
    capabilities: Capabilities
    display_name: str = ""
    oauth: Optional[OAuthCapability] = None
    connection: Optional[ConnectionCapability] = None
    validation: Optional[ValidationCapability] = None
    contacts: Optional[ContactsCapability] = None
    campaigns: Optional[CampaignsCapability] = None
    templates: Optional[TemplatesCapability] = None
    custom_values: Optional[CustomValuesCapability] = None
    custom_fields: Optional[CustomFieldsCapability] = None
    account_details_sync: Optional[AccountDetailsSyncCapability] = None
    webhook: Optional[WebhookCapability] = None
    webhook_families: Mapping[str, "WebhookFamilyHandler"] = field(default_factory=dict)

    @property
    def required_scopes(self) -> List[str]:
        return list(self.oauth.required_scopes) if self.oauth is not None else []


def isoformat_or_none(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None
