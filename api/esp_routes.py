"""
ESP REST routes: OAuth round-trip, connections, provider catalogue and
capability-gated operations on the account's active provider.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession

from api.dependencies import db_session, get_dispatcher, get_registry
from api.schemas import (
    BusinessDetailsRequest,
    ConnectRequest,
    CustomFieldRequest,
    CustomValuesSyncRequest,
    DisconnectRequest,
    TemplateRequest,
    ValidateRequest,
)
from auth.dependencies import ensure_account_access, require_role
from auth.models import ADMIN, DEVELOPER, MANAGEMENT_ROLES, SUPER_ADMIN, Principal
from database.session import async_session_factory
from esp import connections, hygiene, oauth_flow
from esp.errors import EspConnectionError, EspValidationError, MissingCapabilityError
from esp.registry import AdapterRegistry
from esp.status import get_esp_connections_status, resolve_custom_values_sync_readiness
from esp.types import EspAdapter, EspCredentials
from esp.webhooks.families import WebhookFamilyDispatcher

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/esp", tags=["esp"])

_management = require_role(*MANAGEMENT_ROLES)
_operators = require_role(DEVELOPER, SUPER_ADMIN, ADMIN)
_platform = require_role(DEVELOPER, SUPER_ADMIN)


async def _resolve_for_account(
    session: AsyncSession,
    registry: AdapterRegistry,
    account_key: str,
    capability: str,
) -> tuple[EspAdapter, Any, EspCredentials]:
    adapter = await registry.get_adapter_for_account(session, account_key)
    module = registry.require_capability(adapter, capability)
    credentials = await registry.resolve_esp_credentials(session, account_key)
    if credentials is None:
        raise EspConnectionError(f"{adapter.provider.value} is not connected for account {account_key}", 400)
    return adapter, module, credentials


# ── OAuth ─────────────────────────────────────────────────────────────────


@router.get("/oauth/authorize")
async def oauth_authorize(
    account_key: str = Query("", alias="accountKey"),
    provider: Optional[str] = Query(None),
    mode: str = Query(oauth_flow.ACCOUNT_MODE),
    session: AsyncSession = Depends(db_session),
    registry: AdapterRegistry = Depends(get_registry),
    principal: Principal = Depends(_operators),
) -> RedirectResponse:
    if mode.strip().lower() != oauth_flow.AGENCY_MODE:
        ensure_account_access(principal, account_key.strip())
    _, url = await oauth_flow.resolve_authorization_url(
        session, registry, account_key=account_key, provider=provider, mode=mode
    )
    return RedirectResponse(url, status_code=302)


@router.get("/oauth/callback")
async def oauth_callback(
    provider: Optional[str] = Query(None),
    code: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
    error: Optional[str] = Query(None),
    error_description: Optional[str] = Query(None),
    session: AsyncSession = Depends(db_session),
    registry: AdapterRegistry = Depends(get_registry),
) -> RedirectResponse:
    """Provider redirect target; the signed state is the caller's credential."""
    url = await oauth_flow.complete_oauth_callback(
        session,
        registry,
        provider=provider,
        code=code,
        state=state,
        error=error,
        error_description=error_description,
    )
    return RedirectResponse(url, status_code=302)


# ── Connections ───────────────────────────────────────────────────────────


@router.post("/connections/connect")
async def connect(
    body: ConnectRequest,
    session: AsyncSession = Depends(db_session),
    registry: AdapterRegistry = Depends(get_registry),
    principal: Principal = Depends(_management),
) -> Dict[str, Any]:
    if not body.provider.strip():
        raise EspValidationError("provider is required", 400)
    ensure_account_access(principal, body.account_key.strip())
    outcome = await connections.connect_esp_connection(
        session, registry, account_key=body.account_key, provider=body.provider, api_key=body.api_key
    )
    return outcome.as_dict()


@router.post("/connections/disconnect")
async def disconnect(
    body: DisconnectRequest,
    session: AsyncSession = Depends(db_session),
    registry: AdapterRegistry = Depends(get_registry),
    principal: Principal = Depends(_operators),
) -> Dict[str, Any]:
    ensure_account_access(principal, body.account_key.strip())
    outcome = await connections.disconnect_esp_connection(
        session, registry, account_key=body.account_key, provider=body.provider
    )
    return outcome.as_dict()


@router.post("/connections/validate")
async def validate(
    body: ValidateRequest,
    session: AsyncSession = Depends(db_session),
    registry: AdapterRegistry = Depends(get_registry),
    principal: Principal = Depends(_management),
) -> Dict[str, Any]:
    if body.account_key:
        ensure_account_access(principal, body.account_key.strip())
    result = await connections.validate_esp_connection(
        session, registry, provider=body.provider, account_key=body.account_key, api_key=body.api_key
    )
    return {"ok": True, **result.model_dump(mode="json", exclude_none=True)}


@router.get("/connections/required-scopes")
async def required_scopes(
    provider: str = Query(""),
    registry: AdapterRegistry = Depends(get_registry),
    _principal: Principal = Depends(_management),
) -> Dict[str, Any]:
    adapter = registry.get_adapter(registry.parse_registered(provider))
    if adapter.oauth is None:
        raise MissingCapabilityError(adapter.provider.value, "OAuth scopes")
    return {"provider": adapter.provider.value, "scopes": list(adapter.required_scopes)}


# ── Provider catalogue ────────────────────────────────────────────────────


@router.get("/providers")
async def list_providers(
    account_key: str = Query("", alias="accountKey"),
    session: AsyncSession = Depends(db_session),
    registry: AdapterRegistry = Depends(get_registry),
    dispatcher: WebhookFamilyDispatcher = Depends(get_dispatcher),
    principal: Principal = Depends(_operators),
) -> Dict[str, Any]:
    """
    Registered providers with their capabilities and webhook endpoints;
    with ``accountKey``, also that account's per-provider status.
    """
    account_key = account_key.strip()
    status = None
    if account_key:
        ensure_account_access(principal, account_key)
        status = await get_esp_connections_status(session, registry, account_key)

    providers: List[Dict[str, Any]] = []
    for provider, adapter in registry.adapters.items():
        entry: Dict[str, Any] = {
            "provider": provider.value,
            "displayName": adapter.display_name or provider.value,
            "capabilities": adapter.capabilities.as_dict(),
            "oauthSupported": adapter.oauth is not None,
            "agencyOAuthSupported": bool(adapter.oauth and adapter.oauth.supports_agency),
            "credentialConnectSupported": adapter.connection is not None and adapter.capabilities.supports_api_key,
            "validationSupported": adapter.validation is not None,
            "businessDetailsSyncSupported": adapter.account_details_sync is not None,
            "webhookEndpoints": dispatcher.list_webhook_endpoints_for_provider(provider.value),
        }
        if status is not None:
            provider_status = status.providers[provider]
            entry.update(provider_status.as_dict())
            entry["activeForAccount"] = status.active_provider == provider
            entry["customValuesSync"] = resolve_custom_values_sync_readiness(
                adapter.custom_values is not None, provider_status, adapter.required_scopes
            ).as_dict()
        providers.append(entry)

    response: Dict[str, Any] = {"providers": providers}
    if status is not None:
        response.update(
            {
                "accountKey": account_key,
                "accountProvider": status.active_provider.value,
                "connectedProviders": [p.value for p in status.connected_providers],
            }
        )
    return response


# ── Contacts ──────────────────────────────────────────────────────────────


@router.get("/contacts")
async def list_contacts(
    account_key: str = Query(..., alias="accountKey"),
    limit: int = Query(25, ge=1, le=100),
    search: str = Query(""),
    session: AsyncSession = Depends(db_session),
    registry: AdapterRegistry = Depends(get_registry),
    principal: Principal = Depends(_management),
) -> Dict[str, Any]:
    ensure_account_access(principal, account_key)
    adapter, contacts, credentials = await _resolve_for_account(session, registry, account_key, "contacts")
    page = await contacts.request_contacts(credentials, limit=limit, search=search)
    return {"provider": adapter.provider.value, **page.model_dump()}


@router.get("/contacts/count")
async def contact_count(
    account_key: str = Query(..., alias="accountKey"),
    session: AsyncSession = Depends(db_session),
    registry: AdapterRegistry = Depends(get_registry),
    principal: Principal = Depends(_management),
) -> Dict[str, Any]:
    ensure_account_access(principal, account_key)
    adapter, contacts, credentials = await _resolve_for_account(session, registry, account_key, "contacts")
    return {"provider": adapter.provider.value, "count": await contacts.fetch_contact_count(credentials)}


@router.get("/contacts/hygiene")
async def contacts_hygiene(
    account_keys: str = Query("", alias="accountKeys"),
    limit_per_account: Optional[int] = Query(None, alias="limitPerAccount"),
    session: AsyncSession = Depends(db_session),
    registry: AdapterRegistry = Depends(get_registry),
    principal: Principal = Depends(_management),
) -> Dict[str, Any]:
    requested = [k.strip() for k in account_keys.split(",") if k.strip()]
    allowed = [k for k in await hygiene.list_scannable_account_keys(session) if principal.can_access(k)]
    selected = [k for k in requested if k in allowed] if requested else allowed
    report = await hygiene.scan_contact_hygiene(
        async_session_factory,
        registry,
        selected,
        sample_size=hygiene.clamp_sample_size(limit_per_account or hygiene.DEFAULT_SAMPLE),
    )
    return report.as_dict()


# ── Campaigns ─────────────────────────────────────────────────────────────


@router.get("/campaigns")
async def list_campaigns(
    account_key: str = Query(..., alias="accountKey"),
    session: AsyncSession = Depends(db_session),
    registry: AdapterRegistry = Depends(get_registry),
    principal: Principal = Depends(_management),
) -> Dict[str, Any]:
    ensure_account_access(principal, account_key)
    adapter, campaigns, credentials = await _resolve_for_account(session, registry, account_key, "campaigns")
    rows = await campaigns.fetch_campaigns(credentials)
    return {"provider": adapter.provider.value, "campaigns": [c.model_dump() for c in rows]}


# ── Templates ─────────────────────────────────────────────────────────────


@router.get("/templates")
async def list_templates(
    account_key: str = Query(..., alias="accountKey"),
    session: AsyncSession = Depends(db_session),
    registry: AdapterRegistry = Depends(get_registry),
    principal: Principal = Depends(_management),
) -> Dict[str, Any]:
    ensure_account_access(principal, account_key)
    adapter, templates, credentials = await _resolve_for_account(session, registry, account_key, "templates")
    rows = await templates.fetch_templates(credentials)
    return {"provider": adapter.provider.value, "templates": [t.model_dump() for t in rows]}


@router.get("/templates/{template_id}")
async def get_template(
    template_id: str,
    account_key: str = Query(..., alias="accountKey"),
    session: AsyncSession = Depends(db_session),
    registry: AdapterRegistry = Depends(get_registry),
    principal: Principal = Depends(_management),
) -> Dict[str, Any]:
    ensure_account_access(principal, account_key)
    adapter, templates, credentials = await _resolve_for_account(session, registry, account_key, "templates")
    template = await templates.fetch_template_by_id(credentials, template_id)
    if template is None:
        raise EspValidationError("Template not found", 404)
    return {"provider": adapter.provider.value, "template": template.model_dump()}


@router.post("/templates")
async def create_template(
    body: TemplateRequest,
    session: AsyncSession = Depends(db_session),
    registry: AdapterRegistry = Depends(get_registry),
    principal: Principal = Depends(_management),
) -> Dict[str, Any]:
    ensure_account_access(principal, body.account_key)
    if not body.name or body.html is None:
        raise EspValidationError("name and html are required", 400)
    adapter, templates, credentials = await _resolve_for_account(session, registry, body.account_key, "templates")
    created = await templates.create_template(credentials, body.to_input())
    return {"provider": adapter.provider.value, "template": created.model_dump()}


@router.patch("/templates/{template_id}")
async def update_template(
    template_id: str,
    body: TemplateRequest,
    session: AsyncSession = Depends(db_session),
    registry: AdapterRegistry = Depends(get_registry),
    principal: Principal = Depends(_management),
) -> Dict[str, Any]:
    ensure_account_access(principal, body.account_key)
    adapter, templates, credentials = await _resolve_for_account(session, registry, body.account_key, "templates")
    updated = await templates.update_template(credentials, template_id, body.to_input())
    return {"provider": adapter.provider.value, "template": updated.model_dump()}


@router.delete("/templates/{template_id}")
async def delete_template(
    template_id: str,
    account_key: str = Query(..., alias="accountKey"),
    session: AsyncSession = Depends(db_session),
    registry: AdapterRegistry = Depends(get_registry),
    principal: Principal = Depends(_management),
) -> Dict[str, Any]:
    ensure_account_access(principal, account_key)
    adapter, templates, credentials = await _resolve_for_account(session, registry, account_key, "templates")
    await templates.delete_template(credentials, template_id)
    return {"provider": adapter.provider.value, "deleted": template_id}


# ── Custom values ─────────────────────────────────────────────────────────


@router.get("/custom-values")
async def list_custom_values(
    account_key: str = Query(..., alias="accountKey"),
    session: AsyncSession = Depends(db_session),
    registry: AdapterRegistry = Depends(get_registry),
    principal: Principal = Depends(_management),
) -> Dict[str, Any]:
    ensure_account_access(principal, account_key)
    adapter, custom_values, credentials = await _resolve_for_account(session, registry, account_key, "custom_values")
    rows = await custom_values.fetch_custom_values(credentials)
    return {"provider": adapter.provider.value, "customValues": [v.model_dump() for v in rows]}


@router.post("/custom-values/sync")
async def sync_custom_values(
    body: CustomValuesSyncRequest,
    session: AsyncSession = Depends(db_session),
    registry: AdapterRegistry = Depends(get_registry),
    principal: Principal = Depends(_management),
) -> Dict[str, Any]:
    ensure_account_access(principal, body.account_key)
    adapter, custom_values, credentials = await _resolve_for_account(
        session, registry, body.account_key, "custom_values"
    )
    status = await get_esp_connections_status(session, registry, body.account_key)
    readiness = resolve_custom_values_sync_readiness(
        True, status.providers[adapter.provider], adapter.required_scopes
    )
    if readiness.needs_reauthorization:
        raise EspConnectionError(
            f"{adapter.provider.value} connection is missing required scopes; reconnect to grant them", 403
        )
    result = await custom_values.sync_custom_values(credentials, body.values, body.managed_names)
    return {"provider": adapter.provider.value, **result.model_dump()}


# ── Custom fields ─────────────────────────────────────────────────────────


@router.get("/custom-fields")
async def list_custom_fields(
    account_key: str = Query(..., alias="accountKey"),
    model: Optional[str] = Query(None),
    session: AsyncSession = Depends(db_session),
    registry: AdapterRegistry = Depends(get_registry),
    principal: Principal = Depends(_platform),
) -> Dict[str, Any]:
    adapter, custom_fields, credentials = await _resolve_for_account(session, registry, account_key, "custom_fields")
    model = (model or "").strip() or None
    fields = await custom_fields.fetch_custom_fields(credentials, model)
    return {
        "provider": adapter.provider.value,
        "accountKey": account_key,
        "model": model,
        "fields": [f.model_dump() for f in fields],
    }


@router.post("/custom-fields")
async def create_custom_field(
    body: CustomFieldRequest,
    account_key: str = Query(..., alias="accountKey"),
    model: Optional[str] = Query(None),
    session: AsyncSession = Depends(db_session),
    registry: AdapterRegistry = Depends(get_registry),
    principal: Principal = Depends(_platform),
) -> Dict[str, Any]:
    adapter, custom_fields, credentials = await _resolve_for_account(session, registry, account_key, "custom_fields")
    target_model = (model or "").strip() or (body.model or "").strip() or None
    created = await custom_fields.create_custom_field(credentials, body.to_payload(), target_model)
    return {"provider": adapter.provider.value, "accountKey": account_key, "created": created.model_dump()}


def _field_id(value: str) -> str:
    field_id = value.strip()
    if not field_id:
        raise EspValidationError("Custom field id is required", 400)
    return field_id


@router.get("/custom-fields/{field_id}")
async def get_custom_field(
    field_id: str,
    account_key: str = Query(..., alias="accountKey"),
    session: AsyncSession = Depends(db_session),
    registry: AdapterRegistry = Depends(get_registry),
    principal: Principal = Depends(_platform),
) -> Dict[str, Any]:
    field_id = _field_id(field_id)
    adapter, custom_fields, credentials = await _resolve_for_account(session, registry, account_key, "custom_fields")
    field = await custom_fields.fetch_custom_field(credentials, field_id)
    if field is None:
        raise EspValidationError("Custom field not found", 404)
    return {"provider": adapter.provider.value, "accountKey": account_key, "field": field.model_dump()}


@router.put("/custom-fields/{field_id}")
async def update_custom_field(
    field_id: str,
    body: CustomFieldRequest,
    account_key: str = Query(..., alias="accountKey"),
    session: AsyncSession = Depends(db_session),
    registry: AdapterRegistry = Depends(get_registry),
    principal: Principal = Depends(_platform),
) -> Dict[str, Any]:
    field_id = _field_id(field_id)
    adapter, custom_fields, credentials = await _resolve_for_account(session, registry, account_key, "custom_fields")
    updated = await custom_fields.update_custom_field(credentials, field_id, body.to_payload())
    return {"provider": adapter.provider.value, "accountKey": account_key, "updated": updated.model_dump()}


@router.delete("/custom-fields/{field_id}")
async def delete_custom_field(
    field_id: str,
    account_key: str = Query(..., alias="accountKey"),
    session: AsyncSession = Depends(db_session),
    registry: AdapterRegistry = Depends(get_registry),
    principal: Principal = Depends(_platform),
) -> Dict[str, Any]:
    field_id = _field_id(field_id)
    adapter, custom_fields, credentials = await _resolve_for_account(session, registry, account_key, "custom_fields")
    await custom_fields.delete_custom_field(credentials, field_id)
    return {"provider": adapter.provider.value, "accountKey": account_key, "deletedId": field_id}


# ── Business details ──────────────────────────────────────────────────────


@router.post("/business-details/sync")
async def sync_business_details(
    body: BusinessDetailsRequest,
    account_key: str = Query(..., alias="accountKey"),
    session: AsyncSession = Depends(db_session),
    registry: AdapterRegistry = Depends(get_registry),
    principal: Principal = Depends(_management),
) -> Dict[str, Any]:
    ensure_account_access(principal, account_key)
    adapter, details_sync, credentials = await _resolve_for_account(
        session, registry, account_key, "account_details_sync"
    )
    result = await details_sync.sync_business_details(session, credentials.location_id, body.to_details())
    return {"provider": adapter.provider.value, **result.model_dump(exclude_none=True)}
