"""
GoHighLevel location custom field definitions (CRUD).

Scopes: ``locations/customFields.readonly`` and
``locations/customFields.write``.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional
from urllib.parse import quote

from esp.adapters.ghl.oauth import ghl_headers
from esp.adapters.http import ProviderHttp, as_record, first_text
from esp.errors import UpstreamProviderError
from esp.types import CustomFieldsCapability, EspCredentials, EspCustomField, EspProvider

logger = logging.getLogger(__name__)

_ENVELOPE_KEYS = ("customField", "field", "data")


def _collection(data: Any) -> List[Dict[str, Any]]:
    if isinstance(data, list):
        return [as_record(row) for row in data]
    record = as_record(data)
    nested = as_record(record.get("data"))
    for candidate in (
        record.get("customFields"),
        record.get("fields"),
        record.get("data"),
        record.get("items"),
        nested.get("customFields"),
        nested.get("fields"),
        nested.get("items"),
    ):
        if isinstance(candidate, list):
            return [as_record(row) for row in candidate]
    return []


def _unwrap(data: Any) -> Dict[str, Any]:
    record = as_record(data)
    for key in _ENVELOPE_KEYS:
        inner = as_record(record.get(key))
        if inner:
            return inner
    return record


def _custom_field(raw: Dict[str, Any], fallback_id: str = "") -> EspCustomField:
    options = raw.get("options")
    return EspCustomField(
        id=first_text(raw, ("id", "_id")) or fallback_id,
        name=first_text(raw, ("name", "fieldName", "label")),
        field_key=first_text(raw, ("fieldKey", "key", "objectKey")),
        data_type=first_text(raw, ("dataType", "type")),
        model=first_text(raw, ("model", "fieldFor", "object")),
        placeholder=first_text(raw, ("placeholder",)) or None,
        group_id=first_text(raw, ("groupId",)) or None,
        options=options if isinstance(options, list) else None,
    )


class GhlCustomFields(CustomFieldsCapability):
    provider = EspProvider.GHL

    def __init__(self, http: ProviderHttp):
        self._http = http

    def _path(self, credentials: EspCredentials, custom_field_id: str = "") -> str:
        path = f"/locations/{quote(credentials.location_id, safe='')}/customFields"
        return f"{path}/{quote(custom_field_id, safe='')}" if custom_field_id else path

    def _headers(self, credentials: EspCredentials) -> Dict[str, str]:
        return {**ghl_headers(credentials.token), "Content-Type": "application/json"}

    @staticmethod
    def _model_params(model: Optional[str]) -> Optional[Dict[str, str]]:
        model = (model or "").strip()
        return {"model": model} if model else None

    async def fetch_custom_fields(self, credentials: EspCredentials, model: Optional[str] = None) -> List[EspCustomField]:
        data = await self._http.request(
            "GET",
            self._path(credentials),
            headers=self._headers(credentials),
            params=self._model_params(model),
        )
        return [_custom_field(row) for row in _collection(data)]

    async def fetch_custom_field(self, credentials: EspCredentials, custom_field_id: str) -> Optional[EspCustomField]:
        data = await self._http.request(
            "GET",
            self._path(credentials, custom_field_id),
            headers=self._headers(credentials),
            allow_404=True,
        )
        if data is None:
            logger.warning("GHL custom field %s not found for %s", custom_field_id, credentials.location_id)
            return None
        return _custom_field(_unwrap(data), custom_field_id)

    async def create_custom_field(
        self,
        credentials: EspCredentials,
        payload: Dict[str, Any],
        model: Optional[str] = None,
    ) -> EspCustomField:
        data = await self._http.request(
            "POST",
            self._path(credentials),
            headers=self._headers(credentials),
            params=self._model_params(model),
            json=payload,
        )
        return _custom_field(_unwrap(data))

    async def update_custom_field(
        self,
        credentials: EspCredentials,
        custom_field_id: str,
        payload: Dict[str, Any],
    ) -> EspCustomField:
        data = await self._http.request(
            "PUT",
            self._path(credentials, custom_field_id),
            headers=self._headers(credentials),
            json=payload,
        )
        if data:
            return _custom_field(_unwrap(data), custom_field_id)

        # empty body: read the field back, else echo what was sent
        try:
            refreshed = await self.fetch_custom_field(credentials, custom_field_id)
        except UpstreamProviderError as exc:
            logger.warning("GHL custom field %s re-read failed: %s", custom_field_id, exc)
            refreshed = None
        return refreshed or _custom_field({**payload, "id": custom_field_id})

    async def delete_custom_field(self, credentials: EspCredentials, custom_field_id: str) -> None:
        await self._http.request(
            "DELETE",
            self._path(credentials, custom_field_id),
            headers=self._headers(credentials),
        )
