"""
GoHighLevel location custom values, plus a diff-and-apply sync.

Requires the location-level scopes ``locations/customValues.readonly`` and
``locations/customValues.write``.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from esp.adapters.ghl.oauth import ghl_headers
from esp.adapters.http import ProviderHttp, as_record, first_text
from esp.errors import UpstreamProviderError
from esp.types import (
    CustomValueInput,
    CustomValuesCapability,
    EspCredentials,
    EspCustomValue,
    EspProvider,
    SyncResult,
)

logger = logging.getLogger(__name__)


def _custom_value(raw: Dict[str, Any], **fallback: str) -> EspCustomValue:
    return EspCustomValue(
        id=first_text(raw, ("id", "_id")) or fallback.get("id", ""),
        name=first_text(raw, ("name",)) or fallback.get("name", ""),
        field_key=first_text(raw, ("fieldKey",)) or fallback.get("field_key", ""),
        value=first_text(raw, ("value",)) or fallback.get("value", ""),
    )


class GhlCustomValues(CustomValuesCapability):
    provider = EspProvider.GHL

    def __init__(self, http: ProviderHttp):
        self._http = http

    def _path(self, credentials: EspCredentials, custom_value_id: str = "") -> str:
        path = f"/locations/{credentials.location_id}/customValues"
        return f"{path}/{custom_value_id}" if custom_value_id else path

    def _headers(self, credentials: EspCredentials) -> Dict[str, str]:
        return {**ghl_headers(credentials.token), "Content-Type": "application/json"}

    async def fetch_custom_values(self, credentials: EspCredentials) -> List[EspCustomValue]:
        data = await self._http.request("GET", self._path(credentials), headers=self._headers(credentials))
        values = as_record(data).get("customValues", data)
        if not isinstance(values, list):
            return []
        return [_custom_value(as_record(v)) for v in values]

    async def create_custom_value(self, credentials: EspCredentials, data: CustomValueInput) -> EspCustomValue:
        response = await self._http.request(
            "POST",
            self._path(credentials),
            headers=self._headers(credentials),
            json={"name": data.name, "value": data.value},
        )
        record = as_record(response)
        return _custom_value(
            as_record(record.get("customValue")) or record,
            name=data.name,
            field_key=data.field_key,
            value=data.value,
        )

    async def update_custom_value(
        self,
        credentials: EspCredentials,
        custom_value_id: str,
        *,
        name: str,
        value: str,
    ) -> EspCustomValue:
        response = await self._http.request(
            "PUT",
            self._path(credentials, custom_value_id),
            headers=self._headers(credentials),
            json={"name": name, "value": value},
        )
        record = as_record(response)
        return _custom_value(
            as_record(record.get("customValue")) or record, id=custom_value_id, name=name, value=value
        )

    async def delete_custom_value(self, credentials: EspCredentials, custom_value_id: str) -> None:
        await self._http.request("DELETE", self._path(credentials, custom_value_id), headers=self._headers(credentials))

    async def sync_custom_values(
        self,
        credentials: EspCredentials,
        desired: List[CustomValueInput],
        managed_names: Optional[List[str]] = None,
    ) -> SyncResult:
        """
        Make the location's custom values match *desired*.

        Remote values are matched by field key, then by case-insensitive
        name.  Unmatched remote values are deleted only when their name is
        in *managed_names*; values created by hand in GHL are left alone.
        """
        result = SyncResult()
        try:
            existing = await self.fetch_custom_values(credentials)
        except UpstreamProviderError as exc:
            result.errors.append({"fieldKey": "*", "error": f"Failed to fetch existing values: {exc.message}"})
            return result

        by_key = {cv.field_key: cv for cv in existing if cv.field_key}
        by_name = {cv.name.lower(): cv for cv in existing if cv.name}
        matched_ids = set()

        for item in desired:
            remote = by_key.get(item.field_key) or by_name.get(item.name.lower())
            try:
                if remote is None:
                    await self.create_custom_value(credentials, item)
                    result.created.append(item.field_key)
                    continue
                matched_ids.add(remote.id)
                if remote.name != item.name or remote.value != item.value:
                    await self.update_custom_value(credentials, remote.id, name=item.name, value=item.value)
                    result.updated.append(item.field_key)
                else:
                    result.skipped.append(item.field_key)
            except UpstreamProviderError as exc:
                result.errors.append({"fieldKey": item.field_key, "error": exc.message})

        managed = {name.lower() for name in (managed_names or [])}
        for cv in existing:
            if cv.id in matched_ids or not cv.name or cv.name.lower() not in managed:
                continue
            label = cv.field_key or cv.name
            try:
                await self.delete_custom_value(credentials, cv.id)
                result.deleted.append(label)
            except UpstreamProviderError as exc:
                result.errors.append({"fieldKey": label, "error": f"Delete failed: {exc.message}"})

        logger.info(
            "Custom values synced for %s: +%d ~%d -%d (%d errors)",
            credentials.location_id,
            len(result.created),
            len(result.updated),
            len(result.deleted),
            len(result.errors),
        )
        return result
