"""
GoHighLevel email builder templates (CRUD).
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from urllib.parse import quote

from esp.adapters.ghl.oauth import ghl_headers
from esp.adapters.http import ProviderHttp, as_record, first_text
from esp.types import EspCredentials, EspEmailTemplate, EspProvider, TemplateInput, TemplatesCapability

logger = logging.getLogger(__name__)


def _template(raw: Dict[str, Any], fallback_id: str = "") -> EspEmailTemplate:
    return EspEmailTemplate(
        id=first_text(raw, ("id", "_id")) or fallback_id,
        name=first_text(raw, ("name",)),
        html=first_text(raw, ("html",)),
        updated_at=first_text(raw, ("dateUpdated", "updatedAt")) or None,
    )


def _json_headers(token: str) -> Dict[str, str]:
    return {**ghl_headers(token), "Content-Type": "application/json"}


class GhlTemplates(TemplatesCapability):
    provider = EspProvider.GHL

    def __init__(self, http: ProviderHttp):
        self._http = http

    async def fetch_templates(self, credentials: EspCredentials) -> List[EspEmailTemplate]:
        data = await self._http.request(
            "GET",
            f"/locations/{quote(credentials.location_id, safe='')}/templates",
            headers=ghl_headers(credentials.token),
            params={"type": "email"},
        )
        rows = as_record(data).get("templates")
        return [_template(as_record(row)) for row in rows] if isinstance(rows, list) else []

    async def fetch_template_by_id(self, credentials: EspCredentials, template_id: str) -> Optional[EspEmailTemplate]:
        data = await self._http.request(
            "GET",
            "/emails/builder",
            headers=ghl_headers(credentials.token),
            params={"locationId": credentials.location_id, "templateId": template_id},
            allow_404=True,
        )
        if data is None:
            logger.warning("GHL template %s not found for %s", template_id, credentials.location_id)
            return None
        record = as_record(data)
        return _template(as_record(record.get("template")) or record, template_id)

    async def create_template(self, credentials: EspCredentials, data: TemplateInput) -> EspEmailTemplate:
        response = await self._http.request(
            "POST",
            "/emails/builder",
            headers=_json_headers(credentials.token),
            json={"locationId": credentials.location_id, "name": data.name, "type": "html", "html": data.html},
        )
        record = as_record(response)
        raw = as_record(record.get("template")) or record
        created = _template(raw)
        return created.model_copy(
            update={
                "name": created.name or (data.name or ""),
                "html": created.html or (data.html or ""),
                "subject": data.subject,
                "preview_text": data.preview_text,
                "updated_at": datetime.now(timezone.utc).isoformat(),
            }
        )

    async def update_template(self, credentials: EspCredentials, template_id: str, data: TemplateInput) -> EspEmailTemplate:
        body: Dict[str, Any] = {"locationId": credentials.location_id, "templateId": template_id}
        if data.name is not None:
            body["name"] = data.name
        if data.html is not None:
            body["html"] = data.html
        await self._http.request("POST", "/emails/builder/data", headers=_json_headers(credentials.token), json=body)

        refreshed = await self.fetch_template_by_id(credentials, template_id)
        if refreshed is not None:
            return refreshed
        return EspEmailTemplate(
            id=template_id,
            name=data.name or "",
            subject=data.subject,
            preview_text=data.preview_text,
            html=data.html or "",
            updated_at=datetime.now(timezone.utc).isoformat(),
        )

    async def delete_template(self, credentials: EspCredentials, template_id: str) -> None:
        await self._http.request(
            "DELETE",
            f"/emails/builder/{quote(credentials.location_id, safe='')}/{quote(template_id, safe='')}",
            headers=ghl_headers(credentials.token),
        )
