"""
Klaviyo templates (CRUD over ``/api/templates/``).
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional
from urllib.parse import quote

from esp.adapters.http import ProviderHttp, as_record, first_text
from esp.adapters.klaviyo.constants import klaviyo_headers
from esp.types import EspCredentials, EspEmailTemplate, EspProvider, TemplateInput, TemplatesCapability

logger = logging.getLogger(__name__)


def normalize_template(raw: Dict[str, Any]) -> EspEmailTemplate:
    attrs = as_record(raw.get("attributes"))
    return EspEmailTemplate(
        id=first_text(raw, ("id",)),
        name=first_text(attrs, ("name",)),
        html=first_text(attrs, ("html",)),
        updated_at=first_text(attrs, ("updated",)) or None,
    )


def _path(template_id: str) -> str:
    return f"/templates/{quote(template_id, safe='')}/"


class KlaviyoTemplates(TemplatesCapability):
    provider = EspProvider.KLAVIYO

    def __init__(self, http: ProviderHttp):
        self._http = http

    async def fetch_templates(self, credentials: EspCredentials) -> List[EspEmailTemplate]:
        templates: List[EspEmailTemplate] = []
        url: Optional[str] = "/templates/"
        while url:
            data = as_record(await self._http.request("GET", url, headers=klaviyo_headers(credentials.token)))
            rows = data.get("data")
            templates.extend(normalize_template(as_record(row)) for row in (rows if isinstance(rows, list) else []))
            url = as_record(data.get("links")).get("next") or None
        return templates

    async def fetch_template_by_id(self, credentials: EspCredentials, template_id: str) -> Optional[EspEmailTemplate]:
        data = await self._http.request(
            "GET", _path(template_id), headers=klaviyo_headers(credentials.token), allow_404=True
        )
        raw = as_record(as_record(data).get("data"))
        if not raw:
            logger.warning("Klaviyo template %s not found for %s", template_id, credentials.location_id)
            return None
        return normalize_template(raw)

    async def create_template(self, credentials: EspCredentials, data: TemplateInput) -> EspEmailTemplate:
        response = await self._http.request(
            "POST",
            "/templates/",
            headers=klaviyo_headers(credentials.token, json_body=True),
            json={
                "data": {
                    "type": "template",
                    "attributes": {"name": data.name, "editor_type": "CODE", "html": data.html},
                }
            },
        )
        created = normalize_template(as_record(as_record(response).get("data")))
        return created.model_copy(update={"subject": data.subject, "preview_text": data.preview_text})

    async def update_template(self, credentials: EspCredentials, template_id: str, data: TemplateInput) -> EspEmailTemplate:
        attributes: Dict[str, Any] = {}
        if data.name is not None:
            attributes["name"] = data.name
        if data.html is not None:
            attributes["html"] = data.html
        response = await self._http.request(
            "PATCH",
            _path(template_id),
            headers=klaviyo_headers(credentials.token, json_body=True),
            json={"data": {"type": "template", "id": template_id, "attributes": attributes}},
        )
        raw = as_record(as_record(response).get("data"))
        updated = normalize_template(raw) if raw else EspEmailTemplate(id=template_id, name=data.name or "")
        return updated.model_copy(update={"subject": data.subject, "preview_text": data.preview_text})

    async def delete_template(self, credentials: EspCredentials, template_id: str) -> None:
        await self._http.request("DELETE", _path(template_id), headers=klaviyo_headers(credentials.token))
