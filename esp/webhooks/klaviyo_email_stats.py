"""
Klaviyo event webhooks → campaign counters.

Klaviyo payloads are JSON:API documents whose shape varies by metric, so
account id, campaign ids, event name and timestamp are each looked up
along a list of candidate paths.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from fastapi import Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from esp.types import EspProvider, WebhookCapability
from esp.webhooks.email_stats import EmailStatsColumn, increment_email_stats_counter, parse_event_time
from esp.webhooks.types import WebhookFamilyHandler
from esp.webhooks.verification import request_headers, verify_webhook_signature

logger = logging.getLogger(__name__)

ACCOUNT_ID_PATHS = (
    "account_id",
    "accountId",
    "organization_id",
    "organizationId",
    "company_id",
    "companyId",
    "relationships.account.data.id",
    "account.id",
)
EVENT_NAME_PATHS = ("event", "event_name", "eventName", "metric.name", "name", "attributes.name")
CAMPAIGN_ID_PATHS = (
    "campaign_id",
    "campaignId",
    "campaign.id",
    "campaign_ids",
    "campaignIds",
    "message.campaign_id",
    "message.campaignId",
    "event_properties.campaign_id",
    "event_properties.campaignId",
    "properties.campaign_id",
    "properties.campaignId",
    "relationships.campaign.data.id",
    "data.relationships.campaign.data.id",
)
TIMESTAMP_PATHS = (
    "timestamp",
    "datetime",
    "occurred_at",
    "occurredAt",
    "created",
    "created_at",
    "attributes.timestamp",
)


@dataclass(frozen=True)
class KlaviyoStatsEvent:
    account_id: str
    campaign_id: str
    event: str
    column: EmailStatsColumn
    timestamp: datetime


def _record(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _read_path(source: Dict[str, Any], path: str) -> Any:
    cursor: Any = source
    for part in path.split("."):
        if not isinstance(cursor, dict):
            return None
        cursor = cursor.get(part)
    return cursor


def _scalar_text(value: Any) -> str:
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return ""


def _first_string(sources: Sequence[Dict[str, Any]], paths: Sequence[str]) -> str:
    for source in sources:
        for path in paths:
            text = _scalar_text(_read_path(source, path))
            if text:
                return text
    return ""


def _all_strings(sources: Sequence[Dict[str, Any]], paths: Sequence[str]) -> List[str]:
    values: List[str] = []

    def add(text: str) -> None:
        if text and text not in values:
            values.append(text)

    for source in sources:
        for path in paths:
            raw = _read_path(source, path)
            if isinstance(raw, str):
                add(raw.strip())
            elif isinstance(raw, list):
                for item in raw:
                    add(item.strip() if isinstance(item, str) else "")
            elif isinstance(raw, dict):
                add(_scalar_text(raw.get("id")))
    return values


def event_to_column(event: str) -> Optional[EmailStatsColumn]:
    normalized = re.sub(r"[^a-z0-9]+", " ", event.lower()).strip()
    if not normalized:
        return None
    if "unsubscribe" in normalized:
        return EmailStatsColumn.UNSUBSCRIBED
    if "complain" in normalized or "spam" in normalized:
        return EmailStatsColumn.COMPLAINED
    if "bounce" in normalized:
        return EmailStatsColumn.BOUNCED
    if "click" in normalized:
        return EmailStatsColumn.CLICKED
    if "open" in normalized:
        return EmailStatsColumn.OPENED
    if "deliver" in normalized:
        return EmailStatsColumn.DELIVERED
    return None


def _root_events(payload: Dict[str, Any]) -> List[Dict[str, Any]]:
    data = payload.get("data")
    if isinstance(data, list):
        return [_record(item) for item in data]
    if isinstance(data, dict):
        return [data]
    events = payload.get("events")
    if isinstance(events, list):
        return [_record(item) for item in events]
    return [payload]


def parse_klaviyo_events(payload: Any) -> List[KlaviyoStatsEvent]:
    root = _record(payload)
    root_account_id = _first_string(
        [root, _record(root.get("attributes")), _record(root.get("meta"))], ACCOUNT_ID_PATHS
    )

    parsed: List[KlaviyoStatsEvent] = []
    for event_root in _root_events(root):
        attrs = _record(event_root.get("attributes"))
        sources = [
            event_root,
            attrs,
            _record(attrs.get("event_properties")),
            _record(attrs.get("properties")),
            _record(event_root.get("metric")),
        ]

        event_name = _first_string(sources, EVENT_NAME_PATHS)
        column = event_to_column(event_name)
        if column is None:
            continue
        account_id = _first_string(sources, ACCOUNT_ID_PATHS) or root_account_id
        if not account_id:
            continue
        campaign_ids = _all_strings(sources, CAMPAIGN_ID_PATHS)
        if not campaign_ids:
            continue
        timestamp = parse_event_time(_first_string(sources, TIMESTAMP_PATHS))

        for campaign_id in campaign_ids:
            parsed.append(
                KlaviyoStatsEvent(
                    account_id=account_id,
                    campaign_id=campaign_id,
                    event=event_name or "unknown",
                    column=column,
                    timestamp=timestamp,
                )
            )
    return parsed


class KlaviyoEmailStatsHandler(WebhookFamilyHandler):
    expects = "POST Klaviyo email event payloads"

    def __init__(self, webhook: WebhookCapability):
        self._webhook = webhook

    async def post(self, request: Request, session: AsyncSession) -> JSONResponse:
        raw_body = await request.body()
        headers = request_headers(request.headers.items())
        if not verify_webhook_signature(self._webhook, raw_body, headers):
            logger.warning("Klaviyo webhook rejected: invalid signature")
            return JSONResponse({"error": "Invalid signature"}, status_code=401)

        try:
            payload = json.loads(raw_body)
        except ValueError:
            return JSONResponse({"error": "Invalid JSON"}, status_code=400)

        events = parse_klaviyo_events(payload)
        if not events:
            return JSONResponse({"ok": True, "skipped": True, "reason": "no-mappable-email-stats-events"})

        updated = failed = 0
        for entry in events:
            try:
                async with session.begin_nested():
                    await increment_email_stats_counter(
                        session,
                        provider=EspProvider.KLAVIYO.value,
                        account_id=entry.account_id,
                        campaign_id=entry.campaign_id,
                        column=entry.column,
                        event_time=entry.timestamp,
                    )
                updated += 1
            except SQLAlchemyError as exc:
                failed += 1
                logger.error(
                    "Stats upsert failed for klaviyo/%s/%s: %s", entry.account_id, entry.campaign_id, exc
                )

        return JSONResponse({"ok": True, "updated": updated, "failed": failed, "processedEvents": len(events)})
