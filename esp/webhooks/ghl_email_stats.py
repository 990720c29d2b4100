"""
GoHighLevel ``LCEmailStats`` webhook → campaign counters.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, List, Optional

from fastapi import Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from esp.types import EspProvider, WebhookCapability
from esp.webhooks.email_stats import EmailStatsColumn, increment_email_stats_counter, parse_event_time
from esp.webhooks.types import WebhookFamilyHandler
from esp.webhooks.verification import request_headers, verify_webhook_signature

logger = logging.getLogger(__name__)

_EVENT_COLUMNS = {
    "delivered": EmailStatsColumn.DELIVERED,
    "opened": EmailStatsColumn.OPENED,
    "clicked": EmailStatsColumn.CLICKED,
    "bounced": EmailStatsColumn.BOUNCED,
    "complained": EmailStatsColumn.COMPLAINED,
    "unsubscribed": EmailStatsColumn.UNSUBSCRIBED,
}

_CAMPAIGN_TAG = re.compile(r"^[a-zA-Z0-9_-]{10,}$")


def event_to_column(event: str) -> Optional[EmailStatsColumn]:
    return _EVENT_COLUMNS.get(event)


def extract_campaign_ids(webhook_payload: Dict[str, Any]) -> List[str]:
    """``campaigns`` first; tags that look like ids are accepted too."""
    ids: List[str] = []
    for campaign_id in webhook_payload.get("campaigns") or []:
        if isinstance(campaign_id, str) and campaign_id and campaign_id not in ids:
            ids.append(campaign_id)
    for tag in webhook_payload.get("tags") or []:
        if isinstance(tag, str) and _CAMPAIGN_TAG.match(tag) and tag not in ids:
            ids.append(tag)
    return ids


class GhlEmailStatsHandler(WebhookFamilyHandler):
    expects = "POST provider email stats payload"

    def __init__(self, webhook: WebhookCapability):
        self._webhook = webhook

    async def post(self, request: Request, session: AsyncSession) -> JSONResponse:
        raw_body = await request.body()
        headers = request_headers(request.headers.items())
        if not verify_webhook_signature(self._webhook, raw_body, headers):
            logger.warning("GHL webhook rejected: invalid signature")
            return JSONResponse({"error": "Invalid signature"}, status_code=401)

        try:
            payload = json.loads(raw_body)
        except ValueError:
            return JSONResponse({"error": "Invalid JSON"}, status_code=400)

        if (
            not isinstance(payload, dict)
            or payload.get("type") != "LCEmailStats"
            or not payload.get("locationId")
            or not isinstance(payload.get("webhookPayload"), dict)
        ):
            return JSONResponse({"error": "Unsupported webhook type"}, status_code=400)

        body = payload["webhookPayload"]
        event = str(body.get("event") or "").strip()
        column = event_to_column(event)
        if column is None:
            return JSONResponse({"ok": True, "skipped": True, "reason": "unsupported-event", "event": event})

        campaign_ids = extract_campaign_ids(body)
        if not campaign_ids:
            logger.warning(
                "LCEmailStats %s for location %s has no campaign ids (event id %s)",
                event,
                payload["locationId"],
                body.get("id"),
            )
            return JSONResponse({"ok": True, "skipped": True, "reason": "no-campaign-id", "event": event})

        event_time = parse_event_time(body.get("timestamp"))
        account_id = str(payload["locationId"])
        updated = failed = 0
        for campaign_id in campaign_ids:
            try:
                async with session.begin_nested():
                    await increment_email_stats_counter(
                        session,
                        provider=EspProvider.GHL.value,
                        account_id=account_id,
                        campaign_id=campaign_id,
                        column=column,
                        event_time=event_time,
                    )
                updated += 1
            except SQLAlchemyError as exc:
                failed += 1
                logger.error("Stats upsert failed for ghl/%s/%s: %s", account_id, campaign_id, exc)

        return JSONResponse(
            {
                "ok": True,
                "event": event,
                "matchedCampaignIds": len(campaign_ids),
                "updated": updated,
                "failed": failed,
            }
        )
