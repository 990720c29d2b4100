"""
Webhook signature lookup and verification.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, Mapping, Optional, Tuple

from esp.types import WebhookCapability

logger = logging.getLogger(__name__)


def request_headers(headers: Iterable[Tuple[str, str]]) -> Dict[str, str]:
    return {key.lower(): value for key, value in headers}


def resolve_signature(headers: Mapping[str, str], candidates: Iterable[str]) -> str:
    for candidate in candidates:
        value = headers.get(candidate.lower())
        if value:
            return value
    return ""


def verify_webhook_signature(
    webhook: Optional[WebhookCapability],
    raw_body: bytes,
    headers: Mapping[str, str],
) -> bool:
    """
    Verify *raw_body* against the signature found in *headers*.

    A provider without a webhook capability, a missing signature and any
    verifier error all count as a failed verification.
    """
    if webhook is None:
        return False
    signature = resolve_signature(headers, webhook.signature_header_candidates)
    if not signature:
        return False
    try:
        return bool(webhook.verify_signature(raw_body, signature, headers))
    except (ValueError, TypeError) as exc:
        logger.warning("%s webhook signature check errored: %s", webhook.provider.value, exc)
        return False
