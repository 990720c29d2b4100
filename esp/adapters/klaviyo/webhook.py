"""
Klaviyo webhook signature verification.

``Klaviyo-Signature`` is the hex HMAC-SHA256 of the raw body followed by
the ``Klaviyo-Timestamp`` header, keyed with ``KLAVIYO_WEBHOOK_SECRET``.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
from typing import Mapping, Optional

from config.settings import Settings, config
from esp.types import EspProvider, WebhookCapability

logger = logging.getLogger(__name__)


def compute_signature(secret: str, raw_body: bytes, timestamp: str = "") -> str:
    mac = hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256)
    if timestamp:
        mac.update(timestamp.encode("utf-8"))
    return mac.hexdigest()


class KlaviyoWebhook(WebhookCapability):
    provider = EspProvider.KLAVIYO
    signature_header_candidates = ("klaviyo-signature",)

    def __init__(self, settings: Optional[Settings] = None):
        self._settings = settings or config

    def verify_signature(self, raw_body: bytes, signature: str, headers: Mapping[str, str]) -> bool:
        secret = self._settings.klaviyo_webhook_secret
        if not secret:
            logger.warning("KLAVIYO_WEBHOOK_SECRET not set; cannot verify webhook signature")
            return False
        timestamp = headers.get("klaviyo-timestamp", "")
        expected = compute_signature(secret, raw_body, timestamp)
        return hmac.compare_digest(expected.encode("ascii"), signature.strip().lower().encode("utf-8"))
