"""
GoHighLevel webhook signature verification.

GHL signs the raw body with RSA-SHA256 and sends the base64 signature in
``x-wh-signature``; it is checked against ``GHL_WEBHOOK_PUBLIC_KEY``.
"""

from __future__ import annotations

import base64
import binascii
import logging
from typing import Mapping, Optional

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from config.settings import Settings, config
from esp.types import EspProvider, WebhookCapability

logger = logging.getLogger(__name__)


class GhlWebhook(WebhookCapability):
    provider = EspProvider.GHL
    signature_header_candidates = ("x-wh-signature",)

    def __init__(self, settings: Optional[Settings] = None):
        self._settings = settings or config

    def _public_key(self) -> Optional[rsa.RSAPublicKey]:
        pem = (self._settings.ghl_webhook_public_key or "").strip()
        if not pem:
            logger.error("GHL_WEBHOOK_PUBLIC_KEY not set; cannot verify webhooks")
            return None
        try:
            key = serialization.load_pem_public_key(pem.replace("\\n", "\n").encode("utf-8"))
        except ValueError as exc:
            logger.error("GHL_WEBHOOK_PUBLIC_KEY is not a valid PEM key: %s", exc)
            return None
        return key if isinstance(key, rsa.RSAPublicKey) else None

    def verify_signature(self, raw_body: bytes, signature: str, headers: Mapping[str, str]) -> bool:
        if not signature:
            return False
        key = self._public_key()
        if key is None:
            return False
        try:
            key.verify(base64.b64decode(signature), raw_body, padding.PKCS1v15(), hashes.SHA256())
        except (InvalidSignature, binascii.Error, ValueError):
            return False
        return True
