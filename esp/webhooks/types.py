"""
Webhook family handler interface.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from fastapi import Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

EMAIL_STATS_FAMILY = "email-stats"


class WebhookFamilyHandler(ABC):
    """Handles one event family for one provider."""

    expects: str = "POST provider webhook payload"

    def get(self, *, provider: str, endpoint: str) -> JSONResponse:
        """Describe the endpoint (used by providers' URL verification pings)."""
        return JSONResponse({"ok": True, "provider": provider, "endpoint": endpoint, "expects": self.expects})

    @abstractmethod
    async def post(self, request: Request, session: AsyncSession) -> JSONResponse: ...
