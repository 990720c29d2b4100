"""
Inbound provider webhooks.  No user auth: each family handler verifies
the provider's signature over the raw body.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from api.dependencies import db_session, get_dispatcher
from esp.webhooks.families import WebhookFamilyDispatcher

router = APIRouter(prefix="/webhooks/esp", tags=["webhooks"])


@router.get("/{provider}/{family}")
async def describe_webhook(
    provider: str,
    family: str,
    request: Request,
    dispatcher: WebhookFamilyDispatcher = Depends(get_dispatcher),
) -> JSONResponse:
    return dispatcher.handle_get(provider, family, endpoint=request.url.path)


@router.post("/{provider}/{family}")
async def receive_webhook(
    provider: str,
    family: str,
    request: Request,
    session: AsyncSession = Depends(db_session),
    dispatcher: WebhookFamilyDispatcher = Depends(get_dispatcher),
) -> JSONResponse:
    return await dispatcher.handle_post(request, provider, family, session)
