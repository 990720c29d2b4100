"""
FastAPI dependencies (shared across routes).
"""

from __future__ import annotations

from typing import AsyncGenerator

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from database.session import get_db_session
from esp.registry import AdapterRegistry
from esp.webhooks.families import WebhookFamilyDispatcher


async def db_session(session: AsyncSession = Depends(get_db_session)) -> AsyncGenerator[AsyncSession, None]:
    """Re-export so routes import from a single place."""
    yield session


def get_registry(request: Request) -> AdapterRegistry:
    """Adapter registry built at start-up (``app.state.registry``)."""
    return request.app.state.registry


def get_dispatcher(request: Request) -> WebhookFamilyDispatcher:
    return request.app.state.webhook_dispatcher
