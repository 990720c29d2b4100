"""
ESP integration broker — application entry point.
"""

from __future__ import annotations

import logging
import sys

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.esp_routes import router as esp_router
from api.middleware import register_middleware
from api.webhooks import router as webhook_router
from config.settings import config
from database.session import create_all_tables
from esp.bootstrap import build_registry, build_webhook_dispatcher
from esp.secrets import configured_oauth_state_secrets, configured_token_secrets

logging.basicConfig(
    level=logging.DEBUG if config.debug else logging.INFO,
    format="%(asctime)s  %(levelname)-8s  %(name)s — %(message)s",
    stream=sys.stdout,
)
for _noisy in ("httpcore", "httpx", "urllib3", "aiosqlite"):
    logging.getLogger(_noisy).setLevel(logging.WARNING)
logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    app = FastAPI(
        title="ESP Integration Broker",
        version="1.0.0",
        description="Multi-tenant email service provider connections, OAuth and webhooks.",
    )

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_middleware(app)

    # Routes
    app.include_router(esp_router, prefix="/api/v1")
    app.include_router(webhook_router, prefix="/api/v1")

    @app.get("/api/v1/health")
    async def health_check():
        return {"status": "ok"}

    @app.on_event("startup")
    async def on_startup():
        logger.info("Building ESP adapter registry…")
        registry = build_registry()
        app.state.registry = registry
        app.state.webhook_dispatcher = build_webhook_dispatcher(registry)
        logger.info("ESP providers: %s", ", ".join(p.value for p in registry.get_registered_providers()))

        if not configured_token_secrets():
            logger.warning("ESP_TOKEN_SECRET is not set; credential storage will fail")
        if not configured_oauth_state_secrets():
            logger.warning("ESP_OAUTH_STATE_SECRET is not set; OAuth flows will fail")

        if config.auto_create_tables:
            await create_all_tables()
            logger.info("Database tables ensured.")

        logger.info("Application ready to accept requests.")

    return app


app = create_app()

if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host=config.host,
        port=config.port,
        reload=config.debug,
        log_level="debug" if config.debug else "info",
    )
