"""
Shared fixtures.

Environment is configured before any application module is imported, so
``config.settings.config`` and the database engine pick up a temporary
SQLite file and test secrets.
"""

import os
import tempfile

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

_TMP_DIR = tempfile.mkdtemp(prefix="esp-broker-tests-")
GHL_PRIVATE_KEY = rsa.generate_private_key(public_exponent=65537, key_size=2048)

os.environ.update(
    {
        "DATABASE_URL": f"sqlite+aiosqlite:///{os.path.join(_TMP_DIR, 'test.db')}",
        "ESP_TOKEN_SECRET": "test-token-secret",
        "ESP_TOKEN_SECRETS_PREVIOUS": "",
        "ESP_OAUTH_STATE_SECRET": "test-state-secret",
        "ESP_OAUTH_STATE_SECRETS_PREVIOUS": "",
        "DEFAULT_ESP_PROVIDER": "",
        "JWT_SECRET": "test-jwt-secret",
        "APP_BASE_URL": "https://app.test",
        "GHL_CLIENT_ID": "ghl-client",
        "GHL_CLIENT_SECRET": "ghl-secret",
        "GHL_REDIRECT_URI": "https://app.test/api/v1/esp/oauth/callback",
        "KLAVIYO_WEBHOOK_SECRET": "klaviyo-test-secret",
        "GHL_WEBHOOK_PUBLIC_KEY": GHL_PRIVATE_KEY.public_key()
        .public_bytes(serialization.Encoding.PEM, serialization.PublicFormat.SubjectPublicKeyInfo)
        .decode("ascii"),
    }
)

import httpx  # noqa: E402
import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402

from auth.jwt import create_token  # noqa: E402
from config.settings import config  # noqa: E402
from database.models import Base  # noqa: E402
from database.session import async_session_factory, engine  # noqa: E402
from esp.bootstrap import build_registry, build_webhook_dispatcher  # noqa: E402


async def reset_database() -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)


@pytest_asyncio.fixture
async def db():
    await reset_database()
    yield
    await engine.dispose()


@pytest_asyncio.fixture
async def session(db):
    async with async_session_factory() as s:
        yield s


@pytest.fixture
def settings():
    return config


@pytest.fixture
def provider_transport():
    """MockTransport whose behaviour tests swap via ``transport.responder = ...``."""

    def _unexpected(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, json={"message": f"unexpected {request.method} {request.url}"})

    class _Switchable(httpx.MockTransport):
        def __init__(self):
            super().__init__(self._dispatch)
            self.responder = _unexpected
            self.requests = []

        def _dispatch(self, request):
            self.requests.append(request)
            return self.responder(request)

    return _Switchable()


@pytest.fixture
def registry(provider_transport):
    return build_registry(config, transport=provider_transport)


@pytest_asyncio.fixture
async def client(db, registry):
    from main import create_app

    app = create_app()
    app.state.registry = registry
    app.state.webhook_dispatcher = build_webhook_dispatcher(registry)
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as c:
        yield c


@pytest.fixture
def auth_headers():
    return {"Authorization": f"Bearer {create_token('user-1', 'developer')}"}


@pytest.fixture
def client_role_headers():
    return {"Authorization": f"Bearer {create_token('user-2', 'client', ['acct-1'])}"}


@pytest.fixture
def ghl_private_key():
    """Private half of ``GHL_WEBHOOK_PUBLIC_KEY``."""
    return GHL_PRIVATE_KEY
