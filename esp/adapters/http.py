"""
Shared httpx plumbing for provider APIs.

Every call opens a short-lived ``httpx.AsyncClient`` with the configured
per-request timeout.  Non-2xx answers become ``UpstreamProviderError``
carrying the upstream status; tests inject an ``httpx.MockTransport``.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from config.settings import Settings, config
from esp.errors import UpstreamProviderError
from esp.types import EspProvider

logger = logging.getLogger(__name__)


def error_detail(response: httpx.Response) -> str:
    """Best human-readable message from an error body."""
    try:
        data = response.json()
    except ValueError:
        return response.text[:220]
    if isinstance(data, dict):
        for key in ("message", "error", "detail"):
            value = data.get(key)
            if isinstance(value, str) and value:
                return value
        errors = data.get("errors")
        if isinstance(errors, list) and errors and isinstance(errors[0], dict):
            return str(errors[0].get("detail") or errors[0].get("title") or "")
    return response.text[:220]


class ProviderHttp:
    """Thin async JSON client bound to one provider's API."""

    def __init__(
        self,
        provider: EspProvider,
        base_url: str,
        *,
        default_headers: Optional[Dict[str, str]] = None,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.provider = provider
        self.base_url = base_url.rstrip("/")
        self.default_headers = dict(default_headers or {})
        self._settings = settings or config
        self._transport = transport

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self._settings.esp_http_timeout_seconds,
            transport=self._transport,
        )

    def url(self, path: str) -> str:
        return path if path.startswith("http") else f"{self.base_url}/{path.lstrip('/')}"

    async def request(
        self,
        method: str,
        path: str,
        *,
        headers: Optional[Dict[str, str]] = None,
        params: Optional[Dict[str, Any]] = None,
        json: Any = None,
        data: Optional[Dict[str, Any]] = None,
        allow_404: bool = False,
    ) -> Any:
        """
        Send one request and decode the JSON body.

        Returns ``None`` for empty bodies, and for 404 when *allow_404*.
        """
        merged = {**self.default_headers, **(headers or {})}
        async with self.client() as client:
            response = await client.request(
                method,
                self.url(path),
                headers=merged,
                params=params,
                json=json,
                data=data,
            )

        if allow_404 and response.status_code == 404:
            return None
        if response.status_code >= 400:
            detail = error_detail(response)
            logger.warning(
                "%s %s %s → %d", self.provider.value, method, path.split("?")[0], response.status_code
            )
            raise UpstreamProviderError(self.provider.value, response.status_code, detail)
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return None


def as_record(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def first_text(source: Dict[str, Any], keys: tuple) -> str:
    for key in keys:
        value = source.get(key)
        if isinstance(value, (str, int, float)) and not isinstance(value, bool) and str(value).strip():
            return str(value).strip()
    return ""
