"""
Error taxonomy for the ESP subsystem.

Every error carries the HTTP status a route should answer with; the
exception handler in ``api.middleware`` renders them uniformly.
"""

from __future__ import annotations

import re
from typing import Optional


class EspError(Exception):
    """Base class for all ESP errors."""

    status_code: int = 500

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class ConfigurationError(EspError):
    """Missing or invalid provider / secret configuration."""

    status_code = 500


class UnregisteredProviderError(ConfigurationError):
    status_code = 400

    def __init__(self, provider: str, message: Optional[str] = None):
        self.provider = provider
        super().__init__(message or f'No ESP adapter registered for provider "{provider}"')


class NoProvidersRegisteredError(ConfigurationError):
    status_code = 500

    def __init__(self) -> None:
        super().__init__("No ESP adapters are registered")


class MissingCapabilityError(EspError):
    """The provider does not support the requested operation."""

    status_code = 501

    def __init__(self, provider: str, capability: str):
        self.provider = provider
        self.capability = capability
        super().__init__(f"{provider} does not support {capability}")


class AuthorizationError(EspError):
    """OAuth state / signature / expiry failure. Never carries detail."""

    status_code = 400
    GENERIC_MESSAGE = "Invalid or expired OAuth state"

    def __init__(self, message: Optional[str] = None):
        super().__init__(self.GENERIC_MESSAGE if message is None else message)


class CredentialDecryptionError(EspError):
    status_code = 500

    def __init__(self, message: str = "Failed to decrypt token with configured ESP secrets"):
        super().__init__(message)


_STATUS_IN_MESSAGE = re.compile(r"\((\d{3})\)")


class UpstreamProviderError(EspError):
    """Non-2xx answer from an ESP's own API."""

    def __init__(self, provider: str, upstream_status: int, detail: str = ""):
        self.provider = provider
        self.upstream_status = upstream_status
        suffix = f": {detail[:220]}" if detail else ""
        status = upstream_status if upstream_status in (400, 401, 403, 404, 422, 429) else 502
        super().__init__(f"{provider} request failed ({upstream_status}){suffix}", status)


class EspValidationError(EspError):
    status_code = 400


class EspConnectionError(EspError):
    status_code = 500


def status_from_message(message: str, default: int = 500) -> int:
    """Recover an HTTP status embedded as ``(NNN)`` in an error message."""
    match = _STATUS_IN_MESSAGE.search(message)
    if match:
        return int(match.group(1))
    if message.endswith("is required"):
        return 400
    return default
