"""
Credential store — persist / load / remove encrypted ESP credentials.

Three kinds of records:

* ``EspOAuthConnection``          per account + provider (OAuth tokens)
* ``EspConnection``               per account + provider (API key)
* ``EspProviderOAuthCredential``  per provider (agency-level OAuth grant)

Every write takes plaintext and encrypts with the newest token secret;
nothing is ever persisted in the clear.  Reads return the ORM rows with
ciphertext intact; call ``decrypt_oauth_tokens`` / ``decrypt_api_key`` at
the point of use.  The caller owns the session and the transaction.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import Settings
from database.models import EspConnection, EspOAuthConnection, EspProviderOAuthCredential
from esp.encryption import decrypt_token, encrypt_token
from esp.types import EspProvider, parse_provider

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OAuthTokens:
    access_token: str
    refresh_token: str


def _now() -> datetime:
    return datetime.now(timezone.utc)


# ── OAuth connections ─────────────────────────────────────────────────────


async def get_oauth_connection(
    session: AsyncSession,
    account_key: str,
    provider: Any,
) -> Optional[EspOAuthConnection]:
    result = await session.execute(
        select(EspOAuthConnection).where(
            EspOAuthConnection.account_key == account_key,
            EspOAuthConnection.provider == parse_provider(provider).value,
        )
    )
    return result.scalar_one_or_none()


async def list_oauth_connections(
    session: AsyncSession,
    *,
    provider: Any = None,
    account_keys: Optional[Sequence[str]] = None,
) -> List[EspOAuthConnection]:
    if account_keys is not None and len(account_keys) == 0:
        return []
    stmt = select(EspOAuthConnection)
    if provider is not None:
        stmt = stmt.where(EspOAuthConnection.provider == parse_provider(provider).value)
    if account_keys:
        stmt = stmt.where(EspOAuthConnection.account_key.in_(list(account_keys)))
    stmt = stmt.order_by(EspOAuthConnection.account_key, EspOAuthConnection.provider)
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def upsert_oauth_connection(
    session: AsyncSession,
    *,
    account_key: str,
    provider: Any,
    access_token: str,
    refresh_token: str,
    token_expires_at: datetime,
    scopes: Optional[Sequence[str]] = None,
    location_id: Optional[str] = None,
    location_name: Optional[str] = None,
    installed_at: Optional[datetime] = None,
    settings: Optional[Settings] = None,
) -> EspOAuthConnection:
    """
    Insert or update the OAuth connection for ``(account_key, provider)``.

    ``installed_at`` is only set on insert; re-authorising an existing
    connection keeps its original install time.
    """
    provider = parse_provider(provider)
    existing = await get_oauth_connection(session, account_key, provider)
    encrypted_access = encrypt_token(access_token, settings)
    encrypted_refresh = encrypt_token(refresh_token, settings)

    if existing:
        existing.access_token = encrypted_access
        existing.refresh_token = encrypted_refresh
        existing.token_expires_at = token_expires_at
        existing.scopes = list(scopes or [])
        existing.location_id = location_id
        existing.location_name = location_name
        existing.updated_at = _now()
        row = existing
        logger.info("Updated %s OAuth connection for account %s", provider.value, account_key)
    else:
        row = EspOAuthConnection(
            account_key=account_key,
            provider=provider.value,
            access_token=encrypted_access,
            refresh_token=encrypted_refresh,
            token_expires_at=token_expires_at,
            scopes=list(scopes or []),
            location_id=location_id,
            location_name=location_name,
            installed_at=installed_at or _now(),
            updated_at=_now(),
        )
        session.add(row)
        logger.info("Created %s OAuth connection for account %s", provider.value, account_key)

    await session.flush()
    return row


async def remove_oauth_connection(session: AsyncSession, account_key: str, provider: Any) -> bool:
    result = await session.execute(
        delete(EspOAuthConnection).where(
            EspOAuthConnection.account_key == account_key,
            EspOAuthConnection.provider == parse_provider(provider).value,
        )
    )
    return (result.rowcount or 0) > 0


# ── API-key connections ───────────────────────────────────────────────────


async def get_api_key_connection(
    session: AsyncSession,
    account_key: str,
    provider: Any,
) -> Optional[EspConnection]:
    result = await session.execute(
        select(EspConnection).where(
            EspConnection.account_key == account_key,
            EspConnection.provider == parse_provider(provider).value,
        )
    )
    return result.scalar_one_or_none()


async def list_api_key_connections(
    session: AsyncSession,
    *,
    provider: Any = None,
    account_keys: Optional[Sequence[str]] = None,
) -> List[EspConnection]:
    if account_keys is not None and len(account_keys) == 0:
        return []
    stmt = select(EspConnection)
    if provider is not None:
        stmt = stmt.where(EspConnection.provider == parse_provider(provider).value)
    if account_keys:
        stmt = stmt.where(EspConnection.account_key.in_(list(account_keys)))
    stmt = stmt.order_by(EspConnection.account_key, EspConnection.provider)
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def upsert_api_key_connection(
    session: AsyncSession,
    *,
    account_key: str,
    provider: Any,
    api_key: str,
    account_id: Optional[str] = None,
    account_name: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
    installed_at: Optional[datetime] = None,
    settings: Optional[Settings] = None,
) -> EspConnection:
    provider = parse_provider(provider)
    existing = await get_api_key_connection(session, account_key, provider)
    encrypted = encrypt_token(api_key, settings)

    if existing:
        existing.api_key = encrypted
        existing.account_id = account_id
        existing.account_name = account_name
        existing.metadata_ = metadata
        existing.updated_at = _now()
        row = existing
    else:
        row = EspConnection(
            account_key=account_key,
            provider=provider.value,
            api_key=encrypted,
            account_id=account_id,
            account_name=account_name,
            metadata_=metadata,
            installed_at=installed_at or _now(),
            updated_at=_now(),
        )
        session.add(row)
    logger.info("Stored %s API-key connection for account %s", provider.value, account_key)

    await session.flush()
    return row


async def remove_api_key_connection(session: AsyncSession, account_key: str, provider: Any) -> bool:
    result = await session.execute(
        delete(EspConnection).where(
            EspConnection.account_key == account_key,
            EspConnection.provider == parse_provider(provider).value,
        )
    )
    return (result.rowcount or 0) > 0


# ── Agency (provider-level) credentials ───────────────────────────────────


async def get_provider_oauth_credential(
    session: AsyncSession,
    provider: Any,
) -> Optional[EspProviderOAuthCredential]:
    result = await session.execute(
        select(EspProviderOAuthCredential).where(
            EspProviderOAuthCredential.provider == parse_provider(provider).value
        )
    )
    return result.scalar_one_or_none()


async def list_provider_oauth_credentials(session: AsyncSession) -> List[EspProviderOAuthCredential]:
    result = await session.execute(
        select(EspProviderOAuthCredential).order_by(EspProviderOAuthCredential.provider)
    )
    return list(result.scalars().all())


async def upsert_provider_oauth_credential(
    session: AsyncSession,
    *,
    provider: Any,
    access_token: str,
    refresh_token: str,
    token_expires_at: datetime,
    scopes: Optional[Sequence[str]] = None,
    subject_type: Optional[str] = None,
    subject_id: Optional[str] = None,
    settings: Optional[Settings] = None,
) -> EspProviderOAuthCredential:
    provider = parse_provider(provider)
    existing = await get_provider_oauth_credential(session, provider)
    encrypted_access = encrypt_token(access_token, settings)
    encrypted_refresh = encrypt_token(refresh_token, settings)

    if existing:
        existing.access_token = encrypted_access
        existing.refresh_token = encrypted_refresh
        existing.token_expires_at = token_expires_at
        existing.scopes = list(scopes or [])
        existing.subject_type = subject_type
        existing.subject_id = subject_id
        existing.updated_at = _now()
        row = existing
    else:
        row = EspProviderOAuthCredential(
            provider=provider.value,
            access_token=encrypted_access,
            refresh_token=encrypted_refresh,
            token_expires_at=token_expires_at,
            scopes=list(scopes or []),
            subject_type=subject_type,
            subject_id=subject_id,
            installed_at=_now(),
            updated_at=_now(),
        )
        session.add(row)
    logger.info("Stored %s agency OAuth credential", provider.value)

    await session.flush()
    return row


async def remove_provider_oauth_credential(session: AsyncSession, provider: Any) -> bool:
    result = await session.execute(
        delete(EspProviderOAuthCredential).where(
            EspProviderOAuthCredential.provider == parse_provider(provider).value
        )
    )
    return (result.rowcount or 0) > 0


# ── Decrypt helpers ───────────────────────────────────────────────────────


def decrypt_oauth_tokens(record: Any, settings: Optional[Settings] = None) -> OAuthTokens:
    """Decrypt the token pair of an OAuth connection or agency credential."""
    return OAuthTokens(
        access_token=decrypt_token(record.access_token, settings),
        refresh_token=decrypt_token(record.refresh_token, settings),
    )


def decrypt_api_key(record: EspConnection, settings: Optional[Settings] = None) -> str:
    return decrypt_token(record.api_key, settings)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite drops tzinfo on the way back; treat naive values as UTC."""
    if value is None:
        return None
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
