"""
Credential re-encryption — move every stored secret to the newest key.

Run after prepending a new ``ESP_TOKEN_SECRET`` (and moving the old one to
``ESP_TOKEN_SECRETS_PREVIOUS``).  Each row is handled on its own: a row
that no configured key can decrypt is counted and logged, and the batch
carries on.  In dry-run mode nothing is written.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Any, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from database.models import EspConnection, EspOAuthConnection, EspProviderOAuthCredential
from esp.encryption import rotate
from esp.secrets import require_token_secrets

logger = logging.getLogger(__name__)


@dataclass
class ReencryptStats:
    oauth_updated: int = 0
    oauth_failed: int = 0
    api_updated: int = 0
    api_failed: int = 0
    agency_updated: int = 0
    agency_failed: int = 0

    @property
    def has_failures(self) -> bool:
        return bool(self.oauth_failed or self.api_failed or self.agency_failed)

    def as_dict(self) -> dict:
        return asdict(self)


def _log_failure(kind: str, provider: str, key: str, exc: Exception) -> None:
    logger.error("[reencrypt] Failed %s:%s:%s: %s", kind, provider, key, exc)


async def reencrypt_credentials(
    session: AsyncSession,
    *,
    dry_run: bool = False,
    secrets: Optional[Sequence[str]] = None,
) -> ReencryptStats:
    """
    Re-encrypt every OAuth, API-key and agency credential row.

    Parameters
    ----------
    dry_run : bool
        Decrypt and re-encrypt in memory only; leave every row untouched.
    secrets : sequence of str, optional
        Key list, newest first.  Defaults to the configured token secrets.

    Returns
    -------
    ReencryptStats with per-kind updated / failed counts.
    """
    keys = list(secrets) if secrets is not None else require_token_secrets()
    stats = ReencryptStats()

    oauth_rows = (
        await session.execute(
            select(EspOAuthConnection).order_by(EspOAuthConnection.provider, EspOAuthConnection.account_key)
        )
    ).scalars().all()
    api_rows = (
        await session.execute(
            select(EspConnection).order_by(EspConnection.provider, EspConnection.account_key)
        )
    ).scalars().all()
    agency_rows = (
        await session.execute(select(EspProviderOAuthCredential).order_by(EspProviderOAuthCredential.provider))
    ).scalars().all()

    logger.info(
        "[reencrypt] Mode: %s — oauth=%d api=%d agency=%d",
        "dry-run" if dry_run else "apply",
        len(oauth_rows),
        len(api_rows),
        len(agency_rows),
    )

    for row in oauth_rows:
        if _reencrypt_token_pair(row, keys, dry_run, "oauth", row.account_key):
            stats.oauth_updated += 1
        else:
            stats.oauth_failed += 1

    for row in api_rows:
        try:
            api_key = rotate(row.api_key, keys)
        except Exception as exc:
            _log_failure("api", row.provider, row.account_key, exc)
            stats.api_failed += 1
            continue
        if not dry_run:
            row.api_key = api_key
        stats.api_updated += 1

    for row in agency_rows:
        if _reencrypt_token_pair(row, keys, dry_run, "agency", row.subject_id or "-"):
            stats.agency_updated += 1
        else:
            stats.agency_failed += 1

    if not dry_run:
        await session.flush()

    logger.info("[reencrypt] Summary %s", stats.as_dict())
    return stats


def _reencrypt_token_pair(row: Any, keys: Sequence[str], dry_run: bool, kind: str, key: str) -> bool:
    try:
        access_token = rotate(row.access_token, keys)
        refresh_token = rotate(row.refresh_token, keys)
    except Exception as exc:
        _log_failure(kind, row.provider, key, exc)
        return False
    if not dry_run:
        row.access_token = access_token
        row.refresh_token = refresh_token
    return True
