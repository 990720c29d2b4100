"""
Per-campaign delivery counters.

``increment_email_stats_counter`` is a single ``INSERT … ON CONFLICT DO
UPDATE`` statement, so concurrent webhook deliveries for the same campaign
never lose an increment and ``first_delivered_at`` is written exactly once.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from sqlalchemy import func
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from database.models import CampaignEmailStats

logger = logging.getLogger(__name__)


class EmailStatsColumn(str, Enum):
    DELIVERED = "delivered_count"
    OPENED = "opened_count"
    CLICKED = "clicked_count"
    BOUNCED = "bounced_count"
    COMPLAINED = "complained_count"
    UNSUBSCRIBED = "unsubscribed_count"


_DIALECT_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def parse_event_time(value: Any, *, now: Optional[datetime] = None) -> datetime:
    """
    Interpret a provider timestamp.

    Numbers (or numeric strings) below 1e11 are epoch seconds, larger ones
    epoch milliseconds; other strings are parsed as ISO-8601.  Anything
    unusable falls back to *now*.
    """
    fallback = now or datetime.now(timezone.utc)
    if isinstance(value, bool):
        return fallback

    number: Optional[float] = None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        try:
            number = float(text)
        except ValueError:
            try:
                parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
            except ValueError:
                return fallback
            return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)

    if number is None or number != number or number <= 0:
        return fallback
    seconds = number if number < 1e11 else number / 1000.0
    try:
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return fallback


async def increment_email_stats_counter(
    session: AsyncSession,
    *,
    provider: str,
    account_id: str,
    campaign_id: str,
    column: EmailStatsColumn,
    event_time: datetime,
) -> None:
    """Atomically add one to *column* for the campaign, creating the row if needed."""
    dialect = session.get_bind().dialect.name
    insert = _DIALECT_INSERTS.get(dialect)
    if insert is None:
        raise RuntimeError(f"Atomic counter upsert is not supported on {dialect}")

    column = EmailStatsColumn(column)
    table = CampaignEmailStats.__table__
    values = {c.value: 0 for c in EmailStatsColumn}
    values[column.value] = 1
    values.update(
        provider=provider.strip().lower(),
        account_id=account_id.strip(),
        campaign_id=campaign_id.strip(),
        last_event_at=event_time,
        first_delivered_at=event_time if column is EmailStatsColumn.DELIVERED else None,
    )

    stmt = insert(table).values(**values)
    update_set = {
        column.value: table.c[column.value] + 1,
        "last_event_at": stmt.excluded.last_event_at,
    }
    if column is EmailStatsColumn.DELIVERED:
        update_set["first_delivered_at"] = func.coalesce(
            table.c.first_delivered_at, stmt.excluded.first_delivered_at
        )
    stmt = stmt.on_conflict_do_update(
        index_elements=[table.c.provider, table.c.account_id, table.c.campaign_id],
        set_=update_set,
    )
    await session.execute(stmt)
