from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Collection, Dict, List
from zoneinfo import ZoneInfo
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from finbot_analytics.models.finance import Transaction
from finbot_analytics.models.events import MarketingEvent, MINI_APP_SOURCE
from finbot_analytics.schemas.cohort import ActiveDefinition
from finbot_analytics.services.periods import to_zone
import structlog

logger = structlog.get_logger()


@dataclass
class ActivityIndex:
    """Per-user activity timestamps (ascending), loaded once per retention run"""
    transactions: Dict[int, List[datetime]] = field(default_factory=dict)
    app_opens: Dict[int, List[datetime]] = field(default_factory=dict)


def _index_rows(rows, tz: ZoneInfo) -> Dict[int, List[datetime]]:
    index: Dict[int, List[datetime]] = {}
    for user_id, ts in rows:
        index.setdefault(user_id, []).append(to_zone(ts, tz))
    return index


async def fetch_activity(
        session: AsyncSession,
        user_ids: Collection[int],
        range_start: datetime,
        range_end: datetime,
        definition: ActiveDefinition,
        tz: ZoneInfo
) -> ActivityIndex:
    """
    Bulk-load activity for every cohort member in [range_start, range_end).

    Issues at most one transactions query and one mini-app events query no
    matter how many cohorts or windows are analysed; sources the activity
    definition does not need are not queried.
    """
    activity = ActivityIndex()
    if not user_ids:
        return activity

    ids = sorted(user_ids)
    utc_start = range_start.astimezone(timezone.utc)
    utc_end = range_end.astimezone(timezone.utc)

    if definition.needs_entries:
        stmt = (
            select(Transaction.user_id, Transaction.created_at)
            .where(Transaction.user_id.in_(ids))
            .where(Transaction.created_at >= utc_start)
            .where(Transaction.created_at < utc_end)
            .order_by(Transaction.created_at)
        )
        result = await session.execute(stmt)
        activity.transactions = _index_rows(result.all(), tz)

    if definition.needs_miniapp:
        stmt = (
            select(MarketingEvent.user_id, MarketingEvent.created_at)
            .where(MarketingEvent.user_id.in_(ids))
            .where(MarketingEvent.source == MINI_APP_SOURCE)
            .where(MarketingEvent.created_at >= utc_start)
            .where(MarketingEvent.created_at < utc_end)
            .order_by(MarketingEvent.created_at)
        )
        result = await session.execute(stmt)
        activity.app_opens = _index_rows(result.all(), tz)

    logger.info(
        "activity_loaded",
        users=len(ids),
        users_with_transactions=len(activity.transactions),
        users_with_app_opens=len(activity.app_opens),
        range_start=range_start.isoformat(),
        range_end=range_end.isoformat()
    )
    return activity
