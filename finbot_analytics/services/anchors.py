from datetime import date, datetime
from typing import Dict, Iterable, Optional, Tuple
from zoneinfo import ZoneInfo
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession
from finbot_analytics.models.user import User
from finbot_analytics.models.finance import Transaction
from finbot_analytics.models.billing import PaymentHistory, UserSubscription
from finbot_analytics.schemas.cohort import AnchorType
from finbot_analytics.services.periods import to_zone
import structlog

logger = structlog.get_logger()

AnchorMap = Dict[int, datetime]

# Payment statuses that count as a completed charge (compared lower-cased)
SUCCESS_PAYMENT_STATUSES = ("success", "completed", "paid")


def first_occurrence(rows: Iterable[Tuple[int, datetime]], tz: ZoneInfo) -> AnchorMap:
    """
    Fold a timestamp-ascending stream of (user_id, timestamp) into one anchor per user.

    The first row seen for a user wins; later rows for the same user are discarded.
    """
    anchors: AnchorMap = {}
    for user_id, ts in rows:
        if user_id is None or ts is None or user_id in anchors:
            continue
        anchors[user_id] = to_zone(ts, tz)
    return anchors


def _acquisition_query():
    return (
        select(User.id, User.created_at)
        .where(User.created_at.is_not(None))
        .order_by(User.created_at, User.id)
    )


def _activation_query():
    return (
        select(Transaction.user_id, Transaction.created_at)
        .order_by(Transaction.created_at, Transaction.id)
    )


def _billing_query():
    # Approximation: no billing-start field exists, so the first successful
    # payment stands in for it
    return (
        select(PaymentHistory.user_id, PaymentHistory.created_at)
        .where(func.lower(PaymentHistory.status).in_(SUCCESS_PAYMENT_STATUSES))
        .order_by(PaymentHistory.created_at, PaymentHistory.id)
    )


def _trial_query():
    # Approximation: no trial-period field exists, so the first subscription
    # record of any status stands in for trial start
    return (
        select(UserSubscription.user_id, UserSubscription.created_at)
        .order_by(UserSubscription.created_at, UserSubscription.id)
    )


ANCHOR_QUERIES = {
    AnchorType.ACQUISITION: _acquisition_query,
    AnchorType.ACTIVATION: _activation_query,
    AnchorType.BILLING: _billing_query,
    AnchorType.TRIAL: _trial_query,
}


async def resolve_anchors(
        session: AsyncSession,
        anchor: AnchorType,
        tz: ZoneInfo
) -> AnchorMap:
    """Compute each user's cohort-entry timestamp for the given anchor type"""
    result = await session.execute(ANCHOR_QUERIES[anchor]())
    anchors = first_occurrence(result.all(), tz)

    logger.info("anchors_resolved", anchor=anchor.value, users=len(anchors))
    return anchors


def restrict_to_range(
        anchors: AnchorMap,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None
) -> AnchorMap:
    """Keep anchors whose local calendar date falls within [start_date, end_date]"""
    if start_date is None and end_date is None:
        return anchors

    return {
        user_id: ts
        for user_id, ts in anchors.items()
        if (start_date is None or ts.date() >= start_date)
        and (end_date is None or ts.date() <= end_date)
    }
