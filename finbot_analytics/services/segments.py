from dataclasses import dataclass
from typing import Any, Dict, FrozenSet, List, Optional, Sequence, Set
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from finbot_analytics.models.user import User, UserNotification
from finbot_analytics.models.finance import Transaction, Budget
from finbot_analytics.models.events import MarketingEvent, UsageEvent, InputUsage
from finbot_analytics.schemas.segment import SegmentFilter, SegmentLogic
from finbot_analytics.services.segment_fields import (
    SegmentFieldResolver,
    SUPPORTED_FIELDS,
    OPERATORS_BY_TYPE,
)
import structlog

logger = structlog.get_logger()

MAX_PREVIEW_SAMPLE = 50


@dataclass(frozen=True)
class ResolvedSegment:
    """
    Result of combining audience filters.

    `applied` is False when no filters were given: the caller should fall
    back to its own default audience. An applied segment with no user ids
    genuinely matches nobody.
    """
    user_ids: FrozenSet[int]
    applied: bool

    @property
    def count(self) -> int:
        return len(self.user_ids)


NO_SEGMENT = ResolvedSegment(user_ids=frozenset(), applied=False)


def intersect(a: Set[int], b: Set[int]) -> Set[int]:
    if not a or not b:
        return set()
    small, large = (a, b) if len(a) < len(b) else (b, a)
    return {user_id for user_id in small if user_id in large}


async def resolve_segment(
        db: AsyncSession,
        filters: Sequence[SegmentFilter],
        logic: SegmentLogic = SegmentLogic.AND
) -> ResolvedSegment:
    """
    Fold filters left to right into one user-id set.

    AND intersects and stops resolving once the running set is empty; OR
    unions every filter.
    """
    if not filters:
        return NO_SEGMENT

    resolver = SegmentFieldResolver(db)
    current: Optional[Set[int]] = None
    resolved = 0

    for segment_filter in filters:
        user_ids = await resolver.resolve(segment_filter)
        resolved += 1

        if current is None:
            current = user_ids
        elif logic is SegmentLogic.OR:
            current = current | user_ids
        else:
            current = intersect(current, user_ids)

        if logic is SegmentLogic.AND and not current:
            break

    logger.info(
        "segment_resolved",
        logic=logic.value,
        filters=len(filters),
        filters_resolved=resolved,
        users=len(current)
    )
    return ResolvedSegment(user_ids=frozenset(current), applied=True)


async def preview_segment(
        db: AsyncSession,
        filters: Sequence[SegmentFilter],
        logic: SegmentLogic = SegmentLogic.AND,
        sample_size: int = 20
) -> Dict[str, Any]:
    """Count the audience and load a small sample of user summaries"""
    segment = await resolve_segment(db, filters, logic)

    sample_size = max(1, min(sample_size, MAX_PREVIEW_SAMPLE))
    sample_ids = sorted(segment.user_ids)[:sample_size]

    sample = []
    if sample_ids:
        result = await db.execute(
            select(User.id, User.username, User.display_name, User.language)
            .where(User.id.in_(sample_ids))
            .order_by(User.id)
        )
        sample = [dict(row._mapping) for row in result.all()]

    return {
        "segment_applied": segment.applied,
        "count": segment.count,
        "user_ids": sorted(segment.user_ids),
        "sample": sample,
    }


# Columns whose distinct values are offered as pick-lists
OPTION_COLUMNS = {
    "users.language": User.language,
    "users.default_currency": User.default_currency,
    "users.onboarding_stage": User.onboarding_stage,
    "users.timezone": User.timezone,
    "transactions.currency": Transaction.currency,
    "transactions.source": Transaction.source,
    "marketing_events.event_name": MarketingEvent.event_name,
    "marketing_events.action_source": MarketingEvent.action_source,
    "marketing_events.source": MarketingEvent.source,
    "usage_events.feature": UsageEvent.feature,
    "input_usage.period_key": InputUsage.period_key,
    "budgets.currency": Budget.currency,
    "user_notifications.code": UserNotification.code,
}

FIXED_OPTIONS = {
    "transactions.type": ["income", "expense"],
    "user_subscriptions.status": ["active", "payment_failed", "cancelled"],
    "user_subscriptions.plan_type": ["weekly", "monthly"],
}


async def distinct_strings(db: AsyncSession, column) -> List[str]:
    result = await db.execute(
        select(column).where(column.is_not(None)).distinct().order_by(column)
    )
    found = []
    for value in result.scalars().all():
        if isinstance(value, str) and value.strip() and value.strip() not in found:
            found.append(value.strip())
    return found


async def filter_metadata(db: AsyncSession) -> Dict[str, Any]:
    """Supported fields, operators per type and pick-list options"""
    options: Dict[str, List[Dict[str, Any]]] = {}
    for field, column in OPTION_COLUMNS.items():
        values = await distinct_strings(db, column)
        if values:
            options[field] = [{"value": v, "label": v} for v in values]
    for field, values in FIXED_OPTIONS.items():
        options[field] = [{"value": v, "label": v} for v in values]

    return {
        "fields": [
            {"group": spec.group, "field": spec.field, "label": spec.label, "type": spec.type}
            for spec in SUPPORTED_FIELDS
        ],
        "operators": {
            value_type: [op.value for op in ops]
            for value_type, ops in OPERATORS_BY_TYPE.items()
        },
        "options": options,
    }
