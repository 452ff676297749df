from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo
import pytest
from finbot_analytics.models.user import User
from finbot_analytics.models.finance import Transaction
from finbot_analytics.models.billing import PaymentHistory, UserSubscription
from finbot_analytics.schemas.cohort import AnchorType, Bucket
from finbot_analytics.services.anchors import first_occurrence, resolve_anchors, restrict_to_range
from finbot_analytics.services.cohorts import build_cohorts

UTC = ZoneInfo("UTC")


def at(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


def test_first_occurrence_keeps_earliest_row_per_user():
    rows = [
        (1, at(2025, 1, 1, 9)),
        (2, at(2025, 1, 2, 9)),
        (1, at(2025, 1, 3, 9)),
        (2, at(2025, 1, 4, 9)),
    ]
    anchors = first_occurrence(rows, UTC)
    assert anchors == {1: at(2025, 1, 1, 9), 2: at(2025, 1, 2, 9)}


@pytest.mark.asyncio
async def test_activation_anchor_is_first_transaction(session, seed):
    """Later transactions never move a user's activation anchor"""
    await seed(
        User(id=1, created_at=at(2024, 12, 1)),
        User(id=2, created_at=at(2024, 12, 1)),
        User(id=3, created_at=at(2024, 12, 1)),
        Transaction(user_id=1, created_at=at(2025, 1, 20, 8)),
        Transaction(user_id=1, created_at=at(2025, 1, 6, 8)),
        Transaction(user_id=2, created_at=at(2025, 1, 14, 8)),
    )

    anchors = await resolve_anchors(session, AnchorType.ACTIVATION, UTC)

    assert set(anchors) == {1, 2}
    assert anchors[1] == at(2025, 1, 6, 8)
    assert anchors[2] == at(2025, 1, 14, 8)


@pytest.mark.asyncio
async def test_billing_anchor_excludes_failed_payments(session, seed):
    """A user whose only payment failed cannot be cohorted"""
    await seed(
        User(id=1, created_at=at(2024, 12, 1)),
        User(id=2, created_at=at(2024, 12, 1)),
        PaymentHistory(user_id=1, status="failed", created_at=at(2025, 1, 2)),
        PaymentHistory(user_id=1, status="PAID", created_at=at(2025, 1, 9)),
        PaymentHistory(user_id=2, status="failed", created_at=at(2025, 1, 3)),
    )

    anchors = await resolve_anchors(session, AnchorType.BILLING, UTC)

    assert anchors == {1: at(2025, 1, 9)}
    cohorts = build_cohorts(anchors, Bucket.WEEKLY)
    assert [c.member_ids for c in cohorts] == [(1,)]


@pytest.mark.asyncio
async def test_trial_anchor_uses_first_subscription_of_any_status(session, seed):
    await seed(
        User(id=1, created_at=at(2024, 12, 1)),
        UserSubscription(user_id=1, status="cancelled", created_at=at(2025, 2, 1)),
        UserSubscription(user_id=1, status="active", created_at=at(2025, 3, 1)),
    )

    anchors = await resolve_anchors(session, AnchorType.TRIAL, UTC)

    assert anchors == {1: at(2025, 2, 1)}


@pytest.mark.asyncio
async def test_acquisition_anchor_converts_to_configured_timezone(session, seed):
    await seed(
        User(id=1, created_at=at(2025, 1, 5, 20)),
        User(id=2, created_at=None),
    )

    anchors = await resolve_anchors(session, AnchorType.ACQUISITION, ZoneInfo("Asia/Tashkent"))

    assert list(anchors) == [1]
    assert anchors[1].isoformat() == "2025-01-06T01:00:00+05:00"


@pytest.mark.asyncio
async def test_missing_source_yields_empty_map(session, seed):
    await seed(User(id=1, created_at=at(2025, 1, 1)))

    assert await resolve_anchors(session, AnchorType.TRIAL, UTC) == {}
    assert build_cohorts({}, Bucket.WEEKLY) == []


def test_restrict_to_range_is_inclusive():
    anchors = {
        1: at(2025, 1, 1, 12),
        2: at(2025, 1, 15, 23, 59),
        3: at(2025, 1, 16, 0, 1),
    }
    assert restrict_to_range(anchors, date(2025, 1, 1), date(2025, 1, 15)) == {
        1: anchors[1],
        2: anchors[2],
    }
    assert restrict_to_range(anchors, start_date=date(2025, 1, 2)) == {
        2: anchors[2],
        3: anchors[3],
    }
    assert restrict_to_range(anchors) is anchors


def test_build_cohorts_groups_sorts_and_keeps_most_recent():
    anchors = {
        10: at(2025, 3, 12),
        11: at(2025, 1, 8),
        12: at(2025, 2, 3),
        13: at(2025, 1, 30),
        14: at(2025, 3, 2),
    }

    cohorts = build_cohorts(anchors, Bucket.MONTHLY)

    assert [c.key for c in cohorts] == ["2025-01", "2025-02", "2025-03"]
    assert [c.size for c in cohorts] == [2, 1, 2]
    assert sorted(uid for c in cohorts for uid in c.member_ids) == [10, 11, 12, 13, 14]

    recent = build_cohorts(anchors, Bucket.MONTHLY, limit=2)
    assert [c.key for c in recent] == ["2025-02", "2025-03"]
