from datetime import datetime, timedelta, timezone
import pytest
import pytest_asyncio
from finbot_analytics.models.user import User, UserCard
from finbot_analytics.models.finance import Transaction
from finbot_analytics.models.billing import UserSubscription
from finbot_analytics.models.events import MarketingEvent, InputUsage
from finbot_analytics.schemas.segment import SegmentFilter, SegmentLogic
from finbot_analytics.services.segment_fields import SegmentFieldResolver, days_ago
from finbot_analytics.services.segments import intersect, preview_segment, resolve_segment


def ago(days: int) -> datetime:
    return datetime.now(timezone.utc) - timedelta(days=days)


def f(field, op, value=None) -> SegmentFilter:
    return SegmentFilter(field=field, op=op, value=value)


LANGUAGE_FILTER = f("users.language", "in", ["uz", "ru"])
RECENT_ENTRY_FILTER = f("transactions.date", "within_days", 14)


@pytest_asyncio.fixture
async def five_users(seed):
    """Users 1 and 2 speak uz/ru and transacted in the last two weeks"""
    await seed(
        User(id=1, telegram_id=1001, username="ali", language="uz", is_premium=True, created_at=ago(90)),
        User(id=2, telegram_id=1002, username="olga", language="ru", is_premium=False, created_at=ago(60)),
        User(id=3, telegram_id=1003, username="john", language="en", is_premium=False, created_at=ago(30)),
        User(id=4, telegram_id=1004, username="aziz", language="uz", is_premium=False, created_at=ago(20)),
        User(id=5, telegram_id=1005, username="ivan", language="ru", is_premium=True, created_at=ago(10)),
        Transaction(user_id=1, amount=120, date=ago(2), created_at=ago(2)),
        Transaction(user_id=2, amount=40, date=ago(13), created_at=ago(13)),
        Transaction(user_id=3, amount=15, date=ago(1), created_at=ago(1)),
        Transaction(user_id=4, amount=300, date=ago(30), created_at=ago(30)),
    )


@pytest.mark.asyncio
async def test_language_and_recent_entries(session, five_users):
    segment = await resolve_segment(session, [LANGUAGE_FILTER, RECENT_ENTRY_FILTER], SegmentLogic.AND)

    assert segment.applied
    assert segment.user_ids == {1, 2}


@pytest.mark.asyncio
async def test_and_is_subset_of_or_and_order_independent(session, five_users):
    both = [LANGUAGE_FILTER, RECENT_ENTRY_FILTER]

    and_set = await resolve_segment(session, both, SegmentLogic.AND)
    and_reversed = await resolve_segment(session, list(reversed(both)), SegmentLogic.AND)
    or_set = await resolve_segment(session, both, SegmentLogic.OR)

    assert and_set.user_ids == and_reversed.user_ids
    assert and_set.user_ids <= or_set.user_ids
    assert or_set.user_ids == {1, 2, 3, 4, 5}


@pytest.mark.asyncio
async def test_no_filters_is_not_an_empty_match(session, five_users):
    segment = await resolve_segment(session, [], SegmentLogic.AND)

    assert not segment.applied
    assert segment.count == 0


@pytest.mark.asyncio
async def test_unsupported_field_matches_nobody(session, five_users):
    unknown = f("users.favourite_colour", "eq", "blue")

    assert await SegmentFieldResolver(session).resolve(unknown) == set()

    segment = await resolve_segment(session, [LANGUAGE_FILTER, unknown], SegmentLogic.AND)
    assert segment.applied
    assert segment.user_ids == frozenset()


@pytest.mark.asyncio
async def test_and_stops_resolving_once_empty(session, five_users, executed_statements):
    nobody = f("users.language", "eq", "de")

    segment = await resolve_segment(
        session, [nobody, LANGUAGE_FILTER, RECENT_ENTRY_FILTER], SegmentLogic.AND
    )

    assert segment.user_ids == frozenset()
    assert len(executed_statements) == 1


@pytest.mark.asyncio
async def test_operator_semantics(session, five_users):
    resolver = SegmentFieldResolver(session)

    assert await resolver.resolve(f("users.language", "neq", "uz")) == {2, 3, 5}
    assert await resolver.resolve(f("users.language", "not_in", ["uz", "ru"])) == {3}
    assert await resolver.resolve(f("users.language", "in", "en")) == {3}
    assert await resolver.resolve(f("users.is_premium", "eq", "true")) == {1, 5}
    assert await resolver.resolve(f("transactions.amount", "gt", 100)) == {1, 4}
    assert await resolver.resolve(f("transactions.amount", "lte", "40")) == {2, 3}
    assert await resolver.resolve(f("transactions.amount", "between", [40, 120])) == {1, 2}
    assert await resolver.resolve(f("transactions.amount", "between", [None, 40])) == {2, 3}
    assert await resolver.resolve(f("transactions.amount", "between", [200])) == {4}
    assert await resolver.resolve(f("users.created_at", "after", ago(25).isoformat())) == {4, 5}
    assert await resolver.resolve(f("users.created_at", "before", ago(25).isoformat())) == {1, 2, 3}
    assert await resolver.resolve(f("users.default_currency", "is_null", "ignored")) == {1, 2, 3, 4, 5}
    assert await resolver.resolve(f("users.default_currency", "not_null")) == set()


@pytest.mark.asyncio
async def test_unsupported_operator_or_value_matches_nobody(session, five_users):
    resolver = SegmentFieldResolver(session)

    # ordering operators are not defined for booleans, within_days only for timestamps
    assert await resolver.resolve(f("users.is_premium", "gt", True)) == set()
    assert await resolver.resolve(f("users.language", "within_days", 3)) == set()
    assert await resolver.resolve(f("transactions.amount", "eq", "lots")) == set()
    assert await resolver.resolve(f("transactions.amount", "between", "1-5")) == set()
    assert await resolver.resolve(f("transactions.amount", "between", [None, None])) == set()


def test_within_days_defaults_to_zero_for_invalid_values():
    now = datetime(2025, 5, 10, 12, tzinfo=timezone.utc)
    assert days_ago("abc", now) == now
    assert days_ago(None, now) == now
    assert days_ago(-4, now) == now
    assert days_ago("7", now) == now - timedelta(days=7)
    assert days_ago("inf", now) == now
    assert days_ago(float("nan"), now) == now
    assert days_ago(1e400, now) == now
    # Far past the calendar: capped at the first representable day
    assert days_ago(1000000, now).year == 1
    assert days_ago(10 ** 30, now).year == 1


@pytest.mark.asyncio
async def test_within_days_out_of_range_values_still_resolve(session, five_users):
    resolver = SegmentFieldResolver(session)

    assert await resolver.resolve(f("users.created_at", "within_days", 1000000)) == {1, 2, 3, 4, 5}
    assert await resolver.resolve(f("users.created_at", "within_days", "inf")) == set()
    assert await resolver.resolve(f("users.created_at", "within_days", 1e400)) == set()


@pytest.mark.asyncio
async def test_derived_fields_complement_when_false(session, five_users, seed):
    await seed(
        UserSubscription(user_id=1, status="active", created_at=ago(30)),
        UserSubscription(user_id=2, status="cancelled", created_at=ago(30)),
        UserCard(user_id=3, is_active=True),
        UserCard(user_id=4, is_active=False),
    )
    resolver = SegmentFieldResolver(session)

    assert await resolver.resolve(f("derived.has_active_subscription", "eq", True)) == {1}
    assert await resolver.resolve(f("derived.has_active_subscription", "eq", False)) == {2, 3, 4, 5}
    assert await resolver.resolve(f("derived.has_cards", "eq", True)) == {3}
    assert await resolver.resolve(f("derived.has_cards", "neq", True)) == {1, 2, 4, 5}
    assert await resolver.resolve(f("derived.has_cards", "in", [True])) == set()


@pytest.mark.asyncio
async def test_events_with_only_telegram_id_are_mapped_to_users(session, five_users, seed):
    await seed(
        MarketingEvent(user_id=1, event_name="Lead", source="bot", created_at=ago(3)),
        MarketingEvent(user_id=None, telegram_id=1005, event_name="Lead", source="bot", created_at=ago(3)),
        MarketingEvent(user_id=None, telegram_id=999999, event_name="Lead", source="bot", created_at=ago(3)),
        MarketingEvent(user_id=2, event_name="Purchase", source="bot", created_at=ago(3)),
        InputUsage(telegram_id=1003, period_key="2025-05"),
        InputUsage(telegram_id=1004, period_key="2025-04"),
    )
    resolver = SegmentFieldResolver(session)

    assert await resolver.resolve(f("marketing_events.event_name", "eq", "Lead")) == {1, 5}
    assert await resolver.resolve(f("input_usage.period_key", "eq", "2025-05")) == {3}
    # input_usage only supports equality and membership
    assert await resolver.resolve(f("input_usage.period_key", "gt", "2025-01")) == set()


def test_intersect():
    assert intersect({1, 2, 3}, {2, 3, 4, 5}) == {2, 3}
    assert intersect(set(), {1}) == set()


@pytest.mark.asyncio
async def test_preview_returns_count_and_small_sample(session, five_users):
    result = await preview_segment(session, [LANGUAGE_FILTER], SegmentLogic.AND, sample_size=2)

    assert result["segment_applied"]
    assert result["count"] == 4
    assert result["user_ids"] == [1, 2, 4, 5]
    assert [u["id"] for u in result["sample"]] == [1, 2]
    assert result["sample"][0] == {"id": 1, "username": "ali", "display_name": None, "language": "uz"}
