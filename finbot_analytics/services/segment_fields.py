"""
Resolve a single audience filter into the set of matching user ids.

Each supported `table.column` field has a value type. The operator is
applied through a dispatch table keyed by (value type, operator); any
field, operator or value that cannot be resolved matches nobody.
"""
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Set, Tuple, Union
from pydantic import TypeAdapter, ValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from finbot_analytics.models.user import User, UserCard, UserNotification
from finbot_analytics.models.finance import Transaction, Budget
from finbot_analytics.models.billing import UserSubscription
from finbot_analytics.models.events import MarketingEvent, UsageEvent, InputUsage
from finbot_analytics.schemas.segment import SegmentFilter, SegmentOperator as Op
import structlog

logger = structlog.get_logger()

STRING = "string"
NUMBER = "number"
TIMESTAMP = "timestamp"
BOOLEAN = "boolean"

OPERATORS_BY_TYPE: Dict[str, Tuple[Op, ...]] = {
    STRING: (Op.EQ, Op.NEQ, Op.IN, Op.NOT_IN, Op.GT, Op.GTE, Op.LT, Op.LTE, Op.IS_NULL, Op.NOT_NULL),
    NUMBER: (Op.EQ, Op.NEQ, Op.GT, Op.GTE, Op.LT, Op.LTE, Op.BETWEEN, Op.IN, Op.NOT_IN,
             Op.IS_NULL, Op.NOT_NULL),
    TIMESTAMP: (Op.BEFORE, Op.AFTER, Op.GT, Op.GTE, Op.LT, Op.LTE, Op.BETWEEN, Op.WITHIN_DAYS,
                Op.IS_NULL, Op.NOT_NULL),
    BOOLEAN: (Op.EQ, Op.NEQ, Op.IS_NULL, Op.NOT_NULL),
}


@dataclass(frozen=True)
class FieldSpec:
    group: str
    field: str
    label: str
    type: str
    operators: Optional[Tuple[Op, ...]] = None

    @property
    def table(self) -> str:
        return self.field.split(".", 1)[0]

    @property
    def column(self) -> str:
        return self.field.split(".", 1)[1]

    @property
    def allowed_operators(self) -> Tuple[Op, ...]:
        return self.operators or OPERATORS_BY_TYPE[self.type]


SUPPORTED_FIELDS: List[FieldSpec] = [
    FieldSpec("Users", "users.language", "User Language", STRING),
    FieldSpec("Users", "users.default_currency", "User Default Currency", STRING),
    FieldSpec("Users", "users.created_at", "User Created At", TIMESTAMP),
    FieldSpec("Users", "users.is_premium", "User Is Premium", BOOLEAN),
    FieldSpec("Users", "users.onboarding_stage", "Onboarding Stage", STRING),
    FieldSpec("Users", "users.timezone", "User Timezone", STRING),
    FieldSpec("Users", "users.terms_accepted_at", "Terms Accepted At", TIMESTAMP),
    FieldSpec("Users", "users.privacy_accepted_at", "Privacy Accepted At", TIMESTAMP),
    FieldSpec("Users", "users.is_blocked", "User Is Blocked", BOOLEAN),

    FieldSpec("Transactions", "transactions.type", "Transaction Type", STRING),
    FieldSpec("Transactions", "transactions.currency", "Transaction Currency", STRING),
    FieldSpec("Transactions", "transactions.source", "Transaction Source", STRING),
    FieldSpec("Transactions", "transactions.date", "Transaction Date", TIMESTAMP),
    FieldSpec("Transactions", "transactions.amount", "Transaction Amount", NUMBER),
    FieldSpec("Transactions", "transactions.category_id", "Transaction Category", NUMBER),

    FieldSpec("Subscriptions", "user_subscriptions.status", "Subscription Status", STRING),
    FieldSpec("Subscriptions", "user_subscriptions.plan_type", "Subscription Plan Type", STRING),
    FieldSpec("Subscriptions", "user_subscriptions.next_payment_date", "Next Payment Date", TIMESTAMP),
    FieldSpec("Subscriptions", "user_subscriptions.cancelled_at", "Subscription Cancelled At", TIMESTAMP),

    FieldSpec("Cards", "user_cards.is_active", "Card Is Active", BOOLEAN),

    FieldSpec("Marketing", "marketing_events.event_name", "Event Name", STRING),
    FieldSpec("Marketing", "marketing_events.event_time", "Event Time", TIMESTAMP),
    FieldSpec("Marketing", "marketing_events.action_source", "Action Source", STRING),
    FieldSpec("Marketing", "marketing_events.source", "Source", STRING),

    FieldSpec("Usage", "usage_events.feature", "Usage Feature", STRING),
    FieldSpec("Usage", "usage_events.created_at", "Usage Created At", TIMESTAMP),
    FieldSpec("Usage", "input_usage.period_key", "Input Usage Period Key", STRING,
              operators=(Op.EQ, Op.NEQ, Op.IN, Op.NOT_IN)),

    FieldSpec("Budgets", "budgets.category_id", "Budget Category", NUMBER),
    FieldSpec("Budgets", "budgets.currency", "Budget Currency", STRING),
    FieldSpec("Budgets", "budgets.start_date", "Budget Start Date", TIMESTAMP),
    FieldSpec("Budgets", "budgets.end_date", "Budget End Date", TIMESTAMP),

    FieldSpec("Notifications", "user_notifications.code", "Notification Code", STRING),
    FieldSpec("Notifications", "user_notifications.sent_at", "Notification Sent At", TIMESTAMP),

    FieldSpec("Derived", "derived.has_active_subscription", "Has Active Subscription", BOOLEAN,
              operators=(Op.EQ, Op.NEQ)),
    FieldSpec("Derived", "derived.has_cards", "Has Cards", BOOLEAN,
              operators=(Op.EQ, Op.NEQ)),
]

FIELD_REGISTRY: Dict[str, FieldSpec] = {spec.field: spec for spec in SUPPORTED_FIELDS}


@dataclass(frozen=True)
class TableSource:
    """How rows of a table lead back to users"""
    model: Any
    user_column: Optional[str]
    telegram_column: Optional[str] = None


TABLE_SOURCES: Dict[str, TableSource] = {
    "users": TableSource(User, "id"),
    "transactions": TableSource(Transaction, "user_id"),
    "user_subscriptions": TableSource(UserSubscription, "user_id"),
    "user_cards": TableSource(UserCard, "user_id"),
    "budgets": TableSource(Budget, "user_id"),
    "user_notifications": TableSource(UserNotification, "user_id"),
    "marketing_events": TableSource(MarketingEvent, "user_id", "telegram_id"),
    "usage_events": TableSource(UsageEvent, "user_id", "telegram_id"),
    "input_usage": TableSource(InputUsage, None, "telegram_id"),
}

# Boolean pseudo-fields: resolved through a concrete filter, complemented when false
DERIVED_FIELDS: Dict[str, SegmentFilter] = {
    "derived.has_active_subscription": SegmentFilter(
        field="user_subscriptions.status", op=Op.EQ, value="active"
    ),
    "derived.has_cards": SegmentFilter(
        field="user_cards.is_active", op=Op.EQ, value=True
    ),
}


class UnresolvableFilter(ValueError):
    """Raised internally when a filter cannot be turned into a query"""


# ---------------------------------------------------------------------------
# Value coercion
# ---------------------------------------------------------------------------

_STR = TypeAdapter(str)
_NUMBER = TypeAdapter(Union[int, float])
_BOOL = TypeAdapter(bool)
_DATETIME = TypeAdapter(datetime)
_DATE = TypeAdapter(date)


def _to_timestamp(value: Any) -> datetime:
    try:
        ts = _DATETIME.validate_python(value)
    except ValidationError:
        day = _DATE.validate_python(value)
        ts = datetime(day.year, day.month, day.day)
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


COERCERS: Dict[str, Callable[[Any], Any]] = {
    STRING: _STR.validate_python,
    NUMBER: _NUMBER.validate_python,
    TIMESTAMP: _to_timestamp,
    BOOLEAN: _BOOL.validate_python,
}


def coerce(value_type: str, value: Any) -> Any:
    if value is None:
        raise UnresolvableFilter("missing value")
    try:
        return COERCERS[value_type](value)
    except ValidationError as e:
        raise UnresolvableFilter(str(e)) from e


def coerce_list(value_type: str, value: Any) -> List[Any]:
    values = value if isinstance(value, (list, tuple, set)) else [value]
    return [coerce(value_type, v) for v in values]


def coerce_bounds(value_type: str, value: Any) -> Tuple[Any, Any]:
    if not isinstance(value, (list, tuple)) or not 1 <= len(value) <= 2:
        raise UnresolvableFilter("between expects [low, high]")
    low = value[0]
    high = value[1] if len(value) == 2 else None
    if low is None and high is None:
        raise UnresolvableFilter("between needs at least one bound")
    return (
        coerce(value_type, low) if low is not None else None,
        coerce(value_type, high) if high is not None else None,
    )


EARLIEST = datetime.min.replace(tzinfo=timezone.utc)


def days_ago(value: Any, now: Optional[datetime] = None) -> datetime:
    """
    now - N days, with N = 0 when the value is not a usable number.

    N is capped so the result never goes before the first representable day.
    """
    now = now or datetime.now(timezone.utc)
    try:
        days = max(0, int(float(value)))
    except (TypeError, ValueError, OverflowError):
        days = 0
    return now - timedelta(days=min(days, (now - EARLIEST).days))


# ---------------------------------------------------------------------------
# Operator dispatch
# ---------------------------------------------------------------------------

def _between(column, value_type, value):
    low, high = coerce_bounds(value_type, value)
    clauses = []
    if low is not None:
        clauses.append(column >= low)
    if high is not None:
        clauses.append(column <= high)
    return clauses


def _scalar(compare):
    return lambda column, value_type, value: [compare(column, coerce(value_type, value))]


_OPERATOR_CLAUSES = {
    Op.EQ: _scalar(lambda c, v: c == v),
    Op.NEQ: _scalar(lambda c, v: c != v),
    Op.GT: _scalar(lambda c, v: c > v),
    Op.GTE: _scalar(lambda c, v: c >= v),
    Op.LT: _scalar(lambda c, v: c < v),
    Op.LTE: _scalar(lambda c, v: c <= v),
    Op.BEFORE: _scalar(lambda c, v: c < v),
    Op.AFTER: _scalar(lambda c, v: c > v),
    Op.IN: lambda c, t, v: [c.in_(coerce_list(t, v))],
    Op.NOT_IN: lambda c, t, v: [c.not_in(coerce_list(t, v))],
    Op.BETWEEN: _between,
    Op.WITHIN_DAYS: lambda c, t, v: [c >= days_ago(v)],
    Op.IS_NULL: lambda c, t, v: [c.is_(None)],
    Op.NOT_NULL: lambda c, t, v: [c.is_not(None)],
}

# Built once: only (type, operator) pairs listed in OPERATORS_BY_TYPE dispatch
DISPATCH: Dict[Tuple[str, Op], Callable] = {
    (value_type, op): _OPERATOR_CLAUSES[op]
    for value_type, ops in OPERATORS_BY_TYPE.items()
    for op in ops
}


def build_clauses(spec: FieldSpec, column, op: Op, value: Any) -> list:
    if op not in spec.allowed_operators:
        raise UnresolvableFilter(f"operator {op.value} not supported for {spec.field}")
    handler = DISPATCH.get((spec.type, op))
    if handler is None:
        raise UnresolvableFilter(f"operator {op.value} not supported for type {spec.type}")
    return handler(column, spec.type, value)


class SegmentFieldResolver:
    """Resolves filters against the store through one request-scoped session"""

    TELEGRAM_LOOKUP_CHUNK = 1000

    def __init__(self, db: AsyncSession):
        self.db = db

    async def resolve(self, segment_filter: SegmentFilter) -> Set[int]:
        """Return ids of all users matching the filter; unresolvable filters match nobody"""
        spec = FIELD_REGISTRY.get(segment_filter.field)
        if spec is None:
            logger.warning("segment_filter_unsupported", field=segment_filter.field,
                           reason="unknown field")
            return set()

        try:
            if spec.table == "derived":
                user_ids = await self._resolve_derived(spec, segment_filter)
            else:
                user_ids = await self._resolve_concrete(spec, segment_filter)
        except UnresolvableFilter as e:
            logger.warning("segment_filter_unsupported", field=spec.field,
                           op=segment_filter.op.value, reason=str(e))
            return set()

        logger.info("segment_filter_resolved", field=spec.field,
                    op=segment_filter.op.value, users=len(user_ids))
        return user_ids

    async def all_user_ids(self) -> Set[int]:
        result = await self.db.execute(select(User.id))
        return set(result.scalars().all())

    async def _resolve_concrete(self, spec: FieldSpec, segment_filter: SegmentFilter) -> Set[int]:
        source = TABLE_SOURCES[spec.table]
        column = getattr(source.model, spec.column)
        clauses = build_clauses(spec, column, segment_filter.op, segment_filter.value)

        selected = []
        if source.user_column:
            selected.append(getattr(source.model, source.user_column))
        if source.telegram_column:
            selected.append(getattr(source.model, source.telegram_column))

        result = await self.db.execute(select(*selected).where(*clauses))
        rows = result.all()

        if not source.telegram_column:
            return {row[0] for row in rows if row[0] is not None}

        user_ids: Set[int] = set()
        telegram_ids: Set[int] = set()
        for row in rows:
            user_id = row[0] if source.user_column else None
            telegram_id = row[-1]
            if user_id is not None:
                user_ids.add(user_id)
            elif telegram_id is not None:
                telegram_ids.add(telegram_id)

        if telegram_ids:
            user_ids |= await self._map_telegram_ids(telegram_ids)
        return user_ids

    async def _resolve_derived(self, spec: FieldSpec, segment_filter: SegmentFilter) -> Set[int]:
        if segment_filter.op not in spec.allowed_operators:
            raise UnresolvableFilter(f"operator {segment_filter.op.value} not supported for {spec.field}")
        wanted = coerce(BOOLEAN, segment_filter.value)
        if segment_filter.op is Op.NEQ:
            wanted = not wanted

        underlying = DERIVED_FIELDS[spec.field]
        user_ids = await self._resolve_concrete(FIELD_REGISTRY[underlying.field], underlying)
        if wanted:
            return user_ids
        return await self.all_user_ids() - user_ids

    async def _map_telegram_ids(self, telegram_ids: Set[int]) -> Set[int]:
        """Second lookup step for rows that only carry a Telegram chat id"""
        ids = sorted(telegram_ids)
        user_ids: Set[int] = set()
        for i in range(0, len(ids), self.TELEGRAM_LOOKUP_CHUNK):
            chunk = ids[i:i + self.TELEGRAM_LOOKUP_CHUNK]
            result = await self.db.execute(select(User.id).where(User.telegram_id.in_(chunk)))
            user_ids.update(result.scalars().all())
        return user_ids
