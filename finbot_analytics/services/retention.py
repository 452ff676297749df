from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional, Sequence, Tuple
from finbot_analytics.schemas.cohort import ActiveDefinition, Bucket
from finbot_analytics.services.activity import ActivityIndex
from finbot_analytics.services.cohorts import Cohort
from finbot_analytics.services.periods import add_periods, window_label, ORIGIN_WINDOW


@dataclass
class RetentionRow:
    cohort_key: str
    cohort_date: datetime
    cohort_size: int
    windows: Dict[str, float]
    absolute: Dict[str, int]
    users: Tuple[int, ...] = ()


def _any_within(timestamps: Sequence[datetime], start: datetime, end: datetime) -> bool:
    return any(start <= ts < end for ts in timestamps)


def is_active(
        user_id: int,
        start: datetime,
        end: datetime,
        activity: ActivityIndex,
        definition: ActiveDefinition
) -> bool:
    """Evaluate the activity predicate for one user over [start, end)"""
    has_entries = _any_within(activity.transactions.get(user_id, ()), start, end)
    has_miniapp = _any_within(activity.app_opens.get(user_id, ()), start, end)

    if definition is ActiveDefinition.ENTRIES_ONLY:
        return has_entries
    if definition is ActiveDefinition.MINIAPP_ONLY:
        return has_miniapp
    if definition is ActiveDefinition.ENTRIES_OR_MINIAPP:
        return has_entries or has_miniapp
    return has_entries and has_miniapp


def calculate_retention(
        cohorts: Sequence[Cohort],
        activity: ActivityIndex,
        windows: int,
        bucket: Bucket,
        definition: ActiveDefinition
) -> List[RetentionRow]:
    """
    Compute one retention row per cohort from the pre-loaded activity index.

    Window 0 is the cohort's own period and is 100% by definition. Window w
    covers [period_start + w, period_start + w + 1) buckets.
    """
    rows = []
    for cohort in cohorts:
        size = cohort.size
        fractions = {ORIGIN_WINDOW: 1.0}
        counts = {ORIGIN_WINDOW: size}

        for w in range(1, windows + 1):
            start = add_periods(cohort.period_start, w, bucket)
            end = add_periods(cohort.period_start, w + 1, bucket)
            active = sum(
                1 for user_id in cohort.member_ids
                if is_active(user_id, start, end, activity, definition)
            )
            label = window_label(w, bucket)
            fractions[label] = active / size if size > 0 else 0.0
            counts[label] = active

        rows.append(RetentionRow(
            cohort_key=cohort.key,
            cohort_date=cohort.period_start,
            cohort_size=size,
            windows=fractions,
            absolute=counts,
            users=cohort.member_ids
        ))

    return rows


def summarize(
        rows: Sequence[RetentionRow],
        windows: int,
        bucket: Bucket
) -> Tuple[Dict[str, float], Optional[str]]:
    """Average retention per window across cohorts, and the best cohort's key"""
    averages = {ORIGIN_WINDOW: 1.0}
    for w in range(1, windows + 1):
        label = window_label(w, bucket)
        values = [row.windows.get(label, 0.0) for row in rows]
        averages[label] = sum(values) / len(values) if values else 0.0

    best_key = None
    best_mean: Optional[float] = None
    for row in rows:
        measured = [value for label, value in row.windows.items() if label != ORIGIN_WINDOW]
        mean = sum(measured) / len(measured) if measured else 0.0
        # Strict comparison: the earliest cohort keeps a tie
        if best_mean is None or mean > best_mean:
            best_mean = mean
            best_key = row.cohort_key

    return averages, best_key
