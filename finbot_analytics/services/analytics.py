from dataclasses import dataclass, field
from typing import Dict, List, Optional
from zoneinfo import ZoneInfo
from sqlalchemy.ext.asyncio import AsyncSession
from finbot_analytics.schemas.cohort import CohortQueryParams
from finbot_analytics.services.anchors import resolve_anchors, restrict_to_range
from finbot_analytics.services.cohorts import build_cohorts
from finbot_analytics.services.activity import fetch_activity
from finbot_analytics.services.periods import add_periods
from finbot_analytics.services.retention import RetentionRow, calculate_retention, summarize
import structlog

logger = structlog.get_logger()


@dataclass
class RetentionReport:
    rows: List[RetentionRow] = field(default_factory=list)
    total_user_count: int = 0
    per_window_average: Dict[str, float] = field(default_factory=dict)
    best_cohort_key: Optional[str] = None

    @property
    def no_data(self) -> bool:
        return not self.rows


class CohortAnalyticsService:
    """Cohort retention over a request-scoped database session"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_cohort_retention(self, params: CohortQueryParams) -> RetentionReport:
        """
        Anchor users, bucket them into cohorts and measure retention per window.

        Activity for all cohorts is fetched in one pass before any window is
        evaluated.
        """
        tz = ZoneInfo(params.timezone)

        anchors = await resolve_anchors(self.db, params.anchor, tz)
        anchors = restrict_to_range(anchors, params.start_date, params.end_date)

        cohorts = build_cohorts(anchors, params.bucket, params.limit)
        if not cohorts:
            logger.info("cohort_retention_no_data", anchor=params.anchor.value)
            return RetentionReport()

        range_start = cohorts[0].period_start
        range_end = add_periods(cohorts[-1].period_start, params.windows + 1, params.bucket)
        member_ids = {user_id for cohort in cohorts for user_id in cohort.member_ids}

        activity = await fetch_activity(
            self.db,
            member_ids,
            range_start,
            range_end,
            params.active_definition,
            tz
        )

        rows = calculate_retention(
            cohorts,
            activity,
            params.windows,
            params.bucket,
            params.active_definition
        )
        averages, best_key = summarize(rows, params.windows, params.bucket)

        report = RetentionReport(
            rows=rows,
            total_user_count=sum(row.cohort_size for row in rows),
            per_window_average=averages,
            best_cohort_key=best_key
        )

        logger.info(
            "cohort_retention_computed",
            anchor=params.anchor.value,
            active_definition=params.active_definition.value,
            bucket=params.bucket.value,
            windows=params.windows,
            cohorts=len(rows),
            users=report.total_user_count
        )
        return report
