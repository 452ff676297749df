# GET /analytics/*

from datetime import date
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession
from finbot_analytics.core.config import settings
from finbot_analytics.core.database import get_db
from finbot_analytics.core.security import require_api_key
from finbot_analytics.schemas.cohort import (
    AnchorType,
    ActiveDefinition,
    Bucket,
    CohortQueryParams,
    CohortRetentionResponse,
)
from finbot_analytics.services.analytics import CohortAnalyticsService
import structlog

logger = structlog.get_logger()
router = APIRouter(prefix="/analytics", tags=["analytics"], dependencies=[Depends(require_api_key)])


@router.get("/cohorts", response_model=CohortRetentionResponse)
async def get_cohort_retention(
        anchor: AnchorType = Query(default=AnchorType.ACTIVATION, description="Cohort entry event"),
        active_definition: ActiveDefinition = Query(
            default=ActiveDefinition.ENTRIES_OR_MINIAPP, description="What counts as active"
        ),
        bucket: Bucket = Query(default=Bucket.WEEKLY, description="Cohort and window granularity"),
        windows: int = Query(default=12, ge=1, le=52, description="Number of windows after W0"),
        limit: Optional[int] = Query(default=None, ge=1, le=104, description="Keep the most recent N cohorts"),
        start_date: Optional[date] = Query(default=None, description="Earliest anchor date (YYYY-MM-DD)"),
        end_date: Optional[date] = Query(default=None, description="Latest anchor date (YYYY-MM-DD)"),
        timezone: Optional[str] = Query(default=None, description="IANA timezone for bucketing"),
        include_users: bool = Query(default=False, description="Include member ids per cohort"),
        db: AsyncSession = Depends(get_db)
):
    """
    Calculate cohort retention.

    - **anchor**: acquisition, activation, billing or trial
    - **active_definition**: entries_only, miniapp_only, entries_or_miniapp, entries_and_miniapp
    - **bucket**: daily, weekly or monthly
    - **windows**: number of periods tracked after the cohort period (max 52)
    """
    try:
        params = CohortQueryParams(
            anchor=anchor,
            active_definition=active_definition,
            bucket=bucket,
            windows=windows,
            limit=limit,
            start_date=start_date,
            end_date=end_date,
            timezone=timezone or settings.default_timezone,
            include_users=include_users
        )
    except ValidationError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=[err["msg"] for err in e.errors()]
        )

    try:
        service = CohortAnalyticsService(db)
        report = await service.get_cohort_retention(params)
    except Exception as e:
        logger.error("cohort_retention_failed", error=str(e))
        raise HTTPException(status_code=500, detail="Failed to calculate cohort retention")

    return {
        "ok": True,
        "no_data": report.no_data,
        "rows": [
            {
                "cohort_key": row.cohort_key,
                "cohort_date": row.cohort_date,
                "cohort_size": row.cohort_size,
                "windows": row.windows,
                "absolute": row.absolute,
                "users": list(row.users) if params.include_users else None,
            }
            for row in report.rows
        ],
        "total_user_count": report.total_user_count,
        "per_window_average": report.per_window_average,
        "best_cohort_key": report.best_cohort_key,
    }
