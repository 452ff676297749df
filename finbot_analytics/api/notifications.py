from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession
from finbot_analytics.core.config import settings
from finbot_analytics.core.database import get_db
from finbot_analytics.core.security import require_api_key
from finbot_analytics.schemas.segment import (
    BroadcastRequest,
    BroadcastResponse,
    FilterMetadataResponse,
    SegmentPreviewRequest,
    SegmentPreviewResponse,
)
from finbot_analytics.services.segments import filter_metadata, preview_segment, resolve_segment
from finbot_analytics.services.dispatch import (
    BotDispatchError,
    BroadcastDispatcher,
    build_broadcast_job,
    notification_queue,
)
import structlog

logger = structlog.get_logger()
router = APIRouter(prefix="/notifications", tags=["notifications"], dependencies=[Depends(require_api_key)])


@router.get("/filters", response_model=FilterMetadataResponse)
async def get_filters(db: AsyncSession = Depends(get_db)):
    """Supported segment fields, operators per field type and pick-list options"""
    try:
        return await filter_metadata(db)
    except Exception as e:
        logger.error("filters_meta_failed", error=str(e))
        raise HTTPException(status_code=500, detail="Failed to load filter metadata")


@router.post("/preview", response_model=SegmentPreviewResponse)
async def preview(request: SegmentPreviewRequest, db: AsyncSession = Depends(get_db)):
    """
    Preview the audience matching a filter list.

    - **filters**: ordered filters; an empty list means no explicit segment
    - **logic**: `and` (intersection) or `or` (union)
    """
    try:
        result = await preview_segment(
            db,
            request.filters,
            request.logic,
            request.sample_size or settings.preview_sample_size
        )
    except Exception as e:
        logger.error("segment_preview_failed", error=str(e))
        raise HTTPException(status_code=500, detail="Failed to preview segment")

    return SegmentPreviewResponse(
        segment_applied=result["segment_applied"],
        count=result["count"],
        sample=result["sample"]
    )


@router.post("/broadcast", response_model=BroadcastResponse, status_code=status.HTTP_202_ACCEPTED)
async def broadcast(request: BroadcastRequest, db: AsyncSession = Depends(get_db)):
    """
    Resolve the audience and hand the broadcast to the bot backend.

    Without filters the bot's default audience is used. An explicit segment
    that matches nobody is rejected.
    """
    try:
        segment = await resolve_segment(db, request.filters, request.logic)
    except Exception as e:
        logger.error("broadcast_segment_failed", error=str(e))
        raise HTTPException(status_code=500, detail="Failed to resolve segment")

    if segment.applied and segment.count == 0:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Segment matches no users"
        )

    job = build_broadcast_job(
        request.text,
        request.parse_mode,
        sorted(segment.user_ids) if segment.applied else None
    )

    try:
        result = await BroadcastDispatcher(notification_queue).dispatch(job)
    except BotDispatchError as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))
    except Exception as e:
        logger.error("broadcast_failed", error=str(e))
        raise HTTPException(status_code=500, detail="Failed to dispatch broadcast")

    queued = result.pop("queued")
    return BroadcastResponse(
        segment_applied=segment.applied,
        recipients=segment.count if segment.applied else None,
        queued=queued,
        detail=result
    )


@router.get("/queue/status")
async def queue_status():
    """Get queue status (only available if queue is enabled)"""
    if not notification_queue:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Queue is not enabled"
        )

    return {
        "queue_size": notification_queue.get_queue_size(),
        "dead_letter_queue_size": notification_queue.get_dlq_size()
    }
