"""
Feed operations API routes.

Operator controls for the refresh scheduler and the cache.
"""
import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from propfeed.api.deps import get_container, get_scheduler
from propfeed.core.container import ServiceContainer
from propfeed.core.errors import CacheError, InvalidScheduleError
from propfeed.core.scheduler_service import IngestionScheduler

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/feed", tags=["Feed"])


class ScheduleUpdateRequest(BaseModel):
    """Request model for changing the refresh schedule."""

    cron_expression: str = Field(
        ..., description="Five-field cron expression, e.g. '0 6 * * *'"
    )


@router.get("/status")
async def get_feed_status(scheduler: IngestionScheduler = Depends(get_scheduler)):
    """Scheduler state, last outcome and next fire time."""
    return scheduler.get_status()


@router.post("/refresh")
async def refresh_feed(scheduler: IngestionScheduler = Depends(get_scheduler)) -> Dict[str, Any]:
    """
    Run a refresh cycle now.

    Follows the same guard as the timer: while a cycle is running the
    request is skipped, not queued.
    """
    outcome = await scheduler.refresh_now()
    if outcome is None:
        return {"status": "skipped", "reason": "refresh already running"}
    return {"status": "completed" if outcome.success else "failed", "outcome": outcome.to_dict()}


@router.put("/schedule")
async def update_schedule(
    request: ScheduleUpdateRequest,
    scheduler: IngestionScheduler = Depends(get_scheduler),
):
    """Replace the cron schedule. Invalid expressions leave the current one in place."""
    try:
        scheduler.update_schedule(request.cron_expression)
    except InvalidScheduleError as e:
        raise HTTPException(status_code=422, detail=e.message)
    return scheduler.get_status()


@router.get("/cache/stats")
async def get_cache_stats(container: ServiceContainer = Depends(get_container)):
    """Per-namespace cache statistics."""
    return {
        "namespaces": container.cache.get_stats(),
        "coalescer": container.coalescer.get_stats(),
    }


@router.post("/cache/{namespace}/flush")
async def flush_cache_namespace(
    namespace: str,
    container: ServiceContainer = Depends(get_container),
):
    """Remove every entry of one cache namespace."""
    try:
        removed = container.cache.flush(namespace)
    except CacheError as e:
        raise HTTPException(status_code=404, detail=e.message)
    return {"namespace": namespace, "removed": removed}
