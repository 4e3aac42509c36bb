"""Analytics endpoints.

- GET  /api/v1/analytics/{tenant_id}/daily      → stored daily summaries
- GET  /api/v1/analytics/{tenant_id}/overview   → summaries summed over a range
- POST /api/v1/analytics/{tenant_id}/recompute  → re-run one day's rollup
"""

import logging
from datetime import date, datetime, timedelta

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.schemas.analytics import AnalyticsOverview, DailySummaryOut
from app.services.analytics import get_daily_summaries, get_overview, process_tenant_daily_summary

router = APIRouter()
logger = logging.getLogger(__name__)

DEFAULT_RANGE_DAYS = 30


def _resolve_range(start: date | None, end: date | None) -> tuple[date, date]:
    end = end or datetime.utcnow().date()
    start = start or end - timedelta(days=DEFAULT_RANGE_DAYS - 1)
    if start > end:
        raise HTTPException(status_code=422, detail="start must not be after end")
    return start, end


@router.get("/{tenant_id}/daily", response_model=list[DailySummaryOut])
async def list_daily_summaries(
    tenant_id: str,
    start: date | None = Query(None),
    end: date | None = Query(None),
    db: AsyncSession = Depends(get_db),
):
    """Daily summaries for a tenant, oldest first. Defaults to the last 30 days."""
    start, end = _resolve_range(start, end)
    return await get_daily_summaries(db, tenant_id, start, end)


@router.get("/{tenant_id}/overview", response_model=AnalyticsOverview)
async def analytics_overview(
    tenant_id: str,
    start: date | None = Query(None),
    end: date | None = Query(None),
    db: AsyncSession = Depends(get_db),
):
    start, end = _resolve_range(start, end)
    return await get_overview(db, tenant_id, start, end)


@router.post("/{tenant_id}/recompute", response_model=DailySummaryOut)
async def recompute_daily_summary(
    tenant_id: str,
    day: date = Query(...),
    db: AsyncSession = Depends(get_db),
):
    """Recompute one day's summary. Safe to repeat: the row is overwritten, not duplicated."""
    logger.info("Recomputing daily summary for tenant %s on %s", tenant_id, day)
    values = await process_tenant_daily_summary(db, tenant_id, day)
    return DailySummaryOut(**values)
