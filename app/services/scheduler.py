"""
Background sync scheduler.

Three interval jobs on an AsyncIOScheduler, owned by a SyncScheduler
instance that the FastAPI lifespan starts and stops:

- appointment_sync: first run 2 minutes after start, then every 30 minutes
- sentiment_analysis: every 15 minutes
- daily_rollups: first run at the next full hour, then hourly

Each run gets its own database engine (see job_session_factory) and every
job body is wrapped so an exception is logged and the scheduler keeps
firing. Single-process deployment is assumed; the jobs are idempotent
upserts, so a second instance would duplicate work but not corrupt data.
"""

import logging
from contextlib import AbstractAsyncContextManager
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.ext.asyncio import async_sessionmaker

from app.core.database import job_session_factory
from app.services.analytics import AnalyticsService
from app.services.appointment_sync import sync_appointments_for_all_tenants

logger = logging.getLogger(__name__)

APPOINTMENT_SYNC_WARMUP = timedelta(minutes=2)
APPOINTMENT_SYNC_INTERVAL = timedelta(minutes=30)
SENTIMENT_INTERVAL = timedelta(minutes=15)
ROLLUP_INTERVAL = timedelta(hours=1)

SessionFactoryProvider = Callable[[], AbstractAsyncContextManager[async_sessionmaker]]


def next_hour_boundary(now: datetime) -> datetime:
    """The next full hour strictly after `now` (10:00:00 -> 11:00:00)."""
    return now.replace(minute=0, second=0, microsecond=0) + timedelta(hours=1)


async def run_appointment_sync(session_factory: async_sessionmaker) -> None:
    await sync_appointments_for_all_tenants(session_factory)


async def run_sentiment_analysis(session_factory: async_sessionmaker) -> None:
    await AnalyticsService(session_factory).process_sentiment_analysis()


async def run_daily_rollups(session_factory: async_sessionmaker) -> None:
    service = AnalyticsService(session_factory)
    await service.process_daily_summaries()
    await service.process_assistant_performance()


class SyncScheduler:
    def __init__(
        self,
        session_factory_provider: SessionFactoryProvider = job_session_factory,
        appointment_job: Callable[[async_sessionmaker], Awaitable[None]] = run_appointment_sync,
        sentiment_job: Callable[[async_sessionmaker], Awaitable[None]] = run_sentiment_analysis,
        rollup_job: Callable[[async_sessionmaker], Awaitable[None]] = run_daily_rollups,
    ):
        self.session_factory_provider = session_factory_provider
        self.appointment_job = appointment_job
        self.sentiment_job = sentiment_job
        self.rollup_job = rollup_job
        self._scheduler: Optional[AsyncIOScheduler] = None

    @property
    def running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    async def _run(self, name: str, job: Callable[[async_sessionmaker], Awaitable[None]]) -> None:
        logger.info("Running scheduled job %s", name)
        try:
            async with self.session_factory_provider() as session_factory:
                await job(session_factory)
        except Exception:
            logger.exception("Scheduled job %s failed", name)
        else:
            logger.info("Scheduled job %s finished", name)

    async def run_appointment_sync(self) -> None:
        await self._run("appointment_sync", self.appointment_job)

    async def run_sentiment_analysis(self) -> None:
        await self._run("sentiment_analysis", self.sentiment_job)

    async def run_daily_rollups(self) -> None:
        await self._run("daily_rollups", self.rollup_job)

    def build(self, now: Optional[datetime] = None) -> AsyncIOScheduler:
        """Create the underlying scheduler with all jobs registered (not started)."""
        now = now or datetime.now(timezone.utc)
        scheduler = AsyncIOScheduler(
            timezone=timezone.utc,
            job_defaults={"coalesce": True, "max_instances": 1},
        )
        scheduler.add_job(
            self.run_appointment_sync,
            IntervalTrigger(
                seconds=int(APPOINTMENT_SYNC_INTERVAL.total_seconds()),
                start_date=now + APPOINTMENT_SYNC_WARMUP,
                timezone=timezone.utc,
            ),
            id="appointment_sync",
            name="Calendar appointment sync",
            replace_existing=True,
        )
        scheduler.add_job(
            self.run_sentiment_analysis,
            IntervalTrigger(
                seconds=int(SENTIMENT_INTERVAL.total_seconds()),
                start_date=now + SENTIMENT_INTERVAL,
                timezone=timezone.utc,
            ),
            id="sentiment_analysis",
            name="Call sentiment analysis",
            replace_existing=True,
        )
        scheduler.add_job(
            self.run_daily_rollups,
            IntervalTrigger(
                seconds=int(ROLLUP_INTERVAL.total_seconds()),
                start_date=next_hour_boundary(now),
                timezone=timezone.utc,
            ),
            id="daily_rollups",
            name="Daily summary and assistant performance rollups",
            replace_existing=True,
        )
        return scheduler

    def start(self) -> None:
        """Register and start the jobs. Must be called with a running event loop."""
        if self.running:
            return
        self._scheduler = self.build()
        self._scheduler.start()
        logger.info("Background scheduler started with %d jobs", len(self._scheduler.get_jobs()))

    def stop(self) -> None:
        if self._scheduler is None:
            return
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
        self._scheduler = None
        logger.info("Background scheduler stopped")
