import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.v1.router import api_router
from app.core.config import settings
from app.core.logging import setup_logging
from app.services.scheduler import SyncScheduler

setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    scheduler = SyncScheduler()
    if settings.SCHEDULER_ENABLED:
        scheduler.start()
    else:
        logger.info("Background scheduler disabled (SCHEDULER_ENABLED=false)")
    app.state.scheduler = scheduler
    yield
    scheduler.stop()


app = FastAPI(
    title="Voice Dashboard API",
    description="Knowledge base and analytics pipelines for multi-tenant voice assistants",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router, prefix="/api/v1")


@app.get("/health")
async def health():
    return {"status": "ok", "service": "voice-dashboard-api", "version": "0.1.0", "env": settings.APP_ENV}
