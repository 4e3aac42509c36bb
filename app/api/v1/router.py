from fastapi import APIRouter
from app.api.v1.endpoints import knowledge, analytics

api_router = APIRouter()
api_router.include_router(knowledge.router, prefix="/knowledge", tags=["knowledge"])
api_router.include_router(analytics.router, prefix="/analytics", tags=["analytics"])
