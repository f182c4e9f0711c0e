from fastapi import APIRouter

from bookshop_enrichment.api.routes import cron, health, photos

api_router = APIRouter()
api_router.include_router(health.router, tags=["health"])
api_router.include_router(cron.router, prefix="/cron", tags=["cron"])
api_router.include_router(photos.router, tags=["public"])
