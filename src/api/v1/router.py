from fastapi import APIRouter

from config import settings
from .events_router import router as events_router
from .vfr_router import router as vfr_router

router = APIRouter(prefix="/api/v1", tags=["v1"])
router.include_router(vfr_router)
router.include_router(events_router)


@router.get("/health")
async def health():
    return {"status": "ok", "version": settings.app_version}


@router.get("/info")
async def info():
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "debug": settings.debug,
        "cors_origins": settings.cors_origins,
        "forecast_model": settings.forecast_model,
        "forecast_configured": bool(settings.forecast_api_key),
        "scan_interval_minutes": settings.vfr_scan_interval_minutes,
        "refine_precision_minutes": settings.vfr_refine_precision_minutes,
    }
