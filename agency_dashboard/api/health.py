"""
Health check and status endpoints
"""
from fastapi import APIRouter, Depends
from datetime import datetime
from agency_dashboard.config import get_settings
from agency_dashboard.services.dashboard_service import DashboardService, get_dashboard_service
from agency_dashboard import __version__

settings = get_settings()

router = APIRouter()


@router.get("/health")
async def health_check():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "timestamp": datetime.utcnow().isoformat(),
        "version": __version__
    }


@router.get("/status")
async def get_status(service: DashboardService = Depends(get_dashboard_service)):
    """Get system status"""
    return {
        "app_name": settings.app_name,
        "version": __version__,
        "environment": settings.environment,
        "cooldowns_hours": {
            "page_metrics": settings.page_metrics_cooldown_hours,
            "backlinks": settings.backlinks_cooldown_hours,
            "analytics_summary": round(settings.analytics_refresh_guard_minutes / 60, 2),
        },
        "providers": service.get_status(),
        "timestamp": datetime.utcnow().isoformat()
    }
