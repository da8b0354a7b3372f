"""
Client dashboard endpoints

Serves the cached dashboard (with one-time recovery of missing data) and
user-triggered refreshes that still respect provider cooldowns.
"""
from fastapi import APIRouter, Depends, HTTPException, Query

from agency_dashboard.connectors.errors import InvalidRequest
from agency_dashboard.services.dashboard_service import DashboardService, get_dashboard_service
from agency_dashboard.utils.logger import log

router = APIRouter(prefix="/dashboard", tags=["dashboard"])


@router.get("/{client_id}")
async def get_dashboard_summary(
    client_id: str,
    range: str = Query("30d", description="Date range key: 7d, 30d, 90d or custom:YYYY-MM-DD:YYYY-MM-DD"),
    service: DashboardService = Depends(get_dashboard_service),
):
    """
    Dashboard summary for a client

    Fields a provider could not supply are null ("unknown"), never zero.
    `recovery` is fresh, recovered or exhausted.
    """
    try:
        summary = await service.get_dashboard_summary(client_id, range)
        return summary.model_dump(mode="json")
    except InvalidRequest as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        log.error(f"Error building dashboard for {client_id}: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/{client_id}/refresh/{data_kind}")
async def force_refresh(
    client_id: str,
    data_kind: str,
    range: str = Query("30d", description="Date range key (analytics only)"),
    service: DashboardService = Depends(get_dashboard_service),
):
    """
    Refresh one data kind now, unless its cooldown is still running

    A throttled refresh is not an error: `applied` is false and
    `skipped_reason` says when the next refresh is available.
    """
    try:
        result = await service.force_refresh(client_id, data_kind, range)
        return result.to_dict()
    except InvalidRequest as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        log.error(f"Error refreshing {data_kind} for {client_id}: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/{client_id}/invalidate")
async def invalidate_cache(
    client_id: str,
    service: DashboardService = Depends(get_dashboard_service),
):
    """Clear cached metrics and recovery attempts for a client (cooldowns are kept)"""
    try:
        return service.invalidate_cache(client_id)
    except Exception as e:
        log.error(f"Error invalidating cache for {client_id}: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))
