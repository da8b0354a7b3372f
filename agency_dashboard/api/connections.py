"""
Provider connection endpoints
"""
from fastapi import APIRouter, Depends, HTTPException, Query
from typing import Optional
from pydantic import BaseModel

from agency_dashboard.connectors.errors import CredentialInvalid, InvalidRequest
from agency_dashboard.services.dashboard_service import DashboardService, get_dashboard_service
from agency_dashboard.utils.logger import log


class ConnectRequest(BaseModel):
    token: Optional[str] = None  # OAuth refresh token (analytics) or API login (seo)
    resource: str  # GA4 property id (analytics) or target domain (seo)


router = APIRouter(prefix="/connections", tags=["connections"])


@router.get("/{client_id}/{provider_kind}")
async def get_connection_status(
    client_id: str,
    provider_kind: str,
    validate: bool = Query(False, description="Probe the provider to confirm the connection"),
    service: DashboardService = Depends(get_dashboard_service),
):
    """Connection state for a client's provider"""
    try:
        return await service.get_connection_status(client_id, provider_kind, validate=validate)
    except InvalidRequest as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        log.error(f"Error reading connection {client_id}/{provider_kind}: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/{client_id}/{provider_kind}")
async def connect(
    client_id: str,
    provider_kind: str,
    request: ConnectRequest,
    service: DashboardService = Depends(get_dashboard_service),
):
    """
    Connect a provider for a client

    The credential is checked with a probe call; a rejected credential
    returns 400 and leaves the connection marked for reconnection.
    """
    try:
        return await service.connect(client_id, provider_kind, request.token, request.resource)
    except InvalidRequest as e:
        raise HTTPException(status_code=400, detail=str(e))
    except CredentialInvalid as e:
        raise HTTPException(status_code=400, detail=f"Credential rejected: {str(e)}")
    except Exception as e:
        log.error(f"Error connecting {client_id}/{provider_kind}: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))


@router.delete("/{client_id}/{provider_kind}")
async def disconnect(
    client_id: str,
    provider_kind: str,
    service: DashboardService = Depends(get_dashboard_service),
):
    """Disconnect a provider and clear its cached metrics"""
    try:
        return service.disconnect(client_id, provider_kind)
    except InvalidRequest as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        log.error(f"Error disconnecting {client_id}/{provider_kind}: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))
