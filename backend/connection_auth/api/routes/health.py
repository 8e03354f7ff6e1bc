from datetime import datetime, timezone

from fastapi import APIRouter, Depends

from connection_auth.api.schemas import HealthResponse
from connection_auth.auth.dependencies import get_services
from connection_auth.core.errors import PersistenceError
from connection_auth.services.container import AuthServices


router = APIRouter(prefix="/health", tags=["health"])


@router.get("", response_model=HealthResponse)
async def health_check(services: AuthServices = Depends(get_services)):
    """Health check endpoint"""
    try:
        await services.store.ping()
        database_status = "connected"
    except PersistenceError:
        database_status = "disconnected"

    return HealthResponse(
        status="healthy" if database_status == "connected" else "unhealthy",
        service="connection-identity",
        version=services.settings.VERSION,
        timestamp=datetime.now(timezone.utc).isoformat(),
        database=database_status
    )
