from fastapi import APIRouter

from connection_auth.api.routes import (
    auth_router,
    magic_router,
    verification_router,
    admin_router,
    health_router
)

# Mounted under settings.API_V1_STR by create_app
api_router = APIRouter()

# Include all route modules
api_router.include_router(auth_router)
api_router.include_router(magic_router)
api_router.include_router(verification_router)
api_router.include_router(admin_router)
api_router.include_router(health_router)
