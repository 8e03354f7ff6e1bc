from .auth import router as auth_router
from .magic import router as magic_router
from .verification import router as verification_router
from .admin import router as admin_router
from .health import router as health_router

__all__ = [
    "auth_router",
    "magic_router",
    "verification_router",
    "admin_router",
    "health_router"
]
