from typing import Generic, Optional, TypeVar

from pydantic import BaseModel

T = TypeVar('T')


class SuccessResponse(BaseModel, Generic[T]):
    """Envelope for admin actions that return the affected record"""
    success: bool = True
    message: str = "Operation completed successfully"
    data: Optional[T] = None

    class Config:
        json_schema_extra = {
            "example": {
                "success": True,
                "message": "Account unlocked",
                "data": {"id": 7, "username": "bob"}
            }
        }


class ErrorResponse(BaseModel):
    """
    Body of every identity error.

    Only the fields relevant to the error are present: lockouts carry
    ``remaining_minutes`` and ``retry_after``, rate limits and cooldowns carry
    ``retry_after_seconds``, wrong passwords carry ``attempts_remaining``.
    """
    success: bool = False
    message: str
    status_code: int
    error_code: Optional[str] = None
    path: Optional[str] = None
    attempts_remaining: Optional[int] = None
    remaining_minutes: Optional[int] = None
    retry_after: Optional[str] = None
    retry_after_seconds: Optional[int] = None

    class Config:
        json_schema_extra = {
            "example": {
                "success": False,
                "message": "Account is locked due to too many failed login attempts. Please try again in 120 minute(s).",
                "status_code": 423,
                "error_code": "ACCOUNT_LOCKED",
                "path": "/api/login",
                "remaining_minutes": 120,
                "retry_after": "2026-03-02T11:00:00+00:00"
            }
        }


class HealthResponse(BaseModel):
    """Liveness plus a credential database round trip"""
    status: str
    service: str = "connection-identity"
    version: str
    timestamp: str
    database: str
