from dataclasses import asdict
from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from connection_auth.api.schemas import SuccessResponse
from connection_auth.auth.dependencies import get_request_context, get_services, require_admin
from connection_auth.auth.identity import Authenticated, RequestContext
from connection_auth.models.auth_models import AuditLogResponse, UserResponse
from connection_auth.services.container import AuthServices

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get("/audit-logs", response_model=List[AuditLogResponse])
async def list_audit_logs(
    limit: int = Query(100, ge=1, le=500),
    action: Optional[str] = Query(None),
    user_id: Optional[int] = Query(None),
    admin: Authenticated = Depends(require_admin),
    services: AuthServices = Depends(get_services),
):
    """Security events, newest first"""
    entries = await services.admin.audit_logs(limit=limit, action=action, user_id=user_id)
    return [AuditLogResponse(**asdict(entry)) for entry in entries]


@router.get("/users", response_model=List[UserResponse])
async def list_users(
    admin: Authenticated = Depends(require_admin),
    services: AuthServices = Depends(get_services),
):
    users = await services.admin.list_users()
    return [UserResponse(**user.to_public()) for user in users]


@router.post("/users/{user_id}/unlock", response_model=SuccessResponse[UserResponse])
async def unlock_user(
    user_id: int,
    admin: Authenticated = Depends(require_admin),
    ctx: RequestContext = Depends(get_request_context),
    services: AuthServices = Depends(get_services),
):
    user = (await services.admin.unlock(admin, user_id, ctx)).unwrap()
    return SuccessResponse(message="Account unlocked", data=UserResponse(**user.to_public()))


@router.post("/users/{user_id}/block", response_model=SuccessResponse[UserResponse])
async def block_user(
    user_id: int,
    admin: Authenticated = Depends(require_admin),
    ctx: RequestContext = Depends(get_request_context),
    services: AuthServices = Depends(get_services),
):
    user = (await services.admin.set_blocked(admin, user_id, True, ctx)).unwrap()
    return SuccessResponse(message="User blocked", data=UserResponse(**user.to_public()))


@router.post("/users/{user_id}/unblock", response_model=SuccessResponse[UserResponse])
async def unblock_user(
    user_id: int,
    admin: Authenticated = Depends(require_admin),
    ctx: RequestContext = Depends(get_request_context),
    services: AuthServices = Depends(get_services),
):
    user = (await services.admin.set_blocked(admin, user_id, False, ctx)).unwrap()
    return SuccessResponse(message="User unblocked", data=UserResponse(**user.to_public()))
