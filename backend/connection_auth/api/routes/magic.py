from fastapi import APIRouter, Depends

from connection_auth.auth.dependencies import get_services, rate_limit
from connection_auth.auth.identity import RequestContext
from connection_auth.models.auth_models import (
    MagicCodeRequest,
    MagicCodeResponse,
    MagicUser,
    MagicVerifyRequest,
    MagicVerifyResponse,
)
from connection_auth.services.container import AuthServices

router = APIRouter(prefix="/auth", tags=["magic-code"])


@router.post("/magic", response_model=MagicCodeResponse)
async def request_magic_code(
    request: MagicCodeRequest,
    ctx: RequestContext = Depends(rate_limit("magic_request")),
    services: AuthServices = Depends(get_services),
):
    """Email a sign-in code; the response only carries the request token"""
    token = await services.magic_codes.request_code(request.email, ctx)
    return MagicCodeResponse(token=token)


@router.post("/verify", response_model=MagicVerifyResponse)
async def verify_magic_code(
    request: MagicVerifyRequest,
    ctx: RequestContext = Depends(rate_limit("magic_verify")),
    services: AuthServices = Depends(get_services),
):
    """Exchange a request token and code for a bearer token (one attempt per code)"""
    login = (await services.magic_codes.verify_code(request.token, request.code, ctx)).unwrap()
    return MagicVerifyResponse(
        token=login.token.token,
        user=MagicUser(
            id=login.user.id if login.user else None,
            email=login.email,
            username=login.user.username if login.user else None,
        ),
        expires_at=login.token.expires_at,
    )
