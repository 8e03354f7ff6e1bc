from fastapi import APIRouter, Depends, Response, status

from connection_auth.api.schemas import ErrorResponse
from connection_auth.auth.dependencies import (
    get_identity,
    get_request_context,
    get_services,
    rate_limit,
    require_user,
)
from connection_auth.auth.identity import Authenticated, Identity, RequestContext
from connection_auth.core.config import Settings
from connection_auth.models.auth_models import (
    ChangePasswordRequest,
    LoginRequest,
    LoginResponse,
    MessageResponse,
    UserRegistrationRequest,
    UserResponse,
)
from connection_auth.services.container import AuthServices
from connection_auth.services.session_issuer import IssuedCredential

router = APIRouter(tags=["authentication"])


def set_session_cookie(response: Response, settings: Settings, session_id: str):
    response.set_cookie(
        key=settings.SESSION_COOKIE_NAME,
        value=session_id,
        max_age=settings.SESSION_EXPIRE_DAYS * 24 * 60 * 60,
        httponly=True,
        secure=settings.SESSION_COOKIE_SECURE,
        samesite=settings.SESSION_COOKIE_SAMESITE,
        path="/",
    )


def clear_session_cookie(response: Response, settings: Settings):
    response.delete_cookie(
        key=settings.SESSION_COOKIE_NAME,
        path="/",
        httponly=True,
        secure=settings.SESSION_COOKIE_SECURE,
        samesite=settings.SESSION_COOKIE_SAMESITE,
    )


@router.post("/register", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def register_user(
    request: UserRegistrationRequest,
    ctx: RequestContext = Depends(rate_limit("register")),
    services: AuthServices = Depends(get_services),
):
    """Register a new account; it must be verified before it can log in"""
    user = (await services.auth.register(request, ctx)).unwrap()
    return UserResponse(**user.to_public())


@router.post(
    "/login",
    response_model=LoginResponse,
    responses={
        401: {"model": ErrorResponse},
        403: {"model": ErrorResponse},
        423: {"model": ErrorResponse},
        429: {"model": ErrorResponse},
    },
)
async def login_user(
    request: LoginRequest,
    response: Response,
    ctx: RequestContext = Depends(rate_limit("login")),
    services: AuthServices = Depends(get_services),
):
    """Login with username (or email) and password"""
    result = (await services.auth.login(request.username, request.password, ctx)).unwrap()

    # Successful logins do not count against the IP limit
    services.rate_limiter.release("login", ctx.ip_address)

    credential: IssuedCredential = result.credential
    user = UserResponse(**result.user.to_public())
    if credential.kind == "session":
        set_session_cookie(response, services.settings, credential.value)
        return LoginResponse(user=user, expires_at=credential.expires_at)

    return LoginResponse(
        user=user,
        token=credential.value,
        token_type="bearer",
        expires_at=credential.expires_at,
    )


@router.post("/logout", response_model=MessageResponse)
async def logout_user(
    response: Response,
    identity: Identity = Depends(get_identity),
    ctx: RequestContext = Depends(get_request_context),
    services: AuthServices = Depends(get_services),
):
    """End the current session or revoke the presented bearer token"""
    await services.auth.logout(identity, ctx)
    clear_session_cookie(response, services.settings)
    return MessageResponse(message="Logged out successfully")


@router.get("/user", response_model=UserResponse)
async def get_current_user_info(
    response: Response,
    identity: Authenticated = Depends(require_user),
    services: AuthServices = Depends(get_services),
):
    """Get current user information"""
    user = (await services.auth.current_user(identity)).unwrap()
    if identity.via == "session":
        set_session_cookie(response, services.settings, identity.credential)
    return UserResponse(**user.to_public())


@router.post("/change-password", response_model=MessageResponse)
async def change_password(
    request: ChangePasswordRequest,
    identity: Authenticated = Depends(require_user),
    ctx: RequestContext = Depends(get_request_context),
    services: AuthServices = Depends(get_services),
):
    """Change password; other sessions of the account are signed out"""
    (await services.auth.change_password(
        identity, request.current_password, request.new_password, ctx
    )).unwrap()
    return MessageResponse(message="Password updated successfully")
