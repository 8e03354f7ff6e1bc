from typing import Callable

from fastapi import Depends, Request

from connection_auth.auth.identity import (
    Anonymous,
    Authenticated,
    Identity,
    RequestContext,
    request_context,
)
from connection_auth.core.errors import ForbiddenError, NotAuthenticatedError
from connection_auth.services.container import AuthServices


def get_services(request: Request) -> AuthServices:
    return request.app.state.services


def get_request_context(request: Request, services: AuthServices = Depends(get_services)) -> RequestContext:
    return request_context(request, services.settings.TRUST_FORWARDED_FOR)


async def get_identity(request: Request, services: AuthServices = Depends(get_services)) -> Identity:
    """
    Resolve the caller from a Bearer header or the session cookie.
    Never fails; unauthenticated callers come back as Anonymous.
    """
    auth_header = request.headers.get("Authorization")
    if auth_header and auth_header.startswith("Bearer "):
        return await services.issuer.resolve_bearer(auth_header[len("Bearer "):].strip())

    session_id = request.cookies.get(services.settings.SESSION_COOKIE_NAME)
    if session_id:
        return await services.issuer.resolve_session(session_id)

    return Anonymous()


async def require_user(identity: Identity = Depends(get_identity)) -> Authenticated:
    """
    Dependency for protected endpoints.
    Use this on every endpoint that needs a signed-in caller.
    """
    if not isinstance(identity, Authenticated):
        raise NotAuthenticatedError(headers={"WWW-Authenticate": "Bearer"})
    return identity


async def require_admin(identity: Authenticated = Depends(require_user)) -> Authenticated:
    if not identity.is_admin:
        raise ForbiddenError()
    return identity


def rate_limit(policy_name: str) -> Callable:
    """Dependency factory counting the request against an IP rate limit policy"""

    async def dependency(
        ctx: RequestContext = Depends(get_request_context),
        services: AuthServices = Depends(get_services),
    ) -> RequestContext:
        services.rate_limiter.hit(policy_name, ctx.ip_address).unwrap()
        return ctx

    return dependency
