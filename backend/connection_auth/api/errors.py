import logging
from typing import Any, Dict, Mapping, Optional

from fastapi import Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from connection_auth.core.errors import AuthError

logger = logging.getLogger(__name__)


def error_response(
    request: Request,
    status_code: int,
    message: str,
    error_code: str,
    extra: Optional[Mapping[str, Any]] = None,
    headers: Optional[Dict[str, str]] = None,
) -> JSONResponse:
    """Build the ErrorResponse body shared by every handler below"""
    body: Dict[str, Any] = {
        "success": False,
        "message": message,
        "status_code": status_code,
        "error_code": error_code,
        "path": request.url.path,
    }
    if extra:
        body.update({key: value for key, value in extra.items() if value is not None})
    return JSONResponse(status_code=status_code, content=jsonable_encoder(body), headers=headers)


async def auth_error_handler(request: Request, exc: AuthError):
    """Render identity errors with their machine-checkable code and extra fields"""
    level = logging.ERROR if exc.status_code >= 500 else logging.WARNING
    logger.log(level, f"{exc.error_code} ({exc.status_code}) on {request.method} {request.url.path}: {exc.message}")
    return error_response(
        request, exc.status_code, exc.message, exc.error_code,
        extra=exc.extra, headers=exc.headers,
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Routing and framework errors (404, 405, ...) in the same envelope"""
    if isinstance(exc, AuthError):
        return await auth_error_handler(request, exc)

    logger.info(f"{request.method} {request.url.path} -> {exc.status_code} {exc.detail}")
    return error_response(
        request, exc.status_code, str(exc.detail), "HTTP_ERROR",
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Malformed input is a 400 with the individual field errors attached"""
    errors = jsonable_encoder(exc.errors(), custom_encoder={Exception: str})
    logger.warning(f"Rejected input on {request.url.path}: {errors}")

    message = errors[0]["msg"] if errors else "Validation error"
    return error_response(request, 400, message, "VALIDATION_ERROR", extra={"errors": errors})


async def general_exception_handler(request: Request, exc: Exception):
    """Anything unhandled becomes an opaque 500; details stay in the log"""
    logger.exception(f"Unhandled {type(exc).__name__} on {request.method} {request.url.path}")
    return error_response(request, 500, "Internal server error", "INTERNAL_ERROR")
