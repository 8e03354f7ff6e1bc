from html import escape
from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import HTMLResponse

from connection_auth.auth.dependencies import get_request_context, get_services, rate_limit
from connection_auth.auth.identity import RequestContext
from connection_auth.models.auth_models import (
    ForgotPasswordRequest,
    MessageResponse,
    ResetPasswordRequest,
    SendVerificationRequest,
    SendVerificationResponse,
    VerifyEmailRequest,
    VerifyPhoneRequest,
)
from connection_auth.services.container import AuthServices

router = APIRouter(prefix="/auth", tags=["verification"])

PAGE_STYLE = (
    "body { font-family: Arial, sans-serif; max-width: 600px; margin: 50px auto; "
    "padding: 20px; text-align: center; }"
    ".error { color: #dc2626; } .success { color: #059669; }"
    ".button { display: inline-block; margin-top: 20px; padding: 12px 30px; "
    "background-color: #1a2a4a; color: white; text-decoration: none; border-radius: 5px; }"
)


def _page(title: str, body: str) -> str:
    return f"""<!DOCTYPE html>
<html>
  <head>
    <meta charset="utf-8">
    <meta name="viewport" content="width=device-width, initial-scale=1">
    <title>{title} - The Connection</title>
    <style>{PAGE_STYLE}</style>
  </head>
  <body>
{body}
  </body>
</html>"""


def error_page(heading: str, message: str, status_code: int = 400) -> HTMLResponse:
    body = f'    <h1 class="error">{heading}</h1>\n    <p>{message}</p>'
    return HTMLResponse(_page("Verification Error", body), status_code=status_code)


def success_page(deep_link: str) -> HTMLResponse:
    link = escape(deep_link, quote=True)
    body = (
        '    <h1 class="success">Email Verified!</h1>\n'
        "    <p>Your email has been verified. You can close this page and return to The Connection app.</p>\n"
        f'    <a href="{link}" class="button">Open The Connection</a>\n'
        f"    <script>setTimeout(function () {{ window.location.href = '{link}'; }}, 3000);</script>"
    )
    return HTMLResponse(_page("Email Verified", body))


@router.post("/send-verification", response_model=SendVerificationResponse)
async def send_verification(
    request: SendVerificationRequest,
    ctx: RequestContext = Depends(get_request_context),
    services: AuthServices = Depends(get_services),
):
    """Send (or resend) the verification email, at most once per cooldown window"""
    dispatch = (await services.verification.resend(request.email, ctx)).unwrap()
    return SendVerificationResponse(
        expires_at=dispatch.expires_at,
        next_allowed_at=dispatch.next_allowed_at,
    )


@router.get("/verify-email", response_class=HTMLResponse)
async def verify_email_link(
    token: Optional[str] = Query(None),
    ctx: RequestContext = Depends(get_request_context),
    services: AuthServices = Depends(get_services),
):
    """One-click link target from the verification email"""
    if not token:
        return error_page(
            "Invalid Link",
            "This verification link is invalid. Please check your email and try again.",
        )

    outcome = await services.verification.verify_email(token, ctx)
    if not outcome.ok:
        return error_page(
            "Invalid or Expired Link",
            "This verification link is invalid or has expired. Please request a new verification email.",
        )
    return success_page(services.settings.APP_DEEP_LINK)


@router.post("/verify-email", response_model=MessageResponse)
async def verify_email(
    request: VerifyEmailRequest,
    ctx: RequestContext = Depends(get_request_context),
    services: AuthServices = Depends(get_services),
):
    (await services.verification.verify_email(request.token, ctx)).unwrap()
    return MessageResponse(message="Email verified")


@router.post("/send-phone-verification", response_model=SendVerificationResponse)
async def send_phone_verification(
    request: SendVerificationRequest,
    ctx: RequestContext = Depends(rate_limit("phone_verify")),
    services: AuthServices = Depends(get_services),
):
    dispatch = (await services.verification.resend_phone(request.email, ctx)).unwrap()
    return SendVerificationResponse(
        expires_at=dispatch.expires_at,
        next_allowed_at=dispatch.next_allowed_at,
    )


@router.post("/verify-phone", response_model=MessageResponse)
async def verify_phone(
    request: VerifyPhoneRequest,
    ctx: RequestContext = Depends(rate_limit("phone_verify")),
    services: AuthServices = Depends(get_services),
):
    """Check the SMS code; a wrong code uses it up"""
    (await services.verification.verify_phone(request.email, request.code, ctx)).unwrap()
    return MessageResponse(message="Phone number verified")


@router.post("/forgot-password", response_model=MessageResponse)
async def forgot_password(
    request: ForgotPasswordRequest,
    ctx: RequestContext = Depends(rate_limit("password_reset")),
    services: AuthServices = Depends(get_services),
):
    """Always answers the same way so addresses cannot be probed"""
    await services.password_reset.request_reset(request.email, ctx)
    return MessageResponse(
        message="If an account exists for that email, a password reset link has been sent"
    )


@router.post("/reset-password", response_model=MessageResponse)
async def reset_password(
    request: ResetPasswordRequest,
    ctx: RequestContext = Depends(rate_limit("password_reset")),
    services: AuthServices = Depends(get_services),
):
    (await services.password_reset.reset_password(request.token, request.new_password, ctx)).unwrap()
    return MessageResponse(message="Password has been reset; please log in")
