"""
Outbound email/SMS delivery.

Providers are reached over HTTP with a caller-side timeout. Without provider
credentials the logging senders are installed and messages are dropped.
Delivery never decides the outcome of the request that triggered it:
callers go through ``deliver_safely``.
"""

import logging
from typing import Awaitable, Optional, Protocol

import httpx

from connection_auth.core.config import Settings
from connection_auth.services.email_templates import EmailContent

logger = logging.getLogger(__name__)


class DeliveryError(Exception):
    """Raised when a provider rejects or fails to accept a message"""


class EmailSender(Protocol):
    async def send(self, to: str, content: EmailContent) -> None: ...


class SmsSender(Protocol):
    async def send(self, to: str, body: str) -> None: ...


class HttpEmailSender:
    """SendGrid-style JSON mail API"""

    def __init__(
        self,
        api_url: str,
        api_key: str,
        sender: str,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_url = api_url
        self.api_key = api_key
        self.sender = sender
        self.timeout = timeout
        self.transport = transport

    async def send(self, to: str, content: EmailContent) -> None:
        payload = {
            "personalizations": [{"to": [{"email": to}]}],
            "from": {"email": self.sender},
            "subject": content.subject,
            "content": [
                {"type": "text/plain", "value": content.text},
                {"type": "text/html", "value": content.html},
            ],
        }
        try:
            async with httpx.AsyncClient(timeout=httpx.Timeout(self.timeout), transport=self.transport) as client:
                response = await client.post(
                    self.api_url,
                    json=payload,
                    headers={"Authorization": f"Bearer {self.api_key}"},
                )
                response.raise_for_status()
        except httpx.HTTPError as e:
            raise DeliveryError(f"Email delivery to {to} failed: {e}") from e

        logger.info(f"Email '{content.subject}' sent to {to}")


class HttpSmsSender:
    """Twilio-style form-encoded messages API"""

    def __init__(
        self,
        api_url: str,
        account_sid: str,
        auth_token: str,
        from_number: str,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.messages_url = f"{api_url.rstrip('/')}/Accounts/{account_sid}/Messages.json"
        self.auth = (account_sid, auth_token)
        self.from_number = from_number
        self.timeout = timeout
        self.transport = transport

    async def send(self, to: str, body: str) -> None:
        try:
            async with httpx.AsyncClient(timeout=httpx.Timeout(self.timeout), transport=self.transport) as client:
                response = await client.post(
                    self.messages_url,
                    data={"To": to, "From": self.from_number, "Body": body},
                    auth=self.auth,
                )
                response.raise_for_status()
        except httpx.HTTPError as e:
            raise DeliveryError(f"SMS delivery to {to} failed: {e}") from e

        logger.info(f"SMS sent to {to}")


class LoggingEmailSender:
    """No-op sender used when no email provider is configured"""

    async def send(self, to: str, content: EmailContent) -> None:
        logger.warning(f"Email provider not configured; dropped '{content.subject}' for {to}")


class LoggingSmsSender:
    async def send(self, to: str, body: str) -> None:
        logger.warning(f"SMS provider not configured; dropped message for {to}")


async def deliver_safely(send: Awaitable[None], description: str) -> bool:
    """
    Await a send and report whether it went out.

    Failures are logged and swallowed: the state change that triggered the
    message has already been committed and stays valid.
    """
    try:
        await send
        return True
    except Exception as e:
        logger.error(f"Failed to deliver {description}: {e}")
        return False


def build_email_sender(settings: Settings) -> EmailSender:
    if not settings.EMAIL_API_KEY:
        logger.warning("EMAIL_API_KEY not set; emails will be logged and dropped")
        return LoggingEmailSender()
    return HttpEmailSender(
        api_url=settings.EMAIL_API_URL,
        api_key=settings.EMAIL_API_KEY,
        sender=settings.EMAIL_FROM,
        timeout=settings.DELIVERY_TIMEOUT_SECONDS,
    )


def build_sms_sender(settings: Settings) -> SmsSender:
    if not (settings.SMS_ACCOUNT_SID and settings.SMS_AUTH_TOKEN and settings.SMS_FROM_NUMBER):
        logger.warning("SMS provider credentials not set; SMS will be logged and dropped")
        return LoggingSmsSender()
    return HttpSmsSender(
        api_url=settings.SMS_API_URL,
        account_sid=settings.SMS_ACCOUNT_SID,
        auth_token=settings.SMS_AUTH_TOKEN,
        from_number=settings.SMS_FROM_NUMBER,
        timeout=settings.DELIVERY_TIMEOUT_SECONDS,
    )

