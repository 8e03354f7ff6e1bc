import asyncio
import re
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import List, Optional, Tuple

import pytest
from fastapi.testclient import TestClient

from connection_auth.core.config import Settings
from connection_auth.main import create_app
from connection_auth.services.container import AuthServices, build_services
from connection_auth.services.delivery import DeliveryError
from connection_auth.services.email_templates import EmailContent

PASSWORD = "pw123456"


class FakeClock:
    """Controllable UTC clock"""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


class RecordingEmailSender:
    def __init__(self):
        self.sent: List[Tuple[str, EmailContent]] = []

    async def send(self, to: str, content: EmailContent) -> None:
        self.sent.append((to, content))

    def last_to(self, to: str) -> EmailContent:
        for recipient, content in reversed(self.sent):
            if recipient == to:
                return content
        raise AssertionError(f"No email sent to {to}")

    def last_token(self, to: str) -> str:
        match = re.search(r"token=([0-9a-f]+)", self.last_to(to).text)
        assert match, "No token link in email"
        return match.group(1)

    def last_code(self, to: str) -> str:
        match = re.search(r"\b(\d{6})\b", self.last_to(to).text)
        assert match, "No code in email"
        return match.group(1)


class RecordingSmsSender:
    def __init__(self):
        self.sent: List[Tuple[str, str]] = []

    async def send(self, to: str, body: str) -> None:
        self.sent.append((to, body))

    def last_code(self, to: str) -> str:
        for recipient, body in reversed(self.sent):
            if recipient == to:
                return re.search(r"(\d{6})", body).group(1)
        raise AssertionError(f"No SMS sent to {to}")


class FailingEmailSender:
    async def send(self, to: str, content: EmailContent) -> None:
        raise DeliveryError("provider unavailable")


def run(coro):
    return asyncio.run(coro)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def email_sender() -> RecordingEmailSender:
    return RecordingEmailSender()


@pytest.fixture
def sms_sender() -> RecordingSmsSender:
    return RecordingSmsSender()


def make_settings(tmp_path: Path, **overrides) -> Settings:
    values = dict(
        DATABASE_PATH=str(tmp_path / "identity.db"),
        BCRYPT_ROUNDS=4,
        JWT_SECRET="test-signing-secret-with-enough-length",
        SESSION_COOKIE_SECURE=False,
        LOG_LEVEL="WARNING",
        RATE_LIMIT_LOGIN=100,
        RATE_LIMIT_REGISTER=100,
        RATE_LIMIT_PASSWORD_RESET=100,
        RATE_LIMIT_MAGIC_REQUEST=100,
        RATE_LIMIT_MAGIC_VERIFY=100,
        RATE_LIMIT_PHONE_VERIFY=100,
    )
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return make_settings(tmp_path)


@pytest.fixture
def services(settings, clock, email_sender, sms_sender) -> AuthServices:
    services = build_services(settings, clock=clock, email_sender=email_sender, sms_sender=sms_sender)
    run(services.initialize())
    return services


@pytest.fixture
def client(settings, services):
    with TestClient(create_app(settings, services)) as test_client:
        yield test_client


async def create_verified_user(
    services: AuthServices,
    username: str,
    email: Optional[str] = None,
    password: str = PASSWORD,
    is_admin: bool = False,
):
    """Insert an account whose email is already verified"""
    user = await services.store.create_user(
        username=username,
        email=email or f"{username}@x.com",
        password_hash=services.hasher.hash(password),
        is_admin=is_admin,
    )
    await services.verification.issue_email(user)
    pending = await services.store.get_user_by_id(user.id)
    await services.store.consume_email_verification(user.id, pending.email_verification_token_hash)
    return await services.store.get_user_by_id(user.id)
