"""Tests for outbound email/SMS delivery"""

import json

import httpx
import pytest

from connection_auth.auth.identity import RequestContext
from connection_auth.models.auth_models import UserRegistrationRequest
from connection_auth.services.container import build_services
from connection_auth.services.delivery import (
    DeliveryError,
    HttpEmailSender,
    HttpSmsSender,
    LoggingEmailSender,
    LoggingSmsSender,
    build_email_sender,
    build_sms_sender,
    deliver_safely,
)
from connection_auth.services.email_templates import verification_email
from tests.conftest import FailingEmailSender, PASSWORD, make_settings, run


def test_email_sender_posts_json():
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["url"] = str(request.url)
        captured["auth"] = request.headers["Authorization"]
        captured["body"] = json.loads(request.content)
        return httpx.Response(202)

    sender = HttpEmailSender(
        "https://mail.test/v3/mail/send", "key-123", "no-reply@x.com",
        transport=httpx.MockTransport(handler),
    )
    run(sender.send("alice@x.com", verification_email("https://x.com/verify?token=abc")))

    assert captured["url"] == "https://mail.test/v3/mail/send"
    assert captured["auth"] == "Bearer key-123"
    assert captured["body"]["personalizations"][0]["to"][0]["email"] == "alice@x.com"
    assert captured["body"]["from"]["email"] == "no-reply@x.com"


def test_email_sender_raises_on_provider_error():
    sender = HttpEmailSender(
        "https://mail.test/send", "key", "no-reply@x.com",
        transport=httpx.MockTransport(lambda request: httpx.Response(500)),
    )
    with pytest.raises(DeliveryError):
        run(sender.send("alice@x.com", verification_email("https://x.com")))


def test_sms_sender_posts_form():
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["url"] = str(request.url)
        captured["body"] = request.content.decode()
        return httpx.Response(201)

    sender = HttpSmsSender(
        "https://sms.test/2010-04-01/", "AC1", "secret", "+15550000000",
        transport=httpx.MockTransport(handler),
    )
    run(sender.send("+15551234567", "Your code is 123456"))

    assert captured["url"] == "https://sms.test/2010-04-01/Accounts/AC1/Messages.json"
    assert "To=%2B15551234567" in captured["body"]


def test_deliver_safely_swallows_failures():
    assert run(deliver_safely(FailingEmailSender().send("a@x.com", verification_email("l")), "test")) is False
    assert run(deliver_safely(LoggingSmsSender().send("+1555", "hi"), "test")) is True


def test_senders_degrade_without_credentials(tmp_path):
    settings = make_settings(tmp_path)
    assert isinstance(build_email_sender(settings), LoggingEmailSender)
    assert isinstance(build_sms_sender(settings), LoggingSmsSender)

    configured = make_settings(
        tmp_path, EMAIL_API_KEY="k", SMS_ACCOUNT_SID="AC1", SMS_AUTH_TOKEN="t", SMS_FROM_NUMBER="+1555"
    )
    assert isinstance(build_email_sender(configured), HttpEmailSender)
    assert isinstance(build_sms_sender(configured), HttpSmsSender)


def test_registration_survives_email_failure(tmp_path, clock):
    settings = make_settings(tmp_path)
    services = build_services(settings, clock=clock, email_sender=FailingEmailSender())
    run(services.initialize())

    request = UserRegistrationRequest(username="alice", email="alice@x.com", password=PASSWORD)
    user = run(services.auth.register(request, RequestContext(ip_address="10.0.0.1"))).unwrap()

    stored = run(services.store.get_user_by_id(user.id))
    assert stored.email_verification_token_hash is not None
