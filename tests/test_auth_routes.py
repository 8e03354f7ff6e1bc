"""End-to-end tests for the identity HTTP API"""

import pytest
from fastapi.testclient import TestClient

from connection_auth.main import create_app
from connection_auth.services.container import build_services
from tests.conftest import PASSWORD, create_verified_user, make_settings, run


def register(client, username="alice", phone=None, **headers):
    body = {"username": username, "email": f"{username}@x.com", "password": PASSWORD}
    if phone:
        body["phone_number"] = phone
    return client.post("/api/register", json=body, headers=headers)


def login(client, username, password=PASSWORD):
    return client.post("/api/login", json={"username": username, "password": password})


@pytest.fixture
def make_client(tmp_path, clock, email_sender, sms_sender):
    """Build a client with custom settings"""
    clients = []

    def factory(**overrides):
        settings = make_settings(tmp_path, **overrides)
        services = build_services(settings, clock=clock, email_sender=email_sender, sms_sender=sms_sender)
        client = TestClient(create_app(settings, services))
        client.__enter__()
        clients.append(client)
        return client, services

    yield factory
    for client in clients:
        client.__exit__(None, None, None)


def test_register_verify_then_login(client, email_sender):
    response = register(client)
    assert response.status_code == 201
    user = response.json()
    assert user["username"] == "alice"
    assert user["email_verified"] is False
    assert "password_hash" not in user
    assert "connection.sid" not in response.cookies

    blocked = login(client, "alice")
    assert blocked.status_code == 403
    assert blocked.json()["error_code"] == "EMAIL_NOT_VERIFIED"

    token = email_sender.last_token("alice@x.com")
    page = client.get("/api/auth/verify-email", params={"token": token})
    assert page.status_code == 200
    assert "Email Verified" in page.text
    assert "theconnection://login" in page.text

    reused = client.get("/api/auth/verify-email", params={"token": token})
    assert reused.status_code == 400
    assert "Invalid or Expired Link" in reused.text

    response = login(client, "alice")
    assert response.status_code == 200
    assert response.json()["user"]["email_verified"] is True
    assert response.json()["token"] is None
    assert "connection.sid" in response.cookies

    me = client.get("/api/user")
    assert me.status_code == 200
    assert me.json()["username"] == "alice"


def test_login_with_email_address(client, services):
    run(create_verified_user(services, "alice"))
    assert login(client, "alice@x.com").status_code == 200


def test_verify_email_link_without_token(client):
    response = client.get("/api/auth/verify-email")
    assert response.status_code == 400
    assert "Invalid Link" in response.text


def test_verify_email_json(client, email_sender):
    register(client)
    token = email_sender.last_token("alice@x.com")
    assert client.post("/api/auth/verify-email", json={"token": token}).status_code == 200

    again = client.post("/api/auth/verify-email", json={"token": token})
    assert again.status_code == 400
    assert again.json()["error_code"] == "INVALID_OR_EXPIRED_TOKEN"


def test_duplicate_registration(client):
    assert register(client).status_code == 201
    response = register(client)
    assert response.status_code == 400
    assert response.json()["error_code"] == "DUPLICATE_RESOURCE"
    assert response.json()["message"] == "Username already exists"


def test_invalid_registration_is_400(client):
    response = client.post("/api/register", json={
        "username": "alice", "email": "not-an-email", "password": PASSWORD
    })
    assert response.status_code == 400
    body = response.json()
    assert body["error_code"] == "VALIDATION_ERROR"
    assert body["success"] is False


@pytest.mark.parametrize("email", ["alice@x", "alice@@x.com", "alice x@x.com", "@x.com"])
def test_malformed_emails_are_rejected(client, email):
    response = client.post("/api/register", json={
        "username": "alice", "email": email, "password": PASSWORD
    })
    assert response.status_code == 400
    assert response.json()["error_code"] == "VALIDATION_ERROR"


def test_forgot_password_rejects_malformed_email(client):
    response = client.post("/api/auth/forgot-password", json={"email": "alice@x"})
    assert response.status_code == 400


def test_long_passwords(client, services, email_sender):
    long_password = "a" * 100
    response = client.post("/api/register", json={
        "username": "alice", "email": "alice@x.com", "password": long_password
    })
    assert response.status_code == 201

    token = email_sender.last_token("alice@x.com")
    assert client.get("/api/auth/verify-email", params={"token": token}).status_code == 200
    assert login(client, "alice", long_password).status_code == 200
    assert login(client, "alice", "a" * 99 + "b").status_code == 401

    unknown = login(client, "ghost", "b" * 100)
    assert unknown.status_code == 401
    assert unknown.json()["error_code"] == "INVALID_CREDENTIALS"


def test_multibyte_password_login(client, services):
    password = "пароль-密码-🔐" * 8
    run(create_verified_user(services, "carol", password=password))
    assert login(client, "carol", password).status_code == 200


def test_wrong_password_counts_down_then_locks(client, services, clock):
    run(create_verified_user(services, "bob"))

    for attempt in range(1, 10):
        response = login(client, "bob", "wrong-password")
        assert response.status_code == 401
        assert response.json()["attempts_remaining"] == 10 - attempt

    locked = login(client, "bob", "wrong-password")
    assert locked.status_code == 423
    assert locked.json()["error_code"] == "ACCOUNT_LOCKED"
    assert locked.json()["remaining_minutes"] == 120

    still_locked = login(client, "bob")
    assert still_locked.status_code == 423

    clock.advance(hours=2, minutes=1)
    assert login(client, "bob").status_code == 200
    assert run(services.store.get_user_by_username("bob")).login_attempts == 0


def test_unknown_user_gets_generic_401(client):
    response = login(client, "ghost")
    assert response.status_code == 401
    body = response.json()
    assert body["error_code"] == "INVALID_CREDENTIALS"
    assert "attempts_remaining" not in body


def test_phone_must_be_verified(client, email_sender, sms_sender):
    register(client, "erin", phone="+1 (555) 123-4567")
    client.get("/api/auth/verify-email", params={"token": email_sender.last_token("erin@x.com")})

    blocked = login(client, "erin")
    assert blocked.status_code == 403
    assert blocked.json()["error_code"] == "PHONE_NOT_VERIFIED"

    code = sms_sender.last_code("+15551234567")
    response = client.post("/api/auth/verify-phone", json={"email": "erin@x.com", "code": code})
    assert response.status_code == 200
    assert login(client, "erin").status_code == 200


def test_resend_verification_cooldown(client, clock):
    register(client)
    response = client.post("/api/auth/send-verification", json={"email": "alice@x.com"})
    assert response.status_code == 429
    assert response.json()["error_code"] == "COOLDOWN"
    assert int(response.headers["Retry-After"]) == 300

    clock.advance(minutes=5)
    response = client.post("/api/auth/send-verification", json={"email": "alice@x.com"})
    assert response.status_code == 200
    assert response.json()["ok"] is True
    assert response.json()["next_allowed_at"]


def test_magic_code_login(client, services, email_sender):
    run(create_verified_user(services, "dave"))
    response = client.post("/api/auth/magic", json={"email": "dave@x.com"})
    assert response.status_code == 200
    token = response.json()["token"]
    assert "code" not in response.json()

    code = email_sender.last_code("dave@x.com")
    verified = client.post("/api/auth/verify", json={"token": token, "code": code})
    assert verified.status_code == 200
    body = verified.json()
    assert body["user"]["username"] == "dave"

    me = client.get("/api/user", headers={"Authorization": f"Bearer {body['token']}"})
    assert me.status_code == 200
    assert me.json()["username"] == "dave"


def test_magic_code_expires(client, email_sender, clock):
    token = client.post("/api/auth/magic", json={"email": "carol@x.com"}).json()["token"]
    code = email_sender.last_code("carol@x.com")

    clock.advance(minutes=16)
    response = client.post("/api/auth/verify", json={"token": token, "code": code})
    assert response.status_code == 400
    assert response.json()["error_code"] == "EXPIRED"


def test_magic_code_is_single_use(client, email_sender):
    token = client.post("/api/auth/magic", json={"email": "carol@x.com"}).json()["token"]
    code = email_sender.last_code("carol@x.com")

    first = client.post("/api/auth/verify", json={"token": token, "code": code})
    assert first.status_code == 200
    assert first.json()["user"]["id"] is None

    second = client.post("/api/auth/verify", json={"token": token, "code": code})
    assert second.status_code == 400
    assert second.json()["error_code"] == "INVALID_TOKEN"


def test_register_rate_limit_per_ip(make_client):
    client, _ = make_client(RATE_LIMIT_REGISTER=2)
    for name in ("user1", "user2"):
        assert register(client, name, **{"X-Forwarded-For": "203.0.113.5"}).status_code == 201

    limited = register(client, "user3", **{"X-Forwarded-For": "203.0.113.5"})
    assert limited.status_code == 429
    assert limited.json()["error_code"] == "RATE_LIMITED"
    assert int(limited.headers["Retry-After"]) > 0

    other = register(client, "user4", **{"X-Forwarded-For": "198.51.100.7, 10.0.0.1"})
    assert other.status_code == 201


def test_successful_logins_do_not_use_up_login_limit(make_client, clock):
    client, services = make_client(RATE_LIMIT_LOGIN=2)
    run(create_verified_user(services, "alice"))

    for _ in range(4):
        assert login(client, "alice").status_code == 200

    assert login(client, "alice", "wrong-password").status_code == 401
    assert login(client, "alice", "wrong-password").status_code == 401
    assert login(client, "alice").status_code == 429


def test_change_password(client, services):
    run(create_verified_user(services, "alice"))
    login(client, "alice")

    wrong = client.post("/api/change-password", json={
        "current_password": "nope", "new_password": "brand-new-pw"
    })
    assert wrong.status_code == 401
    assert wrong.json()["message"] == "Current password is incorrect"

    same = client.post("/api/change-password", json={
        "current_password": PASSWORD, "new_password": PASSWORD
    })
    assert same.status_code == 400

    ok = client.post("/api/change-password", json={
        "current_password": PASSWORD, "new_password": "brand-new-pw"
    })
    assert ok.status_code == 200
    assert client.get("/api/user").status_code == 200
    assert login(client, "alice", "brand-new-pw").status_code == 200


def test_change_password_requires_login(client):
    response = client.post("/api/change-password", json={
        "current_password": PASSWORD, "new_password": "brand-new-pw"
    })
    assert response.status_code == 401
    assert response.headers["WWW-Authenticate"] == "Bearer"


def test_password_reset_flow(client, services, email_sender):
    run(create_verified_user(services, "alice"))
    login(client, "alice")

    response = client.post("/api/auth/forgot-password", json={"email": "alice@x.com"})
    assert response.status_code == 200
    token = email_sender.last_token("alice@x.com")

    reset = client.post("/api/auth/reset-password", json={"token": token, "new_password": "reset-pw-123"})
    assert reset.status_code == 200

    # Existing sessions end with the reset
    assert client.get("/api/user").status_code == 401
    assert login(client, "alice").status_code == 401
    assert login(client, "alice", "reset-pw-123").status_code == 200

    reused = client.post("/api/auth/reset-password", json={"token": token, "new_password": "another-pw-1"})
    assert reused.status_code == 400
    assert reused.json()["error_code"] == "INVALID_OR_EXPIRED_TOKEN"


def test_forgot_password_does_not_reveal_accounts(client, email_sender):
    response = client.post("/api/auth/forgot-password", json={"email": "ghost@x.com"})
    assert response.status_code == 200
    assert "If an account exists" in response.json()["message"]
    assert email_sender.sent == []


def test_expired_reset_link(client, services, email_sender, clock):
    run(create_verified_user(services, "alice"))
    client.post("/api/auth/forgot-password", json={"email": "alice@x.com"})
    token = email_sender.last_token("alice@x.com")

    clock.advance(minutes=61)
    response = client.post("/api/auth/reset-password", json={"token": token, "new_password": "reset-pw-123"})
    assert response.status_code == 400


def test_logout_ends_session(client, services):
    run(create_verified_user(services, "alice"))
    login(client, "alice")
    assert client.get("/api/user").status_code == 200

    assert client.post("/api/logout").status_code == 200
    assert client.get("/api/user").status_code == 401
    assert client.post("/api/logout").status_code == 200


def test_bearer_mode(make_client):
    client, services = make_client(AUTH_STRATEGY="bearer")
    run(create_verified_user(services, "alice"))

    response = login(client, "alice")
    assert response.status_code == 200
    body = response.json()
    assert body["token_type"] == "bearer"
    assert "connection.sid" not in response.cookies

    headers = {"Authorization": f"Bearer {body['token']}"}
    assert client.get("/api/user", headers=headers).status_code == 200
    assert client.post("/api/logout", headers=headers).status_code == 200
    assert client.get("/api/user", headers=headers).status_code == 401


def bearer_login(client, username, password=PASSWORD):
    response = login(client, username, password)
    assert response.status_code == 200
    return {"Authorization": f"Bearer {response.json()['token']}"}


def test_blocking_voids_bearer_tokens(make_client, clock):
    client, services = make_client(AUTH_STRATEGY="bearer")
    run(create_verified_user(services, "root", is_admin=True))
    mallory = run(create_verified_user(services, "mallory", is_admin=True))

    mallory_headers = bearer_login(client, "mallory")
    root_headers = bearer_login(client, "root")
    assert client.get("/api/admin/users", headers=mallory_headers).status_code == 200

    clock.advance(seconds=1)
    blocked = client.post(f"/api/admin/users/{mallory.id}/block", headers=root_headers)
    assert blocked.status_code == 200

    assert client.get("/api/admin/users", headers=mallory_headers).status_code == 401
    assert client.get("/api/user", headers=mallory_headers).status_code == 401

    # Unblocking does not bring old tokens back
    clock.advance(seconds=1)
    client.post(f"/api/admin/users/{mallory.id}/unblock", headers=root_headers)
    assert client.get("/api/user", headers=mallory_headers).status_code == 401
    fresh = bearer_login(client, "mallory")
    assert client.get("/api/user", headers=fresh).status_code == 200


def test_bearer_admin_claim_follows_the_account(make_client):
    client, services = make_client(AUTH_STRATEGY="bearer")
    bob = run(create_verified_user(services, "bob"))
    issued = services.tokens.issue(bob.id, bob.username, bob.email, is_admin=True)
    headers = {"Authorization": f"Bearer {issued.token}"}

    assert client.get("/api/user", headers=headers).status_code == 200
    assert client.get("/api/admin/users", headers=headers).status_code == 403

    run(services.store.set_active(bob.id, False))
    assert client.get("/api/user", headers=headers).status_code == 401


def test_password_reset_voids_bearer_tokens(make_client, clock, email_sender):
    client, services = make_client(AUTH_STRATEGY="bearer")
    run(create_verified_user(services, "alice"))
    old_headers = bearer_login(client, "alice")

    clock.advance(seconds=1)
    client.post("/api/auth/forgot-password", json={"email": "alice@x.com"})
    token = email_sender.last_token("alice@x.com")
    reset = client.post("/api/auth/reset-password", json={"token": token, "new_password": "reset-pw-123"})
    assert reset.status_code == 200

    assert client.get("/api/user", headers=old_headers).status_code == 401
    new_headers = bearer_login(client, "alice", "reset-pw-123")
    assert client.get("/api/user", headers=new_headers).status_code == 200


def test_bearer_mode_requires_secret(tmp_path):
    from connection_auth.core.errors import ConfigurationError

    with pytest.raises(ConfigurationError):
        create_app(make_settings(tmp_path, AUTH_STRATEGY="bearer", JWT_SECRET=None))


def test_health_and_root(client):
    health = client.get("/api/health")
    assert health.status_code == 200
    assert health.json()["status"] == "healthy"
    assert health.json()["database"] == "connected"

    root = client.get("/")
    assert root.json()["status"] == "operational"


def test_unknown_route_is_json(client):
    response = client.get("/api/nope")
    assert response.status_code == 404
    assert response.json()["success"] is False
