"""Tests for the administrator endpoints"""

import pytest

from tests.conftest import PASSWORD, create_verified_user, run


def login(client, username, password=PASSWORD):
    return client.post("/api/login", json={"username": username, "password": password})


@pytest.fixture
def accounts(services):
    admin = run(create_verified_user(services, "root", is_admin=True))
    bob = run(create_verified_user(services, "bob"))
    return admin, bob


def test_admin_endpoints_require_admin(client, accounts):
    assert client.get("/api/admin/audit-logs").status_code == 401

    login(client, "bob")
    response = client.get("/api/admin/audit-logs")
    assert response.status_code == 403
    assert response.json()["error_code"] == "FORBIDDEN"


def test_audit_log_listing(client, accounts):
    login(client, "bob", "wrong-password")
    login(client, "root")

    entries = client.get("/api/admin/audit-logs", params={"action": "login_failed"}).json()
    assert len(entries) == 1
    assert entries[0]["username"] == "bob"
    assert entries[0]["status"] == "failure"
    assert entries[0]["details"]["reason"] == "Invalid password"

    everything = client.get("/api/admin/audit-logs", params={"limit": 500}).json()
    assert everything[0]["action"] == "login"
    assert everything[0]["username"] == "root"

    assert client.get("/api/admin/audit-logs", params={"limit": 0}).status_code == 400


def test_unlock(client, services, accounts):
    _, bob = accounts
    for _ in range(10):
        login(client, "bob", "wrong-password")
    assert login(client, "bob").status_code == 423

    login(client, "root")
    response = client.post(f"/api/admin/users/{bob.id}/unlock")
    assert response.status_code == 200
    assert response.json()["success"] is True

    locked_entries = run(services.audit.list_entries(action="account_locked"))
    assert len(locked_entries) == 1

    assert login(client, "bob").status_code == 200


def test_block_and_unblock(client, services, accounts):
    _, bob = accounts
    login(client, "bob")
    bob_cookie = client.cookies.get("connection.sid")

    login(client, "root")
    response = client.post(f"/api/admin/users/{bob.id}/block")
    assert response.status_code == 200
    assert run(services.store.get_user_by_id(bob.id)).is_active is False

    # Bob's session ended and his password no longer works
    assert run(services.sessions.get_session(bob_cookie)) is None
    blocked = login(client, "bob")
    assert blocked.status_code == 401
    assert blocked.json()["error_code"] == "INVALID_CREDENTIALS"

    login(client, "root")
    assert client.post(f"/api/admin/users/{bob.id}/unblock").status_code == 200
    assert login(client, "bob").status_code == 200

    actions = [e.action for e in run(services.audit.list_entries(user_id=accounts[0].id))]
    assert "user_block" in actions
    assert "user_unblock" in actions


def test_unknown_user(client, accounts):
    login(client, "root")
    response = client.post("/api/admin/users/9999/unlock")
    assert response.status_code == 404
    assert response.json()["error_code"] == "NOT_FOUND"


def test_list_users(client, accounts):
    login(client, "root")
    users = client.get("/api/admin/users").json()
    assert [u["username"] for u in users] == ["bob", "root"]
    assert all("password_hash" not in u for u in users)
