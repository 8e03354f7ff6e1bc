"""Tests for server-side sessions, bearer tokens and the issuer on top of them"""

from datetime import timedelta

import jwt
import pytest

from connection_auth.auth.identity import Anonymous, Authenticated
from connection_auth.core.errors import ConfigurationError
from connection_auth.services.session_issuer import SessionIssuer
from connection_auth.services.token_issuer import TokenIssuer
from tests.conftest import create_verified_user, run


@pytest.fixture
def users(services):
    alice = run(services.store.create_user("alice", "alice@x.com", "hash"))
    bob = run(services.store.create_user("bob", "bob@x.com", "hash"))
    return alice, bob


def test_session_round_trip_and_sliding_expiry(services, users, clock):
    alice, _ = users
    session = run(services.sessions.create_session(alice.id, "alice"))
    assert session.expires_at == clock() + timedelta(days=30)

    clock.advance(days=20)
    found = run(services.sessions.get_session(session.session_id))
    assert found.user_id == alice.id
    assert found.expires_at == clock() + timedelta(days=30)

    clock.advance(days=20)
    assert run(services.sessions.get_session(session.session_id)) is not None


def test_expired_session_is_removed(services, users, clock):
    alice, _ = users
    session = run(services.sessions.create_session(alice.id, "alice"))
    clock.advance(days=31)
    assert run(services.sessions.get_session(session.session_id)) is None
    assert run(services.sessions.get_active_sessions_count()) == 0


def test_end_user_sessions_can_keep_one(services, users):
    alice, bob = users
    keep = run(services.sessions.create_session(alice.id, "alice"))
    run(services.sessions.create_session(alice.id, "alice"))
    run(services.sessions.create_session(bob.id, "bob"))

    assert run(services.sessions.end_user_sessions(alice.id, keep_session_id=keep.session_id)) == 1
    assert run(services.sessions.get_session(keep.session_id)) is not None
    assert run(services.sessions.get_active_sessions_count()) == 2


def test_cleanup_expired_sessions(services, users, clock):
    alice, bob = users
    run(services.sessions.create_session(alice.id, "alice"))
    clock.advance(days=31)
    run(services.sessions.create_session(bob.id, "bob"))
    assert run(services.sessions.cleanup_expired_sessions()) == 1


def test_token_claims(services, clock):
    issued = services.tokens.issue(7, "alice", "alice@x.com", is_admin=True)
    assert issued.expires_at == clock() + timedelta(days=7)

    claims = jwt.decode(
        issued.token, services.settings.JWT_SECRET, algorithms=["HS256"],
        options={"verify_exp": False, "verify_iat": False},
    )
    assert claims["sub"] == "7"
    assert claims["admin"] is True
    assert claims["jti"] == issued.jti

    payload = services.tokens.decode(issued.token)
    assert payload.user_id == 7
    assert payload.is_admin


def test_token_expiry_and_tampering(services, clock):
    issued = services.tokens.issue(7, "alice", "alice@x.com")
    assert services.tokens.decode(issued.token + "x") is None

    other = TokenIssuer("another-secret-of-reasonable-length", services.tokens.db_path, clock=clock)
    assert other.decode(issued.token) is None

    clock.advance(days=7)
    assert services.tokens.decode(issued.token) is None


def test_issue_without_secret(services):
    tokens = TokenIssuer(None, services.tokens.db_path)
    with pytest.raises(ConfigurationError):
        tokens.issue(1, "alice", "alice@x.com")
    assert tokens.decode("anything") is None


def test_revocation(services, clock):
    issued = services.tokens.issue(7, "alice", "alice@x.com")
    payload = services.tokens.decode(issued.token)
    run(services.tokens.revoke(payload))
    assert run(services.tokens.is_revoked(payload.jti))

    clock.advance(days=8)
    assert run(services.tokens.cleanup_revoked()) == 1
    assert not run(services.tokens.is_revoked(payload.jti))


def test_issuer_session_strategy(services):
    user = run(create_verified_user(services, "alice"))
    credential = run(services.issuer.issue(user))
    assert credential.kind == "session"

    identity = run(services.issuer.resolve_session(credential.value))
    assert isinstance(identity, Authenticated)
    assert identity.user_id == user.id
    assert identity.role == "user"

    assert run(services.issuer.revoke(identity))
    assert isinstance(run(services.issuer.resolve_session(credential.value)), Anonymous)


def test_issuer_bearer_strategy(services):
    issuer = SessionIssuer("bearer", services.sessions, services.tokens, services.store)
    user = run(create_verified_user(services, "admin", is_admin=True))
    credential = run(issuer.issue(user))
    assert credential.kind == "bearer"

    identity = run(issuer.resolve_bearer(credential.value))
    assert identity.is_admin
    assert identity.role == "admin"
    assert identity.via == "bearer"

    assert run(issuer.revoke(identity))
    revoked = run(issuer.resolve_bearer(credential.value))
    assert isinstance(revoked, Anonymous)
    assert revoked.reason == "Token revoked"


def test_resolve_garbage(services):
    assert isinstance(run(services.issuer.resolve_bearer("garbage")), Anonymous)
    assert isinstance(run(services.issuer.resolve_session("garbage")), Anonymous)


def test_revoke_user_voids_earlier_bearer_tokens(services, clock):
    issuer = SessionIssuer("bearer", services.sessions, services.tokens, services.store)
    user = run(create_verified_user(services, "alice"))
    before = run(issuer.issue(user))

    clock.advance(seconds=1)
    run(issuer.revoke_user(user.id))
    revoked = run(issuer.resolve_bearer(before.value))
    assert isinstance(revoked, Anonymous)
    assert revoked.reason == "Token revoked"

    after = run(issuer.issue(user))
    assert isinstance(run(issuer.resolve_bearer(after.value)), Authenticated)


def test_bearer_token_for_blocked_account(services):
    issuer = SessionIssuer("bearer", services.sessions, services.tokens, services.store)
    user = run(create_verified_user(services, "alice"))
    credential = run(issuer.issue(user))

    run(services.store.set_active(user.id, False))
    identity = run(issuer.resolve_bearer(credential.value))
    assert isinstance(identity, Anonymous)
    assert identity.reason == "Account is not active"
