"""Tests for the IP rate limiter"""

from datetime import timedelta

from connection_auth.core.errors import RateLimitExceededError
from connection_auth.services.rate_limiter import (
    InMemoryCounterStore,
    IPRateLimiter,
    RateLimitPolicy,
    build_policies,
)
from tests.conftest import FakeClock, make_settings


def make_limiter(clock, limit=3, skip_successful=False, enabled=True):
    policy = RateLimitPolicy("login", limit, timedelta(minutes=15), skip_successful=skip_successful)
    return IPRateLimiter({"login": policy}, clock=clock, enabled=enabled)


def test_allows_up_to_limit_then_rejects():
    clock = FakeClock()
    limiter = make_limiter(clock)
    for _ in range(3):
        assert limiter.hit("login", "1.1.1.1").ok

    outcome = limiter.hit("login", "1.1.1.1")
    assert not outcome.ok
    assert isinstance(outcome.error, RateLimitExceededError)
    assert outcome.error.status_code == 429
    assert outcome.error.headers["Retry-After"] == str(15 * 60)


def test_addresses_are_counted_separately():
    clock = FakeClock()
    limiter = make_limiter(clock, limit=1)
    assert limiter.hit("login", "1.1.1.1").ok
    assert not limiter.hit("login", "1.1.1.1").ok
    assert limiter.hit("login", "2.2.2.2").ok


def test_window_slides():
    clock = FakeClock()
    limiter = make_limiter(clock, limit=2)
    limiter.hit("login", "1.1.1.1")
    clock.advance(minutes=10)
    limiter.hit("login", "1.1.1.1")

    rejected = limiter.hit("login", "1.1.1.1")
    assert rejected.error.retry_after_seconds == 5 * 60

    clock.advance(minutes=5)
    assert limiter.hit("login", "1.1.1.1").ok


def test_release_only_for_skip_successful_policies():
    clock = FakeClock()
    skipping = make_limiter(clock, limit=1, skip_successful=True)
    skipping.hit("login", "1.1.1.1")
    skipping.release("login", "1.1.1.1")
    assert skipping.hit("login", "1.1.1.1").ok

    counting = make_limiter(clock, limit=1)
    counting.hit("login", "1.1.1.1")
    counting.release("login", "1.1.1.1")
    assert not counting.hit("login", "1.1.1.1").ok


def test_disabled_limiter_allows_everything():
    limiter = make_limiter(FakeClock(), limit=1, enabled=False)
    for _ in range(5):
        assert limiter.hit("login", "1.1.1.1").ok


def test_cleanup_drops_stale_keys():
    clock = FakeClock()
    store = InMemoryCounterStore()
    store.hit("login:1.1.1.1", clock(), timedelta(minutes=1), 5)
    clock.advance(hours=2)
    assert store.cleanup(clock(), timedelta(hours=1)) == 1


def test_policies_from_settings(tmp_path):
    settings = make_settings(tmp_path, RATE_LIMIT_REGISTER=3, RATE_LIMIT_REGISTER_WINDOW_SECONDS=3600)
    policies = build_policies(settings)
    assert set(policies) == {
        "login", "register", "password_reset", "magic_request", "magic_verify", "phone_verify"
    }
    assert policies["register"].limit == 3
    assert policies["register"].window == timedelta(hours=1)
    assert policies["login"].skip_successful
    assert not policies["register"].skip_successful
