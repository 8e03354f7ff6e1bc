"""
IP Rate Limiter

Sliding-window counters keyed by (policy, client IP):
- One policy per protected endpoint family (login, register, ...)
- Counters live in a CounterStore so they can be moved out of process

The in-memory store only limits per process; several workers each keep
their own window.
"""

import logging
import math
import threading
from collections import defaultdict, deque
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Deque, Dict, Optional, Protocol, Tuple

from connection_auth.core.clock import Clock, utcnow
from connection_auth.core.config import Settings
from connection_auth.core.errors import Outcome, RateLimitExceededError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitPolicy:
    """Allow ``limit`` requests per ``window`` from one address"""

    name: str
    limit: int
    window: timedelta
    skip_successful: bool = False
    message: str = "Too many requests, please try again later"


class CounterStore(Protocol):
    def hit(self, key: str, now: datetime, window: timedelta, limit: int) -> Tuple[bool, int]:
        """Record a hit if under ``limit``; returns (allowed, retry_after_seconds)"""

    def release(self, key: str) -> None:
        """Forget the most recent hit for ``key``"""


class InMemoryCounterStore:
    """Process-local sliding-window log of hit timestamps"""

    def __init__(self):
        self._hits: Dict[str, Deque[datetime]] = defaultdict(deque)
        self._lock = threading.Lock()

    def hit(self, key: str, now: datetime, window: timedelta, limit: int) -> Tuple[bool, int]:
        with self._lock:
            hits = self._hits[key]
            cutoff = now - window
            while hits and hits[0] <= cutoff:
                hits.popleft()

            if len(hits) >= limit:
                retry_after = (hits[0] + window - now).total_seconds()
                return False, max(1, math.ceil(retry_after))

            hits.append(now)
            return True, 0

    def release(self, key: str) -> None:
        with self._lock:
            hits = self._hits.get(key)
            if hits:
                hits.pop()

    def cleanup(self, now: datetime, max_window: timedelta) -> int:
        """Drop keys with no hits inside ``max_window``"""
        with self._lock:
            stale = [key for key, hits in self._hits.items()
                     if not hits or hits[-1] <= now - max_window]
            for key in stale:
                del self._hits[key]
            return len(stale)


class IPRateLimiter:
    def __init__(
        self,
        policies: Dict[str, RateLimitPolicy],
        store: Optional[CounterStore] = None,
        clock: Clock = utcnow,
        enabled: bool = True,
    ):
        self.policies = policies
        self.store = store or InMemoryCounterStore()
        self.clock = clock
        self.enabled = enabled

    @staticmethod
    def _key(policy: RateLimitPolicy, ip: str) -> str:
        return f"{policy.name}:{ip}"

    def hit(self, policy_name: str, ip: str) -> Outcome[None]:
        """
        Count one request from ``ip`` against a policy

        Returns:
            Failed outcome with RateLimitExceededError once the window is full
        """
        if not self.enabled:
            return Outcome.success()

        policy = self.policies[policy_name]
        allowed, retry_after = self.store.hit(
            self._key(policy, ip), self.clock(), policy.window, policy.limit
        )
        if not allowed:
            logger.warning(f"Rate limit '{policy.name}' exceeded for {ip}")
            return Outcome.failure(RateLimitExceededError(retry_after, policy.message))
        return Outcome.success()

    def release(self, policy_name: str, ip: str) -> None:
        """Give back the hit of a request the policy does not count (successful logins)"""
        if not self.enabled:
            return
        policy = self.policies[policy_name]
        if policy.skip_successful:
            self.store.release(self._key(policy, ip))


def build_policies(settings: Settings) -> Dict[str, RateLimitPolicy]:
    def seconds(value: int) -> timedelta:
        return timedelta(seconds=value)

    policies = [
        RateLimitPolicy(
            "login", settings.RATE_LIMIT_LOGIN, seconds(settings.RATE_LIMIT_LOGIN_WINDOW_SECONDS),
            skip_successful=True,
            message="Too many login attempts, please try again later",
        ),
        RateLimitPolicy(
            "register", settings.RATE_LIMIT_REGISTER,
            seconds(settings.RATE_LIMIT_REGISTER_WINDOW_SECONDS),
            message="Too many accounts created from this IP, please try again later",
        ),
        RateLimitPolicy(
            "password_reset", settings.RATE_LIMIT_PASSWORD_RESET,
            seconds(settings.RATE_LIMIT_PASSWORD_RESET_WINDOW_SECONDS),
            message="Too many password reset requests, please try again later",
        ),
        RateLimitPolicy(
            "magic_request", settings.RATE_LIMIT_MAGIC_REQUEST,
            seconds(settings.RATE_LIMIT_MAGIC_REQUEST_WINDOW_SECONDS),
            message="Too many code requests, please try again later",
        ),
        RateLimitPolicy(
            "magic_verify", settings.RATE_LIMIT_MAGIC_VERIFY,
            seconds(settings.RATE_LIMIT_MAGIC_VERIFY_WINDOW_SECONDS),
            message="Too many code verification attempts, please try again later",
        ),
        RateLimitPolicy(
            "phone_verify", settings.RATE_LIMIT_PHONE_VERIFY,
            seconds(settings.RATE_LIMIT_PHONE_VERIFY_WINDOW_SECONDS),
            message="Too many verification attempts, please try again later",
        ),
    ]
    return {policy.name: policy for policy in policies}
