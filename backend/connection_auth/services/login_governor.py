import logging
import math
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional, Tuple

from connection_auth.core.clock import Clock, utcnow
from connection_auth.core.errors import AccountLockedError, InvalidCredentialsError, Outcome
from connection_auth.models.credential import CredentialRecord
from connection_auth.services.credential_store import CredentialStore

logger = logging.getLogger(__name__)


class LockState(str, Enum):
    ACTIVE = "active"
    LOCKED = "locked"


def remaining_minutes(lockout_until: datetime, now: datetime) -> int:
    """Whole minutes left on a lockout, rounded up, never below 1"""
    seconds = (lockout_until - now).total_seconds()
    return max(1, math.ceil(seconds / 60))


class LoginAttemptGovernor:
    """
    Per-account progressive lockout.

    An account is Locked while ``lockout_until`` lies in the future. Failures
    are counted atomically in the credential store; reaching ``max_attempts``
    locks the account for ``lockout_duration``. An elapsed lockout is treated
    as absent and any success clears the counters.
    """

    def __init__(
        self,
        store: CredentialStore,
        max_attempts: int = 10,
        lockout_duration: timedelta = timedelta(hours=2),
        clock: Clock = utcnow,
    ):
        self.store = store
        self.max_attempts = max_attempts
        self.lockout_duration = lockout_duration
        self.clock = clock

    def state(self, user: CredentialRecord) -> Tuple[LockState, Optional[datetime]]:
        now = self.clock()
        if user.lockout_until and user.lockout_until > now:
            return LockState.LOCKED, user.lockout_until
        return LockState.ACTIVE, None

    def check(self, user: CredentialRecord) -> Outcome[None]:
        """Fail with AccountLockedError while the account is locked"""
        state, until = self.state(user)
        if state is LockState.LOCKED:
            return Outcome.failure(self._locked_error(until))
        return Outcome.success()

    async def register_failure(self, user: CredentialRecord) -> Outcome[None]:
        """
        Count a failed password check.

        Returns InvalidCredentialsError with the attempts left, or
        AccountLockedError when this failure engaged (or met) a lockout.
        """
        now = self.clock()
        attempts, lockout_until = await self.store.record_failed_attempt(
            user.id,
            max_attempts=self.max_attempts,
            lockout_until=now + self.lockout_duration,
            now=now,
        )

        if lockout_until and lockout_until > now:
            logger.warning(f"Account locked after {attempts} failed attempts: {user.username}")
            return Outcome.failure(self._locked_error(lockout_until))

        return Outcome.failure(InvalidCredentialsError(
            attempts_remaining=max(0, self.max_attempts - attempts)
        ))

    async def register_success(self, user: CredentialRecord):
        if user.login_attempts or user.lockout_until:
            await self.store.reset_login_attempts(user.id)

    def _locked_error(self, until: datetime) -> AccountLockedError:
        return AccountLockedError(
            remaining_minutes=remaining_minutes(until, self.clock()),
            retry_after=until.isoformat(),
        )
