import logging
from datetime import datetime
from typing import List, Optional, Tuple

import aiosqlite

from connection_auth.core.clock import Clock, from_db, to_db, utcnow
from connection_auth.core.errors import DuplicateResourceError
from connection_auth.db.database import connect, create_tables
from connection_auth.models.credential import CredentialRecord

logger = logging.getLogger(__name__)


class CredentialStore:
    """Accessor for the credential records in the ``users`` table"""

    def __init__(self, db_path: str, clock: Clock = utcnow):
        self.db_path = db_path
        self.clock = clock

    async def initialize(self):
        """Create the schema if needed and apply migrations"""
        await create_tables(self.db_path)

    async def ping(self) -> bool:
        async with connect(self.db_path) as db:
            cursor = await db.execute("SELECT 1")
            return (await cursor.fetchone()) is not None

    async def _fetch_user(self, where: str, params: tuple) -> Optional[CredentialRecord]:
        async with connect(self.db_path) as db:
            cursor = await db.execute(f"SELECT * FROM users WHERE {where}", params)
            row = await cursor.fetchone()
            return CredentialRecord.from_row(dict(row)) if row else None

    async def create_user(
        self,
        username: str,
        email: str,
        password_hash: str,
        display_name: Optional[str] = None,
        phone_number: Optional[str] = None,
        is_admin: bool = False,
    ) -> CredentialRecord:
        """
        Insert a new, unverified credential record.

        Raises:
            DuplicateResourceError: username or email already taken
        """
        async with connect(self.db_path) as db:
            try:
                cursor = await db.execute("""
                    INSERT INTO users (
                        username, email, display_name, phone_number,
                        password_hash, is_admin, created_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?)
                """, (
                    username, email, display_name or username, phone_number,
                    password_hash, 1 if is_admin else 0, to_db(self.clock())
                ))
                await db.commit()
                user_id = cursor.lastrowid
            except aiosqlite.IntegrityError as e:
                if "username" in str(e):
                    raise DuplicateResourceError("Username already exists")
                if "email" in str(e):
                    raise DuplicateResourceError("Email address already in use")
                raise DuplicateResourceError(f"Failed to create user: {e}")

        logger.info(f"Credential record created: {username} ({user_id})")
        return await self.get_user_by_id(user_id)

    async def get_user_by_id(self, user_id: int) -> Optional[CredentialRecord]:
        return await self._fetch_user("id = ?", (user_id,))

    async def get_user_by_username(self, username: str) -> Optional[CredentialRecord]:
        return await self._fetch_user("username = ?", (username,))

    async def get_user_by_email(self, email: str) -> Optional[CredentialRecord]:
        return await self._fetch_user("email = ?", (email.strip().lower(),))

    async def find_for_login(self, identifier: str) -> Optional[CredentialRecord]:
        """Find by username, falling back to email when the identifier looks like one"""
        user = await self.get_user_by_username(identifier)
        if not user and "@" in identifier:
            user = await self.get_user_by_email(identifier)
        return user

    async def list_users(self) -> List[CredentialRecord]:
        async with connect(self.db_path) as db:
            cursor = await db.execute("SELECT * FROM users ORDER BY username")
            rows = await cursor.fetchall()
            return [CredentialRecord.from_row(dict(row)) for row in rows]

    # ------------------------------------------------------------------
    # Lockout state
    # ------------------------------------------------------------------

    async def record_failed_attempt(
        self,
        user_id: int,
        max_attempts: int,
        lockout_until: datetime,
        now: datetime,
    ) -> Tuple[int, Optional[datetime]]:
        """
        Atomically count one failed login and lock when the limit is reached.

        The increment and the lock decision happen in one UPDATE inside an
        IMMEDIATE transaction, so concurrent failures cannot under-count.
        An elapsed lockout is treated as absent: counting restarts at 1.

        Returns:
            (login_attempts, lockout_until) after the update
        """
        now_db = to_db(now)
        async with connect(self.db_path, isolation_level=None) as db:
            await db.execute("BEGIN IMMEDIATE")
            try:
                await db.execute("""
                    UPDATE users SET
                        login_attempts = CASE
                            WHEN lockout_until IS NOT NULL AND lockout_until <= ? THEN 1
                            ELSE login_attempts + 1
                        END,
                        lockout_until = CASE
                            WHEN lockout_until IS NOT NULL AND lockout_until > ? THEN lockout_until
                            WHEN (CASE
                                    WHEN lockout_until IS NOT NULL AND lockout_until <= ? THEN 1
                                    ELSE login_attempts + 1
                                  END) >= ? THEN ?
                            ELSE NULL
                        END
                    WHERE id = ?
                """, (now_db, now_db, now_db, max_attempts, to_db(lockout_until), user_id))
                cursor = await db.execute(
                    "SELECT login_attempts, lockout_until FROM users WHERE id = ?", (user_id,)
                )
                row = await cursor.fetchone()
                await cursor.close()
                await db.execute("COMMIT")
            except BaseException:
                await db.execute("ROLLBACK")
                raise

        if not row:
            return 0, None
        return row["login_attempts"], from_db(row["lockout_until"])

    async def reset_login_attempts(self, user_id: int):
        """Clear the failure counter and any lockout"""
        async with connect(self.db_path) as db:
            await db.execute("""
                UPDATE users SET login_attempts = 0, lockout_until = NULL
                WHERE id = ?
            """, (user_id,))
            await db.commit()

    async def update_last_login(self, user_id: int):
        async with connect(self.db_path) as db:
            await db.execute(
                "UPDATE users SET last_login = ? WHERE id = ?",
                (to_db(self.clock()), user_id)
            )
            await db.commit()

    async def update_password_hash(self, user_id: int, password_hash: str):
        async with connect(self.db_path) as db:
            await db.execute(
                "UPDATE users SET password_hash = ? WHERE id = ?",
                (password_hash, user_id)
            )
            await db.commit()

    async def set_active(self, user_id: int, active: bool) -> bool:
        """Block or unblock an account; blocked accounts cannot log in"""
        async with connect(self.db_path) as db:
            cursor = await db.execute(
                "UPDATE users SET is_active = ? WHERE id = ?",
                (1 if active else 0, user_id)
            )
            await db.commit()
            return cursor.rowcount > 0

    async def void_tokens_issued_before_now(self, user_id: int):
        async with connect(self.db_path) as db:
            await db.execute(
                "UPDATE users SET tokens_valid_after = ? WHERE id = ?",
                (to_db(self.clock()), user_id)
            )
            await db.commit()

    # ------------------------------------------------------------------
    # Email verification
    # ------------------------------------------------------------------

    async def set_email_verification(
        self,
        user_id: int,
        token_hash: str,
        expires_at: datetime,
        sent_at: datetime,
    ):
        """Replace any pending email token with a new one"""
        async with connect(self.db_path) as db:
            await db.execute("""
                UPDATE users SET
                    email_verification_token_hash = ?,
                    email_verification_expires_at = ?,
                    email_verification_last_sent_at = ?
                WHERE id = ?
            """, (token_hash, to_db(expires_at), to_db(sent_at), user_id))
            await db.commit()

    async def get_user_by_email_verification_hash(self, token_hash: str) -> Optional[CredentialRecord]:
        return await self._fetch_user("email_verification_token_hash = ?", (token_hash,))

    async def consume_email_verification(self, user_id: int, token_hash: str) -> bool:
        """
        Mark the email verified and clear every pending email field.

        Conditional on the token hash still being pending, so two concurrent
        verifications of one token cannot both succeed.
        """
        async with connect(self.db_path) as db:
            cursor = await db.execute("""
                UPDATE users SET
                    email_verified = 1,
                    email_verified_at = ?,
                    email_verification_token_hash = NULL,
                    email_verification_expires_at = NULL,
                    email_verification_last_sent_at = NULL
                WHERE id = ? AND email_verification_token_hash = ?
            """, (to_db(self.clock()), user_id, token_hash))
            await db.commit()
            return cursor.rowcount == 1

    async def clear_email_verification(self, user_id: int):
        async with connect(self.db_path) as db:
            await db.execute("""
                UPDATE users SET
                    email_verification_token_hash = NULL,
                    email_verification_expires_at = NULL
                WHERE id = ?
            """, (user_id,))
            await db.commit()

    # ------------------------------------------------------------------
    # Phone verification
    # ------------------------------------------------------------------

    async def set_phone_verification(self, user_id: int, code: str, expires_at: datetime):
        async with connect(self.db_path) as db:
            await db.execute("""
                UPDATE users SET
                    sms_verification_code = ?,
                    sms_verification_expires_at = ?
                WHERE id = ?
            """, (code, to_db(expires_at), user_id))
            await db.commit()

    async def clear_phone_verification(self, user_id: int) -> bool:
        """Drop the pending code; returns True if one was pending"""
        async with connect(self.db_path) as db:
            cursor = await db.execute("""
                UPDATE users SET
                    sms_verification_code = NULL,
                    sms_verification_expires_at = NULL
                WHERE id = ? AND sms_verification_code IS NOT NULL
            """, (user_id,))
            await db.commit()
            return cursor.rowcount == 1

    async def consume_phone_verification(self, user_id: int, code: str) -> bool:
        async with connect(self.db_path) as db:
            cursor = await db.execute("""
                UPDATE users SET
                    sms_verified = 1,
                    sms_verification_code = NULL,
                    sms_verification_expires_at = NULL
                WHERE id = ? AND sms_verification_code = ?
            """, (user_id, code))
            await db.commit()
            return cursor.rowcount == 1
