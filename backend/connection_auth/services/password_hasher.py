import asyncio
import base64
import hashlib
import logging

import bcrypt

logger = logging.getLogger(__name__)


def _prepare(password: str) -> bytes:
    """SHA-256 then base64 so any length of UTF-8 input fits bcrypt's 72-byte window"""
    digest = hashlib.sha256(password.encode('utf-8')).digest()
    return base64.b64encode(digest)


class PasswordHasher:
    """bcrypt hashing with a fixed work factor"""

    def __init__(self, rounds: int = 12):
        self.rounds = rounds
        # Burned on unknown usernames so they cost the same as a real check
        self._dummy_hash = bcrypt.hashpw(_prepare("connection-dummy-password"), bcrypt.gensalt(rounds))

    def hash(self, password: str) -> str:
        """Hash password using bcrypt"""
        salt = bcrypt.gensalt(self.rounds)
        hashed = bcrypt.hashpw(_prepare(password), salt)
        return hashed.decode('utf-8')

    def verify(self, password: str, hashed: str) -> bool:
        """Verify password against hash"""
        try:
            return bcrypt.checkpw(_prepare(password), hashed.encode('utf-8'))
        except ValueError:
            logger.warning("Stored password hash is malformed")
            return False

    def dummy_verify(self, password: str) -> bool:
        bcrypt.checkpw(_prepare(password), self._dummy_hash)
        return False

    def needs_rehash(self, hashed: str) -> bool:
        """True when the hash was made with fewer rounds than configured"""
        try:
            cost = int(hashed.split("$")[2])
        except (IndexError, ValueError):
            return True
        return cost < self.rounds

    # Async variants run bcrypt in a worker thread

    async def hash_async(self, password: str) -> str:
        return await asyncio.to_thread(self.hash, password)

    async def verify_async(self, password: str, hashed: str) -> bool:
        return await asyncio.to_thread(self.verify, password, hashed)

    async def dummy_verify_async(self, password: str) -> bool:
        return await asyncio.to_thread(self.dummy_verify, password)
