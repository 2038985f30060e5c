"""
One-time verification codes kept in Redis with a TTL.
A code is consumed atomically on first successful use.
"""

import json
import logging
import secrets
import uuid
from typing import Awaitable, Callable, Optional

from redis.asyncio import Redis

from app.core.config import settings
from app.core.dependencies import get_redis

logger = logging.getLogger(__name__)

CODE_DIGITS = 6

# Delete KEYS[1] only while it still holds ARGV[1]
DELETE_IF_EQUALS_SCRIPT = """
if redis.call("GET", KEYS[1]) == ARGV[1] then
    return redis.call("DEL", KEYS[1])
end
return 0
"""


def generate_code() -> str:
    return f"{secrets.randbelow(10 ** CODE_DIGITS):0{CODE_DIGITS}d}"


class VerificationCodeStore:
    """Stores {user_id, code} under verify:{email}."""

    def __init__(self, redis_factory: Callable[[], Awaitable[Redis]]):
        self._redis_factory = redis_factory
        self._delete_if_equals = None

    @staticmethod
    def _key(email: str) -> str:
        return f"verify:{email}"

    async def issue(self, email: str, user_id: uuid.UUID) -> str:
        """Create a code, replacing any outstanding one for this email."""
        redis = await self._redis_factory()
        code = generate_code()
        await redis.set(
            self._key(email),
            json.dumps({"user_id": str(user_id), "code": code}),
            ex=settings.VERIFICATION_CODE_TTL_SECONDS,
        )
        return code

    async def consume(self, email: str, code: str) -> Optional[uuid.UUID]:
        """
        Check a code and delete it on success.

        Returns:
            The user id the code was issued for, or None if missing, expired or wrong
        """
        redis = await self._redis_factory()
        key = self._key(email)

        raw = await redis.get(key)
        if raw is None:
            return None

        entry = json.loads(raw)
        if not secrets.compare_digest(entry["code"], code):
            logger.info(f"Wrong verification code for {email}")
            return None

        # A code reissued since the GET must survive, and only one verifier may win
        if self._delete_if_equals is None:
            self._delete_if_equals = redis.register_script(DELETE_IF_EQUALS_SCRIPT)
        if not await self._delete_if_equals(keys=[key], args=[raw], client=redis):
            logger.info(f"Verification code for {email} changed or was already used")
            return None
        return uuid.UUID(entry["user_id"])


# Global code store instance
verification_store = VerificationCodeStore(get_redis)


def get_verification_store() -> VerificationCodeStore:
    return verification_store
