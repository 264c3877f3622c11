from __future__ import annotations

import json
import time
from typing import Protocol, runtime_checkable

from certify.db.redis import redis_pool
from certify.models.challenge import WalletChallenge


@runtime_checkable
class ChallengeRepo(Protocol):
    async def add(self, challenge: WalletChallenge) -> None: ...

    async def consume(self, nonce: str) -> WalletChallenge | None:
        """Remove and return an unexpired challenge; None if unknown, used or expired."""
        ...


class InMemoryChallengeRepo:
    def __init__(self) -> None:
        self._by_nonce: dict[str, WalletChallenge] = {}

    async def add(self, challenge: WalletChallenge) -> None:
        self._by_nonce[challenge.nonce] = challenge

    async def consume(self, nonce: str) -> WalletChallenge | None:
        challenge = self._by_nonce.pop(nonce, None)
        if challenge is None:
            return None
        # Mimic Redis TTL behavior
        if challenge.expires_at < time.time():
            return None
        return challenge


class RedisChallengeRepo:
    """Nonces shared across API instances; Redis TTL does the expiry."""

    _PREFIX = "challenge:"

    def __init__(self, redis_client) -> None:
        self._redis = redis_client

    async def add(self, challenge: WalletChallenge) -> None:
        ttl_seconds = int(challenge.expires_at - time.time())
        if ttl_seconds <= 0:
            return
        value = json.dumps(
            {
                "nonce": challenge.nonce,
                "address": challenge.address,
                "message": challenge.message,
                "expires_at": challenge.expires_at,
            }
        )
        await self._redis.setex(f"{self._PREFIX}{challenge.nonce}", ttl_seconds, value)

    async def consume(self, nonce: str) -> WalletChallenge | None:
        # GETDEL: read and delete in one command, so a nonce works once.
        raw = await self._redis.getdel(f"{self._PREFIX}{nonce}")
        if raw is None:
            return None
        return WalletChallenge(**json.loads(raw))


# ---------------------------------------------------------------------------
# Module-level singleton, conditional on Redis availability
# ---------------------------------------------------------------------------

if redis_pool is not None:
    challenge_repo: ChallengeRepo = RedisChallengeRepo(redis_pool)
else:
    challenge_repo = InMemoryChallengeRepo()
