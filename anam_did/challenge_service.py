"""
Challenge Service - single-use, time-limited anti-replay tokens

A verifier hands out a challenge, the holder signs it into a VP proof, and
the verifier consumes it exactly once. ``verify`` checks existence,
freshness and prior use and marks the challenge used under one lock, so two
concurrent calls for the same value yield one success and one ReplayError.
"""

import logging
import secrets
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, Optional

from .clock import Clock, to_iso, utc_now
from .config import settings
from .errors import ExpiredError, NotFoundError, ReplayError
from .store import InMemoryTTLStore, Sweeper, TTLStore, iter_values

logger = logging.getLogger(__name__)


@dataclass
class Challenge:
    value: str  # 0x + hex
    created_at: datetime
    expires_at: datetime
    used: bool = False
    used_at: Optional[datetime] = None

    def to_dict(self) -> Dict:
        return {
            "challenge": self.value,
            "createdAt": to_iso(self.created_at),
            "expiresAt": to_iso(self.expires_at),
            "used": self.used,
            "usedAt": to_iso(self.used_at) if self.used_at else None,
        }


def generate_challenge(length: int = 32) -> str:
    """``length`` random bytes, 0x-prefixed hex"""
    return "0x" + secrets.token_hex(length)


class ChallengeService:
    """
    Issues and consumes challenges

    Args:
        store: TTLStore holding Challenge records (in-memory by default)
        ttl_seconds: Lifetime of a challenge
        clock: Time source
        sweep_interval: Seconds between background sweeps
    """

    def __init__(
        self,
        store: Optional[TTLStore] = None,
        ttl_seconds: Optional[int] = None,
        clock: Clock = utc_now,
        sweep_interval: Optional[float] = None,
    ):
        self._store = store if store is not None else InMemoryTTLStore()
        self.ttl = timedelta(seconds=ttl_seconds if ttl_seconds is not None else settings.CHALLENGE_TTL_SECONDS)
        self._clock = clock
        self._lock = threading.Lock()
        self._sweeper = Sweeper(
            "ChallengeService",
            self.sweep_expired,
            sweep_interval if sweep_interval is not None else settings.SWEEP_INTERVAL_SECONDS,
        )
        logger.info("[ChallengeService] Initialized (ttl: %ss)", int(self.ttl.total_seconds()))

    # ==================== LIFECYCLE ====================

    def create(self, length: Optional[int] = None) -> Challenge:
        """Create and store a new challenge"""
        now = self._clock()
        challenge = Challenge(
            value=generate_challenge(length or settings.CHALLENGE_BYTES),
            created_at=now,
            expires_at=now + self.ttl,
        )
        self._store.put(challenge.value, challenge, challenge.expires_at)
        logger.info(
            "[ChallengeService] Created challenge: %s... (expires: %s)",
            challenge.value[:10], to_iso(challenge.expires_at),
        )
        return challenge

    def verify(self, value: str) -> None:
        """
        Consume a challenge

        Raises:
            NotFoundError: unknown challenge
            ReplayError: challenge already used
            ExpiredError: challenge past its TTL (it is removed)
        """
        with self._lock:
            challenge = self._store.get(value) if isinstance(value, str) else None
            if challenge is None:
                logger.warning("[ChallengeService] Unknown challenge rejected", extra={"stage": "challenge"})
                raise NotFoundError("Invalid challenge")

            if challenge.used:
                logger.warning(
                    "[ChallengeService] Replay rejected: %s...", value[:10], extra={"stage": "challenge"}
                )
                raise ReplayError("Challenge already used")

            now = self._clock()
            if now > challenge.expires_at:
                self._store.delete(value)
                raise ExpiredError("Challenge expired")

            challenge.used = True
            challenge.used_at = now
            self._store.put(value, challenge, challenge.expires_at)

        logger.info("[ChallengeService] Verified challenge: %s...", value[:10], extra={"stage": "challenge"})

    # ==================== QUERIES ====================

    def exists(self, value: str) -> bool:
        """True when the challenge is known and not expired (used or not)"""
        challenge = self._store.get(value)
        return challenge is not None and self._clock() <= challenge.expires_at

    def get_info(self, value: str) -> Optional[Challenge]:
        return self._store.get(value)

    def get_stats(self) -> Dict[str, int]:
        now = self._clock()
        stats = {"total": 0, "active": 0, "used": 0, "expired": 0}
        for challenge in iter_values(self._store):
            stats["total"] += 1
            if now > challenge.expires_at:
                stats["expired"] += 1
            elif challenge.used:
                stats["used"] += 1
            else:
                stats["active"] += 1
        return stats

    # ==================== MAINTENANCE ====================

    def sweep_expired(self) -> int:
        cleaned = self._store.sweep_expired(self._clock())
        if cleaned:
            logger.info("[ChallengeService] Cleaned up %d expired challenge(s)", cleaned)
        return cleaned

    def clear(self) -> None:
        if hasattr(self._store, "clear"):
            self._store.clear()
        logger.info("[ChallengeService] All challenges cleared")

    def start(self) -> None:
        """Start the periodic background sweep"""
        self._sweeper.start()

    def close(self) -> None:
        self._sweeper.stop()
