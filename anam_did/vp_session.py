"""
VP Session Store - QR check-in hand-off between a holder's phone and a
staff device

Flow:
1. The phone submits a signed VP bound to a challenge and receives a
   ``session_id``, rendered as a QR code.
2. The staff device scans it, claims the session once with
   ``verify_and_mark_used``, runs the verification pipeline and records
   the outcome with ``update_status``.
3. The phone polls ``get_status`` until the session is terminal or gone.

A session leaves ``pending`` exactly once; later updates are ignored so the
first outcome is preserved.
"""

import logging
import secrets
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, Optional

from .clock import Clock, to_iso, utc_now
from .config import settings
from .errors import ExpiredError, NotFoundError, ReplayError, ValidationError
from .store import InMemoryTTLStore, Sweeper, TTLStore, iter_values

logger = logging.getLogger(__name__)


class VPSessionStatus(Enum):
    PENDING = "pending"
    VERIFIED = "verified"
    FAILED = "failed"
    EXPIRED = "expired"


TERMINAL_STATUSES = frozenset({VPSessionStatus.VERIFIED, VPSessionStatus.FAILED})


@dataclass
class VPSession:
    session_id: str
    vp: Dict[str, Any]
    challenge: str
    created_at: datetime
    expires_at: datetime
    status: VPSessionStatus = VPSessionStatus.PENDING
    used: bool = False
    used_at: Optional[datetime] = None
    verified_at: Optional[datetime] = None
    checkin_data: Optional[Dict[str, Any]] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_dict(self) -> Dict[str, Any]:
        """Polling view of the session (the VP itself is not echoed back)"""
        result = {
            "sessionId": self.session_id,
            "status": self.status.value,
            "createdAt": to_iso(self.created_at),
            "expiresAt": to_iso(self.expires_at),
        }
        if self.verified_at:
            result["verifiedAt"] = to_iso(self.verified_at)
        if self.checkin_data:
            result["checkinData"] = self.checkin_data
        return result


class VPSessionStore:
    """
    Ephemeral VP sessions keyed by a random 32-hex-char id

    Args:
        store: TTLStore holding VPSession records (in-memory by default)
        ttl_seconds: Session lifetime
        grace_seconds: How long a verified session stays pollable
        clock: Time source
        sweep_interval: Seconds between background sweeps
    """

    def __init__(
        self,
        store: Optional[TTLStore] = None,
        ttl_seconds: Optional[int] = None,
        grace_seconds: Optional[int] = None,
        clock: Clock = utc_now,
        sweep_interval: Optional[float] = None,
    ):
        self._store = store if store is not None else InMemoryTTLStore()
        self.ttl = timedelta(seconds=ttl_seconds if ttl_seconds is not None else settings.VP_SESSION_TTL_SECONDS)
        self.grace = timedelta(
            seconds=grace_seconds if grace_seconds is not None else settings.VERIFIED_SESSION_GRACE_SECONDS
        )
        self._clock = clock
        self._lock = threading.Lock()
        self._sweeper = Sweeper(
            "VPSessionStore",
            self.sweep_expired,
            sweep_interval if sweep_interval is not None else settings.SWEEP_INTERVAL_SECONDS,
        )
        logger.info("[VPSessionStore] Initialized (ttl: %ss)", int(self.ttl.total_seconds()))

    # ==================== CREATION ====================

    def create(self, vp: Dict[str, Any], challenge: str) -> str:
        """Store a submitted VP and return its session id"""
        if not isinstance(vp, dict):
            raise ValidationError("VP must be a JSON object")
        if not isinstance(challenge, str) or not challenge:
            raise ValidationError("Challenge must be a non-empty string")

        now = self._clock()
        session = VPSession(
            session_id=secrets.token_hex(16),
            vp=vp,
            challenge=challenge,
            created_at=now,
            expires_at=now + self.ttl,
        )
        self._store.put(session.session_id, session, session.expires_at)
        logger.info(
            "[VPSessionStore] Created session: %s (expires: %s)",
            session.session_id[:10], to_iso(session.expires_at),
            extra={"session_id": session.session_id[:10]},
        )
        return session.session_id

    # ==================== POLLING ====================

    def get_status(self, session_id: str) -> Optional[VPSession]:
        """
        Current session record

        Returns:
            The session, or None when unknown or expired (expired records
            are dropped on read)
        """
        with self._lock:
            session = self._store.get(session_id)
            if session is None:
                return None
            if self._clock() > session.expires_at:
                session.status = VPSessionStatus.EXPIRED
                self._store.delete(session_id)
                logger.info(
                    "[VPSessionStore] Session %s expired", session_id[:10], extra={"session_id": session_id[:10]}
                )
                return None
            return session

    def get_info(self, session_id: str) -> Optional[VPSession]:
        return self.get_status(session_id)

    def exists(self, session_id: str) -> bool:
        """True while the session is live and not yet claimed"""
        session = self.get_status(session_id)
        return session is not None and not session.used

    # ==================== TRANSITIONS ====================

    def verify_and_mark_used(self, session_id: str) -> VPSession:
        """
        Claim a session for verification (staff side, once)

        The session is kept so the phone can keep polling.

        Raises:
            NotFoundError: unknown session
            ReplayError: session already claimed
            ExpiredError: session past its TTL (it is removed)
        """
        with self._lock:
            session = self._store.get(session_id)
            if session is None:
                raise NotFoundError("Invalid session ID")
            if session.used:
                logger.warning(
                    "[VPSessionStore] Session %s claimed twice", session_id[:10],
                    extra={"session_id": session_id[:10]},
                )
                raise ReplayError("Session already used")

            now = self._clock()
            if now > session.expires_at:
                self._store.delete(session_id)
                raise ExpiredError("Session expired")

            session.used = True
            session.used_at = now
            self._store.put(session_id, session, session.expires_at)

        logger.info(
            "[VPSessionStore] Verified and marked session as used: %s", session_id[:10],
            extra={"session_id": session_id[:10]},
        )
        return session

    def update_status(
        self,
        session_id: str,
        status,
        checkin_data: Optional[Dict[str, Any]] = None,
    ) -> None:
        """
        Move a pending session to verified or failed

        Only the first transition out of ``pending`` takes effect; updates on
        terminal, unknown or expired sessions are ignored.

        Raises:
            ValidationError: if ``status`` is unknown or not verified/failed
        """
        try:
            status = VPSessionStatus(status)
        except ValueError as e:
            raise ValidationError(f"Unknown session status: {status!r}") from e
        if status not in TERMINAL_STATUSES:
            raise ValidationError(f"Cannot transition a session to {status.value}")

        with self._lock:
            session = self._store.get(session_id)
            if session is None:
                logger.warning(
                    "[VPSessionStore] Cannot update status: session %s not found", session_id[:10],
                    extra={"session_id": session_id[:10]},
                )
                return

            now = self._clock()
            if now > session.expires_at:
                logger.warning(
                    "[VPSessionStore] Cannot update status: session %s expired", session_id[:10],
                    extra={"session_id": session_id[:10]},
                )
                return

            if session.is_terminal:
                logger.warning(
                    "[VPSessionStore] Session %s already %s, ignoring %s",
                    session_id[:10], session.status.value, status.value,
                    extra={"session_id": session_id[:10]},
                )
                return

            session.status = status
            if status is VPSessionStatus.VERIFIED:
                session.verified_at = now
                session.checkin_data = checkin_data
                # Verified sessions only need to survive the polling grace window
                session.expires_at = min(session.expires_at, now + self.grace)
            self._store.put(session_id, session, session.expires_at)

        logger.info(
            "[VPSessionStore] Updated session %s status: %s", session_id[:10], status.value,
            extra={"session_id": session_id[:10]},
        )

    # ==================== MAINTENANCE ====================

    def get_stats(self) -> Dict[str, int]:
        now = self._clock()
        stats = {"total": 0, "active": 0, "used": 0, "expired": 0}
        for session in iter_values(self._store):
            stats["total"] += 1
            if now > session.expires_at:
                stats["expired"] += 1
            elif session.used:
                stats["used"] += 1
            else:
                stats["active"] += 1
        return stats

    def sweep_expired(self) -> int:
        cleaned = self._store.sweep_expired(self._clock())
        if cleaned:
            logger.info("[VPSessionStore] Cleaned up %d expired/old session(s)", cleaned)
        return cleaned

    def clear(self) -> None:
        if hasattr(self._store, "clear"):
            self._store.clear()
        logger.info("[VPSessionStore] All sessions cleared")

    def start(self) -> None:
        self._sweeper.start()

    def close(self) -> None:
        self._sweeper.stop()
