"""
Challenge Service Tests
=======================
"""

import re
import threading

import pytest

from anam_did.challenge_service import ChallengeService, generate_challenge
from anam_did.errors import ExpiredError, NotFoundError, ReplayError
from anam_did.testing import FakeClock


class TestChallengeService:
    """Single-use, time-limited challenges"""

    def setup_method(self):
        self.clock = FakeClock()
        self.service = ChallengeService(ttl_seconds=300, clock=self.clock)

    def test_generate_challenge(self):
        assert re.match(r"^0x[0-9a-f]{64}$", generate_challenge())
        assert re.match(r"^0x[0-9a-f]{16}$", generate_challenge(8))

    def test_create(self):
        challenge = self.service.create()

        assert re.match(r"^0x[0-9a-f]{64}$", challenge.value)
        assert (challenge.expires_at - challenge.created_at).total_seconds() == 300
        assert not challenge.used
        assert self.service.exists(challenge.value)
        print(f"✅ Challenge created: {challenge.value[:10]}...")

    def test_to_dict(self):
        data = self.service.create().to_dict()

        assert data["createdAt"] == "2025-01-01T00:00:00.000Z"
        assert data["expiresAt"] == "2025-01-01T00:05:00.000Z"
        assert data["used"] is False
        assert data["usedAt"] is None

    def test_verify_once(self):
        challenge = self.service.create()
        self.service.verify(challenge.value)

        info = self.service.get_info(challenge.value)
        assert info.used
        assert info.used_at == self.clock.now

    def test_replay_rejected(self):
        challenge = self.service.create()
        self.service.verify(challenge.value)

        with pytest.raises(ReplayError, match="Challenge already used"):
            self.service.verify(challenge.value)

    def test_unknown_rejected(self):
        with pytest.raises(NotFoundError, match="Invalid challenge"):
            self.service.verify("0x" + "00" * 32)
        with pytest.raises(NotFoundError):
            self.service.verify(None)

    def test_expired_rejected_and_removed(self):
        challenge = self.service.create()
        self.clock.advance(seconds=301)

        assert not self.service.exists(challenge.value)
        with pytest.raises(ExpiredError, match="Challenge expired"):
            self.service.verify(challenge.value)
        with pytest.raises(NotFoundError):
            self.service.verify(challenge.value)

    def test_valid_at_exact_ttl(self):
        challenge = self.service.create()
        self.clock.advance(seconds=300)

        self.service.verify(challenge.value)

    def test_used_check_precedes_expiry(self):
        challenge = self.service.create()
        self.service.verify(challenge.value)
        self.clock.advance(seconds=301)

        with pytest.raises(ReplayError):
            self.service.verify(challenge.value)

    def test_concurrent_verify_single_success(self):
        challenge = self.service.create()
        workers = 16
        barrier = threading.Barrier(workers)
        outcomes = []
        outcomes_lock = threading.Lock()

        def attempt():
            barrier.wait()
            try:
                self.service.verify(challenge.value)
                result = "ok"
            except ReplayError:
                result = "replay"
            with outcomes_lock:
                outcomes.append(result)

        threads = [threading.Thread(target=attempt) for _ in range(workers)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert outcomes.count("ok") == 1
        assert outcomes.count("replay") == workers - 1
        print("✅ Exactly one concurrent verify succeeded")

    def test_stats_and_sweep(self):
        used = self.service.create()
        self.service.verify(used.value)
        self.service.create()
        self.clock.advance(seconds=200)
        self.service.create()
        self.clock.advance(seconds=150)

        assert self.service.get_stats() == {"total": 3, "active": 1, "used": 0, "expired": 2}
        assert self.service.sweep_expired() == 2
        assert self.service.get_stats()["total"] == 1

    def test_clear(self):
        challenge = self.service.create()
        self.service.clear()

        assert self.service.get_info(challenge.value) is None

    def test_sweeper_lifecycle(self):
        service = ChallengeService(clock=self.clock, sweep_interval=0.05)
        service.start()
        assert service._sweeper.running
        service.start()

        service.close()
        assert not service._sweeper.running
