"""Tests for the per-identity daily quota ledger."""

import threading
from datetime import date, datetime, timezone

from conftest import WallClock

from grounded_agent.core.quota import QuotaLedger
from grounded_agent.types import QuotaRecord


def _ledger(now: datetime) -> tuple[QuotaLedger, WallClock]:
    clock = WallClock(now)
    return QuotaLedger(tz="Asia/Tokyo", clock=clock), clock


class TestQuotaLedger:
    def test_fresh_identity_has_full_allowance(self):
        ledger, _ = _ledger(datetime(2026, 3, 1, 3, 0, tzinfo=timezone.utc))
        assert ledger.remaining("alice", 5) == 5
        assert ledger.used("alice") == 0

    def test_consume_until_limit(self):
        ledger, _ = _ledger(datetime(2026, 3, 1, 3, 0, tzinfo=timezone.utc))
        results = [ledger.consume("alice", 3) for _ in range(5)]
        assert results == [True, True, True, False, False]
        assert ledger.used("alice") == 3
        assert ledger.remaining("alice", 3) == 0

    def test_refused_consume_does_not_mutate(self):
        ledger, _ = _ledger(datetime(2026, 3, 1, 3, 0, tzinfo=timezone.utc))
        ledger.consume("alice", 1)
        before = ledger.get_record("alice")
        assert ledger.consume("alice", 1) is False
        assert ledger.get_record("alice") == before

    def test_remaining_never_increases_within_day(self):
        ledger, clock = _ledger(datetime(2026, 3, 1, 0, 0, tzinfo=timezone.utc))
        seen = []
        for _ in range(6):
            ledger.consume("alice", 5)
            clock.advance(hours=1)
            seen.append(ledger.remaining("alice", 5))
        assert seen == sorted(seen, reverse=True)

    def test_identities_are_independent(self):
        ledger, _ = _ledger(datetime(2026, 3, 1, 3, 0, tzinfo=timezone.utc))
        ledger.consume("alice", 1)
        assert ledger.remaining("alice", 1) == 0
        assert ledger.remaining("bob", 1) == 1

    def test_rollover_uses_configured_time_zone(self):
        # 14:59 UTC is 23:59 in Tokyo; one minute later is the next Tokyo day
        ledger, clock = _ledger(datetime(2026, 3, 1, 14, 59, tzinfo=timezone.utc))
        assert ledger.today() == date(2026, 3, 1)
        ledger.consume("alice", 1)
        assert ledger.remaining("alice", 1) == 0

        clock.advance(minutes=1)
        assert ledger.today() == date(2026, 3, 2)
        assert ledger.remaining("alice", 1) == 1
        # stale record is superseded, not deleted, until the next consume
        assert ledger.get_record("alice").date == date(2026, 3, 1)
        assert ledger.consume("alice", 1) is True
        assert ledger.get_record("alice") == QuotaRecord("alice", date(2026, 3, 2), 1)

    def test_load_record(self):
        ledger, _ = _ledger(datetime(2026, 3, 1, 3, 0, tzinfo=timezone.utc))
        ledger.load_record(QuotaRecord("alice", date(2026, 3, 1), 4))
        assert ledger.remaining("alice", 5) == 1

    def test_concurrent_consume_is_atomic(self):
        ledger, _ = _ledger(datetime(2026, 3, 1, 3, 0, tzinfo=timezone.utc))
        accepted = []
        lock = threading.Lock()

        def worker():
            for _ in range(50):
                if ledger.consume("alice", 100):
                    with lock:
                        accepted.append(1)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert len(accepted) == 100
        assert ledger.used("alice") == 100
