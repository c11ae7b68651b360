"""QuotaLedger: per-identity, per-day crawl call counters.

Day rollover is detected lazily on access by comparing a record's date with
today's date in a fixed time zone. A stale record reads as zero and is
superseded by the next accepted call; records are never deleted.
"""

from __future__ import annotations

import logging
import threading
from datetime import date, datetime, timezone
from typing import Callable
from zoneinfo import ZoneInfo

from ..types import QuotaRecord

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class QuotaLedger:
    def __init__(
        self,
        tz: str = "Asia/Tokyo",
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._tz = ZoneInfo(tz)
        self._clock = clock
        self._records: dict[str, QuotaRecord] = {}
        self._lock = threading.Lock()

    def today(self) -> date:
        return self._clock().astimezone(self._tz).date()

    def _count_today(self, identity: str, today: date) -> int:
        record = self._records.get(identity)
        if record is None or record.date != today:
            return 0
        return record.count

    def used(self, identity: str) -> int:
        with self._lock:
            return self._count_today(identity, self.today())

    def remaining(self, identity: str, daily_limit: int) -> int:
        """Calls left for ``identity`` today under ``daily_limit``."""
        return max(0, daily_limit - self.used(identity))

    def consume(self, identity: str, daily_limit: int) -> bool:
        """Take one call from today's allowance.

        Returns False, leaving state untouched, once the limit is reached.
        """
        with self._lock:
            today = self.today()
            count = self._count_today(identity, today)
            if count >= daily_limit:
                logger.debug(f"Quota exhausted for {identity}: {count}/{daily_limit}")
                return False
            self._records[identity] = QuotaRecord(identity=identity, date=today, count=count + 1)
            return True

    def get_record(self, identity: str) -> QuotaRecord | None:
        """Raw stored record, which may be from an earlier day."""
        return self._records.get(identity)

    def load_record(self, record: QuotaRecord) -> None:
        """Seed the ledger with a previously stored record."""
        with self._lock:
            self._records[record.identity] = record
