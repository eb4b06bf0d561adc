"""
Sync Log Collector - Persist one sync log entry per phase run

The entry is inserted when the phase starts so the status reporter can see it
running, and closed exactly once with the final status, counts and error.
"""
import threading
from typing import Callable, Dict, Optional

from ...extensions import db
from ...models import SyncLogEntry
from ...models.sync_log import STATUS_COMPLETED, STATUS_FAILED, STATUS_STARTED
from ...utils.clock import utcnow
from ...utils.logger import get_logger

logger = get_logger('log_collector')


class SyncLogCollector:
    """Counts and lifecycle for one phase run.

    Example:
        >>> collector = SyncLogCollector(account_id=1, phase='reviews')
        >>> collector.start()
        >>> collector.record('created', 3)
        >>> collector.complete()
    """

    # Counters every entry carries, even when zero
    BASE_COUNTS = ('total', 'created', 'updated', 'skipped', 'pages')

    MAX_ERROR_LENGTH = 1000

    def __init__(self, account_id: int, phase: str, clock: Callable = utcnow):
        self.account_id = account_id
        self.phase = phase
        self.clock = clock
        self.counts: Dict[str, int] = {key: 0 for key in self.BASE_COUNTS}
        self.entry: Optional[SyncLogEntry] = None
        self._closed = False
        self._lock = threading.Lock()

    def start(self) -> SyncLogEntry:
        """Insert the started entry and commit it"""
        self.entry = SyncLogEntry(
            account_id=self.account_id,
            phase=self.phase,
            status=STATUS_STARTED,
            started_at=self.clock(),
            counts=dict(self.counts),
        )
        db.session.add(self.entry)
        db.session.commit()
        return self.entry

    def record(self, key: str, amount: int = 1) -> None:
        with self._lock:
            self.counts[key] = self.counts.get(key, 0) + amount

    def record_outcome(self, outcome: str) -> None:
        """Record one upserted item: outcome is created, updated or skipped"""
        with self._lock:
            self.counts['total'] += 1
            self.counts[outcome] = self.counts.get(outcome, 0) + 1

    def get_counts(self) -> Dict[str, int]:
        with self._lock:
            return dict(self.counts)

    @property
    def closed(self) -> bool:
        return self._closed

    def complete(self) -> SyncLogEntry:
        return self._close(STATUS_COMPLETED, None)

    def fail(self, error: str) -> SyncLogEntry:
        return self._close(STATUS_FAILED, (error or 'Unknown error')[:self.MAX_ERROR_LENGTH])

    def _close(self, status: str, error: Optional[str]) -> SyncLogEntry:
        if self.entry is None:
            raise RuntimeError('SyncLogCollector.start() was not called')
        if self._closed:
            raise RuntimeError(f'Sync log entry {self.entry.id} is already closed')

        entry_id = self.entry.id
        # The session may hold a failed transaction from the phase body
        db.session.rollback()
        # Only an open entry is closed; another process may have closed it as stale
        updated = SyncLogEntry.query.filter(
            SyncLogEntry.id == entry_id,
            SyncLogEntry.ended_at.is_(None),
        ).update({
            'status': status,
            'ended_at': self.clock(),
            'counts': self.get_counts(),
            'error': error,
        }, synchronize_session=False)
        db.session.commit()

        entry = db.session.get(SyncLogEntry, entry_id)
        self.entry = entry
        self._closed = True
        if not updated:
            logger.warning(
                f"[SyncLog] account={self.account_id} phase={self.phase} entry {entry_id} "
                f"was already closed as {entry.status}, keeping it"
            )
            return entry
        logger.info(
            f"[SyncLog] account={self.account_id} phase={self.phase} -> {status} "
            f"counts={entry.counts}" + (f" error={error}" if error else '')
        )
        return entry
