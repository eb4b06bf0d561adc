"""
Sync Service - orchestrates phase runs per integration account

Phases of one account run strictly in order and one at a time; different
accounts run in parallel on a bounded worker pool. Components:
- sync.phase_executor: runs one phase and writes its log entry
- sync.log_collector: log entry lifecycle
- sync_log_broadcaster: Socket.IO push of phase and run events
"""
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, Iterable, List, Optional

from flask import current_app

from ..errors import AccountNotFound, ValidationError
from ..extensions import db
from ..models import IntegrationAccount, SyncLogEntry
from ..models.sync_log import STATUS_FAILED, STATUS_STARTED
from ..utils.clock import isoformat, utcnow
from ..utils.logger import get_logger, log_sync_event
from ..utils.validators import SYNC_PHASES
from .sync.phase_executor import PhaseExecutor, PhaseResult
from .sync_log_broadcaster import sync_event_broadcaster

logger = get_logger('sync')

HOURLY_MIN_GAP = timedelta(minutes=30)


@dataclass
class SyncRunResult:
    account_id: int
    phases: List[PhaseResult] = field(default_factory=list)
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None

    @property
    def failed_phases(self) -> List[str]:
        return [p.phase for p in self.phases if not p.ok]

    @property
    def status(self) -> str:
        if not self.phases or not self.failed_phases:
            return 'completed'
        if len(self.failed_phases) == len(self.phases):
            return 'failed'
        return 'partial'

    def to_dict(self):
        return {
            'account_id': self.account_id,
            'status': self.status,
            'failed_phases': self.failed_phases,
            'phases': [p.to_dict() for p in self.phases],
            'started_at': isoformat(self.started_at),
            'ended_at': isoformat(self.ended_at),
        }


@dataclass
class SyncBatch:
    """Accounts handed to the worker pool by one start_sync call"""
    started: List[int] = field(default_factory=list)
    already_running: List[int] = field(default_factory=list)
    futures: Dict[int, Future] = field(default_factory=dict)

    def wait(self, timeout: Optional[float] = None) -> Dict[int, SyncRunResult]:
        return {account_id: f.result(timeout=timeout) for account_id, f in self.futures.items()}

    def to_dict(self):
        return {'started': self.started, 'already_running': self.already_running}


class SyncService:
    """Sync orchestration.

    Features:
    - fixed phase order, a failing phase never aborts later phases
    - in-flight guard: at most one run per account at a time
    - bounded worker pool across accounts (SYNC_MAX_WORKERS)
    - stale log cleanup for entries abandoned by a crashed worker
    - provider-schedule trigger for hourly/daily/twice-daily/weekly accounts
    """

    _in_flight: set = set()
    _in_flight_lock = threading.Lock()
    _pool: Optional[ThreadPoolExecutor] = None
    _pool_lock = threading.Lock()

    # ==================== single account ====================

    @staticmethod
    def run_sync(account_id: int, phases: Optional[Iterable[str]] = None,
                 location_ids: Optional[Iterable[int]] = None,
                 executor: Optional[PhaseExecutor] = None,
                 clock: Callable = utcnow) -> SyncRunResult:
        """
        Run the requested phases for one account, in canonical order

        Must be called inside an app context. Raises AccountNotFound or
        ValidationError before anything runs; phase failures are reported in
        the result, never raised.
        """
        account = db.session.get(IntegrationAccount, account_id)
        if account is None:
            raise AccountNotFound(account_id)
        if not account.is_active:
            raise ValidationError(f'Account {account_id} is disconnected', {'account_id': account_id})

        requested = set(phases) if phases else set(SYNC_PHASES)
        unknown = requested - set(SYNC_PHASES)
        if unknown:
            raise ValidationError(f'Unknown sync phases: {sorted(unknown)}')
        ordered = [p for p in SYNC_PHASES if p in requested]
        location_ids = list(location_ids) if location_ids is not None else None

        executor = executor or PhaseExecutor(clock=clock)
        result = SyncRunResult(account_id=account_id, started_at=clock())
        log_sync_event(account_id, 'run_started', {'phases': ordered})

        for phase in ordered:
            result.phases.append(executor.run_phase(account_id, phase, location_ids=location_ids))

        result.ended_at = clock()
        if any(p.ok for p in result.phases):
            account = db.session.get(IntegrationAccount, account_id)
            account.last_sync_at = result.ended_at
            db.session.commit()

        log_sync_event(account_id, 'run_finished', {
            'status': result.status, 'failed_phases': result.failed_phases,
        })
        sync_event_broadcaster.run_completed(account_id, result.status, {
            'failed_phases': result.failed_phases,
            'counts': {p.phase: p.counts for p in result.phases},
        })
        return result

    # ==================== background runs ====================

    @classmethod
    def _get_pool(cls, max_workers: int) -> ThreadPoolExecutor:
        with cls._pool_lock:
            if cls._pool is None:
                cls._pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix='sync')
                logger.info(f"[SyncService] Worker pool started with {max_workers} workers")
            return cls._pool

    @classmethod
    def shutdown(cls, wait: bool = True) -> None:
        with cls._pool_lock:
            if cls._pool is not None:
                cls._pool.shutdown(wait=wait)
                cls._pool = None

    @classmethod
    def is_running(cls, account_id: int) -> bool:
        with cls._in_flight_lock:
            return account_id in cls._in_flight

    @classmethod
    def start_sync(cls, account_ids: Iterable[int], phases: Optional[Iterable[str]] = None,
                   location_ids: Optional[Dict[int, List[int]]] = None) -> SyncBatch:
        """Queue background runs; accounts already syncing are reported, not queued.

        Args:
            account_ids: accounts to sync
            phases: phase subset, all phases when None
            location_ids: optional per-account location restriction
        """
        app = current_app._get_current_object()
        pool = cls._get_pool(app.config.get('SYNC_MAX_WORKERS', 3))
        phases = list(phases) if phases else None
        batch = SyncBatch()

        for account_id in dict.fromkeys(account_ids):
            with cls._in_flight_lock:
                if account_id in cls._in_flight:
                    batch.already_running.append(account_id)
                    logger.info(f"[SyncService] Account {account_id} already syncing, not queued")
                    continue
                cls._in_flight.add(account_id)
            locs = (location_ids or {}).get(account_id)
            batch.futures[account_id] = pool.submit(cls._run_in_worker, app, account_id, phases, locs)
            batch.started.append(account_id)

        logger.info(
            f"Sync task started: {len(batch.started)} accounts queued, "
            f"{len(batch.already_running)} already running"
        )
        return batch

    @classmethod
    def _run_in_worker(cls, app, account_id: int, phases, location_ids) -> Optional[SyncRunResult]:
        """Worker entry point with top-level error handling"""
        with app.app_context():
            try:
                return cls.run_sync(account_id, phases, location_ids)
            except Exception as e:
                logger.error(f"[FatalError] Sync worker for account {account_id} crashed: {e}")
                db.session.rollback()
                raise
            finally:
                with cls._in_flight_lock:
                    cls._in_flight.discard(account_id)
                db.session.remove()

    # ==================== maintenance ====================

    @staticmethod
    def cleanup_stale_logs(timeout_seconds: Optional[int] = None, now: Optional[datetime] = None) -> int:
        """Close started entries older than the timeout as failed.

        A worker that died mid-phase leaves its entry open forever, which
        would make the status reporter show the phase as running.

        Returns:
            Number of entries closed
        """
        if timeout_seconds is None:
            timeout_seconds = current_app.config.get('SYNC_STALE_TIMEOUT', 1800)
        now = now or utcnow()
        cutoff = now - timedelta(seconds=timeout_seconds)

        stale = SyncLogEntry.query.filter(
            SyncLogEntry.status == STATUS_STARTED,
            SyncLogEntry.ended_at.is_(None),
            SyncLogEntry.started_at < cutoff,
        ).all()

        closed = 0
        for entry in stale:
            if SyncService.is_running(entry.account_id):
                continue
            age = int((now - entry.started_at).total_seconds())
            logger.warning(
                f"[StaleTaskCleanup] account={entry.account_id} phase={entry.phase} "
                f"started {age}s ago with no end, marking as failed"
            )
            # A worker may close the entry between the select and this update
            closed += SyncLogEntry.query.filter(
                SyncLogEntry.id == entry.id,
                SyncLogEntry.ended_at.is_(None),
            ).update({
                'status': STATUS_FAILED,
                'ended_at': now,
                'error': 'Sync terminated abnormally (no completion recorded), please restart sync',
            }, synchronize_session=False)

        db.session.commit()
        if closed:
            logger.info(f"[StaleTaskCleanup] Cleaned up {closed} stale log entries")
        return closed

    # ==================== scheduling ====================

    @staticmethod
    def is_due(account: IntegrationAccount, now: datetime) -> bool:
        schedule = account.sync_schedule or 'manual'
        if schedule == 'hourly':
            return account.last_sync_at is None or now - account.last_sync_at >= HOURLY_MIN_GAP
        if schedule == 'daily':
            return now.hour == 0
        if schedule == 'twice-daily':
            return now.hour in (9, 18)
        if schedule == 'weekly':
            return now.weekday() == 0 and now.hour == 0
        return False

    @staticmethod
    def due_accounts(now: Optional[datetime] = None) -> List[IntegrationAccount]:
        """Active accounts whose schedule says they sync at this hour"""
        now = now or utcnow()
        accounts = IntegrationAccount.query.filter(
            IntegrationAccount.is_active.is_(True),
            IntegrationAccount.sync_schedule != 'manual',
        ).order_by(IntegrationAccount.id).all()
        return [a for a in accounts if SyncService.is_due(a, now)]

    @classmethod
    def run_scheduled(cls, now: Optional[datetime] = None) -> Dict:
        """Queue every due account; the cron caller does not wait for completion"""
        now = now or utcnow()
        due = cls.due_accounts(now)
        if not due:
            logger.info(f"[ScheduledSync] No accounts due at {isoformat(now)}")
            return {'due': [], 'started': [], 'already_running': [], 'at': isoformat(now)}
        batch = cls.start_sync([a.id for a in due])
        logger.info(f"[ScheduledSync] {len(batch.started)} accounts queued")
        return {
            'due': [a.id for a in due],
            'started': batch.started,
            'already_running': batch.already_running,
            'at': isoformat(now),
        }
