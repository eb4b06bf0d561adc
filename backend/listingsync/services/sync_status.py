"""
Sync Status Reporter - per-phase status snapshot and bounded SSE stream
"""
import json
import threading
from typing import Callable, Dict, Iterator, List, Optional

from flask import current_app

from ..errors import AccountNotFound
from ..extensions import db
from ..models import IntegrationAccount, SyncLogEntry
from ..models.sync_log import STATUS_COMPLETED, STATUS_FAILED, STATUS_STARTED
from ..utils.clock import isoformat, utcnow
from ..utils.logger import get_logger
from ..utils.validators import SYNC_PHASES

logger = get_logger('sync_status')


class SyncStatusReporter:
    """
    Example:
        >>> reporter = SyncStatusReporter()
        >>> snapshot = reporter.get_status(account_id=1)
        >>> snapshot['estimated_remaining_ms']
    """

    def __init__(self, clock: Callable = utcnow, window: Optional[int] = None):
        self.clock = clock
        self.window = window or current_app.config.get('STATUS_LOG_WINDOW', 180)

    def get_status(self, account_id: int) -> Dict:
        if db.session.get(IntegrationAccount, account_id) is None:
            raise AccountNotFound(account_id)

        entries = SyncLogEntry.query.filter_by(account_id=account_id).order_by(
            SyncLogEntry.started_at.desc(), SyncLogEntry.id.desc()
        ).limit(self.window).all()

        latest: Dict[str, SyncLogEntry] = {}
        durations: Dict[str, List[int]] = {phase: [] for phase in SYNC_PHASES}
        for entry in entries:
            if entry.phase not in durations:
                continue
            latest.setdefault(entry.phase, entry)
            duration = entry.duration_ms
            if entry.status == STATUS_COMPLETED and duration is not None and duration > 0:
                durations[entry.phase].append(duration)

        phases = []
        estimated_remaining = 0
        for phase in SYNC_PHASES:
            entry = latest.get(phase)
            samples = durations[phase]
            avg = int(round(sum(samples) / len(samples))) if samples else None
            if entry is None:
                phases.append({
                    'phase': phase,
                    'status': 'idle',
                    'last_started_at': None,
                    'last_ended_at': None,
                    'last_counts': None,
                    'last_error': None,
                    'avg_duration_ms': avg,
                })
                continue
            if entry.status == STATUS_STARTED and avg is not None:
                estimated_remaining += avg
            phases.append({
                'phase': phase,
                'status': entry.status,
                'last_started_at': isoformat(entry.started_at),
                'last_ended_at': isoformat(entry.ended_at),
                'last_counts': entry.counts or {},
                'last_error': entry.error,
                'avg_duration_ms': avg,
            })

        statuses = {p['status'] for p in phases}
        if STATUS_STARTED in statuses:
            overall = 'running'
        elif STATUS_FAILED in statuses:
            overall = 'failed'
        elif STATUS_COMPLETED in statuses:
            overall = 'completed'
        else:
            overall = 'idle'

        return {
            'account_id': account_id,
            'status': overall,
            'phases': phases,
            'estimated_remaining_ms': estimated_remaining,
            'server_time': isoformat(self.clock()),
        }

    def stream(self, account_id: int, interval: Optional[float] = None,
               duration: Optional[float] = None,
               stop_event: Optional[threading.Event] = None) -> Iterator[str]:
        """
        SSE frames: an initial summary, one summary plus keep-alive per
        interval until duration elapses, then a terminal done event

        Closing the generator (client disconnect) stops the loop and the
        database session is released in every case.
        """
        config = current_app.config
        interval = config.get('STATUS_STREAM_INTERVAL', 3) if interval is None else interval
        duration = config.get('STATUS_STREAM_DURATION', 30) if duration is None else duration
        stop_event = stop_event or threading.Event()
        ticks = int(duration // interval) if interval > 0 else 0

        try:
            yield self._summary_frame(account_id)
            for _ in range(ticks):
                if stop_event.wait(interval):
                    break
                yield self._summary_frame(account_id)
                yield ': ping\n\n'
            yield f"data: {json.dumps({'type': 'done', 'at': isoformat(self.clock())})}\n\n"
        finally:
            stop_event.set()
            db.session.remove()
            logger.debug(f"[SyncStatus] Stream for account {account_id} closed")

    def _summary_frame(self, account_id: int) -> str:
        snapshot = self.get_status(account_id)
        # End the read transaction so the next tick sees new entries
        db.session.remove()
        payload = {
            'type': 'summary',
            'phases': snapshot['phases'],
            'status': snapshot['status'],
            'estimated_remaining_ms': snapshot['estimated_remaining_ms'],
            'at': snapshot['server_time'],
        }
        return f"data: {json.dumps(payload)}\n\n"
