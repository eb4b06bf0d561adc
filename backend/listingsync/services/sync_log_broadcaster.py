"""
Sync event broadcaster - pushes phase and run events to Socket.IO rooms

Polling and the SSE status stream read the sync log table and do not depend
on this; it only makes dashboards update without waiting for the next poll.
"""
import threading

from ..utils.clock import isoformat, utcnow
from ..utils.logger import get_logger

logger = get_logger('sync_broadcaster')


class SyncEventBroadcaster:
    """Singleton; a no-op until enable_websocket() is called"""

    _instance = None
    _lock = threading.Lock()

    def __new__(cls):
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = super().__new__(cls)
                    cls._instance._initialized = False
        return cls._instance

    def __init__(self):
        if self._initialized:
            return
        self._initialized = True
        self._websocket_enabled = False
        self._sent = 0

    def enable_websocket(self):
        self._websocket_enabled = True

    def disable_websocket(self):
        self._websocket_enabled = False

    @property
    def enabled(self) -> bool:
        return self._websocket_enabled

    @property
    def sent_count(self) -> int:
        return self._sent

    def _emit(self, event: str, account_id: int, payload: dict) -> bool:
        if not self._websocket_enabled:
            return False
        from ..websocket import broadcast_to_account
        try:
            broadcast_to_account(event, account_id, {'at': isoformat(utcnow()), **payload})
        except (RuntimeError, OSError, ValueError) as e:
            # A push failure must not fail the sync that triggered it
            logger.warning(f"[SyncBroadcaster] Failed to emit {event} for account {account_id}: {e}")
            return False
        self._sent += 1
        return True

    def phase_started(self, account_id: int, phase: str, entry: dict) -> bool:
        return self._emit('sync_phase', account_id, {'phase': phase, 'status': 'started', 'entry': entry})

    def phase_finished(self, account_id: int, phase: str, entry: dict) -> bool:
        return self._emit('sync_phase', account_id, {
            'phase': phase, 'status': entry.get('status'), 'entry': entry,
        })

    def run_completed(self, account_id: int, status: str, summary: dict = None) -> bool:
        return self._emit('sync_completed', account_id, {'status': status, 'summary': summary or {}})


sync_event_broadcaster = SyncEventBroadcaster()
