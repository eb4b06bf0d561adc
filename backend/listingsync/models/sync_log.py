"""
Sync log model

One row per phase run. Rows are inserted when a phase starts and closed
exactly once when it ends.
"""
from ..extensions import db
from ..utils.clock import isoformat

STATUS_STARTED = 'started'
STATUS_COMPLETED = 'completed'
STATUS_FAILED = 'failed'


class SyncLogEntry(db.Model):
    __tablename__ = 'sync_logs'

    __table_args__ = (
        db.Index('ix_sync_logs_account_started', 'account_id', 'started_at'),
    )

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    account_id = db.Column(db.Integer, db.ForeignKey('integration_accounts.id'), nullable=False, index=True)
    phase = db.Column(db.String(32), nullable=False)
    status = db.Column(db.String(16), nullable=False, default=STATUS_STARTED)
    started_at = db.Column(db.DateTime, nullable=False)
    ended_at = db.Column(db.DateTime)
    counts = db.Column(db.JSON)
    error = db.Column(db.Text)

    @property
    def duration_ms(self):
        if self.ended_at is None or self.started_at is None:
            return None
        return int((self.ended_at - self.started_at).total_seconds() * 1000)

    def to_dict(self):
        return {
            'id': self.id,
            'account_id': self.account_id,
            'phase': self.phase,
            'status': self.status,
            'started_at': isoformat(self.started_at),
            'ended_at': isoformat(self.ended_at),
            'counts': self.counts or {},
            'error': self.error,
            'duration_ms': self.duration_ms,
        }

    def __repr__(self):
        return f'<SyncLogEntry {self.account_id}:{self.phase} {self.status}>'
