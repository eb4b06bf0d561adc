"""
Automation settings model

A row is scoped to a user and optionally narrowed to an account or a single
location. account_id and location_id both null is the user's default row.
"""
from ..extensions import db
from ..utils.clock import utcnow, isoformat

DEFAULT_AUTOMATION_SETTINGS = {
    'enabled': False,
    'min_rating': 4,
    'reply_to_positive': True,
    'reply_to_neutral': False,
    'reply_to_negative': False,
    'require_approval': True,
    'reply_tone': 'friendly',
    'post_frequency': 'none',
    'competitor_monitoring_enabled': False,
    'insights_reports_enabled': False,
}


class AutomationSettings(db.Model):
    __tablename__ = 'automation_settings'

    __table_args__ = (
        db.Index('ix_automation_scope', 'user_id', 'account_id', 'location_id'),
    )

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    user_id = db.Column(db.String(128), nullable=False)
    account_id = db.Column(db.Integer, db.ForeignKey('integration_accounts.id'))
    location_id = db.Column(db.Integer, db.ForeignKey('locations.id'))

    enabled = db.Column(db.Boolean, default=False, nullable=False)
    min_rating = db.Column(db.Integer, default=4, nullable=False)
    reply_to_positive = db.Column(db.Boolean, default=True, nullable=False)
    reply_to_neutral = db.Column(db.Boolean, default=False, nullable=False)
    reply_to_negative = db.Column(db.Boolean, default=False, nullable=False)
    require_approval = db.Column(db.Boolean, default=True, nullable=False)
    reply_tone = db.Column(db.String(32), default='friendly', nullable=False)
    post_frequency = db.Column(db.String(32), default='none', nullable=False)
    competitor_monitoring_enabled = db.Column(db.Boolean, default=False, nullable=False)
    insights_reports_enabled = db.Column(db.Boolean, default=False, nullable=False)

    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    def settings_dict(self):
        return {key: getattr(self, key) for key in DEFAULT_AUTOMATION_SETTINGS}

    def to_dict(self):
        data = self.settings_dict()
        data.update({
            'id': self.id,
            'user_id': self.user_id,
            'account_id': self.account_id,
            'location_id': self.location_id,
            'updated_at': isoformat(self.updated_at),
        })
        return data
