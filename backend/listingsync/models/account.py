"""
Integration account model
"""
from ..extensions import db
from ..utils.clock import utcnow, isoformat
from ..utils.crypto import encrypt_token, decrypt_token


class IntegrationAccount(db.Model):
    """A user's connection to the external listing provider"""
    __tablename__ = 'integration_accounts'

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    user_id = db.Column(db.String(128), nullable=False, index=True)
    # Provider resource name, e.g. "accounts/1234567890"
    external_account_id = db.Column(db.String(255))
    account_name = db.Column(db.String(255))
    email = db.Column(db.String(255))

    # Encrypted at rest, use the properties below
    _access_token = db.Column('access_token', db.Text)
    _refresh_token = db.Column('refresh_token', db.Text)
    token_expires_at = db.Column(db.DateTime)

    is_active = db.Column(db.Boolean, default=True, nullable=False)
    last_sync_at = db.Column(db.DateTime)
    sync_schedule = db.Column(db.String(32), default='manual', nullable=False)

    disconnected_at = db.Column(db.DateTime, index=True)
    data_retention_days = db.Column(db.Integer, default=30, nullable=False)

    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    locations = db.relationship('Location', backref='account', lazy='dynamic')

    @property
    def access_token(self):
        return decrypt_token(self._access_token)

    @access_token.setter
    def access_token(self, value):
        self._access_token = encrypt_token(value)

    @property
    def refresh_token(self):
        return decrypt_token(self._refresh_token)

    @refresh_token.setter
    def refresh_token(self, value):
        self._refresh_token = encrypt_token(value)

    @property
    def has_refresh_token(self) -> bool:
        return bool(self._refresh_token)

    def clear_tokens(self):
        self._access_token = None
        self._refresh_token = None
        self.token_expires_at = None

    def to_dict(self):
        """Serializable view; tokens never leave the server"""
        return {
            'id': self.id,
            'user_id': self.user_id,
            'external_account_id': self.external_account_id,
            'account_name': self.account_name,
            'email': self.email,
            'is_active': self.is_active,
            'has_refresh_token': self.has_refresh_token,
            'token_expires_at': isoformat(self.token_expires_at),
            'last_sync_at': isoformat(self.last_sync_at),
            'sync_schedule': self.sync_schedule,
            'disconnected_at': isoformat(self.disconnected_at),
            'data_retention_days': self.data_retention_days,
            'created_at': isoformat(self.created_at),
        }

    def __repr__(self):
        return f'<IntegrationAccount {self.id} {self.external_account_id}>'
