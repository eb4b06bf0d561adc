"""
Location model
"""
from ..extensions import db
from ..utils.clock import utcnow, isoformat


class Location(db.Model):
    """A business listing mirrored from the provider"""
    __tablename__ = 'locations'

    __table_args__ = (
        db.UniqueConstraint('account_id', 'external_id', name='uq_locations_account_external'),
    )

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    account_id = db.Column(db.Integer, db.ForeignKey('integration_accounts.id'), nullable=False, index=True)
    # Provider resource name, e.g. "locations/987"
    external_id = db.Column(db.String(255), nullable=False)

    title = db.Column(db.String(255))
    store_code = db.Column(db.String(64))
    primary_phone = db.Column(db.String(64))
    website_uri = db.Column(db.String(512))
    primary_category = db.Column(db.String(255))
    address = db.Column(db.JSON)

    is_archived = db.Column(db.Boolean, default=False, nullable=False, index=True)
    archived_at = db.Column(db.DateTime)
    last_synced_at = db.Column(db.DateTime)

    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    @property
    def short_id(self) -> str:
        """Bare location id without the "locations/" prefix"""
        return self.external_id.rsplit('/', 1)[-1]

    def to_dict(self):
        return {
            'id': self.id,
            'account_id': self.account_id,
            'external_id': self.external_id,
            'title': self.title,
            'store_code': self.store_code,
            'primary_phone': self.primary_phone,
            'website_uri': self.website_uri,
            'primary_category': self.primary_category,
            'address': self.address,
            'is_archived': self.is_archived,
            'archived_at': isoformat(self.archived_at),
            'last_synced_at': isoformat(self.last_synced_at),
        }

    def __repr__(self):
        return f'<Location {self.external_id}>'
