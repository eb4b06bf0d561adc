"""
Performance metrics and search keyword rows

Both are keyed by location plus their natural key rather than a provider
resource name, and are deleted together with their location.
"""
from ..extensions import db
from ..utils.clock import utcnow


class PerformanceMetric(db.Model):
    __tablename__ = 'performance_metrics'

    __table_args__ = (
        db.UniqueConstraint('location_id', 'metric', 'date', name='uq_performance_metric_day'),
    )

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    location_id = db.Column(db.Integer, db.ForeignKey('locations.id'), nullable=False, index=True)
    metric = db.Column(db.String(64), nullable=False)
    date = db.Column(db.Date, nullable=False)
    value = db.Column(db.BigInteger, default=0, nullable=False)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    def to_dict(self):
        return {
            'location_id': self.location_id,
            'metric': self.metric,
            'date': self.date.isoformat() if self.date else None,
            'value': self.value,
        }


class SearchKeyword(db.Model):
    __tablename__ = 'search_keywords'

    __table_args__ = (
        db.UniqueConstraint('location_id', 'keyword', 'month', name='uq_search_keyword_month'),
    )

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    location_id = db.Column(db.Integer, db.ForeignKey('locations.id'), nullable=False, index=True)
    keyword = db.Column(db.String(255), nullable=False)
    month = db.Column(db.String(7), nullable=False)  # YYYY-MM
    impressions = db.Column(db.BigInteger)
    # Set instead of impressions when the provider only reports "below N"
    threshold = db.Column(db.BigInteger)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    def to_dict(self):
        return {
            'location_id': self.location_id,
            'keyword': self.keyword,
            'month': self.month,
            'impressions': self.impressions,
            'threshold': self.threshold,
        }
