"""
Review model

Reviews double as the auto-reply queue: status moves pending -> in_progress
when a draft is generated and in_progress -> replied once a reply exists.
"""
from ..extensions import db
from ..utils.clock import utcnow, isoformat

REVIEW_PENDING = 'pending'
REVIEW_IN_PROGRESS = 'in_progress'
REVIEW_REPLIED = 'replied'

STAR_RATINGS = {'ONE': 1, 'TWO': 2, 'THREE': 3, 'FOUR': 4, 'FIVE': 5}


class Review(db.Model):
    __tablename__ = 'reviews'

    __table_args__ = (
        db.Index('ix_reviews_queue', 'has_reply', 'status'),
    )

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    location_id = db.Column(db.Integer, db.ForeignKey('locations.id'), nullable=False, index=True)
    external_id = db.Column(db.String(255), unique=True, nullable=False)

    reviewer_name = db.Column(db.String(255))
    star_rating = db.Column(db.Integer)
    comment = db.Column(db.Text)
    review_time = db.Column(db.DateTime)
    reply_text = db.Column(db.Text)
    reply_time = db.Column(db.DateTime)

    has_reply = db.Column(db.Boolean, default=False, nullable=False)
    status = db.Column(db.String(16), default=REVIEW_PENDING, nullable=False)
    ai_suggested_reply = db.Column(db.Text)
    ai_generated_at = db.Column(db.DateTime)

    is_archived = db.Column(db.Boolean, default=False, nullable=False, index=True)
    archived_at = db.Column(db.DateTime)

    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    location = db.relationship('Location', backref=db.backref('reviews', lazy='dynamic'))

    def to_dict(self):
        return {
            'id': self.id,
            'location_id': self.location_id,
            'external_id': self.external_id,
            'reviewer_name': self.reviewer_name,
            'star_rating': self.star_rating,
            'comment': self.comment,
            'review_time': isoformat(self.review_time),
            'reply_text': self.reply_text,
            'reply_time': isoformat(self.reply_time),
            'has_reply': self.has_reply,
            'status': self.status,
            'ai_suggested_reply': self.ai_suggested_reply,
            'ai_generated_at': isoformat(self.ai_generated_at),
            'is_archived': self.is_archived,
        }

    def __repr__(self):
        return f'<Review {self.external_id} {self.status}>'
