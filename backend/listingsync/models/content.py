"""
Posts, questions and media mirrored per location
"""
from ..extensions import db
from ..utils.clock import utcnow, isoformat


class Post(db.Model):
    """Local post published on a listing"""
    __tablename__ = 'posts'

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    location_id = db.Column(db.Integer, db.ForeignKey('locations.id'), nullable=False, index=True)
    external_id = db.Column(db.String(255), unique=True, nullable=False)

    summary = db.Column(db.Text)
    topic_type = db.Column(db.String(32))
    state = db.Column(db.String(32))
    search_url = db.Column(db.String(512))
    create_time = db.Column(db.DateTime)
    update_time = db.Column(db.DateTime)

    is_archived = db.Column(db.Boolean, default=False, nullable=False, index=True)
    archived_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'location_id': self.location_id,
            'external_id': self.external_id,
            'summary': self.summary,
            'topic_type': self.topic_type,
            'state': self.state,
            'search_url': self.search_url,
            'create_time': isoformat(self.create_time),
            'update_time': isoformat(self.update_time),
            'is_archived': self.is_archived,
        }


class Question(db.Model):
    """Customer question with its top answer"""
    __tablename__ = 'questions'

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    location_id = db.Column(db.Integer, db.ForeignKey('locations.id'), nullable=False, index=True)
    external_id = db.Column(db.String(255), unique=True, nullable=False)

    author_name = db.Column(db.String(255))
    text = db.Column(db.Text)
    upvote_count = db.Column(db.Integer, default=0)
    answer_text = db.Column(db.Text)
    answer_time = db.Column(db.DateTime)
    create_time = db.Column(db.DateTime)

    is_archived = db.Column(db.Boolean, default=False, nullable=False, index=True)
    archived_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'location_id': self.location_id,
            'external_id': self.external_id,
            'author_name': self.author_name,
            'text': self.text,
            'upvote_count': self.upvote_count,
            'answer_text': self.answer_text,
            'answer_time': isoformat(self.answer_time),
            'create_time': isoformat(self.create_time),
            'is_archived': self.is_archived,
        }


class Media(db.Model):
    __tablename__ = 'media'

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    location_id = db.Column(db.Integer, db.ForeignKey('locations.id'), nullable=False, index=True)
    external_id = db.Column(db.String(255), unique=True, nullable=False)

    media_format = db.Column(db.String(16))  # PHOTO / VIDEO
    category = db.Column(db.String(64))
    google_url = db.Column(db.String(1024))
    thumbnail_url = db.Column(db.String(1024))
    create_time = db.Column(db.DateTime)

    is_archived = db.Column(db.Boolean, default=False, nullable=False, index=True)
    archived_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'location_id': self.location_id,
            'external_id': self.external_id,
            'media_format': self.media_format,
            'category': self.category,
            'google_url': self.google_url,
            'thumbnail_url': self.thumbnail_url,
            'create_time': isoformat(self.create_time),
            'is_archived': self.is_archived,
        }
