"""
Automation Service - auto-reply state machine and reply drafting

Settings are looked up most-specific first: the location row, then the
account row, then the user's default row, then built-in defaults.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError

from ..errors import ListingSyncError, NotFound, TextGenerationError, ValidationError
from ..extensions import db
from ..models import AutomationSettings, IntegrationAccount, Location, Review
from ..models.automation import DEFAULT_AUTOMATION_SETTINGS
from ..models.review import REVIEW_IN_PROGRESS, REVIEW_PENDING
from ..utils.clock import utcnow
from ..utils.logger import get_logger
from ..utils.validators import (
    POST_FREQUENCIES, REPLY_TONES, validate_action, validate_choice, validate_min_rating,
)
from .text_generation import TextGenerationClient

logger = get_logger('automation')

QUEUE_NOT_CLEARED = 'Auto-reply settings updated, but queue could not be cleared'

BOOLEAN_FIELDS = (
    'enabled', 'reply_to_positive', 'reply_to_neutral', 'reply_to_negative',
    'require_approval', 'competitor_monitoring_enabled', 'insights_reports_enabled',
)


@dataclass
class AutomationResult:
    action: str
    settings: Dict[str, Any] = field(default_factory=dict)
    settings_updated: bool = False
    # None unless the action clears the queue
    queue_cleared: Optional[bool] = None
    cleared_count: int = 0
    error: Optional[str] = None

    @property
    def partial(self) -> bool:
        return self.settings_updated and self.queue_cleared is False

    def to_dict(self):
        return {
            'action': self.action,
            'settings': self.settings,
            'settings_updated': self.settings_updated,
            'queue_cleared': self.queue_cleared,
            'cleared_count': self.cleared_count,
            'error': self.error,
        }


class AutomationService:

    # ==================== scope ====================

    @staticmethod
    def _resolve_scope(user_id: str, location_id: Optional[int], account_id: Optional[int]):
        """Check ownership and derive the account from the location when omitted"""
        if location_id is not None:
            location = db.session.get(Location, location_id)
            if location is None or location.account.user_id != user_id:
                raise NotFound(f'Location {location_id} not found', {'location_id': location_id})
            if account_id is not None and location.account_id != account_id:
                raise ValidationError('Location does not belong to the given account')
            return location.account_id, location_id
        if account_id is not None:
            account = db.session.get(IntegrationAccount, account_id)
            if account is None or account.user_id != user_id:
                raise NotFound(f'Account {account_id} not found', {'account_id': account_id})
        return account_id, None

    @staticmethod
    def _find_row(user_id: str, account_id: Optional[int], location_id: Optional[int]):
        return AutomationSettings.query.filter(
            AutomationSettings.user_id == user_id,
            AutomationSettings.account_id.is_(None) if account_id is None
            else AutomationSettings.account_id == account_id,
            AutomationSettings.location_id.is_(None) if location_id is None
            else AutomationSettings.location_id == location_id,
        ).order_by(AutomationSettings.id).first()

    @staticmethod
    def _effective(user_id: str, account_id: Optional[int], location_id: Optional[int]) -> Dict[str, Any]:
        chain = []
        if location_id is not None:
            chain.append((account_id, location_id))
        if account_id is not None:
            chain.append((account_id, None))
        chain.append((None, None))
        for acc, loc in chain:
            row = AutomationService._find_row(user_id, acc, loc)
            if row is not None:
                return row.settings_dict()
        return dict(DEFAULT_AUTOMATION_SETTINGS)

    @staticmethod
    def _row_for_update(user_id: str, account_id: Optional[int], location_id: Optional[int]) -> AutomationSettings:
        """Exact-scope row, created from the inherited settings when missing"""
        row = AutomationService._find_row(user_id, account_id, location_id)
        if row is None:
            inherited = AutomationService._effective(user_id, account_id, location_id)
            row = AutomationSettings(
                user_id=user_id, account_id=account_id, location_id=location_id, **inherited
            )
            db.session.add(row)
        return row

    # ==================== settings ====================

    @staticmethod
    def get_settings(user_id: str, location_id: Optional[int] = None,
                     account_id: Optional[int] = None) -> Dict[str, Any]:
        account_id, location_id = AutomationService._resolve_scope(user_id, location_id, account_id)
        settings = AutomationService._effective(user_id, account_id, location_id)
        settings.update({'account_id': account_id, 'location_id': location_id})
        return settings

    @staticmethod
    def clean_settings(changes: Dict[str, Any]) -> Dict[str, Any]:
        """Validate a partial settings update; unknown keys are rejected"""
        if not isinstance(changes, dict) or not changes:
            raise ValidationError('No settings provided')
        cleaned: Dict[str, Any] = {}
        for key, value in changes.items():
            if key in BOOLEAN_FIELDS:
                if not isinstance(value, bool):
                    raise ValidationError(f'{key} must be a boolean')
                cleaned[key] = value
            elif key == 'min_rating':
                ok, error, rating = validate_min_rating(value)
                if not ok:
                    raise ValidationError(error)
                cleaned[key] = rating
            elif key == 'reply_tone':
                ok, error, tone = validate_choice(value, REPLY_TONES, 'reply_tone')
                if not ok:
                    raise ValidationError(error)
                cleaned[key] = tone
            elif key == 'post_frequency':
                ok, error, freq = validate_choice(value, POST_FREQUENCIES, 'post_frequency')
                if not ok:
                    raise ValidationError(error)
                cleaned[key] = freq
            else:
                raise ValidationError(f'Unknown setting: {key}')
        return cleaned

    @staticmethod
    def update_settings(user_id: str, changes: Dict[str, Any], location_id: Optional[int] = None,
                        account_id: Optional[int] = None) -> Dict[str, Any]:
        cleaned = AutomationService.clean_settings(changes)
        account_id, location_id = AutomationService._resolve_scope(user_id, location_id, account_id)
        row = AutomationService._row_for_update(user_id, account_id, location_id)
        for key, value in cleaned.items():
            setattr(row, key, value)
        db.session.commit()
        logger.info(f"[Automation] Settings updated for user {user_id} scope=({account_id}, {location_id}): {cleaned}")
        return row.to_dict()

    # ==================== pause / resume / reset ====================

    @staticmethod
    def apply(user_id: str, action: str, location_id: Optional[int] = None,
              account_id: Optional[int] = None) -> AutomationResult:
        """
        pause and reset disable auto-reply, resume enables it. reset then
        returns queued drafts to pending; if only that second step fails the
        result is a partial success and the settings change stays.
        """
        ok, error, action = validate_action(action)
        if not ok:
            raise ValidationError(error)
        account_id, location_id = AutomationService._resolve_scope(user_id, location_id, account_id)

        result = AutomationResult(action=action)
        try:
            row = AutomationService._row_for_update(user_id, account_id, location_id)
            row.enabled = action == 'resume'
            db.session.commit()
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.error(f"[Automation] Failed to update settings for user {user_id}: {e}")
            raise ListingSyncError('Failed to update auto-reply settings') from e

        result.settings_updated = True
        result.settings = row.to_dict()
        logger.info(f"[Automation] user={user_id} action={action} enabled={row.enabled}")

        if action == 'reset':
            try:
                result.cleared_count = AutomationService._clear_queue(user_id, account_id, location_id)
                result.queue_cleared = True
            except SQLAlchemyError as e:
                db.session.rollback()
                logger.error(f"[Automation] Queue reset failed for user {user_id}: {e}")
                result.queue_cleared = False
                result.error = QUEUE_NOT_CLEARED
        return result

    @staticmethod
    def _clear_queue(user_id: str, account_id: Optional[int], location_id: Optional[int]) -> int:
        """Return drafted-but-unreplied reviews in scope to pending"""
        if location_id is not None:
            location_ids = [location_id]
        else:
            query = db.session.query(Location.id).join(
                IntegrationAccount, Location.account_id == IntegrationAccount.id
            ).filter(IntegrationAccount.user_id == user_id)
            if account_id is not None:
                query = query.filter(Location.account_id == account_id)
            location_ids = [row[0] for row in query.all()]
        if not location_ids:
            return 0

        cleared = Review.query.filter(
            Review.location_id.in_(location_ids),
            Review.has_reply.is_(False),
            Review.status == REVIEW_IN_PROGRESS,
        ).update({
            'status': REVIEW_PENDING,
            'ai_suggested_reply': None,
            'ai_generated_at': None,
            'updated_at': utcnow(),
        }, synchronize_session=False)
        db.session.commit()
        logger.info(f"[Automation] Returned {cleared} queued reviews to pending for user {user_id}")
        return cleared

    # ==================== drafting ====================

    @staticmethod
    def _matches_rating(rating: Optional[int], settings: Dict[str, Any]) -> Optional[str]:
        """None when the review qualifies, otherwise the reason it does not"""
        if rating is None:
            return 'Review has no star rating'
        wanted = (
            (rating >= 4 and settings['reply_to_positive'])
            or (rating == 3 and settings['reply_to_neutral'])
            or (rating <= 2 and settings['reply_to_negative'])
        )
        if not wanted:
            return "Review rating doesn't match auto-reply criteria"
        if rating < settings['min_rating']:
            return 'Review rating is below minimum threshold'
        return None

    @staticmethod
    def build_prompt(review: Review, tone: str) -> str:
        business = review.location.title if review.location and review.location.title else 'the business'
        return (
            f"Write a short, {tone} reply from the owner of {business} to a "
            f"{review.star_rating}-star customer review. Do not invent facts.\n\n"
            f"Review: {review.comment or '(no text, rating only)'}"
        )

    @staticmethod
    def draft_reply(user_id: str, review_id: int,
                    generator: Optional[TextGenerationClient] = None) -> Dict[str, Any]:
        """
        Generate a reply draft and queue it for approval

        Eligibility misses and generation failures come back as
        {'success': False, 'error': ...}; only a missing review raises.
        """
        review = db.session.get(Review, review_id)
        if review is None or review.location.account.user_id != user_id:
            raise NotFound(f'Review {review_id} not found', {'review_id': review_id})

        if review.has_reply:
            return {'success': False, 'error': 'Review already has a reply'}

        settings = AutomationService._effective(user_id, review.location.account_id, review.location_id)
        if not settings['enabled']:
            return {'success': False, 'error': 'Auto-reply is disabled'}

        reason = AutomationService._matches_rating(review.star_rating, settings)
        if reason:
            return {'success': False, 'error': reason}

        generator = generator or TextGenerationClient()
        try:
            text = generator.generate(AutomationService.build_prompt(review, settings['reply_tone']))
        except TextGenerationError as e:
            logger.warning(f"[Automation] Draft generation failed for review {review_id}: {e.message}")
            return {'success': False, 'error': e.message}

        review.ai_suggested_reply = text
        review.ai_generated_at = utcnow()
        review.status = REVIEW_IN_PROGRESS
        db.session.commit()
        logger.info(f"[Automation] Draft queued for review {review_id}")
        return {
            'success': True,
            'message': 'AI reply generated and saved for approval',
            'requires_approval': settings['require_approval'],
            'suggested_reply': text,
            'review': review.to_dict(),
        }
