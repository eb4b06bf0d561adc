"""
Account Service - connect, list, configure and disconnect integration accounts
"""
from typing import Any, Dict, List

from ..errors import AccountNotFound, ValidationError
from ..extensions import db
from ..models import (
    AutomationSettings, IntegrationAccount, Location, Media, PerformanceMetric,
    Post, Question, Review, SearchKeyword,
)
from ..utils.clock import isoformat, utcnow
from ..utils.logger import get_logger
from ..utils.validators import (
    DISCONNECT_OPTIONS, SYNC_SCHEDULES, validate_choice, validate_retention_days,
)

logger = get_logger('accounts')

ANONYMOUS_NAME = 'Anonymous User'
CHILD_MODELS = (Review, Question, Post, Media)


class AccountService:

    @staticmethod
    def list_accounts(user_id: str) -> List[IntegrationAccount]:
        return IntegrationAccount.query.filter_by(user_id=user_id).order_by(
            IntegrationAccount.created_at.desc(), IntegrationAccount.id.desc()
        ).all()

    @staticmethod
    def get_owned(user_id: str, account_id: int) -> IntegrationAccount:
        """Account owned by user_id; other users' accounts look nonexistent"""
        account = db.session.get(IntegrationAccount, account_id)
        if account is None or account.user_id != user_id:
            raise AccountNotFound(account_id)
        return account

    @staticmethod
    def summary(account: IntegrationAccount) -> Dict[str, Any]:
        data = account.to_dict()
        data['location_count'] = Location.query.filter_by(
            account_id=account.id, is_archived=False
        ).count()
        return data

    @staticmethod
    def update_settings(user_id: str, account_id: int, changes: Dict[str, Any]) -> IntegrationAccount:
        account = AccountService.get_owned(user_id, account_id)
        if not isinstance(changes, dict) or not changes:
            raise ValidationError('No settings provided')

        updates = {}
        for key, value in changes.items():
            if key == 'data_retention_days':
                ok, error, days = validate_retention_days(value)
                if not ok:
                    raise ValidationError(error, {'field': key})
                updates[key] = days
            elif key == 'sync_schedule':
                ok, error, schedule = validate_choice(value, SYNC_SCHEDULES, 'sync_schedule')
                if not ok:
                    raise ValidationError(error, {'field': key})
                updates[key] = schedule
            else:
                raise ValidationError(f'Unknown setting: {key}', {'field': key})

        for key, value in updates.items():
            setattr(account, key, value)
        db.session.commit()
        logger.info(f"[Accounts] Account {account_id} settings updated: {updates}")
        return account

    # ==================== disconnect ====================

    @staticmethod
    def disconnect(user_id: str, account_id: int, option: str = 'keep') -> Dict[str, Any]:
        """
        Soft-disconnect an account

        keep    archive locations and children, anonymize reviewer and author names
        delete  hard-delete all mirrored data now
        export  build a JSON export of the mirrored data, then archive as keep
        """
        ok, error, option = validate_choice(option, DISCONNECT_OPTIONS, 'option', default='keep')
        if not ok:
            raise ValidationError(error)
        account = AccountService.get_owned(user_id, account_id)
        now = utcnow()

        export = AccountService.export_data(account) if option == 'export' else None

        location_ids = [row[0] for row in db.session.query(Location.id).filter(
            Location.account_id == account.id
        ).all()]

        if option == 'delete':
            deleted = AccountService._delete_mirrored(location_ids)
        else:
            deleted = 0
            AccountService._archive_mirrored(account.id, location_ids, now)

        account.is_active = False
        account.disconnected_at = now
        account.clear_tokens()
        db.session.commit()

        logger.info(f"[Accounts] Account {account_id} disconnected (option={option})")
        result = {
            'account_id': account.id,
            'option': option,
            'disconnected_at': isoformat(now),
            'data_retention_days': account.data_retention_days,
            'deleted': deleted,
        }
        if export is not None:
            result['export'] = export
        return result

    @staticmethod
    def _archive_mirrored(account_id: int, location_ids: List[int], now) -> None:
        Location.query.filter(
            Location.account_id == account_id, Location.is_archived.is_(False)
        ).update({'is_archived': True, 'archived_at': now}, synchronize_session=False)
        if not location_ids:
            return
        for model in CHILD_MODELS:
            model.query.filter(
                model.location_id.in_(location_ids), model.is_archived.is_(False)
            ).update({'is_archived': True, 'archived_at': now}, synchronize_session=False)
        Review.query.filter(Review.location_id.in_(location_ids)).update(
            {'reviewer_name': ANONYMOUS_NAME}, synchronize_session=False
        )
        Question.query.filter(Question.location_id.in_(location_ids)).update(
            {'author_name': ANONYMOUS_NAME}, synchronize_session=False
        )

    @staticmethod
    def _delete_mirrored(location_ids: List[int]) -> int:
        if not location_ids:
            return 0
        deleted = 0
        for model in CHILD_MODELS + (PerformanceMetric, SearchKeyword, AutomationSettings):
            deleted += model.query.filter(model.location_id.in_(location_ids)).delete(
                synchronize_session=False
            )
        deleted += Location.query.filter(Location.id.in_(location_ids)).delete(synchronize_session=False)
        return deleted

    @staticmethod
    def export_data(account: IntegrationAccount) -> Dict[str, Any]:
        locations = Location.query.filter_by(account_id=account.id).order_by(Location.id).all()
        exported = []
        for location in locations:
            item = location.to_dict()
            for key, model in (('reviews', Review), ('questions', Question),
                               ('posts', Post), ('media', Media)):
                item[key] = [row.to_dict() for row in model.query.filter_by(
                    location_id=location.id).order_by(model.id).all()]
            exported.append(item)
        return {
            'account': account.to_dict(),
            'exported_at': isoformat(utcnow()),
            'locations': exported,
        }
