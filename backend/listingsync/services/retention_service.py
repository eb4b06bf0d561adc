"""
Retention Service - delete archived data of disconnected accounts

An account disconnected at D with a retention of N days keeps its archived
rows until D + N days. After that the sweep deletes archived child rows
first and then the archived locations left without children.
"""
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import (
    AutomationSettings, IntegrationAccount, Location, Media, PerformanceMetric,
    Post, Question, Review, SearchKeyword,
)
from ..utils.clock import isoformat, utcnow
from ..utils.logger import get_logger

logger = get_logger('retention')

# Deleted in this order; a location is only removed once all of these succeeded
CHILD_STEPS = (
    ('reviews', Review),
    ('questions', Question),
    ('posts', Post),
    ('media', Media),
)


@dataclass
class AccountSweep:
    account_id: int
    deletion_date: datetime
    deleted: Dict[str, int] = field(default_factory=dict)
    errors: Dict[str, str] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return sum(self.deleted.values())

    def to_dict(self):
        return {
            'account_id': self.account_id,
            'deletion_date': isoformat(self.deletion_date),
            'deleted': self.deleted,
            'errors': self.errors,
            'total': self.total,
        }


@dataclass
class SweepReport:
    accounts_processed: int = 0
    accounts_skipped: int = 0
    accounts: List[AccountSweep] = field(default_factory=list)

    @property
    def total_deleted(self) -> int:
        return sum(a.total for a in self.accounts)

    @property
    def ok(self) -> bool:
        return not any(a.errors for a in self.accounts)

    def to_dict(self):
        return {
            'accountsProcessed': self.accounts_processed,
            'accountsSkipped': self.accounts_skipped,
            'totalDeleted': self.total_deleted,
            'accounts': [a.to_dict() for a in self.accounts],
        }


class RetentionService:

    @staticmethod
    def deletion_date(account: IntegrationAccount) -> Optional[datetime]:
        if account.disconnected_at is None or not account.data_retention_days:
            return None
        return account.disconnected_at + timedelta(days=account.data_retention_days)

    @staticmethod
    def run(now: Optional[datetime] = None) -> SweepReport:
        """Sweep every disconnected account; safe to run repeatedly"""
        now = now or utcnow()
        report = SweepReport()
        accounts = IntegrationAccount.query.filter(
            IntegrationAccount.disconnected_at.isnot(None)
        ).order_by(IntegrationAccount.id).all()

        for account in accounts:
            report.accounts_processed += 1
            deletion_date = RetentionService.deletion_date(account)
            if deletion_date is None or now < deletion_date:
                report.accounts_skipped += 1
                continue
            report.accounts.append(RetentionService.sweep_account(account.id, deletion_date))

        logger.info(
            f"[Retention] Sweep done: {report.accounts_processed} accounts processed, "
            f"{report.accounts_skipped} within retention, {report.total_deleted} rows deleted"
        )
        return report

    @staticmethod
    def sweep_account(account_id: int, deletion_date: datetime) -> AccountSweep:
        sweep = AccountSweep(account_id=account_id, deletion_date=deletion_date)
        location_ids = [row[0] for row in db.session.query(Location.id).filter(
            Location.account_id == account_id
        ).all()]
        logger.info(f"[Retention] Cleaning up account {account_id} (retention expired {isoformat(deletion_date)})")

        for name, model in CHILD_STEPS:
            try:
                sweep.deleted[name] = RetentionService._delete_children(model, location_ids, deletion_date)
            except SQLAlchemyError as e:
                db.session.rollback()
                sweep.errors[name] = str(e)[:300]
                logger.error(f"[Retention] account={account_id} deleting {name} failed: {e}")

        if sweep.errors:
            logger.warning(f"[Retention] account={account_id} child cleanup incomplete, keeping locations")
            sweep.deleted['locations'] = 0
            return sweep

        try:
            sweep.deleted['locations'] = RetentionService._delete_locations(account_id, deletion_date)
        except SQLAlchemyError as e:
            db.session.rollback()
            sweep.errors['locations'] = str(e)[:300]
            logger.error(f"[Retention] account={account_id} deleting locations failed: {e}")
        logger.info(f"[Retention] Deleted {sweep.total} items for account {account_id}")
        return sweep

    @staticmethod
    def _delete_children(model, location_ids: List[int], deletion_date: datetime) -> int:
        if not location_ids:
            return 0
        deleted = model.query.filter(
            model.location_id.in_(location_ids),
            model.is_archived.is_(True),
            model.archived_at < deletion_date,
        ).delete(synchronize_session=False)
        db.session.commit()
        return deleted

    @staticmethod
    def _delete_locations(account_id: int, deletion_date: datetime) -> int:
        """Archived, expired locations without any remaining child row"""
        candidates = [row[0] for row in db.session.query(Location.id).filter(
            Location.account_id == account_id,
            Location.is_archived.is_(True),
            Location.archived_at < deletion_date,
        ).all()]
        if not candidates:
            return 0

        childless = []
        for location_id in candidates:
            has_children = any(
                db.session.query(model.id).filter(model.location_id == location_id).first() is not None
                for _, model in CHILD_STEPS
            )
            if not has_children:
                childless.append(location_id)
        if not childless:
            return 0

        for model in (PerformanceMetric, SearchKeyword, AutomationSettings):
            model.query.filter(model.location_id.in_(childless)).delete(synchronize_session=False)
        deleted = Location.query.filter(Location.id.in_(childless)).delete(synchronize_session=False)
        db.session.commit()
        return deleted
