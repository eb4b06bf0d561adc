"""
Sync Phase Executor - run one named phase for one account

Writes a started log entry, pages through the provider listing, upserts
every item and closes the entry as completed or failed. A failing phase
never touches another phase's entries.
"""
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional

from flask import current_app

from ...errors import AccountNotFound, ListingSyncError, ProviderError, ValidationError
from ...extensions import db
from ...models import IntegrationAccount, Location
from ...utils.clock import utcnow
from ...utils.logger import get_logger
from ...utils.validators import SYNC_PHASES
from ..provider_client import ProviderClient
from ..sync_log_broadcaster import sync_event_broadcaster
from ..token_service import TokenLifecycleManager
from .log_collector import SyncLogCollector
from .phases import PHASE_SPECS, PhaseSpec, SyncContext

logger = get_logger('phase_executor')


@dataclass
class PhaseResult:
    phase: str
    status: str
    counts: Dict[str, int] = field(default_factory=dict)
    error: Optional[str] = None
    log_id: Optional[int] = None

    @property
    def ok(self) -> bool:
        return self.status == 'completed'

    def to_dict(self):
        return {
            'phase': self.phase,
            'status': self.status,
            'counts': self.counts,
            'error': self.error,
            'log_id': self.log_id,
        }


class PhaseExecutor:
    """
    Example:
        >>> executor = PhaseExecutor()
        >>> result = executor.run_phase(account_id=1, phase='reviews')
        >>> result.status, result.counts['total']
        ('completed', 150)
    """

    def __init__(self, token_manager: Optional[TokenLifecycleManager] = None,
                 client: Optional[ProviderClient] = None, clock: Callable = utcnow):
        self.config = current_app.config
        self.client = client or ProviderClient.from_config(self.config)
        self.token_manager = token_manager or TokenLifecycleManager(client=self.client, clock=clock)
        self.clock = clock
        self.page_cap = max(1, int(self.config.get('SYNC_PAGE_CAP', 50)))

    def run_phase(self, account_id: int, phase: str,
                  location_ids: Optional[Iterable[int]] = None) -> PhaseResult:
        """
        Execute one phase

        Raises ValidationError for an unknown phase and AccountNotFound for a
        missing account, before any log entry is written. Every other failure
        is recorded on the entry and returned as a failed PhaseResult.
        """
        if phase not in SYNC_PHASES:
            raise ValidationError(f"Unknown sync phase '{phase}'", {'phase': phase})
        account = db.session.get(IntegrationAccount, account_id)
        if account is None:
            raise AccountNotFound(account_id)

        spec = PHASE_SPECS[phase]
        collector = SyncLogCollector(account_id, phase, clock=self.clock)
        entry = collector.start()
        sync_event_broadcaster.phase_started(account_id, phase, entry.to_dict())
        logger.info(f"[PhaseExecutor] account={account_id} phase={phase} started")

        try:
            supplier = self.token_manager.supplier(account_id)
            ctx = self._context(account, supplier)
            if spec.scope == 'account':
                self._run_listing(spec, ctx, None, supplier, collector)
            else:
                for location in self._locations(account_id, location_ids):
                    self._run_listing(spec, ctx, location, supplier, collector)
            db.session.commit()
            entry = collector.complete()
        except ListingSyncError as e:
            logger.warning(f"[PhaseExecutor] account={account_id} phase={phase} failed: {e.message}")
            entry = collector.fail(e.message)
        except Exception as e:
            logger.exception(f"[PhaseExecutor] account={account_id} phase={phase} crashed: {e}")
            entry = collector.fail(f'{e.__class__.__name__}: {e}')

        result = PhaseResult(
            phase=phase,
            status=entry.status,
            counts=dict(entry.counts or {}),
            error=entry.error,
            log_id=entry.id,
        )
        sync_event_broadcaster.phase_finished(account_id, phase, entry.to_dict())
        return result

    def _context(self, account: IntegrationAccount, supplier) -> SyncContext:
        """Resolve the provider account resource, looking it up once if unknown"""
        if not account.external_account_id:
            accounts = self.client.list_accounts(supplier)
            if not accounts or not accounts[0].get('name'):
                raise ProviderError('No provider account is visible to this connection')
            account.external_account_id = accounts[0]['name']
            account.account_name = account.account_name or accounts[0].get('accountName')
            db.session.commit()
            logger.info(
                f"[PhaseExecutor] account={account.id} resolved provider account "
                f"{account.external_account_id}"
            )
        return SyncContext(
            account_id=account.id,
            account_resource=account.external_account_id,
            config=self.config,
            today=self.clock().date(),
        )

    @staticmethod
    def _locations(account_id: int, location_ids: Optional[Iterable[int]]) -> List[Location]:
        query = Location.query.filter_by(account_id=account_id, is_archived=False)
        if location_ids is not None:
            ids = list(location_ids)
            if not ids:
                return []
            query = query.filter(Location.id.in_(ids))
        return query.order_by(Location.id).all()

    def _run_listing(self, spec: PhaseSpec, ctx: SyncContext, location: Optional[Location],
                     supplier, collector: SyncLogCollector) -> None:
        """Follow one listing's pagination, committing after every page"""
        url, base_params = spec.build_request(ctx, location)
        page_token = None
        pages = 0
        while True:
            params = dict(base_params)
            if page_token:
                params['pageToken'] = page_token
            try:
                payload = self.client.get_json(url, supplier, params=params)
            except ProviderError as e:
                if e.status_code == 404 and location is not None:
                    logger.info(
                        f"[PhaseExecutor] {spec.name}: no data for {location.external_id} (404)"
                    )
                    collector.record('missing')
                    return
                raise

            pages += 1
            collector.record('pages')
            items = payload.get(spec.items_key) or []
            if not isinstance(items, list):
                raise ProviderError(
                    f"Malformed {spec.name} page: '{spec.items_key}' is not a list",
                    details={'url': url},
                )
            now = self.clock()
            for item in items:
                if not isinstance(item, dict):
                    collector.record_outcome('skipped')
                    continue
                for outcome in spec.upsert(ctx, location, item, now):
                    collector.record_outcome(outcome)
            db.session.commit()

            page_token = payload.get('nextPageToken') if spec.paginated else None
            if not page_token:
                return
            if pages >= self.page_cap:
                logger.warning(
                    f"[PhaseExecutor] {spec.name}: page cap {self.page_cap} reached for "
                    f"{location.external_id if location else ctx.account_resource}, stopping"
                )
                collector.record('capped')
                return
