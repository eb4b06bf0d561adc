"""
Sync Orchestrator Tests
"""
from datetime import datetime, timedelta

import pytest

from listingsync.errors import AccountNotFound, ValidationError
from listingsync.extensions import db
from listingsync.models import IntegrationAccount, SyncLogEntry
from listingsync.services.sync.log_collector import SyncLogCollector
from listingsync.services.sync.phase_executor import PhaseExecutor, PhaseResult
from listingsync.services.sync_service import SyncBatch, SyncService
from listingsync.utils.validators import SYNC_PHASES

from conftest import FakeResponse

NOW = datetime(2025, 3, 3, 0, 10, 0)  # a Monday


class RecordingExecutor:
    """Executor stub that records phase order and fails selected phases"""

    def __init__(self, failing=()):
        self.calls = []
        self.failing = set(failing)

    def run_phase(self, account_id, phase, location_ids=None):
        self.calls.append((account_id, phase, location_ids))
        if phase in self.failing:
            return PhaseResult(phase=phase, status='failed', error='boom')
        return PhaseResult(phase=phase, status='completed', counts={'total': 1})


class TestRunSync:

    def test_phases_run_in_canonical_order(self, make_account):
        account = make_account()
        executor = RecordingExecutor()

        SyncService.run_sync(account.id, ['keywords', 'reviews', 'locations'], executor=executor)

        assert [c[1] for c in executor.calls] == ['locations', 'reviews', 'keywords']

    def test_all_phases_by_default(self, make_account):
        account = make_account()
        executor = RecordingExecutor()

        result = SyncService.run_sync(account.id, executor=executor)

        assert [p.phase for p in result.phases] == list(SYNC_PHASES)
        assert result.status == 'completed'

    def test_failure_does_not_abort_later_phases(self, make_account):
        account = make_account()
        executor = RecordingExecutor(failing={'reviews'})

        result = SyncService.run_sync(account.id, executor=executor)

        assert len(executor.calls) == len(SYNC_PHASES)
        assert result.status == 'partial'
        assert result.failed_phases == ['reviews']

    def test_all_failed(self, make_account):
        account = make_account()
        executor = RecordingExecutor(failing=SYNC_PHASES)

        result = SyncService.run_sync(account.id, ['reviews', 'media'], executor=executor)

        assert result.status == 'failed'
        assert db.session.get(IntegrationAccount, account.id).last_sync_at is None

    def test_last_sync_at_set_when_any_phase_succeeds(self, make_account):
        account = make_account()
        executor = RecordingExecutor(failing={'media'})

        SyncService.run_sync(account.id, ['reviews', 'media'], executor=executor, clock=lambda: NOW)

        assert db.session.get(IntegrationAccount, account.id).last_sync_at == NOW

    def test_location_restriction_is_passed_through(self, make_account):
        account = make_account()
        executor = RecordingExecutor()

        SyncService.run_sync(account.id, ['reviews'], location_ids=[3, 4], executor=executor)

        assert executor.calls == [(account.id, 'reviews', [3, 4])]

    def test_unknown_phase_rejected(self, make_account):
        account = make_account()
        with pytest.raises(ValidationError):
            SyncService.run_sync(account.id, ['reviews', 'citations'], executor=RecordingExecutor())

    def test_disconnected_account_rejected(self, make_account):
        account = make_account(is_active=False)
        with pytest.raises(ValidationError):
            SyncService.run_sync(account.id, executor=RecordingExecutor())

    def test_missing_account(self, app):
        with pytest.raises(AccountNotFound):
            SyncService.run_sync(12345, executor=RecordingExecutor())

    def test_real_executor_isolates_failed_phase(self, make_account, make_location,
                                                 provider_client, fake_session):
        account = make_account()
        make_location(account)
        fake_session.add('GET', '/accounts/100/locations', FakeResponse(200, {'locations': []}))
        fake_session.add('GET', '/reviews', FakeResponse(500, {'error': {'message': 'down'}}))
        fake_session.add('GET', '/media', FakeResponse(200, {'mediaItems': []}))
        executor = PhaseExecutor(client=provider_client)

        result = SyncService.run_sync(account.id, ['locations', 'reviews', 'media'], executor=executor)

        assert result.failed_phases == ['reviews']
        statuses = {e.phase: e.status for e in SyncLogEntry.query.all()}
        assert statuses == {'locations': 'completed', 'reviews': 'failed', 'media': 'completed'}
        assert all(e.ended_at is not None for e in SyncLogEntry.query.all())


class TestStartSync:

    def test_account_already_running_is_not_queued(self, make_account, monkeypatch):
        account = make_account()
        with SyncService._in_flight_lock:
            SyncService._in_flight.add(account.id)

        batch = SyncService.start_sync([account.id])

        assert batch.started == []
        assert batch.already_running == [account.id]

    def test_runs_in_worker_and_releases_guard(self, make_account, monkeypatch):
        account = make_account()
        account_id = account.id
        seen = []

        def fake_run_sync(account_id, phases=None, location_ids=None, **kwargs):
            seen.append((account_id, phases, location_ids, SyncService.is_running(account_id)))
            return 'done'
        monkeypatch.setattr(SyncService, 'run_sync', staticmethod(fake_run_sync))

        batch = SyncService.start_sync([account_id, account_id], ['reviews'],
                                       location_ids={account_id: [7]})
        results = batch.wait(timeout=5)

        assert batch.started == [account_id]
        assert results == {account_id: 'done'}
        assert seen == [(account_id, ['reviews'], [7], True)]
        assert SyncService.is_running(account_id) is False

    def test_worker_crash_releases_guard(self, make_account, monkeypatch):
        account = make_account()
        account_id = account.id

        def crashing(*args, **kwargs):
            raise RuntimeError('worker died')
        monkeypatch.setattr(SyncService, 'run_sync', staticmethod(crashing))

        batch = SyncService.start_sync([account_id])
        with pytest.raises(RuntimeError):
            batch.wait(timeout=5)
        assert SyncService.is_running(account_id) is False


class TestStaleCleanup:

    def _entry(self, account, started_at, status='started'):
        entry = SyncLogEntry(account_id=account.id, phase='reviews', status=status,
                             started_at=started_at, counts={})
        db.session.add(entry)
        db.session.commit()
        return entry.id

    def test_old_started_entry_marked_failed(self, make_account):
        account = make_account()
        stale_id = self._entry(account, NOW - timedelta(hours=1))
        fresh_id = self._entry(account, NOW - timedelta(minutes=5))

        closed = SyncService.cleanup_stale_logs(timeout_seconds=1800, now=NOW)

        assert closed == 1
        stale = db.session.get(SyncLogEntry, stale_id)
        assert stale.status == 'failed'
        assert stale.ended_at == NOW
        assert 'abnormally' in stale.error
        assert db.session.get(SyncLogEntry, fresh_id).status == 'started'

    def test_running_account_is_left_alone(self, make_account):
        account = make_account()
        entry_id = self._entry(account, NOW - timedelta(hours=1))
        with SyncService._in_flight_lock:
            SyncService._in_flight.add(account.id)

        assert SyncService.cleanup_stale_logs(timeout_seconds=1800, now=NOW) == 0
        assert db.session.get(SyncLogEntry, entry_id).status == 'started'

    def test_phase_finishing_after_cleanup_keeps_closed_entry(self, make_account):
        account = make_account()
        clock = [NOW]
        collector = SyncLogCollector(account.id, 'reviews', clock=lambda: clock[0])
        entry_id = collector.start().id

        assert SyncService.cleanup_stale_logs(timeout_seconds=1800, now=NOW + timedelta(hours=1)) == 1

        clock[0] = NOW + timedelta(hours=2)
        collector.record_outcome('created')
        entry = collector.complete()

        assert collector.closed is True
        assert entry.id == entry_id
        assert (entry.status, entry.ended_at) == ('failed', NOW + timedelta(hours=1))
        assert entry.counts['total'] == 0
        assert 'abnormally' in entry.error

    def test_open_entry_is_closed_once(self, make_account):
        account = make_account()
        collector = SyncLogCollector(account.id, 'media', clock=lambda: NOW)
        collector.start()
        collector.record_outcome('updated')

        entry = collector.complete()

        assert (entry.status, entry.ended_at) == ('completed', NOW)
        assert entry.counts['updated'] == 1
        with pytest.raises(RuntimeError):
            collector.fail('late')


class TestSchedule:

    @pytest.mark.parametrize('schedule, now, expected', [
        ('daily', datetime(2025, 3, 4, 0, 5), True),
        ('daily', datetime(2025, 3, 4, 13, 0), False),
        ('twice-daily', datetime(2025, 3, 4, 9, 0), True),
        ('twice-daily', datetime(2025, 3, 4, 18, 30), True),
        ('twice-daily', datetime(2025, 3, 4, 12, 0), False),
        ('weekly', datetime(2025, 3, 3, 0, 0), True),
        ('weekly', datetime(2025, 3, 4, 0, 0), False),
        ('manual', datetime(2025, 3, 3, 0, 0), False),
    ])
    def test_is_due(self, make_account, schedule, now, expected):
        account = make_account(sync_schedule=schedule)
        assert SyncService.is_due(account, now) is expected

    def test_hourly_respects_minimum_gap(self, make_account):
        recent = make_account(sync_schedule='hourly', last_sync_at=NOW - timedelta(minutes=20))
        older = make_account(sync_schedule='hourly', last_sync_at=NOW - timedelta(minutes=45))
        never = make_account(sync_schedule='hourly', last_sync_at=None)

        due = SyncService.due_accounts(NOW)

        assert [a.id for a in due] == [older.id, never.id]
        assert recent.id not in [a.id for a in due]

    def test_inactive_accounts_are_never_due(self, make_account):
        make_account(sync_schedule='hourly', is_active=False)
        assert SyncService.due_accounts(NOW) == []

    def test_run_scheduled_queues_due_accounts(self, make_account, monkeypatch):
        due = make_account(sync_schedule='daily')
        make_account(sync_schedule='manual')
        queued = []

        def fake_start_sync(cls, account_ids, phases=None, location_ids=None):
            queued.extend(account_ids)
            return SyncBatch(started=list(account_ids))
        monkeypatch.setattr(SyncService, 'start_sync', classmethod(fake_start_sync))

        result = SyncService.run_scheduled(NOW)

        assert queued == [due.id]
        assert result['started'] == [due.id]


class TestBroadcaster:

    @pytest.fixture
    def emitted(self, monkeypatch):
        from listingsync import websocket
        from listingsync.services.sync_log_broadcaster import sync_event_broadcaster
        events = []
        monkeypatch.setattr(websocket, 'broadcast_to_account',
                            lambda event, account_id, payload: events.append((event, account_id, payload)))
        sync_event_broadcaster.enable_websocket()
        yield events
        sync_event_broadcaster.disable_websocket()

    def test_run_emits_completion_event(self, make_account, emitted):
        account = make_account()

        SyncService.run_sync(account.id, ['reviews'], executor=RecordingExecutor())

        assert emitted[-1][0] == 'sync_completed'
        assert emitted[-1][2]['status'] == 'completed'

    def test_emit_failure_does_not_fail_sync(self, make_account, monkeypatch, emitted):
        from listingsync import websocket

        def broken(event, account_id, payload):
            raise RuntimeError('no server')
        monkeypatch.setattr(websocket, 'broadcast_to_account', broken)
        account = make_account()

        result = SyncService.run_sync(account.id, ['reviews'], executor=RecordingExecutor())

        assert result.status == 'completed'
