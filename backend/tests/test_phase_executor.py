"""
Phase Executor Tests

Provider HTTP is replaced by the fake session from conftest.
"""
import pytest

from listingsync.errors import AccountNotFound, ValidationError
from listingsync.extensions import db
from listingsync.models import (
    IntegrationAccount, Location, PerformanceMetric, Review, SearchKeyword, SyncLogEntry,
)
from listingsync.services.sync.phase_executor import PhaseExecutor
from listingsync.services.token_service import TokenLifecycleManager

from conftest import FakeResponse

REVIEWS_URL = '/accounts/100/locations/1/reviews'


def _review(i, **extra):
    item = {
        'name': f'accounts/100/locations/1/reviews/{i}',
        'reviewer': {'displayName': f'Reviewer {i}'},
        'starRating': 'FIVE',
        'comment': f'Review number {i}',
        'createTime': '2025-01-01T10:00:00.123456789Z',
    }
    item.update(extra)
    return item


def _paged(pages, items_key='reviews'):
    """Handler serving pages[n] for pageToken 'p{n}'"""
    def handler(url, kwargs):
        token = (kwargs.get('params') or {}).get('pageToken')
        index = int(token[1:]) if token else 0
        payload = {items_key: pages[index]}
        if index + 1 < len(pages):
            payload['nextPageToken'] = f'p{index + 1}'
        return FakeResponse(200, payload)
    return handler


@pytest.fixture
def executor(app, provider_client):
    manager = TokenLifecycleManager(client=provider_client)
    return PhaseExecutor(token_manager=manager, client=provider_client)


@pytest.fixture
def account(make_account, make_location):
    account = make_account()
    make_location(account)
    return account


class TestReviewsPhase:

    def test_three_full_pages(self, account, executor, fake_session):
        pages = [[_review(p * 50 + i) for i in range(50)] for p in range(3)]
        fake_session.add('GET', REVIEWS_URL, _paged(pages))

        result = executor.run_phase(account.id, 'reviews')

        assert result.status == 'completed'
        assert result.counts['total'] == 150
        assert result.counts['created'] == 150
        assert result.counts['pages'] == 3
        assert Review.query.count() == 150

        entry = db.session.get(SyncLogEntry, result.log_id)
        assert entry.status == 'completed'
        assert entry.ended_at is not None
        assert entry.counts['total'] == 150

    def test_rerun_is_idempotent(self, account, executor, fake_session):
        fake_session.add('GET', REVIEWS_URL, _paged([[_review(1), _review(2)]]))

        executor.run_phase(account.id, 'reviews')
        second = executor.run_phase(account.id, 'reviews')

        assert second.status == 'completed'
        assert second.counts['created'] == 0
        assert second.counts['skipped'] == 2
        assert Review.query.count() == 2

    def test_changed_review_is_updated(self, account, executor, fake_session):
        fake_session.add('GET', REVIEWS_URL,
                         FakeResponse(200, {'reviews': [_review(1)]}),
                         FakeResponse(200, {'reviews': [_review(1, reviewReply={
                             'comment': 'Thanks!', 'updateTime': '2025-01-02T09:00:00Z'})]}))

        executor.run_phase(account.id, 'reviews')
        second = executor.run_phase(account.id, 'reviews')

        assert second.counts['updated'] == 1
        review = Review.query.one()
        assert review.has_reply is True
        assert review.status == 'replied'

    def test_star_rating_and_timestamp_parsing(self, account, executor, fake_session):
        fake_session.add('GET', REVIEWS_URL, FakeResponse(200, {
            'reviews': [_review(1, starRating='TWO')],
        }))

        executor.run_phase(account.id, 'reviews')

        review = Review.query.one()
        assert review.star_rating == 2
        assert review.review_time.microsecond == 123456

    def test_unauthorized_refreshes_once_and_retries(self, account, executor, fake_session):
        fake_session.add('GET', REVIEWS_URL,
                         FakeResponse(401, {'error': {'message': 'expired'}}),
                         FakeResponse(200, {'reviews': [_review(1)]}))
        fake_session.add('POST', 'oauth2.googleapis.com/token', FakeResponse(200, {
            'access_token': 'access-2', 'expires_in': 3600,
        }))

        result = executor.run_phase(account.id, 'reviews')

        assert result.status == 'completed'
        calls = fake_session.calls_to(REVIEWS_URL)
        assert len(calls) == 2
        assert calls[0][2]['headers']['Authorization'] == 'Bearer access-1'
        assert calls[1][2]['headers']['Authorization'] == 'Bearer access-2'
        assert len(fake_session.calls_to('oauth2.googleapis.com/token')) == 1

    def test_second_unauthorized_fails_phase(self, account, executor, fake_session):
        fake_session.add('GET', REVIEWS_URL, FakeResponse(401, {'error': {'message': 'nope'}}))
        fake_session.add('POST', 'oauth2.googleapis.com/token', FakeResponse(200, {
            'access_token': 'access-2', 'expires_in': 3600,
        }))

        result = executor.run_phase(account.id, 'reviews')

        assert result.status == 'failed'
        assert len(fake_session.calls_to(REVIEWS_URL)) == 2

    def test_server_errors_exhaust_retries_and_fail(self, account, executor, fake_session):
        fake_session.add('GET', REVIEWS_URL, FakeResponse(500, {'error': {'message': 'boom'}}))

        result = executor.run_phase(account.id, 'reviews')

        assert result.status == 'failed'
        assert 'HTTP 500' in result.error
        # one attempt plus SYNC_MAX_RETRIES retries
        assert len(fake_session.calls_to(REVIEWS_URL)) == 4
        entry = db.session.get(SyncLogEntry, result.log_id)
        assert entry.status == 'failed'
        assert entry.ended_at is not None

    def test_unexpected_exception_still_closes_entry(self, account, executor, fake_session):
        fake_session.add('GET', REVIEWS_URL, KeyError('surprise'))

        result = executor.run_phase(account.id, 'reviews')

        assert result.status == 'failed'
        assert 'KeyError' in result.error
        assert db.session.get(SyncLogEntry, result.log_id).ended_at is not None

    def test_missing_location_is_not_a_failure(self, account, executor, fake_session):
        fake_session.add('GET', REVIEWS_URL, FakeResponse(404, {'error': {'message': 'not found'}}))

        result = executor.run_phase(account.id, 'reviews')

        assert result.status == 'completed'
        assert result.counts['missing'] == 1

    def test_forbidden_location_fails(self, account, executor, fake_session):
        fake_session.add('GET', REVIEWS_URL, FakeResponse(403, {'error': {'message': 'denied'}}))

        result = executor.run_phase(account.id, 'reviews')

        assert result.status == 'failed'

    def test_page_cap(self, app, account, provider_client, fake_session):
        app.config['SYNC_PAGE_CAP'] = 2
        executor = PhaseExecutor(client=provider_client)

        def endless(url, kwargs):
            token = (kwargs.get('params') or {}).get('pageToken') or 'p0'
            n = int(token[1:])
            return FakeResponse(200, {'reviews': [_review(n)], 'nextPageToken': f'p{n + 1}'})
        fake_session.add('GET', REVIEWS_URL, endless)

        result = executor.run_phase(account.id, 'reviews')

        assert result.status == 'completed'
        assert result.counts['pages'] == 2
        assert result.counts['capped'] == 1
        assert len(fake_session.calls_to(REVIEWS_URL)) == 2

    def test_location_filter(self, account, make_location, executor, fake_session):
        other = make_location(account)
        fake_session.add('GET', '/reviews', FakeResponse(200, {'reviews': []}))

        executor.run_phase(account.id, 'reviews', location_ids=[other.id])

        urls = [c[1] for c in fake_session.calls_to('/reviews')]
        assert len(urls) == 1
        assert urls[0].endswith(f'/locations/{other.short_id}/reviews')


class TestOtherPhases:

    def test_locations_phase_upserts(self, make_account, executor, fake_session):
        account = make_account()
        fake_session.add('GET', '/accounts/100/locations', FakeResponse(200, {
            'locations': [{
                'name': 'locations/900',
                'title': 'Main Street Bakery',
                'phoneNumbers': {'primaryPhone': '+1 555 0100'},
                'categories': {'primaryCategory': {'displayName': 'Bakery'}},
            }],
        }))

        result = executor.run_phase(account.id, 'locations')

        assert result.counts['created'] == 1
        location = Location.query.filter_by(external_id='locations/900').one()
        assert location.title == 'Main Street Bakery'
        assert location.primary_category == 'Bakery'
        assert location.last_synced_at is not None

    def test_unknown_provider_account_is_resolved(self, make_account, executor, fake_session):
        account = make_account(external_account_id=None)
        account_id = account.id
        fake_session.add('GET', 'mybusinessaccountmanagement.googleapis.com/v1/accounts',
                         FakeResponse(200, {'accounts': [{'name': 'accounts/100'}]}))
        fake_session.add('GET', '/accounts/100/locations', FakeResponse(200, {'locations': []}))

        result = executor.run_phase(account_id, 'locations')

        assert result.status == 'completed'
        assert db.session.get(IntegrationAccount, account_id).external_account_id == 'accounts/100'

    def test_performance_series_are_flattened(self, account, executor, fake_session):
        fake_session.add('GET', ':fetchMultiDailyMetricsTimeSeries', FakeResponse(200, {
            'multiDailyMetricTimeSeries': [{
                'dailyMetricTimeSeries': [{
                    'dailyMetric': 'CALL_CLICKS',
                    'timeSeries': {'datedValues': [
                        {'date': {'year': 2025, 'month': 1, 'day': 1}, 'value': '5'},
                        {'date': {'year': 2025, 'month': 1, 'day': 2}},
                    ]},
                }],
            }],
            'nextPageToken': 'ignored',
        }))

        result = executor.run_phase(account.id, 'performance')

        assert result.counts['created'] == 2
        assert len(fake_session.calls_to(':fetchMultiDailyMetricsTimeSeries')) == 1
        values = sorted(m.value for m in PerformanceMetric.query.all())
        assert values == [0, 5]

    def test_keywords_phase(self, account, executor, fake_session):
        fake_session.add('GET', '/searchkeywords/impressions/monthly', FakeResponse(200, {
            'searchKeywordsCounts': [
                {'searchKeyword': 'bakery near me', 'insightsValue': {'value': '120'}},
                {'searchKeyword': 'croissant', 'insightsValue': {'threshold': '15'}},
            ],
        }))

        result = executor.run_phase(account.id, 'keywords')

        assert result.counts['created'] == 2
        rare = SearchKeyword.query.filter_by(keyword='croissant').one()
        assert rare.impressions is None
        assert rare.threshold == 15


class TestValidation:

    def test_unknown_phase_writes_nothing(self, account, executor):
        with pytest.raises(ValidationError):
            executor.run_phase(account.id, 'citations')
        assert SyncLogEntry.query.count() == 0

    def test_unknown_account(self, app, executor):
        with pytest.raises(AccountNotFound):
            executor.run_phase(9999, 'reviews')
        assert SyncLogEntry.query.count() == 0
