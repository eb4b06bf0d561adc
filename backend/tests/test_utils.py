"""
Utility Tests
"""
import random

import pytest
import requests
from loguru import logger

from listingsync.services.sync.backoff import BackoffPolicy
from listingsync.services.sync.session_pool import get_request_session_pool
from listingsync.utils.clock import isoformat, parse_timestamp
from listingsync.utils.crypto import TokenCrypto
from listingsync.utils.logger import get_logger, mask_secrets
from listingsync.utils.validators import (
    validate_ids_list, validate_phases, validate_retention_days,
)


class TestBackoffPolicy:

    def test_delay_is_jittered_and_capped(self):
        policy = BackoffPolicy(base_delay=1.0, max_delay=8.0, rng=random.Random(7))

        for attempt in range(6):
            ceiling = min(2 ** attempt, 8.0)
            delay = policy.compute_delay(attempt)
            assert ceiling * 0.5 <= delay <= ceiling

    def test_retry_after_wins_but_is_capped(self):
        policy = BackoffPolicy(base_delay=1.0, max_delay=10.0)

        assert policy.compute_delay(0, retry_after=4) == 4.0
        assert policy.compute_delay(0, retry_after=120) == 10.0

    def test_attempt_cap(self):
        policy = BackoffPolicy(max_retries=2)
        assert [policy.should_retry(a) for a in range(4)] == [True, True, False, False]

    def test_wait_uses_injected_sleep(self):
        slept = []
        policy = BackoffPolicy(base_delay=2.0, max_delay=2.0, sleep=slept.append, rng=random.Random(1))

        delay = policy.wait(0)

        assert slept == [delay]
        assert 1.0 <= delay <= 2.0


class TestValidators:

    def test_phases_default_and_order(self):
        assert validate_phases(None)[2][0] == 'locations'
        assert validate_phases(['keywords', 'reviews'])[2] == ['reviews', 'keywords']
        assert validate_phases(['citations'])[0] is False

    def test_ids_list(self):
        assert validate_ids_list([3, '3', 5])[2] == [3, 5]
        assert validate_ids_list([True])[0] is False
        assert validate_ids_list([0])[0] is False
        assert validate_ids_list(list(range(1, 5)), max_count=3)[0] is False

    @pytest.mark.parametrize('value, ok', [(1, True), (365, True), (0, False), (366, False), ('x', False)])
    def test_retention_days(self, value, ok):
        assert validate_retention_days(value)[0] is ok


class TestTimestamps:

    def test_nanosecond_fraction_is_truncated(self):
        parsed = parse_timestamp('2025-01-02T03:04:05.123456789Z')
        assert parsed.microsecond == 123456
        assert parsed.tzinfo is None

    def test_offset_is_normalised(self):
        assert isoformat(parse_timestamp('2025-01-02T05:00:00+02:00')) == '2025-01-02T03:00:00Z'

    @pytest.mark.parametrize('value', [None, '', 'yesterday', 42])
    def test_unparseable(self, value):
        assert parse_timestamp(value) is None


class TestTokenCrypto:

    def test_encrypts_with_key(self):
        crypto = TokenCrypto(TokenCrypto.generate_key())

        stored = crypto.encrypt('secret-token')

        assert stored != 'secret-token'
        assert crypto.decrypt(stored) == 'secret-token'

    def test_plaintext_without_key(self):
        crypto = TokenCrypto(None)
        assert crypto.is_secure is False
        assert crypto.decrypt(crypto.encrypt('secret-token')) == 'secret-token'

    def test_legacy_plaintext_rows_still_read(self):
        crypto = TokenCrypto(TokenCrypto.generate_key())
        assert crypto.decrypt('stored-before-key') == 'stored-before-key'

    def test_invalid_key(self):
        with pytest.raises(ValueError):
            TokenCrypto('not-a-fernet-key')


class TestLogMasking:

    @pytest.mark.parametrize('raw, masked', [
        ('GET /v1/reviews Authorization: Bearer ya29.a0-Xy_z',
         'GET /v1/reviews Authorization: Bearer ***'),
        ('grant_type=refresh_token&refresh_token=r-1&client_secret=s3',
         'grant_type=refresh_token&refresh_token=***&client_secret=***'),
        ('exchange code=4/0AbC redirect_uri=https://app',
         'exchange code=*** redirect_uri=https://app'),
        ("token response {'access_token': 'abc', 'expires_in': 3599}",
         "token response {'access_token': '***', 'expires_in': 3599}"),
        ('error_code=VALIDATION_ERROR status_code=400',
         'error_code=VALIDATION_ERROR status_code=400'),
    ])
    def test_mask_secrets(self, raw, masked):
        assert mask_secrets(raw) == masked

    def test_sinks_receive_masked_messages(self, app):
        messages = []
        sink_id = logger.add(lambda m: messages.append(m.record['message']), level='INFO')
        try:
            get_logger('test').info('retrying with Bearer access-1')
        finally:
            logger.remove(sink_id)

        assert messages == ['retrying with Bearer ***']


class TestRequestSessionPool:

    def _pool(self, monkeypatch, outcome):
        pool = get_request_session_pool()

        def fake_request(method, url, **kwargs):
            if isinstance(outcome, Exception):
                raise outcome
            response = requests.Response()
            response.status_code = outcome
            return response
        monkeypatch.setattr(pool._session, 'request', fake_request)
        return pool

    def test_counts_throttled_responses(self, monkeypatch):
        pool = self._pool(monkeypatch, 429)
        before = pool.get_stats()

        response = pool.request('GET', 'https://provider.test/v1/accounts')

        after = pool.get_stats()
        assert response.status_code == 429
        assert after['requests'] - before['requests'] == 1
        assert after['throttled'] - before['throttled'] == 1
        assert after['errors'] == before['errors']

    def test_counts_connection_errors(self, monkeypatch):
        pool = self._pool(monkeypatch, requests.ConnectionError('refused'))
        before = pool.get_stats()

        with pytest.raises(requests.ConnectionError):
            pool.request('POST', 'https://provider.test/token')

        assert pool.get_stats()['errors'] - before['errors'] == 1
