"""
Pytest Configuration and Fixtures

This module provides shared fixtures for all tests.
"""
import json
import os
import sys
from datetime import timedelta

import pytest

# Add backend to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from listingsync import create_app
from listingsync.config import TestingConfig
from listingsync.extensions import db
from listingsync.models import IntegrationAccount, Location, Review
from listingsync.services.provider_client import ProviderClient
from listingsync.services.rate_limiter import reset_rate_limiter
from listingsync.services.sync_service import SyncService
from listingsync.utils.clock import utcnow

USER_ID = 'user-1'
OTHER_USER_ID = 'user-2'


class FakeResponse:
    """Stand-in for requests.Response"""

    def __init__(self, status_code=200, payload=None, headers=None):
        self.status_code = status_code
        self._payload = payload
        self.headers = headers or {}
        self.text = json.dumps(payload) if payload is not None else ''

    def json(self):
        if self._payload is None:
            raise ValueError('No JSON body')
        return self._payload


class FakeSession:
    """
    Routes requests by method and URL fragment

    A route holds a list of responses served in order (the last one
    repeats), or a callable taking (url, kwargs). Exceptions in the list
    are raised instead of returned.
    """

    def __init__(self):
        self.routes = []
        self.calls = []

    def add(self, method, fragment, *responses):
        self.routes.insert(0, (method, fragment, list(responses)))
        return self

    def request(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs))
        for route_method, fragment, queue in self.routes:
            if route_method == method and fragment in url:
                item = queue[0] if len(queue) == 1 else queue.pop(0)
                if callable(item) and not isinstance(item, FakeResponse):
                    item = item(url, kwargs)
                if isinstance(item, Exception):
                    raise item
                return item
        raise AssertionError(f'Unexpected request {method} {url}')

    def calls_to(self, fragment, method=None):
        return [c for c in self.calls if fragment in c[1] and (method is None or c[0] == method)]


@pytest.fixture
def app():
    """Fresh application and in-memory database per test."""
    app = create_app(TestingConfig)

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()

    reset_rate_limiter()
    SyncService.shutdown()
    with SyncService._in_flight_lock:
        SyncService._in_flight.clear()


@pytest.fixture
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture
def auth_headers():
    """Identity header of the default test user."""
    return {'X-User-Id': USER_ID}


@pytest.fixture
def fake_session():
    return FakeSession()


@pytest.fixture
def provider_client(app, fake_session):
    """Provider client wired to the fake session, without real sleeps."""
    return ProviderClient.from_config(app.config, session=fake_session, sleep=lambda seconds: None)


@pytest.fixture
def make_account(app):
    def factory(user_id=USER_ID, **kwargs):
        values = {
            'external_account_id': 'accounts/100',
            'account_name': 'Test Business Group',
            'is_active': True,
            'token_expires_at': utcnow() + timedelta(hours=1),
        }
        values.update(kwargs)
        access_token = values.pop('access_token', 'access-1')
        refresh_token = values.pop('refresh_token', 'refresh-1')
        account = IntegrationAccount(user_id=user_id, **values)
        account.access_token = access_token
        account.refresh_token = refresh_token
        db.session.add(account)
        db.session.commit()
        return account
    return factory


@pytest.fixture
def make_location(app):
    counter = {'n': 0}

    def factory(account, **kwargs):
        counter['n'] += 1
        values = {
            'external_id': f'locations/{counter["n"]}',
            'title': f'Store {counter["n"]}',
        }
        values.update(kwargs)
        location = Location(account_id=account.id, **values)
        db.session.add(location)
        db.session.commit()
        return location
    return factory


@pytest.fixture
def make_review(app):
    counter = {'n': 0}

    def factory(location, **kwargs):
        counter['n'] += 1
        values = {
            'external_id': f'{location.external_id}/reviews/{counter["n"]}',
            'reviewer_name': 'Jane Doe',
            'star_rating': 5,
            'comment': 'Great service',
        }
        values.update(kwargs)
        review = Review(location_id=location.id, **values)
        db.session.add(review)
        db.session.commit()
        return review
    return factory
