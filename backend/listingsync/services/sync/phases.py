"""
Sync phases - per-phase request building and upsert rules

Each phase knows where its listing lives on the provider, where the items
sit in a page, and how one item maps onto a local row. The executor owns
pagination, logging and error classification.
"""
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Any, Callable, Dict, List, Optional, Tuple

from ...extensions import db
from ...models import (
    Location, Media, PerformanceMetric, Question, Review, SearchKeyword,
)
from ...models.review import REVIEW_PENDING, REVIEW_REPLIED, STAR_RATINGS
from ...utils.clock import parse_timestamp

CREATED = 'created'
UPDATED = 'updated'
SKIPPED = 'skipped'

LOCATION_READ_MASK = 'name,title,storeCode,phoneNumbers,websiteUri,categories,storefrontAddress'

PERFORMANCE_METRICS = (
    'BUSINESS_IMPRESSIONS_DESKTOP_MAPS',
    'BUSINESS_IMPRESSIONS_DESKTOP_SEARCH',
    'BUSINESS_IMPRESSIONS_MOBILE_MAPS',
    'BUSINESS_IMPRESSIONS_MOBILE_SEARCH',
    'BUSINESS_CONVERSATIONS',
    'BUSINESS_DIRECTION_REQUESTS',
    'CALL_CLICKS',
    'WEBSITE_CLICKS',
)


def build_location_resource_name(account_resource: str, location: Location) -> str:
    """accounts/{a}/locations/{l}, the form the v4 reviews and media APIs expect"""
    account_part = account_resource if account_resource.startswith('accounts/') \
        else f'accounts/{account_resource}'
    return f'{account_part}/locations/{location.short_id}'


def _apply(row, fields: Dict[str, Any]) -> str:
    """Copy changed fields onto an existing row; UPDATED or SKIPPED"""
    changed = False
    for key, value in fields.items():
        if getattr(row, key) != value:
            setattr(row, key, value)
            changed = True
    return UPDATED if changed else SKIPPED


def _upsert(model, lookup: Dict[str, Any], fields: Dict[str, Any]) -> str:
    row = model.query.filter_by(**lookup).first()
    if row is None:
        db.session.add(model(**lookup, **fields))
        return CREATED
    return _apply(row, fields)


@dataclass
class SyncContext:
    """What a phase needs to know about the account being synced"""
    account_id: int
    account_resource: str
    config: Dict[str, Any]
    today: date


@dataclass
class PhaseSpec:
    name: str
    # 'account' phases make one listing per account, 'location' phases one per location
    scope: str
    items_key: str
    build_request: Callable[..., Tuple[str, Dict[str, Any]]]
    upsert: Callable[..., List[str]]
    paginated: bool = True


# ==================== locations ====================

def _locations_request(ctx: SyncContext, location: Optional[Location] = None):
    base = ctx.config['PROVIDER_LOCATIONS_BASE'].rstrip('/')
    return (
        f'{base}/{ctx.account_resource}/locations',
        {'readMask': LOCATION_READ_MASK, 'pageSize': ctx.config.get('SYNC_PAGE_SIZE', 100)},
    )


def _upsert_location(ctx: SyncContext, location: Optional[Location], item: Dict[str, Any], now) -> List[str]:
    name = item.get('name')
    if not name:
        return [SKIPPED]
    phones = item.get('phoneNumbers') or {}
    categories = item.get('categories') or {}
    primary_category = (categories.get('primaryCategory') or {}).get('displayName')
    fields = {
        'title': item.get('title'),
        'store_code': item.get('storeCode'),
        'primary_phone': phones.get('primaryPhone'),
        'website_uri': item.get('websiteUri'),
        'primary_category': primary_category,
        'address': item.get('storefrontAddress'),
        'is_archived': False,
        'archived_at': None,
    }
    outcome = _upsert(Location, {'account_id': ctx.account_id, 'external_id': name}, fields)
    row = Location.query.filter_by(account_id=ctx.account_id, external_id=name).first()
    if row is not None:
        row.last_synced_at = now
    return [outcome]


# ==================== reviews ====================

def _reviews_request(ctx: SyncContext, location: Location):
    base = ctx.config['PROVIDER_REVIEWS_BASE'].rstrip('/')
    return (
        f'{base}/{build_location_resource_name(ctx.account_resource, location)}/reviews',
        {'pageSize': min(ctx.config.get('SYNC_PAGE_SIZE', 100), 50)},
    )


def _upsert_review(ctx: SyncContext, location: Location, item: Dict[str, Any], now) -> List[str]:
    name = item.get('name')
    if not name:
        return [SKIPPED]
    reply = item.get('reviewReply') or {}
    has_reply = bool(reply.get('comment'))
    fields = {
        'location_id': location.id,
        'reviewer_name': (item.get('reviewer') or {}).get('displayName'),
        'star_rating': STAR_RATINGS.get(item.get('starRating')),
        'comment': item.get('comment'),
        'review_time': parse_timestamp(item.get('createTime')),
        'reply_text': reply.get('comment'),
        'reply_time': parse_timestamp(reply.get('updateTime')),
        'has_reply': has_reply,
    }
    row = Review.query.filter_by(external_id=name).first()
    if row is None:
        fields['status'] = REVIEW_REPLIED if has_reply else REVIEW_PENDING
        db.session.add(Review(external_id=name, **fields))
        return [CREATED]
    # A queued draft stays queued until a real reply shows up
    if has_reply:
        fields['status'] = REVIEW_REPLIED
    return [_apply(row, fields)]


# ==================== media ====================

def _media_request(ctx: SyncContext, location: Location):
    base = ctx.config['PROVIDER_REVIEWS_BASE'].rstrip('/')
    return (
        f'{base}/{build_location_resource_name(ctx.account_resource, location)}/media',
        {'pageSize': min(ctx.config.get('SYNC_PAGE_SIZE', 100), 100)},
    )


def _upsert_media(ctx: SyncContext, location: Location, item: Dict[str, Any], now) -> List[str]:
    name = item.get('name')
    if not name:
        return [SKIPPED]
    fields = {
        'location_id': location.id,
        'media_format': item.get('mediaFormat'),
        'category': (item.get('locationAssociation') or {}).get('category'),
        'google_url': item.get('googleUrl'),
        'thumbnail_url': item.get('thumbnailUrl'),
        'create_time': parse_timestamp(item.get('createTime')),
    }
    return [_upsert(Media, {'external_id': name}, fields)]


# ==================== questions ====================

def _questions_request(ctx: SyncContext, location: Location):
    base = ctx.config['PROVIDER_QANDA_BASE'].rstrip('/')
    return (
        f'{base}/locations/{location.short_id}/questions',
        {'pageSize': 10, 'answersPerQuestion': 1},
    )


def _upsert_question(ctx: SyncContext, location: Location, item: Dict[str, Any], now) -> List[str]:
    name = item.get('name')
    if not name:
        return [SKIPPED]
    answers = item.get('topAnswers') or []
    top = answers[0] if answers else {}
    fields = {
        'location_id': location.id,
        'author_name': (item.get('author') or {}).get('displayName'),
        'text': item.get('text'),
        'upvote_count': int(item.get('upvoteCount') or 0),
        'answer_text': top.get('text'),
        'answer_time': parse_timestamp(top.get('updateTime') or top.get('createTime')),
        'create_time': parse_timestamp(item.get('createTime')),
    }
    return [_upsert(Question, {'external_id': name}, fields)]


# ==================== performance ====================

def _performance_request(ctx: SyncContext, location: Location):
    base = ctx.config['PROVIDER_PERFORMANCE_BASE'].rstrip('/')
    end = ctx.today
    start = end - timedelta(days=ctx.config.get('PERFORMANCE_LOOKBACK_DAYS', 30))
    return (
        f'{base}/locations/{location.short_id}:fetchMultiDailyMetricsTimeSeries',
        {
            'dailyMetrics': list(PERFORMANCE_METRICS),
            'dailyRange.startDate.year': start.year,
            'dailyRange.startDate.month': start.month,
            'dailyRange.startDate.day': start.day,
            'dailyRange.endDate.year': end.year,
            'dailyRange.endDate.month': end.month,
            'dailyRange.endDate.day': end.day,
        },
    )


def _upsert_performance(ctx: SyncContext, location: Location, item: Dict[str, Any], now) -> List[str]:
    """One item is a multiDailyMetricTimeSeries group; flattened to one row per metric and day"""
    outcomes = []
    for series in item.get('dailyMetricTimeSeries') or []:
        metric = series.get('dailyMetric')
        if not metric:
            outcomes.append(SKIPPED)
            continue
        for point in (series.get('timeSeries') or {}).get('datedValues') or []:
            d = point.get('date') or {}
            try:
                day = date(int(d['year']), int(d['month']), int(d['day']))
            except (KeyError, TypeError, ValueError):
                outcomes.append(SKIPPED)
                continue
            outcomes.append(_upsert(
                PerformanceMetric,
                {'location_id': location.id, 'metric': metric, 'date': day},
                {'value': int(point.get('value') or 0)},
            ))
    return outcomes


# ==================== keywords ====================

def _keywords_request(ctx: SyncContext, location: Location):
    base = ctx.config['PROVIDER_PERFORMANCE_BASE'].rstrip('/')
    end = ctx.today.replace(day=1) - timedelta(days=1)
    start_month = end.month - 2
    start_year = end.year
    if start_month < 1:
        start_month += 12
        start_year -= 1
    return (
        f'{base}/locations/{location.short_id}/searchkeywords/impressions/monthly',
        {
            'monthlyRange.startMonth.year': start_year,
            'monthlyRange.startMonth.month': start_month,
            'monthlyRange.endMonth.year': end.year,
            'monthlyRange.endMonth.month': end.month,
            'pageSize': 100,
        },
    )


def _upsert_keyword(ctx: SyncContext, location: Location, item: Dict[str, Any], now) -> List[str]:
    keyword = item.get('searchKeyword')
    if not keyword:
        return [SKIPPED]
    value = item.get('insightsValue') or {}
    impressions = value.get('value')
    threshold = value.get('threshold')
    # Totals cover the requested range; attributed to the month the sync ran in
    month = ctx.today.strftime('%Y-%m')
    fields = {
        'impressions': int(impressions) if impressions is not None else None,
        'threshold': int(threshold) if threshold is not None else None,
    }
    return [_upsert(
        SearchKeyword,
        {'location_id': location.id, 'keyword': keyword[:255], 'month': month},
        fields,
    )]


PHASE_SPECS: Dict[str, PhaseSpec] = {
    'locations': PhaseSpec('locations', 'account', 'locations', _locations_request, _upsert_location),
    'reviews': PhaseSpec('reviews', 'location', 'reviews', _reviews_request, _upsert_review),
    'media': PhaseSpec('media', 'location', 'mediaItems', _media_request, _upsert_media),
    'questions': PhaseSpec('questions', 'location', 'questions', _questions_request, _upsert_question),
    'performance': PhaseSpec(
        'performance', 'location', 'multiDailyMetricTimeSeries',
        _performance_request, _upsert_performance, paginated=False,
    ),
    'keywords': PhaseSpec('keywords', 'location', 'searchKeywordsCounts', _keywords_request, _upsert_keyword),
}
