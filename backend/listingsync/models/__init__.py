"""
Database models
"""
from .account import IntegrationAccount
from .sync_log import SyncLogEntry
from .location import Location
from .review import Review
from .content import Post, Question, Media
from .insights import PerformanceMetric, SearchKeyword
from .automation import AutomationSettings

__all__ = [
    'IntegrationAccount',
    'SyncLogEntry',
    'Location',
    'Review',
    'Post',
    'Question',
    'Media',
    'PerformanceMetric',
    'SearchKeyword',
    'AutomationSettings',
]
