"""
Sync building blocks

- backoff: bounded exponential backoff with jitter
- session_pool: HTTP session pooling for connection reuse
- log_collector: sync log entry lifecycle
- phases: per-phase request and upsert rules
- phase_executor: runs one phase for one account
"""
from .backoff import BackoffPolicy
from .session_pool import RequestSessionPool, get_request_session_pool

__all__ = [
    'BackoffPolicy',
    'RequestSessionPool',
    'get_request_session_pool',
]
