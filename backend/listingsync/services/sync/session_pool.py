"""
Request Session Pool - HTTP connection pooling for provider calls

One requests.Session is shared by the provider client, the OAuth token
endpoint and the text generation client so TCP and TLS sessions are reused.
"""
import threading
from typing import Dict

import requests
from requests.adapters import HTTPAdapter

from ...utils.logger import get_logger

logger = get_logger('session_pool')


class RequestSessionPool:
    """Process-wide pooled session.

    Retries are not configured on the adapter: transient failures are
    retried by the provider client, which knows which calls are safe to
    repeat and when a token must be refreshed first.

    Example:
        >>> pool = get_request_session_pool()
        >>> response = pool.request('GET', 'https://example.com', timeout=10)
        >>> pool.get_stats()
        {'requests': 1, 'errors': 0, 'throttled': 0}
    """

    _instance = None
    _lock = threading.Lock()

    POOL_CONNECTIONS = 10
    POOL_MAXSIZE = 20

    def __new__(cls):
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = super().__new__(cls)
                    cls._instance._initialized = False
        return cls._instance

    def __init__(self):
        if self._initialized:
            return

        self._session = requests.Session()

        adapter = HTTPAdapter(
            pool_connections=self.POOL_CONNECTIONS,
            pool_maxsize=self.POOL_MAXSIZE,
            max_retries=0,
            pool_block=False
        )
        self._session.mount('http://', adapter)
        self._session.mount('https://', adapter)

        self._stats = {'requests': 0, 'errors': 0, 'throttled': 0}
        self._stats_lock = threading.Lock()

        self._initialized = True
        logger.info(
            f"[RequestSessionPool] Initialized: "
            f"pool_connections={self.POOL_CONNECTIONS}, pool_maxsize={self.POOL_MAXSIZE}"
        )

    def request(self, method: str, url: str, **kwargs) -> requests.Response:
        """Send a request through the pooled session.

        Raises:
            requests.RequestException: on connection level failure
        """
        with self._stats_lock:
            self._stats['requests'] += 1

        try:
            response = self._session.request(method, url, **kwargs)
        except requests.RequestException:
            with self._stats_lock:
                self._stats['errors'] += 1
            raise
        if response.status_code == 429:
            with self._stats_lock:
                self._stats['throttled'] += 1
        return response

    def get_stats(self) -> Dict:
        with self._stats_lock:
            return self._stats.copy()


_request_session_pool: RequestSessionPool = None


def get_request_session_pool() -> RequestSessionPool:
    """Get the global session pool (singleton)."""
    global _request_session_pool
    if _request_session_pool is None:
        _request_session_pool = RequestSessionPool()
    return _request_session_pool
