"""
Provider API client

Thin HTTP layer over the listing provider: OAuth token grants, account
listing and paginated resource listings. Transient failures are retried here
with bounded backoff; everything else is raised as a typed error for the
caller to classify.
"""
from typing import Any, Callable, Dict, List, Optional

import requests
from flask import current_app

from ..errors import AuthError, ProviderError
from ..utils.logger import get_logger
from .sync.backoff import BackoffPolicy
from .sync.session_pool import get_request_session_pool

logger = get_logger('provider_client')

# Called with force=True after a 401 to obtain a freshly refreshed token
TokenSupplier = Callable[..., str]


def _retry_after_seconds(response) -> Optional[float]:
    value = response.headers.get('Retry-After') if response is not None else None
    if not value:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _is_transient(status_code: int) -> bool:
    return status_code == 429 or status_code >= 500


class ProviderClient:
    """HTTP client for the listing provider

    Example:
        >>> client = ProviderClient.from_config(current_app.config)
        >>> payload = client.get_json(url, token_supplier, params={'pageSize': 100})
    """

    def __init__(self, session=None, backoff: Optional[BackoffPolicy] = None,
                 timeout: float = 30.0, token_url: str = 'https://oauth2.googleapis.com/token',
                 accounts_base: str = 'https://mybusinessaccountmanagement.googleapis.com/v1'):
        self._session = session or get_request_session_pool()
        self.backoff = backoff or BackoffPolicy()
        self.timeout = timeout
        self.token_url = token_url
        self.accounts_base = accounts_base.rstrip('/')

    @classmethod
    def from_config(cls, config=None, session=None, sleep=None) -> 'ProviderClient':
        config = config if config is not None else current_app.config
        backoff = BackoffPolicy(
            max_retries=config.get('SYNC_MAX_RETRIES', 3),
            base_delay=config.get('SYNC_BACKOFF_BASE', 1.0),
            max_delay=config.get('SYNC_BACKOFF_MAX', 30.0),
            sleep=sleep,
        )
        return cls(
            session=session,
            backoff=backoff,
            timeout=config.get('PROVIDER_REQUEST_TIMEOUT', 30.0),
            token_url=config.get('OAUTH_TOKEN_URL', 'https://oauth2.googleapis.com/token'),
            accounts_base=config.get(
                'PROVIDER_ACCOUNTS_BASE', 'https://mybusinessaccountmanagement.googleapis.com/v1'),
        )

    # ==================== transport ====================

    def _send(self, method: str, url: str, **kwargs):
        """
        Send one logical request, retrying transient failures

        Returns the final response whatever its status; raises ProviderError
        when the network keeps failing or the server keeps answering 429/5xx.
        """
        attempt = 0
        while True:
            try:
                response = self._session.request(method, url, timeout=self.timeout, **kwargs)
            except requests.RequestException as e:
                if self.backoff.should_retry(attempt):
                    self.backoff.wait(attempt, reason=f'network error: {e.__class__.__name__}')
                    attempt += 1
                    continue
                raise ProviderError(
                    f'Network error calling provider: {e}', retryable=True, details={'url': url}
                ) from e

            if _is_transient(response.status_code):
                if self.backoff.should_retry(attempt):
                    self.backoff.wait(
                        attempt,
                        retry_after=_retry_after_seconds(response),
                        reason=f'HTTP {response.status_code}',
                    )
                    attempt += 1
                    continue
                raise ProviderError(
                    f'Provider returned HTTP {response.status_code} after {attempt + 1} attempts',
                    status_code=response.status_code,
                    retryable=True,
                    details={'url': url},
                )
            return response

    @staticmethod
    def _json(response, url: str) -> Dict[str, Any]:
        try:
            payload = response.json()
        except ValueError as e:
            raise ProviderError(
                'Malformed response from provider (not JSON)',
                status_code=response.status_code,
                details={'url': url},
            ) from e
        if not isinstance(payload, dict):
            raise ProviderError(
                'Malformed response from provider (expected an object)',
                status_code=response.status_code,
                details={'url': url},
            )
        return payload

    @staticmethod
    def _error_message(response) -> str:
        try:
            payload = response.json()
        except ValueError:
            return (response.text or '')[:200]
        if isinstance(payload, dict):
            error = payload.get('error')
            if isinstance(error, dict):
                return str(error.get('message') or error.get('status') or '')
            if error:
                return str(payload.get('error_description') or error)
        return ''

    # ==================== OAuth ====================

    def request_token(self, form: Dict[str, str]) -> Dict[str, Any]:
        """
        POST a grant to the OAuth token endpoint

        Returns the parsed token payload. A rejected grant raises
        ProviderError whose details carry the provider's error and
        error_description.
        """
        response = self._send(
            'POST', self.token_url, data=form,
            headers={'Content-Type': 'application/x-www-form-urlencoded'},
        )
        if response.status_code >= 400:
            error, description = 'unknown_error', ''
            try:
                payload = response.json()
            except ValueError:
                payload = None
            if isinstance(payload, dict):
                error = str(payload.get('error') or error)
                description = str(payload.get('error_description') or '')
            raise ProviderError(
                f'Token endpoint rejected {form.get("grant_type")} grant: {error}',
                status_code=response.status_code,
                details={'error': error, 'error_description': description},
            )
        payload = self._json(response, self.token_url)
        if not payload.get('access_token'):
            raise ProviderError(
                'Token endpoint response has no access_token',
                status_code=response.status_code,
                details={'error': 'invalid_response', 'error_description': 'missing access_token'},
            )
        return payload

    # ==================== resources ====================

    def get_json(self, url: str, token_supplier: TokenSupplier,
                 params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        GET a provider resource as JSON

        On HTTP 401 the token is force-refreshed exactly once and the call
        repeated; a second 401 raises AuthError.
        """
        token = token_supplier()
        refreshed = False
        while True:
            response = self._send(
                'GET', url, params=params,
                headers={'Authorization': f'Bearer {token}', 'Accept': 'application/json'},
            )
            if response.status_code == 401:
                if refreshed:
                    raise AuthError(
                        'Provider rejected a freshly refreshed access token',
                        {'url': url},
                    )
                logger.info(f"[ProviderClient] 401 from {url}, forcing token refresh")
                token = token_supplier(force=True)
                refreshed = True
                continue
            if response.status_code >= 400:
                raise ProviderError(
                    f'Provider returned HTTP {response.status_code}: {self._error_message(response)}',
                    status_code=response.status_code,
                    details={'url': url},
                )
            return self._json(response, url)

    def list_accounts(self, token_supplier: TokenSupplier) -> List[Dict[str, Any]]:
        """All provider accounts visible to the token, following pagination"""
        url = f'{self.accounts_base}/accounts'
        accounts: List[Dict[str, Any]] = []
        params: Dict[str, Any] = {}
        while True:
            payload = self.get_json(url, token_supplier, params=params or None)
            accounts.extend(payload.get('accounts') or [])
            next_token = payload.get('nextPageToken')
            if not next_token:
                return accounts
            params = {'pageToken': next_token}
