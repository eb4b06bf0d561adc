"""
Exception taxonomy for the sync and automation engine

Every error carries an HTTP status and a stable error code so the API layer
can turn it into the standard error envelope without per-route handling.
"""
from typing import Any, Dict, Optional


class ListingSyncError(Exception):
    """Base error"""
    http_status = 500
    error_code = 'INTERNAL_ERROR'

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(ListingSyncError):
    """Malformed caller input, rejected before any side effect"""
    http_status = 400
    error_code = 'VALIDATION_ERROR'


class NotFound(ListingSyncError):
    http_status = 404
    error_code = 'NOT_FOUND'


class AccountNotFound(NotFound):
    error_code = 'ACCOUNT_NOT_FOUND'

    def __init__(self, account_id):
        super().__init__(f'Integration account {account_id} not found', {'account_id': account_id})
        self.account_id = account_id


class AuthError(ListingSyncError):
    """Missing or rejected credentials"""
    http_status = 401
    error_code = 'AUTH_ERROR'


class NoRefreshToken(AuthError):
    error_code = 'NO_REFRESH_TOKEN'

    def __init__(self, account_id):
        super().__init__(
            f'Account {account_id} has no refresh token, reconnect required',
            {'account_id': account_id}
        )
        self.account_id = account_id


class RefreshFailed(AuthError):
    """The OAuth provider rejected a refresh; provider code and message are kept"""
    error_code = 'REFRESH_FAILED'

    def __init__(self, account_id, provider_error: str, provider_message: str = ''):
        message = f'Token refresh failed: {provider_error}'
        if provider_message:
            message = f'{message} ({provider_message})'
        super().__init__(message, {
            'account_id': account_id,
            'provider_error': provider_error,
            'provider_message': provider_message,
        })
        self.account_id = account_id
        self.provider_error = provider_error
        self.provider_message = provider_message


class ProviderError(ListingSyncError):
    """The external API rejected a call or answered with something unusable"""
    http_status = 502
    error_code = 'PROVIDER_ERROR'

    def __init__(self, message: str, status_code: Optional[int] = None,
                 retryable: bool = False, details: Optional[Dict[str, Any]] = None):
        details = dict(details or {})
        if status_code is not None:
            details['status_code'] = status_code
        super().__init__(message, details)
        self.status_code = status_code
        self.retryable = retryable


class TextGenerationError(ListingSyncError):
    http_status = 502
    error_code = 'TEXT_GENERATION_FAILED'
