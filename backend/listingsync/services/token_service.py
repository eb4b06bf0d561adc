"""
Token Lifecycle Manager

Hands out a valid provider access token per integration account, refreshing
it against the OAuth token endpoint when it is missing or about to expire.
"""
from datetime import timedelta
from typing import Callable, Optional

from flask import current_app

from ..errors import AccountNotFound, AuthError, NoRefreshToken, ProviderError, RefreshFailed
from ..extensions import db
from ..models import IntegrationAccount
from ..utils.clock import utcnow
from ..utils.logger import get_logger
from .provider_client import ProviderClient

logger = get_logger('token_manager')


class TokenLifecycleManager:
    """Refresh-on-demand access tokens

    Two workers refreshing the same account at once both call the provider;
    whichever commits last wins, and both tokens are valid.

    Example:
        >>> manager = TokenLifecycleManager()
        >>> token = manager.get_valid_access_token(account_id)
        >>> supplier = manager.supplier(account_id)   # for ProviderClient.get_json
    """

    def __init__(self, client: Optional[ProviderClient] = None,
                 clock: Callable = utcnow, skew_seconds: Optional[int] = None,
                 client_id: Optional[str] = None, client_secret: Optional[str] = None):
        config = current_app.config
        self.client = client or ProviderClient.from_config(config)
        self.clock = clock
        self.skew = timedelta(seconds=skew_seconds if skew_seconds is not None
                              else config.get('TOKEN_EXPIRY_SKEW_SECONDS', 300))
        self.client_id = client_id or config.get('GOOGLE_CLIENT_ID')
        self.client_secret = client_secret or config.get('GOOGLE_CLIENT_SECRET')

    @staticmethod
    def _load(account_id: int) -> IntegrationAccount:
        account = db.session.get(IntegrationAccount, account_id)
        if account is None:
            raise AccountNotFound(account_id)
        return account

    def needs_refresh(self, account: IntegrationAccount) -> bool:
        if not account.access_token or account.token_expires_at is None:
            return True
        return self.clock() >= account.token_expires_at - self.skew

    def get_valid_access_token(self, account_id: int) -> str:
        """
        Return an access token usable right now

        Raises:
            AccountNotFound: no such account
            NoRefreshToken: token expired and nothing to refresh with
            RefreshFailed: provider rejected the refresh; stored tokens untouched
        """
        account = self._load(account_id)
        if not self.needs_refresh(account):
            return account.access_token
        return self._refresh(account)

    def force_refresh(self, account_id: int) -> str:
        """Refresh regardless of the stored expiry (after an HTTP 401)"""
        return self._refresh(self._load(account_id))

    def supplier(self, account_id: int):
        """Token callable for ProviderClient; force=True refreshes unconditionally"""
        def supply(force: bool = False) -> str:
            if force:
                return self.force_refresh(account_id)
            return self.get_valid_access_token(account_id)
        return supply

    def _refresh(self, account: IntegrationAccount) -> str:
        refresh_token = account.refresh_token
        if not refresh_token:
            logger.warning(f"[TokenManager] Account {account.id} has no refresh token")
            raise NoRefreshToken(account.id)

        try:
            payload = self.client.request_token({
                'grant_type': 'refresh_token',
                'refresh_token': refresh_token,
                'client_id': self.client_id or '',
                'client_secret': self.client_secret or '',
            })
        except ProviderError as e:
            provider_error = e.details.get('error') or 'provider_error'
            provider_message = e.details.get('error_description') or e.message
            if provider_error == 'invalid_grant':
                logger.warning(
                    f"[TokenManager] Refresh token revoked or expired for account {account.id}, "
                    f"reconnect required"
                )
            else:
                logger.error(f"[TokenManager] Refresh failed for account {account.id}: {e.message}")
            raise RefreshFailed(account.id, provider_error, provider_message) from e

        now = self.clock()
        account.access_token = payload['access_token']
        account.token_expires_at = now + timedelta(seconds=int(payload.get('expires_in') or 3600))
        if payload.get('refresh_token'):
            account.refresh_token = payload['refresh_token']
        db.session.commit()

        logger.info(
            f"[TokenManager] Refreshed token for account {account.id}, "
            f"expires at {account.token_expires_at.isoformat()}Z"
        )
        return account.access_token

    def exchange_code(self, user_id: str, code: str, redirect_uri: str) -> IntegrationAccount:
        """
        Complete the OAuth authorization-code flow

        Creates the integration account, or reactivates the user's existing
        account for the same provider account.
        """
        try:
            payload = self.client.request_token({
                'grant_type': 'authorization_code',
                'code': code,
                'redirect_uri': redirect_uri,
                'client_id': self.client_id or '',
                'client_secret': self.client_secret or '',
            })
        except ProviderError as e:
            raise AuthError(
                f'Authorization code exchange failed: {e.details.get("error") or e.message}',
                {'provider_error': e.details.get('error'),
                 'provider_message': e.details.get('error_description')},
            ) from e

        access_token = payload['access_token']
        now = self.clock()

        external_account_id = None
        account_name = None
        try:
            accounts = self.client.list_accounts(lambda force=False: access_token)
        except (ProviderError, AuthError) as e:
            logger.warning(f"[TokenManager] Could not list provider accounts after connect: {e.message}")
            accounts = []
        if accounts:
            external_account_id = accounts[0].get('name')
            account_name = accounts[0].get('accountName')

        account = None
        if external_account_id:
            account = IntegrationAccount.query.filter_by(
                user_id=user_id, external_account_id=external_account_id
            ).first()

        refresh_token = payload.get('refresh_token')
        if not refresh_token and (account is None or not account.has_refresh_token):
            raise AuthError(
                'Provider did not return a refresh token, retry the consent flow with offline access',
                {'provider_error': 'missing_refresh_token'},
            )

        if account is None:
            account = IntegrationAccount(user_id=user_id, external_account_id=external_account_id)
            db.session.add(account)
            logger.info(f"[TokenManager] Connecting new account for user {user_id}")
        else:
            logger.info(f"[TokenManager] Reactivating account {account.id} for user {user_id}")

        account.account_name = account_name or account.account_name
        account.access_token = access_token
        account.token_expires_at = now + timedelta(seconds=int(payload.get('expires_in') or 3600))
        if refresh_token:
            account.refresh_token = refresh_token
        account.is_active = True
        account.disconnected_at = None
        db.session.commit()
        return account
