"""
Integration account API
"""
from flask import Blueprint, g, request

from ..middleware.auth import require_user
from ..services.account_service import AccountService
from ..services.token_service import TokenLifecycleManager
from ..utils.logger import get_logger
from ..utils.responses import ApiResponse, success_response
from ..utils.validators import sanitize_string

accounts_bp = Blueprint('accounts', __name__)
logger = get_logger('accounts_api')


@accounts_bp.route('/accounts', methods=['GET'])
@require_user
def get_accounts():
    """List the current user's integration accounts"""
    accounts = AccountService.list_accounts(g.user_id)
    return success_response(
        data=[AccountService.summary(acc) for acc in accounts],
        message=f'{len(accounts)} accounts'
    )


@accounts_bp.route('/accounts/<int:account_id>', methods=['GET'])
@require_user
def get_account(account_id):
    account = AccountService.get_owned(g.user_id, account_id)
    return success_response(AccountService.summary(account))


@accounts_bp.route('/accounts/oauth/callback', methods=['POST'])
@require_user
def oauth_callback():
    """
    Complete the OAuth consent flow

    Request Body:
        - code: authorization code from the provider redirect
        - redirect_uri: the redirect URI used to obtain the code
    """
    data = request.get_json(silent=True) or {}
    code = sanitize_string(data.get('code'), 2048)
    redirect_uri = sanitize_string(data.get('redirect_uri'), 2048)
    if not code or not redirect_uri:
        return ApiResponse.validation_error('code and redirect_uri are required')

    account = TokenLifecycleManager().exchange_code(g.user_id, code, redirect_uri)
    logger.info(f"Account {account.id} connected for user {g.user_id}")
    return ApiResponse.created(account.to_dict(), 'Account connected')


@accounts_bp.route('/accounts/<int:account_id>/settings', methods=['PATCH'])
@require_user
def update_account_settings(account_id):
    """
    Request Body (any of):
        - data_retention_days: 1..365
        - sync_schedule: manual, hourly, daily, twice-daily, weekly
    """
    data = request.get_json(silent=True) or {}
    account = AccountService.update_settings(g.user_id, account_id, data)
    return success_response(account.to_dict(), 'Settings updated')


@accounts_bp.route('/accounts/<int:account_id>/disconnect', methods=['POST'])
@require_user
def disconnect_account(account_id):
    """
    Request Body:
        - option: keep (default), delete or export
    """
    data = request.get_json(silent=True) or {}
    result = AccountService.disconnect(g.user_id, account_id, data.get('option'))
    return success_response(result, 'Account disconnected')
