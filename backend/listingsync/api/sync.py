"""
Sync API - trigger runs and report progress
"""
from flask import Blueprint, Response, current_app, g, request, stream_with_context

from ..middleware.auth import require_user
from ..services.account_service import AccountService
from ..services.sync_service import SyncService
from ..services.sync_status import SyncStatusReporter
from ..utils.logger import get_logger
from ..utils.responses import ApiResponse, success_response
from ..utils.validators import validate_ids_list, validate_phases, validate_positive_int

sync_bp = Blueprint('sync', __name__)
logger = get_logger('sync_api')


@sync_bp.route('/sync', methods=['POST'])
@require_user
def trigger_sync():
    """
    Start a background sync

    Request Body:
        - account_ids: accounts to sync (defaults to all active accounts of the user)
        - phases: optional phase subset
    """
    data = request.get_json(silent=True) or {}

    is_valid, error_msg, phases = validate_phases(data.get('phases'))
    if not is_valid:
        return ApiResponse.validation_error(error_msg)

    if data.get('account_ids') is None:
        account_ids = [a.id for a in AccountService.list_accounts(g.user_id) if a.is_active]
        if not account_ids:
            return ApiResponse.validation_error('No connected accounts to sync')
    else:
        is_valid, error_msg, account_ids = validate_ids_list(data.get('account_ids'), 50, 'account_ids')
        if not is_valid:
            return ApiResponse.validation_error(error_msg)
        for account_id in account_ids:
            account = AccountService.get_owned(g.user_id, account_id)
            if not account.is_active:
                return ApiResponse.validation_error(f'Account {account_id} is disconnected')

    batch = SyncService.start_sync(account_ids, phases)
    return ApiResponse.accepted(
        {**batch.to_dict(), 'phases': phases},
        f'Sync started for {len(batch.started)} accounts'
    )


def _account_from_query():
    is_valid, error_msg, account_id = validate_positive_int(request.args.get('accountId'), 'accountId')
    if not is_valid:
        return None, ApiResponse.validation_error(error_msg)
    AccountService.get_owned(g.user_id, account_id)
    return account_id, None


@sync_bp.route('/sync/status', methods=['GET'])
@require_user
def sync_status():
    """Per-phase status snapshot for one account"""
    account_id, error = _account_from_query()
    if error:
        return error
    snapshot = SyncStatusReporter().get_status(account_id)
    snapshot['running'] = SyncService.is_running(account_id)
    return success_response(snapshot)


@sync_bp.route('/sync/events', methods=['GET'])
@require_user
def sync_events():
    """Server-sent status snapshots for a bounded period"""
    account_id, error = _account_from_query()
    if error:
        return error

    reporter = SyncStatusReporter()
    config = current_app.config
    generator = reporter.stream(
        account_id,
        interval=config.get('STATUS_STREAM_INTERVAL', 3),
        duration=config.get('STATUS_STREAM_DURATION', 30),
    )
    return Response(
        stream_with_context(generator),
        mimetype='text/event-stream',
        headers={
            'Cache-Control': 'no-cache',
            'Connection': 'keep-alive',
            'X-Accel-Buffering': 'no',
        }
    )
