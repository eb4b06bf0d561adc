"""
Automation API - auto-reply control and reply drafts
"""
from flask import Blueprint, g, request

from ..errors import ValidationError
from ..middleware.auth import require_user
from ..services.automation_service import AutomationService
from ..utils.logger import get_logger
from ..utils.responses import ApiResponse, success_response
from ..utils.validators import validate_positive_int

automation_bp = Blueprint('automation', __name__)
logger = get_logger('automation_api')


def _optional_id(value, name):
    if value is None or value == '':
        return None
    is_valid, error_msg, cleaned = validate_positive_int(value, name)
    if not is_valid:
        raise ValidationError(error_msg)
    return cleaned


def _scope(source):
    """(location_id, account_id) from request args or body"""
    location_id = _optional_id(source.get('location_id', source.get('locationId')), 'location_id')
    account_id = _optional_id(source.get('account_id', source.get('accountId')), 'account_id')
    return location_id, account_id


@automation_bp.route('/automation/auto-reply', methods=['GET'])
@require_user
def get_auto_reply():
    """Effective auto-reply settings for a scope"""
    location_id, account_id = _scope(request.args)
    settings = AutomationService.get_settings(g.user_id, location_id, account_id)
    return success_response({'settings': settings})


@automation_bp.route('/automation/auto-reply', methods=['POST'])
@require_user
def control_auto_reply():
    """
    Pause, resume or reset auto-reply

    Request Body:
        - action: pause, resume or reset
        - location_id / account_id: optional scope

    A reset whose settings change succeeded but whose queue clear failed
    answers 207 with settings_updated=true and queue_cleared=false.
    """
    data = request.get_json(silent=True) or {}
    location_id, account_id = _scope(data)

    result = AutomationService.apply(g.user_id, data.get('action'), location_id, account_id)
    if result.partial:
        return ApiResponse.error(
            result.error, 207, 'PARTIAL_FAILURE', result.to_dict()
        )
    return success_response(result.to_dict(), f'Auto-reply {result.action} applied')


@automation_bp.route('/automation/settings', methods=['PUT'])
@require_user
def update_automation_settings():
    """
    Request Body:
        - settings: partial settings map
        - location_id / account_id: optional scope
    """
    data = request.get_json(silent=True) or {}
    location_id, account_id = _scope(data)
    settings = AutomationService.update_settings(
        g.user_id, data.get('settings'), location_id, account_id
    )
    return success_response({'settings': settings}, 'Settings updated')


@automation_bp.route('/reviews/<int:review_id>/auto-reply', methods=['POST'])
@require_user
def draft_review_reply(review_id):
    """Generate and queue a reply draft for one review"""
    result = AutomationService.draft_reply(g.user_id, review_id)
    if not result['success']:
        return ApiResponse.error(result['error'], 422, 'AUTO_REPLY_NOT_APPLIED')
    return success_response(result, result['message'])
