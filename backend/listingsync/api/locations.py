"""
Location API
"""
from collections import OrderedDict

from flask import Blueprint, g, request

from ..extensions import db
from ..middleware.auth import require_user
from ..middleware.rate_limit import rate_limited
from ..models import IntegrationAccount, Location
from ..services.sync_service import SyncService
from ..utils.logger import get_logger
from ..utils.responses import ApiResponse, success_response
from ..utils.validators import validate_ids_list, validate_phases

locations_bp = Blueprint('locations', __name__)
logger = get_logger('locations_api')

MAX_BULK_LOCATIONS = 50


@locations_bp.route('/locations', methods=['GET'])
@require_user
def get_locations():
    """Non-archived locations of the user's accounts"""
    locations = Location.query.join(
        IntegrationAccount, Location.account_id == IntegrationAccount.id
    ).filter(
        IntegrationAccount.user_id == g.user_id,
        Location.is_archived.is_(False),
    ).order_by(Location.id).all()
    return success_response([loc.to_dict() for loc in locations])


@locations_bp.route('/locations/bulk-sync', methods=['POST'])
@require_user
@rate_limited
def bulk_sync():
    """
    Sync a selection of locations, grouped by account

    Request Body:
        - location_ids: up to 50 location ids
        - phases: optional phase subset
    """
    data = request.get_json(silent=True) or {}
    is_valid, error_msg, location_ids = validate_ids_list(
        data.get('location_ids'), MAX_BULK_LOCATIONS, 'location_ids'
    )
    if not is_valid:
        return ApiResponse.validation_error(error_msg)

    is_valid, error_msg, phases = validate_phases(data.get('phases'))
    if not is_valid:
        return ApiResponse.validation_error(error_msg)

    rows = db.session.query(Location.id, Location.account_id).join(
        IntegrationAccount, Location.account_id == IntegrationAccount.id
    ).filter(
        Location.id.in_(location_ids),
        IntegrationAccount.user_id == g.user_id,
        IntegrationAccount.is_active.is_(True),
        Location.is_archived.is_(False),
    ).all()

    owned = {row[0] for row in rows}
    missing = [lid for lid in location_ids if lid not in owned]
    if missing:
        return ApiResponse.error(
            'Some locations were not found or are not accessible', 403, 'FORBIDDEN',
            {'location_ids': missing}
        )

    grouped = OrderedDict()
    for location_id, account_id in sorted(rows, key=lambda r: (r[1], r[0])):
        grouped.setdefault(account_id, []).append(location_id)

    batch = SyncService.start_sync(list(grouped), phases, location_ids=grouped)
    logger.info(f"Bulk sync for {len(location_ids)} locations across {len(grouped)} accounts")
    return ApiResponse.accepted({
        **batch.to_dict(),
        'accounts': [{'account_id': a, 'location_ids': ids} for a, ids in grouped.items()],
        'phases': phases,
    }, f'Sync started for {len(location_ids)} locations')
