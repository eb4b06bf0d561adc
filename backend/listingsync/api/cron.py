"""
Cron API - endpoints called by the external scheduler
"""
from flask import Blueprint

from ..middleware.auth import require_cron_secret
from ..services.retention_service import RetentionService
from ..services.sync_service import SyncService
from ..utils.logger import get_logger
from ..utils.responses import success_response

cron_bp = Blueprint('cron', __name__)
logger = get_logger('cron_api')


@cron_bp.route('/cron/cleanup', methods=['GET', 'POST'])
@require_cron_secret
def cleanup():
    """Delete archived data whose retention period has expired"""
    SyncService.cleanup_stale_logs()
    report = RetentionService.run()
    return success_response(
        report.to_dict(),
        f'Cleanup completed. {report.total_deleted} items deleted.'
    )


@cron_bp.route('/cron/scheduled-sync', methods=['GET', 'POST'])
@require_cron_secret
def scheduled_sync():
    """Queue syncs for accounts whose schedule is due this hour"""
    result = SyncService.run_scheduled()
    return success_response(result, f"{len(result['started'])} accounts queued")
