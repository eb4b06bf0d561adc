"""
Flask Application Factory

This module creates and configures the Flask application.
"""
import time
from flask import Flask, g, request, jsonify
from flask_cors import CORS
from sqlalchemy.exc import SQLAlchemyError

from .config import get_config
from .errors import ListingSyncError
from .extensions import db, migrate
from .api import accounts_bp, sync_bp, locations_bp, automation_bp, cron_bp
from .utils.logger import setup_logger, get_logger
from .websocket import socketio, init_socketio


def create_app(config_class=None):
    """Create and configure Flask application.

    Args:
        config_class: Configuration class to use. If None, auto-detect from environment.

    Returns:
        Configured Flask application instance
    """
    if config_class is None:
        config_class = get_config()

    app = Flask(__name__)
    app.config.from_object(config_class)

    setup_logger(
        log_level=app.config.get('LOG_LEVEL', 'INFO'),
        log_file=app.config.get('LOG_FILE')
    )

    logger = get_logger('app')

    CORS(app, resources={r"/api/*": config_class.get_cors_config()})

    db.init_app(app)
    migrate.init_app(app, db)

    _register_blueprints(app)

    # Rate limiter is rebuilt lazily from this app's config
    from .services.rate_limiter import reset_rate_limiter
    reset_rate_limiter()

    # Note: Use 'flask db upgrade' to create/update database tables
    if not app.config.get('TESTING'):
        with app.app_context():
            _cleanup_stale_logs(logger)

    _register_error_handlers(app)
    _register_request_hooks(app)
    _register_health_check(app)

    if app.config.get('USE_WEBSOCKET'):
        _init_websocket(app, logger)

    db_uri = app.config.get('SQLALCHEMY_DATABASE_URI', '')
    logger.info(f"Application initialized, database: {db_uri.split('@')[-1]}")

    return app


def _register_blueprints(app):
    """Register API blueprints under a single /api prefix."""
    app.register_blueprint(accounts_bp, url_prefix='/api')
    app.register_blueprint(sync_bp, url_prefix='/api')
    app.register_blueprint(locations_bp, url_prefix='/api')
    app.register_blueprint(automation_bp, url_prefix='/api')
    app.register_blueprint(cron_bp, url_prefix='/api')


def _cleanup_stale_logs(logger):
    """Close sync log entries left open by a previous process."""
    from .services.sync_service import SyncService
    try:
        cleaned = SyncService.cleanup_stale_logs()
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.warning(f"Failed to cleanup stale sync logs (run 'flask db upgrade'?): {e}")
        return
    if cleaned > 0:
        logger.info(f"Cleaned up {cleaned} stale sync log entries on startup")


def _init_websocket(app, logger):
    """Enable Socket.IO push of sync events."""
    init_socketio(app)
    from .services.sync_log_broadcaster import sync_event_broadcaster
    sync_event_broadcaster.enable_websocket()
    logger.info("WebSocket real-time push enabled")


def _register_error_handlers(app):
    """Register global error handlers."""
    from .utils.responses import ApiResponse

    @app.errorhandler(ListingSyncError)
    def listing_sync_error(error):
        if error.http_status >= 500:
            get_logger('error').error(f"{error.error_code}: {error.message}")
        return ApiResponse.from_exception(error)

    @app.errorhandler(400)
    def bad_request(error):
        msg = str(error.description) if hasattr(error, 'description') else 'Bad request'
        return ApiResponse.error(msg, 400, 'BAD_REQUEST')

    @app.errorhandler(404)
    def not_found(error):
        msg = str(error.description) if hasattr(error, 'description') else 'Resource not found'
        return ApiResponse.not_found(msg)

    @app.errorhandler(405)
    def method_not_allowed(error):
        return ApiResponse.error('Method not allowed', 405, 'METHOD_NOT_ALLOWED')

    @app.errorhandler(500)
    def internal_error(error):
        logger = get_logger('error')
        logger.exception(error)
        return ApiResponse.server_error('Internal server error')


def _register_request_hooks(app):
    """Register request timing hooks."""

    @app.before_request
    def before_request():
        g.start_time = time.time()

    @app.after_request
    def after_request(response):
        if hasattr(g, 'start_time') and not response.is_streamed:
            duration = (time.time() - g.start_time) * 1000
            if duration > 1000:
                logger = get_logger('slow_request')
                logger.warning(f"Slow request: {request.method} {request.path} took {duration:.2f}ms")
        return response


def _register_health_check(app):
    """Register health check endpoint."""

    @app.route('/api/health')
    def health_check():
        """Health check endpoint for container orchestration."""
        database = 'ok'
        try:
            db.session.execute(db.text('SELECT 1'))
        except SQLAlchemyError:
            database = 'unavailable'
        from .services.sync.session_pool import get_request_session_pool
        return jsonify({
            'status': 'healthy' if database == 'ok' else 'degraded',
            'service': 'listing-sync',
            'database': database,
            'provider_http': get_request_session_pool().get_stats(),
        }), 200 if database == 'ok' else 503
