"""
API blueprints
"""
from .accounts import accounts_bp
from .sync import sync_bp
from .locations import locations_bp
from .automation import automation_bp
from .cron import cron_bp

__all__ = ['accounts_bp', 'sync_bp', 'locations_bp', 'automation_bp', 'cron_bp']
