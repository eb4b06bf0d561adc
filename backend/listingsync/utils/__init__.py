"""
Utilities
"""
from .responses import success_response, error_response, ApiResponse
from .validators import validate_ids_list, validate_phases, validate_action
from .crypto import TokenCrypto
from .logger import setup_logger, get_logger

__all__ = [
    'success_response',
    'error_response',
    'ApiResponse',
    'validate_ids_list',
    'validate_phases',
    'validate_action',
    'TokenCrypto',
    'setup_logger',
    'get_logger',
]
