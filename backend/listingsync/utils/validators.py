"""
Input validation helpers

Each validator returns (is_valid, error_message, cleaned_value).
"""
from typing import List, Tuple, Optional, Any

SYNC_PHASES = ('locations', 'reviews', 'media', 'questions', 'performance', 'keywords')
AUTOMATION_ACTIONS = ('pause', 'resume', 'reset')
DISCONNECT_OPTIONS = ('keep', 'delete', 'export')
SYNC_SCHEDULES = ('manual', 'hourly', 'daily', 'twice-daily', 'weekly')
REPLY_TONES = ('friendly', 'professional', 'apologetic', 'marketing')
POST_FREQUENCIES = ('none', 'daily', 'weekly', 'biweekly', 'monthly')

MIN_RETENTION_DAYS = 1
MAX_RETENTION_DAYS = 365


def validate_ids_list(
    ids: Any,
    max_count: int = 100,
    field_name: str = 'IDs'
) -> Tuple[bool, Optional[str], List[int]]:
    """
    Validate a non-empty list of positive integer ids

    Args:
        ids: raw value from the request body
        max_count: maximum number of ids allowed
        field_name: name used in error messages

    Returns:
        (is_valid, error_message, cleaned_ids)
    """
    if not ids:
        return False, f'{field_name} must not be empty', []

    if not isinstance(ids, list):
        return False, f'{field_name} must be an array', []

    if len(ids) > max_count:
        return False, f'{field_name} must contain at most {max_count} items', []

    cleaned_ids = []
    for i, id_val in enumerate(ids):
        if isinstance(id_val, bool):
            return False, f'{field_name}[{i}] is not a valid integer', []
        try:
            cleaned_id = int(id_val)
        except (TypeError, ValueError):
            return False, f'{field_name}[{i}] is not a valid integer', []
        if cleaned_id <= 0:
            return False, f'{field_name}[{i}] must be a positive integer', []
        if cleaned_id not in cleaned_ids:
            cleaned_ids.append(cleaned_id)

    return True, None, cleaned_ids


def validate_positive_int(value: Any, field_name: str = 'id') -> Tuple[bool, Optional[str], Optional[int]]:
    """Validate a single positive integer (query strings arrive as text)"""
    if value is None or value == '':
        return False, f'{field_name} is required', None
    if isinstance(value, bool):
        return False, f'{field_name} must be a positive integer', None
    try:
        cleaned = int(value)
    except (TypeError, ValueError):
        return False, f'{field_name} must be a positive integer', None
    if cleaned <= 0:
        return False, f'{field_name} must be a positive integer', None
    return True, None, cleaned


def validate_phases(phases: Any) -> Tuple[bool, Optional[str], List[str]]:
    """
    Validate a list of sync phase names

    Missing or empty input selects every phase. The result is always in
    canonical execution order, whatever order the caller used.
    """
    if phases is None or phases == []:
        return True, None, list(SYNC_PHASES)

    if isinstance(phases, str):
        phases = [p for p in phases.split(',') if p.strip()]

    if not isinstance(phases, list):
        return False, 'phases must be an array', []

    requested = set()
    for phase in phases:
        if not isinstance(phase, str) or phase.strip().lower() not in SYNC_PHASES:
            return False, f"Invalid phase '{phase}', must be one of {list(SYNC_PHASES)}", []
        requested.add(phase.strip().lower())

    return True, None, [p for p in SYNC_PHASES if p in requested]


def validate_action(action: Any) -> Tuple[bool, Optional[str], str]:
    """Validate an auto-reply action"""
    if not action or not isinstance(action, str):
        return False, 'Invalid action', ''
    action = action.strip().lower()
    if action not in AUTOMATION_ACTIONS:
        return False, 'Invalid action', ''
    return True, None, action


def validate_retention_days(days: Any) -> Tuple[bool, Optional[str], Optional[int]]:
    """Retention window in whole days, 1..365"""
    if isinstance(days, bool) or days is None:
        return False, 'Retention days must be an integer', None
    try:
        cleaned = int(days)
    except (TypeError, ValueError):
        return False, 'Retention days must be an integer', None
    if isinstance(days, float) and days != cleaned:
        return False, 'Retention days must be an integer', None
    if cleaned < MIN_RETENTION_DAYS or cleaned > MAX_RETENTION_DAYS:
        return False, f'Retention days must be between {MIN_RETENTION_DAYS} and {MAX_RETENTION_DAYS}', None
    return True, None, cleaned


def validate_choice(value: Any, choices, field_name: str, default: str = None) -> Tuple[bool, Optional[str], Optional[str]]:
    """Validate a value against a fixed set of strings"""
    if value is None or value == '':
        if default is not None:
            return True, None, default
        return False, f'{field_name} is required', None
    if not isinstance(value, str) or value.strip().lower() not in choices:
        return False, f'{field_name} must be one of {list(choices)}', None
    return True, None, value.strip().lower()


def validate_min_rating(value: Any) -> Tuple[bool, Optional[str], Optional[int]]:
    """Star rating threshold, 1..5"""
    ok, error, cleaned = validate_positive_int(value, 'min_rating')
    if not ok:
        return False, error, None
    if cleaned > 5:
        return False, 'min_rating must be between 1 and 5', None
    return True, None, cleaned


def sanitize_string(value: Any, max_length: int = 255, default: str = '') -> str:
    """Strip and truncate free text input"""
    if not value:
        return default

    if not isinstance(value, str):
        value = str(value)

    value = value.strip()

    if len(value) > max_length:
        value = value[:max_length]

    return value
