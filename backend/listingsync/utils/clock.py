"""
Time helpers

All timestamps are stored as naive UTC datetimes.
"""
from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def isoformat(value) -> str:
    """ISO-8601 with a trailing Z, or None"""
    if value is None:
        return None
    return to_naive_utc(value).isoformat() + 'Z'


def parse_timestamp(value):
    """
    Parse an RFC 3339 timestamp from the provider into naive UTC

    Fractional seconds beyond microseconds are truncated. Returns None for
    empty or unparseable input.
    """
    if not value or not isinstance(value, str):
        return None
    text = value.strip()
    if text.endswith('Z'):
        text = text[:-1] + '+00:00'
    if '.' in text:
        head, _, tail = text.partition('.')
        digits = ''
        rest = ''
        for i, ch in enumerate(tail):
            if not ch.isdigit():
                rest = tail[i:]
                break
            digits += ch
        text = f'{head}.{digits[:6].ljust(6, "0")}{rest}'
    try:
        return to_naive_utc(datetime.fromisoformat(text))
    except ValueError:
        return None
