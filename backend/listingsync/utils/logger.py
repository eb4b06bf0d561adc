"""
Logging setup
Structured logging on top of loguru
"""
import os
import re
import sys
from loguru import logger
from typing import Optional

# OAuth secrets that must never reach a log sink
SECRET_FIELDS = ('access_token', 'refresh_token', 'client_secret')
# Form bodies also carry the one-time authorization code
FORM_SECRET_FIELDS = SECRET_FIELDS + ('code',)
SECRET_PATTERNS = [
    (re.compile(r'(Bearer\s+)[A-Za-z0-9._~+/=-]+'), r'\1***'),
    (re.compile(r'\b(' + '|'.join(FORM_SECRET_FIELDS) + r')=[^&\s,]+'), r'\1=***'),
    (re.compile(r'([\'"](?:' + '|'.join(SECRET_FIELDS) + r')[\'"]\s*:\s*)[\'"][^\'"]*[\'"]'), r"\1'***'"),
]


def mask_secrets(text: str) -> str:
    """Replace bearer tokens and OAuth form or JSON secrets with ***"""
    for pattern, replacement in SECRET_PATTERNS:
        text = pattern.sub(replacement, text)
    return text


def _mask_record(record):
    record['message'] = mask_secrets(record['message'])


def setup_logger(
    log_level: str = 'INFO',
    log_file: Optional[str] = None,
    rotation: str = '10 MB',
    retention: str = '7 days'
) -> None:
    """
    Configure the global loguru sinks

    Args:
        log_level: DEBUG, INFO, WARNING or ERROR
        log_file: optional path of a rotating file sink
        rotation: size at which the file sink rotates
        retention: how long rotated files are kept
    """
    logger.remove()

    level = os.environ.get('LOG_LEVEL', log_level).upper()

    console_format = (
        "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
        "<level>{level: <8}</level> | "
        "<cyan>{extra[name]}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
        "<level>{message}</level>"
    )

    logger.configure(extra={'name': 'listingsync'}, patcher=_mask_record)

    logger.add(
        sys.stderr,
        format=console_format,
        level=level,
        colorize=True,
        backtrace=True,
        diagnose=False,
    )

    if log_file:
        file_format = (
            "{time:YYYY-MM-DD HH:mm:ss} | "
            "{level: <8} | "
            "{extra[name]}:{function}:{line} | "
            "{message}"
        )
        logger.add(
            log_file,
            format=file_format,
            level=level,
            rotation=rotation,
            retention=retention,
            compression='zip',
            encoding='utf-8',
        )

    logger.info(f"Logger initialized with level: {level}")


def get_logger(name: str = None):
    """
    Return a logger bound to a component name

    Args:
        name: component name shown in every line
    """
    if name:
        return logger.bind(name=name)
    return logger


def log_sync_event(account_id: int, event: str, details: dict = None):
    """One line per sync lifecycle event"""
    msg = f"Sync Event: account={account_id}, event={event}"
    if details:
        msg += f", details={details}"
    logger.info(msg)
