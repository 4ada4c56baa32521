"""
Logging configuration for HirePath API.

Console plus rotating file output. Gateway credentials and webhook
signatures never reach the log files.
"""
import logging
import sys
from pathlib import Path
from logging.handlers import RotatingFileHandler

from hirepath.core.config import LOG_DIR


def setup_logging(log_level: str = "INFO", log_dir: str = LOG_DIR):
    """
    Configure application logging.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_dir: Directory for the rotating log file
    """
    level = getattr(logging, log_level.upper(), logging.INFO)

    path = Path(log_dir)
    path.mkdir(parents=True, exist_ok=True)

    logger = logging.getLogger()
    logger.setLevel(level)
    logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    ))

    file_handler = RotatingFileHandler(
        path / "hirepath.log",
        maxBytes=10 * 1024 * 1024,  # 10MB
        backupCount=5
    )
    file_handler.setLevel(level)
    file_handler.setFormatter(logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    ))

    logger.addHandler(console_handler)
    logger.addHandler(file_handler)

    # Third-party noise
    for name in ("uvicorn", "uvicorn.access", "stripe", "urllib3"):
        logging.getLogger(name).setLevel(logging.WARNING)


SENSITIVE_KEYS = (
    "password", "token", "secret", "key", "authorization",
    "signature", "transmission-sig", "paypal-cert-url", "client_id", "database_url",
)


def sanitize_log_data(data: dict) -> dict:
    """
    Redact sensitive values before a payload is logged.

    Args:
        data: Dictionary to sanitize (headers, gateway error bodies)

    Returns:
        Shallow copy with sensitive keys replaced
    """
    sanitized = dict(data)
    for key in sanitized:
        if any(sensitive in str(key).lower() for sensitive in SENSITIVE_KEYS):
            sanitized[key] = "***REDACTED***"
    return sanitized
