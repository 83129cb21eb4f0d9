"""
Logging Configuration
Structured logging with loguru
Source: https://github.com/Delgan/loguru
Verified: 2026-10-19
"""

import sys
from pathlib import Path
from typing import Optional

from loguru import logger


def setup_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    json_logs: bool = False,
) -> None:
    """
    Configure application logging.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional log file path
        json_logs: Whether to output JSON format (useful for production)

    Raw X12 and SOAP bodies carry PHI; they are only ever logged at DEBUG.
    """

    logger.remove()

    if json_logs:
        logger.add(
            sys.stderr,
            format="{message}",
            level=level,
            serialize=True,
        )
    else:
        logger.add(
            sys.stderr,
            format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>",
            level=level,
            colorize=True,
        )

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        logger.add(
            log_file,
            rotation="100 MB",
            retention="30 days",
            compression="zip",
            format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}",
            level=level,
            serialize=json_logs,
        )

    logger.info(f"Logging configured: level={level}, json_logs={json_logs}")


def setup_logging_from_settings(settings) -> None:  # type: ignore[no-untyped-def]
    """Configure logging from an EligibilitySettings instance."""
    setup_logging(
        level=settings.LOG_LEVEL,
        log_file=settings.LOG_FILE,
        json_logs=settings.LOG_JSON,
    )


def get_logger(name: str = __name__):  # type: ignore[no-untyped-def]
    """
    Get a logger instance.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Configured logger instance

    Example:
        >>> from src.utils.logging import get_logger
        >>> logger = get_logger(__name__)
        >>> logger.info("Eligibility check started")
    """
    return logger.bind(name=name)
