"""
Logging setup for E•AI Studio.

Log levels:
    DEBUG: Prompt text, attachment sizes, raw model responses
    INFO: Attempt progress (validation, background download, generation)
    WARNING: Non-fatal issues (identification fallback, annotation fail-open)
    ERROR: Failed attempts, model invocation errors

Modules only ever call ``logging.getLogger(__name__)``; handlers are attached
once, to the package logger, by the process entry point.

Usage:
    from eai_studio.logging_config import configure_from_env

    logger = configure_from_env()
    logger.info("API starting")
"""

import logging
import os
import sys
from pathlib import Path
from typing import Optional

PACKAGE_LOGGER = "eai_studio"

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'

# Client libraries that log every request at INFO
CHATTY_LOGGERS = ("httpx", "httpcore", "google_genai")


def setup_logging(
    name: str = PACKAGE_LOGGER,
    level: int = logging.INFO,
    log_file: Optional[Path] = None,
    console_output: bool = True
) -> logging.Logger:
    """
    Attach stdout and optional file handlers to a logger.

    Calling it again replaces the handlers rather than stacking them.

    Args:
        name: Logger to configure (the package logger by default)
        level: Logging level (default: INFO)
        log_file: Optional path to also append logs to
        console_output: Whether to log to stdout (default: True)

    Returns:
        The configured logger
    """
    logger = logging.getLogger(name)
    logger.setLevel(level)
    logger.handlers.clear()

    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT)
    handlers = []
    if console_output:
        handlers.append(logging.StreamHandler(sys.stdout))
    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file, mode='a', encoding='utf-8'))

    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    if level > logging.DEBUG:
        for chatty in CHATTY_LOGGERS:
            logging.getLogger(chatty).setLevel(logging.WARNING)

    return logger


def level_from_name(level_name: Optional[str], default: int = logging.INFO) -> int:
    """Translate a level name such as "debug" into a logging constant."""
    if not level_name:
        return default
    level = logging.getLevelName(level_name.strip().upper())
    return level if isinstance(level, int) else default


def configure_from_env() -> logging.Logger:
    """Configure the package logger from EAI_LOG_LEVEL and EAI_LOG_FILE."""
    log_file = os.environ.get("EAI_LOG_FILE")
    return setup_logging(
        PACKAGE_LOGGER,
        level=level_from_name(os.environ.get("EAI_LOG_LEVEL")),
        log_file=Path(log_file) if log_file else None,
    )
