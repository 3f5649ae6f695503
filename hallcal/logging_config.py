"""
Central logging configuration for hallcal.

Keeps hallcal's own loggers at INFO (or DEBUG when asked) while holding
chatty third-party libraries at WARNING.
"""

import logging
import os
from typing import Optional

# Third-party loggers and the level they are held at
THIRD_PARTY_LEVELS: dict[str, int] = {
    "aiohttp.access": logging.WARNING,
    "aiohttp.server": logging.WARNING,
    "aiohttp.web": logging.INFO,
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "asyncio": logging.WARNING,
    "icalendar": logging.INFO,
}

_LEVEL_NAMES = ("DEBUG", "INFO", "WARNING", "ERROR")


def debug_requested() -> bool:
    return os.getenv("HALLCAL_DEBUG", "").strip().lower() in ("1", "true", "yes", "on")


def configure_logging(
    debug_mode: bool = False,
    force_debug: Optional[bool] = None,
    log_level: Optional[str] = None,
) -> None:
    """
    Configure logger levels for hallcal and its dependencies.

    Args:
        debug_mode: Whether to enable debug logging for hallcal modules
        force_debug: Override debug mode setting (None to use env var detection)
        log_level: Root level name from config; HALLCAL_LOG_LEVEL wins over it

    Environment Variables:
        HALLCAL_DEBUG: Set to '1', 'true', 'yes' to force debug logging
        HALLCAL_LOG_LEVEL: Override root log level (DEBUG, INFO, WARNING, ERROR)
    """
    if force_debug is not None:
        final_debug = force_debug
    else:
        final_debug = debug_mode or debug_requested()

    root_level = logging.DEBUG if final_debug else logging.INFO
    for candidate in (log_level, os.getenv("HALLCAL_LOG_LEVEL")):
        if candidate and candidate.strip().upper() in _LEVEL_NAMES:
            root_level = getattr(logging, candidate.strip().upper())

    root_logger = logging.getLogger()
    root_logger.setLevel(root_level)

    # Only add a plain handler if __init__._init_logging has not installed one
    if not root_logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(
            logging.Formatter("[%(asctime)s] %(levelname)s - %(name)s - %(message)s")
        )
        root_logger.addHandler(handler)

    for logger_name, level in THIRD_PARTY_LEVELS.items():
        logging.getLogger(logger_name).setLevel(level)
    logging.getLogger("hallcal").setLevel(logging.DEBUG if final_debug else root_level)

    if final_debug:
        root_logger.info("Debug logging enabled for hallcal modules")
    else:
        root_logger.debug(
            "Logging configured: root=%s", logging.getLevelName(root_level)
        )


def get_logging_status() -> dict[str, str]:
    """
    Get current logging configuration status.

    Returns:
        Dictionary mapping logger names to their current levels
    """
    status = {"root": logging.getLevelName(logging.getLogger().level)}
    for logger_name in ("hallcal", *THIRD_PARTY_LEVELS):
        status[logger_name] = logging.getLevelName(logging.getLogger(logger_name).level)
    return status
