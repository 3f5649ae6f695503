"""hallcal - hallway calendar feed aggregation engine.

Fetches several independently-hosted ICS feeds, expands recurring events
into a bounded window, merges the feeds and buckets the result into a
Monday-to-Friday week view. Heavy modules are imported lazily so the
package stays cheap to import.
"""

__version__ = "0.1.0"

from typing import Optional


def _init_logging(level_name: Optional[str]) -> None:
    """Initialize root logging to stream to console.

    Installs a colorlog formatter on a stderr handler so early startup
    messages are visible. Honors HALLCAL_DEBUG (truthy: "1", "true", "yes",
    "on"), which forces DEBUG verbosity.
    """
    import logging
    import os
    import sys

    from colorlog import ColoredFormatter

    debug_env = os.environ.get("HALLCAL_DEBUG", "")
    if debug_env.strip().lower() in ("1", "true", "yes", "on"):
        level_name = "DEBUG"

    root = logging.getLogger()
    # Only configure a handler if none is present to avoid duplicate output
    if not root.handlers:
        handler = logging.StreamHandler(stream=sys.stderr)
        # HH:MM:SS  LEVEL   logger.name: message, with only the level colorized
        fmt = "%(asctime)s %(log_color)s%(levelname)-7s%(reset)s %(name)s: %(message)s"
        log_colors = {
            "DEBUG": "cyan",
            "INFO": "green",
            "WARNING": "yellow",
            "ERROR": "red",
            "CRITICAL": "bold_red",
        }
        handler.setFormatter(ColoredFormatter(fmt, datefmt="%H:%M:%S", log_colors=log_colors))
        root.addHandler(handler)

    level = logging.INFO
    if isinstance(level_name, str):
        level = getattr(logging, level_name.upper(), logging.INFO)
    root.setLevel(level)
    logging.getLogger(__name__).debug(
        "Logging initialized at level %s", logging.getLevelName(level)
    )


def run_server(args: Optional[object] = None) -> None:
    """Load configuration and run the HTTP API until interrupted.

    Args:
        args: Optional parsed CLI namespace (config, port, debug)

    Behavior:
    - Initialize console logging early using HALLCAL_LOG_LEVEL (env) if present.
    - Load config from --config / $HALLCAL_CONFIG / ./config.yaml.
    - Apply command line overrides, then the configured logging levels.
    """
    import os

    _init_logging(os.environ.get("HALLCAL_LOG_LEVEL"))

    import logging

    from .config_loader import load_config
    from .logging_config import configure_logging
    from .server import start_server

    logger = logging.getLogger(__name__)

    cfg = load_config(getattr(args, "config", None))
    port = getattr(args, "port", None)
    if port is not None:
        cfg.server_port = int(port)
        logger.debug("Applied command line port override: %d", cfg.server_port)
    if getattr(args, "debug", False):
        cfg.debug = True

    configure_logging(debug_mode=cfg.debug, log_level=cfg.log_level)
    logger.debug(
        "Resolved configuration (diagnostic): feeds=%d bind=%s port=%d tz=%r",
        len(cfg.feeds),
        cfg.server_bind,
        cfg.server_port,
        cfg.display_timezone,
    )
    start_server(cfg)
