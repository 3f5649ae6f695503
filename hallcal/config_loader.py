"""hallcal.config_loader

Config loader for hallcal.

- Reads a YAML file (PyYAML ``safe_load``) into a typed ``AppConfig``.
- Applies ``HALLCAL_*`` environment overrides on top of the file values,
  after loading an optional ``.env`` file that never overrides variables
  already set in the environment.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml

from .feed_models import DEFAULT_REFRESH_MINUTES, MAX_REFRESH_MINUTES, MIN_REFRESH_MINUTES
from .rrule_expander import DEFAULT_DAYS_FUTURE, DEFAULT_DAYS_PAST, DEFAULT_MAX_OCCURRENCES

logger = logging.getLogger(__name__)

CONFIG_PATH_ENV = "HALLCAL_CONFIG"
DEFAULT_CONFIG_PATH = Path("config.yaml")
DEFAULT_CONFIG_STORE_PATH = Path("data") / "feeds.json"

_TRUTHY = ("1", "true", "yes", "on")


@dataclass
class AppConfig:
    """Typed configuration for hallcal.

    Fields:
        feeds: feed records (id, name, url, color, refreshMinutes)
        default_refresh_minutes: interval for feeds without a valid one
        min_refresh_minutes / max_refresh_minutes: allowed interval range
        recurrence_days_past / recurrence_days_future: expansion window around now
        max_occurrences: cap on occurrences produced per recurring event
        display_timezone: IANA zone for day buckets ("" = host local zone)
        request_timeout / max_retries / retry_backoff_factor: HTTP fetch tuning
        server_bind / server_port: HTTP API listen address
        config_store_path: JSON file holding the shared feed list
        log_level: logging level name
        debug: enable debug logging for hallcal modules
    """

    feeds: list[dict[str, Any]] = field(default_factory=list)
    default_refresh_minutes: int = DEFAULT_REFRESH_MINUTES
    min_refresh_minutes: int = MIN_REFRESH_MINUTES
    max_refresh_minutes: int = MAX_REFRESH_MINUTES
    recurrence_days_past: int = DEFAULT_DAYS_PAST
    recurrence_days_future: int = DEFAULT_DAYS_FUTURE
    max_occurrences: int = DEFAULT_MAX_OCCURRENCES
    display_timezone: str = ""
    request_timeout: float = 30.0
    max_retries: int = 2
    retry_backoff_factor: float = 1.5
    server_bind: str = "0.0.0.0"  # nosec: B104 - LAN display device; override via config/env
    server_port: int = 8080
    config_store_path: str = str(DEFAULT_CONFIG_STORE_PATH)
    log_level: str = "INFO"
    debug: bool = False

    @classmethod
    def from_dict(cls, data: Optional[dict[str, Any]]) -> AppConfig:
        """Create AppConfig from a plain mapping, applying defaults and validation.

        Numeric-like values are coerced; anything unusable falls back to the
        default with a warning. Refresh bounds that contradict each other
        reset to the defaults.
        """
        if data is None:
            data = {}
        defaults = cls()

        feeds_raw = data.get("feeds") or []
        if not isinstance(feeds_raw, list):
            logger.warning("Config `feeds` is not a list; ignoring")
            feeds_raw = []
        feeds = []
        for item in feeds_raw:
            if isinstance(item, dict):
                feeds.append(dict(item))
            else:
                logger.warning("Ignoring feed entry that is not a mapping: %r", item)

        def _coerce(key: str, cast: Any, minimum: float = 0) -> Any:
            default = getattr(defaults, key)
            raw = data.get(key, default)
            try:
                value = cast(raw)
            except (TypeError, ValueError):
                logger.warning("Config %s=%r is not a number; using default %r", key, raw, default)
                return default
            if value < minimum:
                logger.warning("Config %s=%r below %r; using default %r", key, raw, minimum, default)
                return default
            return value

        min_refresh = _coerce("min_refresh_minutes", int, minimum=1)
        max_refresh = _coerce("max_refresh_minutes", int, minimum=1)
        default_refresh = _coerce("default_refresh_minutes", int, minimum=1)
        if not min_refresh <= default_refresh <= max_refresh:
            logger.warning(
                "Refresh bounds %d <= %d <= %d are inconsistent; using defaults",
                min_refresh,
                default_refresh,
                max_refresh,
            )
            min_refresh = defaults.min_refresh_minutes
            max_refresh = defaults.max_refresh_minutes
            default_refresh = defaults.default_refresh_minutes

        server_bind = data.get("server_bind")
        log_level = data.get("log_level")
        display_timezone = data.get("display_timezone")
        config_store_path = data.get("config_store_path")

        return cls(
            feeds=feeds,
            default_refresh_minutes=default_refresh,
            min_refresh_minutes=min_refresh,
            max_refresh_minutes=max_refresh,
            recurrence_days_past=_coerce("recurrence_days_past", int),
            recurrence_days_future=_coerce("recurrence_days_future", int),
            max_occurrences=_coerce("max_occurrences", int, minimum=1),
            display_timezone=str(display_timezone) if display_timezone else "",
            request_timeout=_coerce("request_timeout", float, minimum=1),
            max_retries=_coerce("max_retries", int),
            retry_backoff_factor=_coerce("retry_backoff_factor", float),
            server_bind=str(server_bind) if server_bind else defaults.server_bind,
            server_port=_coerce("server_port", int, minimum=1),
            config_store_path=str(config_store_path) if config_store_path else defaults.config_store_path,
            log_level=str(log_level).upper() if log_level else defaults.log_level,
            debug=_as_bool(data.get("debug", False)),
        )


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in _TRUTHY
    return bool(value)


def load_env_file(env_file_path: Optional[Path] = None) -> list[str]:
    """Load a .env file into the environment without overriding existing keys.

    Returns:
        Keys that were set from the file
    """
    path = env_file_path or Path.cwd() / ".env"
    if not path.exists():
        logger.debug("No .env file found at %s", path)
        return []

    set_keys: list[str] = []
    try:
        content = path.read_text(encoding="utf-8")
    except OSError:
        logger.warning("Failed to read .env file %s", path, exc_info=True)
        return []

    for raw_line in content.splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, val = line.split("=", 1)
        key = key.strip()
        val = val.strip().strip('"').strip("'")
        if key and key not in os.environ:
            os.environ[key] = val
            set_keys.append(key)

    if set_keys:
        logger.debug("Loaded .env defaults for keys: %s", ", ".join(set_keys))
    return set_keys


def env_overrides() -> dict[str, Any]:
    """Build a partial config mapping from ``HALLCAL_*`` environment variables.

    Recognizes:
    - HALLCAL_TIMEZONE -> 'display_timezone'
    - HALLCAL_WEB_HOST -> 'server_bind'
    - HALLCAL_WEB_PORT -> 'server_port' (int)
    - HALLCAL_LOG_LEVEL -> 'log_level'
    - HALLCAL_DEBUG -> 'debug' (truthy: 1, true, yes, on)
    """
    cfg: dict[str, Any] = {}

    tz_name = os.environ.get("HALLCAL_TIMEZONE")
    if tz_name:
        cfg["display_timezone"] = tz_name

    host = os.environ.get("HALLCAL_WEB_HOST")
    if host:
        cfg["server_bind"] = host

    port = os.environ.get("HALLCAL_WEB_PORT")
    if port:
        try:
            cfg["server_port"] = int(port)
        except ValueError:
            logger.warning("Invalid HALLCAL_WEB_PORT=%r; ignoring", port)

    log_level = os.environ.get("HALLCAL_LOG_LEVEL")
    if log_level:
        cfg["log_level"] = log_level

    debug = os.environ.get("HALLCAL_DEBUG")
    if debug is not None and debug.strip():
        cfg["debug"] = _as_bool(debug)

    return cfg


def _load_yaml(path: Path) -> Any:
    loaded = yaml.safe_load(path.read_text(encoding="utf-8"))
    # safe_load returns None for empty files
    return {} if loaded is None else loaded


def load_config(path: Optional[str] = None, env_file: Optional[Path] = None) -> AppConfig:
    """Load configuration from a YAML file plus environment overrides.

    Args:
        path: Config file path. Defaults to $HALLCAL_CONFIG, then ./config.yaml.
        env_file: Optional .env path (defaults to ./.env)

    Returns:
        AppConfig with file values, then environment overrides applied.

    Raises:
        ValueError: If the file exists but its top level is not a mapping
        yaml.YAMLError: If the file is not valid YAML
    """
    load_env_file(env_file)

    p = Path(path or os.environ.get(CONFIG_PATH_ENV) or DEFAULT_CONFIG_PATH)
    logger.debug("Attempting to load config from %s", p)
    data: dict[str, Any] = {}
    if p.exists():
        raw = _load_yaml(p)
        if not isinstance(raw, dict):
            logger.warning("Config file %s parsed but top-level is not a mapping: %r", p, raw)
            raise ValueError("Config file must contain a mapping at top level")  # noqa: TRY004
        data.update(raw)
        logger.info("Loaded configuration from %s", p)
    else:
        logger.info("Config file %s not found; using defaults", p)

    data.update(env_overrides())
    cfg = AppConfig.from_dict(data)
    logger.debug("Configuration values: %s", cfg)
    return cfg
