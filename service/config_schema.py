# service/config_schema.py
from __future__ import annotations

import json
import logging
import os
import re
from typing import Any

import yaml

logger = logging.getLogger(__name__)


class ConfigError(ValueError):
    """Raised when the config is invalid."""


_MODE_ALIASES = {
    "gap": "gap",
    "fixed_daily": "fixed_daily",
    "daily": "fixed_daily",
    "daily_ist": "fixed_daily",
}
_DAILY_TIME_RE = re.compile(r"^(\d{1,2}):(\d{2})$")
_UTC_OFFSET_RE = re.compile(r"^(?:Z|UTC|[+-]?\d{1,2}(?::?\d{2})?)$", re.IGNORECASE)

DEFAULT_SCHEDULE: dict[str, Any] = {
    "mode": "fixed_daily",
    "daily_time": "10:00",
    "utc_offset": "+05:30",
    "startup_jitter_seconds": 300,
    "sessions_per_day": 1,
    "min_gap_hours": 24,
    "max_gap_hours": 24,
}


def load_config(path: str | None = None) -> dict[str, Any]:
    """
    Load the service configuration.

    Resolution order:
      1) Explicit `path` argument (if provided)
      2) os.environ['CONFIG_PATH'] (if set)
      3) Internal default (harvest defaults, fixed-daily schedule)

    Returns:
        dict with "harvest", "schedule", "email" and "timezone" keys.
    """
    resolved_path = path or os.environ.get("CONFIG_PATH")
    if not resolved_path:
        logger.info("CONFIG_PATH not provided; using default config.")
        cfg: dict[str, Any] = {}
    else:
        cfg = _read_any(resolved_path)

    _apply_top_level_defaults(cfg)
    return cfg


def normalize_mode(mode: Any) -> str:
    key = str(mode or DEFAULT_SCHEDULE["mode"]).strip().lower()
    if key not in _MODE_ALIASES:
        raise ConfigError(f"schedule.mode must be one of {sorted(_MODE_ALIASES)} (got {mode!r}).")
    return _MODE_ALIASES[key]


def validate(cfg: dict[str, Any]) -> None:
    """
    Validate the configuration. Raise ConfigError on any problem.
    No prints, no sys.exit().
    """
    if not isinstance(cfg, dict):
        raise ConfigError("Config must be a dict.")

    tz = cfg.get("timezone")
    if tz is not None and not isinstance(tz, str):
        raise ConfigError("'timezone' must be a string if provided.")

    harvest = cfg.get("harvest", {})
    if not isinstance(harvest, dict):
        raise ConfigError("'harvest' must be an object of module kwargs.")

    sched = cfg.get("schedule", {})
    if not isinstance(sched, dict):
        raise ConfigError("'schedule' must be an object.")
    mode = normalize_mode(sched.get("mode"))

    if mode == "fixed_daily":
        _validate_daily_time(sched.get("daily_time", DEFAULT_SCHEDULE["daily_time"]))
        offset = str(sched.get("utc_offset", DEFAULT_SCHEDULE["utc_offset"])).strip()
        if not _UTC_OFFSET_RE.match(offset):
            raise ConfigError(f"schedule.utc_offset must look like '+05:30' (got {offset!r}).")
        _to_number(sched.get("startup_jitter_seconds", 0), field="schedule.startup_jitter_seconds", minimum=0)
    else:
        _to_int(sched.get("sessions_per_day", 1), field="schedule.sessions_per_day", allow_zero=False)
        lo = _to_number(sched.get("min_gap_hours", 24), field="schedule.min_gap_hours", minimum=0)
        hi = _to_number(sched.get("max_gap_hours", 24), field="schedule.max_gap_hours", minimum=0)
        if max(lo, hi) <= 0:
            raise ConfigError("schedule gap hours must be > 0.")

    email = cfg.get("email", {})
    if not isinstance(email, dict):
        raise ConfigError("'email' must be an object.")
    if "enabled" in email:
        _to_bool(email["enabled"], field="email.enabled")

    # Module-level validation (keywords, caps, filters...)
    from modules.job_harvest.lib.config import ConfigError as ModuleConfigError
    from modules.job_harvest.lib.config import Settings

    try:
        Settings.from_env_and_kwargs(harvest)
    except ModuleConfigError as e:
        raise ConfigError(f"harvest: {e}") from e


def _apply_top_level_defaults(cfg: dict[str, Any]) -> None:
    # Resolve timezone now so scheduler can use cfg['timezone']
    tz = cfg.get("timezone")
    if not isinstance(tz, str) or not tz.strip():
        cfg["timezone"] = os.environ.get("TZ", "UTC")

    if not isinstance(cfg.get("harvest"), dict):
        cfg["harvest"] = {}

    sched = cfg.get("schedule")
    if not isinstance(sched, dict):
        sched = {}
    cfg["schedule"] = {**DEFAULT_SCHEDULE, **sched}

    email = cfg.get("email")
    if not isinstance(email, dict):
        email = {}
    if "enabled" in email:
        email["enabled"] = _to_bool(email["enabled"], field="email.enabled")
    cfg["email"] = {"enabled": True, **email}

    # email.to -> harvest.email_to unless the harvest block sets it
    to = cfg["email"].get("to")
    if to and "email_to" not in cfg["harvest"]:
        cfg["harvest"]["email_to"] = to


def _validate_daily_time(dt: Any) -> None:
    if not isinstance(dt, str):
        raise ConfigError("schedule.daily_time must be a string like 'HH:MM'.")
    m = _DAILY_TIME_RE.match(dt.strip())
    if not m:
        raise ConfigError("schedule.daily_time must match HH:MM (24h).")
    hour, minute = int(m.group(1)), int(m.group(2))
    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        raise ConfigError("schedule.daily_time hour/minute out of range (00:00..23:59).")


def _to_bool(value: Any, *, field: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        v = value.strip().lower()
        if v in {"1", "true", "yes", "on"}:
            return True
        if v in {"0", "false", "no", "off"}:
            return False
    raise ConfigError(f"'{field}' must be a boolean (or boolean-like string).")


def _to_int(value: Any, *, field: str, allow_zero: bool) -> int:
    try:
        iv = int(value)
    except (TypeError, ValueError) as err:
        raise ConfigError(f"'{field}' must be an integer.") from err
    if iv < 0 or (iv == 0 and not allow_zero):
        raise ConfigError(f"'{field}' must be >= {'0' if allow_zero else '1'} (got {iv}).")
    return iv


def _to_number(value: Any, *, field: str, minimum: float) -> float:
    try:
        fv = float(value)
    except (TypeError, ValueError) as err:
        raise ConfigError(f"'{field}' must be a number.") from err
    if fv < minimum:
        raise ConfigError(f"'{field}' must be >= {minimum} (got {fv}).")
    return fv


def _read_any(path: str) -> dict[str, Any]:
    """Parse ``path`` by extension; unknown extensions must hold a JSON object."""
    try:
        with open(path, encoding="utf-8") as f:
            text = f.read()
    except FileNotFoundError as e:
        raise ConfigError(f"Config file not found: {path}") from e
    except OSError as e:
        raise ConfigError(f"Failed to read config file: {path}: {e}") from e

    suffix = os.path.splitext(path)[1].lower()
    if suffix in (".yml", ".yaml"):
        try:
            data = yaml.safe_load(text) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {path}: {e}") from e
    elif suffix == ".json":
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise ConfigError(f"Invalid JSON in {path}: {e}") from e
    else:
        try:
            data = json.loads(text)
        except json.JSONDecodeError:
            data = None
        if not isinstance(data, dict):
            raise ConfigError(f"Unsupported config format for {path}. Use .json or .yml/.yaml.")

    if not isinstance(data, dict):
        raise ConfigError(f"Top level of {path} must be a mapping.")
    return data
