# service/logging_utils.py
"""
Structured JSONL logs: one activity channel, one error channel, one file per
channel per day under LOG_DIR.

Environment (read on every call so tests can redirect):
  LOG_DIR                  base directory (default ./local/logs)
  ACTIVITY_LOG_PREFIX      default "activity"
  ERROR_LOG_PREFIX         default "error"
  ACTIVITY_LOG_MAX_BYTES   roll the day's file aside once it reaches this size; <=0 disables

Records are deep-copied with secret-looking keys redacted and host/pid
stamped under "_meta"; the caller's dict is never mutated.
"""

from __future__ import annotations

import contextlib
import datetime as _dt
import json
import os
import socket
from collections.abc import Iterable
from typing import Any

_DEFAULT_LOG_DIR = os.path.join("local", "logs")

# Case-insensitive substrings of key names whose values are scrubbed
_DEFAULT_REDACT_KEYS = frozenset({
    "password",
    "token",
    "apikey",
    "api_key",
    "secret",
    "smtp_",
    "authorization",
    "cookie",
    "li_at",
})
_REDACTED = "***REDACTED***"

_PROCESS_META = {"host": socket.gethostname(), "pid": os.getpid()}


class JsonlLog:
    """A dated JSONL channel. ``prefix_env``/``default_prefix`` name its files."""

    def __init__(self, prefix_env: str, default_prefix: str) -> None:
        self.prefix_env = prefix_env
        self.default_prefix = default_prefix

    def path(self, day: _dt.date | None = None) -> str:
        prefix = os.getenv(self.prefix_env, self.default_prefix)
        stamp = (day or _dt.date.today()).isoformat()
        return os.path.join(os.getenv("LOG_DIR") or _DEFAULT_LOG_DIR, f"{prefix}-{stamp}.jsonl")

    def write(self, record: dict[str, Any]) -> None:
        """
        Append one line. Serialization happens before any file is touched;
        a failed append is retried once.
        """
        stamped = {**redact(record), "_meta": {**_meta_of(record), **_PROCESS_META}}
        line = (json.dumps(stamped, ensure_ascii=False, separators=(",", ":"), default=str) + "\n").encode("utf-8")
        path = self.path()
        for attempt in (1, 2):
            try:
                os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
                _roll_if_large(path)
                fd = os.open(path, os.O_CREAT | os.O_APPEND | os.O_WRONLY, 0o644)
                try:
                    os.write(fd, line)
                finally:
                    os.close(fd)
                return
            except OSError:
                if attempt == 2:
                    raise

    def tail(self, limit: int = 20) -> list[dict[str, Any]]:
        """Last ``limit`` parsable records of today's file, oldest first."""
        if limit <= 0:
            return []
        try:
            with open(self.path(), encoding="utf-8") as f:
                lines = f.readlines()[-limit:]
        except FileNotFoundError:
            return []
        out: list[dict[str, Any]] = []
        for line in lines:
            with contextlib.suppress(json.JSONDecodeError):
                item = json.loads(line)
                if isinstance(item, dict):
                    out.append(item)
        return out


ACTIVITY = JsonlLog("ACTIVITY_LOG_PREFIX", "activity")
ERRORS = JsonlLog("ERROR_LOG_PREFIX", "error")


# ---- Public API --------------------------------------------------------------


def write_activity_log(record: dict[str, Any]) -> None:
    """Append a structured activity record; raises on unrecoverable I/O or serialization errors."""
    ACTIVITY.write(record)


def write_error_log(record: dict[str, Any]) -> None:
    ERRORS.write(record)


def read_recent(limit: int = 20, *, errors: bool = False) -> list[dict[str, Any]]:
    return (ERRORS if errors else ACTIVITY).tail(limit)


def redact(record: Any, keys: Iterable[str] = _DEFAULT_REDACT_KEYS) -> Any:
    """
    Deep copy of ``record`` with values under secret-looking keys replaced and
    "Bearer <token>" strings reduced to their scheme.
    """
    patterns = tuple(k.lower() for k in keys)
    if isinstance(record, dict):
        return {
            k: _REDACTED if isinstance(k, str) and any(p in k.lower() for p in patterns) else redact(v, patterns)
            for k, v in record.items()
        }
    if isinstance(record, (list, tuple)):
        return [redact(v, patterns) for v in record]
    if isinstance(record, str) and record.lower().startswith("bearer "):
        return f"{record.split(' ', 1)[0]} {_REDACTED}"
    return record


# ---- Internal helpers --------------------------------------------------------


def _meta_of(record: dict[str, Any]) -> dict[str, Any]:
    meta = record.get("_meta")
    return meta if isinstance(meta, dict) else {}


def _max_bytes() -> int:
    try:
        return int(os.getenv("ACTIVITY_LOG_MAX_BYTES", "0"))
    except ValueError:
        return 0


def _roll_if_large(path: str) -> None:
    limit = _max_bytes()
    if limit <= 0:
        return
    try:
        if os.path.getsize(path) < limit:
            return
    except FileNotFoundError:
        return
    with contextlib.suppress(FileNotFoundError):
        os.replace(path, f"{path}.{_dt.datetime.now():%Y%m%d-%H%M%S}")
