"""
Structured activity/error records for the job_harvest module.

Records go to the service's JSONL logs when ``service`` is importable (the
usual case under the scheduler or CLI) and to stdlib logging otherwise, so
the module can also run standalone.
"""

from __future__ import annotations

import logging
from typing import Any

try:
    from service import logging_utils as _jsonl
except ImportError:
    _jsonl = None

_ACTIVITY_LOG = logging.getLogger("job_harvest.activity")
_ERROR_LOG = logging.getLogger("job_harvest.error")

# Top-level keys scrubbed before a record leaves the module
_SECRET_KEYS = ("password", "token", "secret", "cookie", "authorization", "api_key", "apikey")


def _scrub(record: dict[str, Any]) -> dict[str, Any]:
    return {
        k: "***REDACTED***" if any(s in str(k).lower() for s in _SECRET_KEYS) or str(k).lower().startswith("smtp_") else v
        for k, v in record.items()
    }


def _emit(record: dict[str, Any], *, writer_name: str, fallback: logging.Logger, level: int) -> None:
    payload = _scrub(record)
    if _jsonl is not None:
        try:
            getattr(_jsonl, writer_name)(payload)
            return
        except (OSError, TypeError, ValueError):
            fallback.debug("JSONL %s failed; using stdlib logging", writer_name, exc_info=True)
    fallback.log(level, payload)


def activity(record: dict[str, Any]) -> None:
    _emit(record, writer_name="write_activity_log", fallback=_ACTIVITY_LOG, level=logging.INFO)


def error(record: dict[str, Any]) -> None:
    _emit(record, writer_name="write_error_log", fallback=_ERROR_LOG, level=logging.ERROR)
