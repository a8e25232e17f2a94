# service/runner.py
from __future__ import annotations

import importlib
import json
import logging
import os
import threading
import uuid
from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any

DEFAULT_MODULE = "modules.job_harvest.main"

# -----------------------------------------------------------------------------
# Optional imports (graceful fallback)
# -----------------------------------------------------------------------------
_write_activity_log = None
_write_error_log = None

try:
    from service.logging_utils import write_activity_log as _write_activity_log
    from service.logging_utils import write_error_log as _write_error_log
except ImportError:
    _write_activity_log = None
    _write_error_log = None

# -----------------------------------------------------------------------------
# Logging
# -----------------------------------------------------------------------------
log = logging.getLogger(__name__)


# -----------------------------------------------------------------------------
# Run guard (process-wide, Idle <-> Running)
# -----------------------------------------------------------------------------
class RunGuard:
    """
    Two-state machine (Idle, Running). ``try_enter`` is an atomic
    compare-and-set: it never blocks, and returns False while a run is active.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._started_at: str | None = None
        self._trigger: str | None = None

    @property
    def running(self) -> bool:
        return self._lock.locked()

    @property
    def state(self) -> str:
        return "running" if self.running else "idle"

    def try_enter(self, trigger_type: str = "manual") -> bool:
        if not self._lock.acquire(blocking=False):
            return False
        self._started_at = now_iso()
        self._trigger = trigger_type
        return True

    def leave(self) -> None:
        self._started_at = None
        self._trigger = None
        self._lock.release()

    def describe(self) -> dict[str, Any]:
        return {"state": self.state, "started_at": self._started_at, "trigger_type": self._trigger}


GUARD = RunGuard()


@dataclass
class RunOutcome:
    status: str  # "busy" | "ok" | "error"
    run_id: str
    trigger_type: str
    started_at: str
    finished_at: str | None = None
    count: int = 0
    export_path: str | None = None
    message: str = ""
    meta: dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status == "ok"

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------
def now_iso() -> str:
    return datetime.now(timezone.utc).astimezone().isoformat(timespec="seconds")


_TRUE_WORDS = frozenset({"true", "t", "yes", "y", "1"})
_FALSE_WORDS = frozenset({"false", "f", "no", "n", "0"})


def _coerce_scalar(text: str) -> Any:
    """'yes' -> True, '25' -> 25, '0.5' -> 0.5, '[..]'/'{..}' -> JSON; anything else unchanged."""
    s = text.strip()
    if s[:1] + s[-1:] in ("[]", "{}"):
        try:
            return json.loads(s)
        except json.JSONDecodeError:
            pass
    low = s.lower()
    if low in _TRUE_WORDS:
        return True
    if low in _FALSE_WORDS:
        return False
    for number in (int, float):
        try:
            return number(s)
        except ValueError:
            continue
    return s


def _normalize_kwargs_types(kwargs: dict[str, object] | None) -> dict[str, object]:
    """
    Module kwargs as config/CLI strings -> typed values. A key ending in
    ``_env`` names an environment variable; ``linkedin_cookie_env: LINKEDIN_COOKIE``
    becomes ``linkedin_cookie: <value or "">``.
    """
    normalized: dict[str, object] = {}
    for k, v in (kwargs or {}).items():
        if isinstance(k, str) and k.endswith("_env") and isinstance(v, str):
            normalized[k[: -len("_env")]] = os.getenv(v.strip(), "")
        else:
            normalized[k] = _coerce_scalar(v) if isinstance(v, str) else v
    return normalized


def _resolve_callable(module_path: str) -> Callable[..., Any]:
    """Import module and return its `run` callable."""
    mod = importlib.import_module(module_path)
    if not hasattr(mod, "run") or not callable(mod.run):
        raise AttributeError(f"Module {module_path!r} does not define a callable `run(**kwargs)`.")
    return mod.run  # type: ignore[no-any-return]


def _effective_send(send_email: bool | None) -> bool:
    """Dry-run env wins; then the explicit flag; then SEND_EMAIL (default on)."""
    dry_run = str(os.getenv("JOB_HARVEST_DRY_RUN", "")).strip().lower() in {"1", "true", "yes", "on"}
    if dry_run:
        return False
    if send_email is not None:
        return bool(send_email)
    return str(os.getenv("SEND_EMAIL", "1")).strip().lower() in {"1", "true", "yes", "on"}


def _emit(record: dict[str, Any], *, error: bool = False) -> None:
    writer = _write_error_log if error else _write_activity_log
    if writer is not None:
        try:
            writer(record)
            return
        except (OSError, TypeError, ValueError) as e:
            log.warning("structured log write failed: %s", e)
    (log.error if error else log.info)("%s", json.dumps(record, ensure_ascii=False, default=str))


# -----------------------------------------------------------------------------
# Public API
# -----------------------------------------------------------------------------
def run_module_once(
    module: str = DEFAULT_MODULE,
    kwargs: dict[str, object] | None = None,
    send_email: bool | None = None,
    trigger_type: str = "scheduled",
    guard: RunGuard | None = None,
) -> RunOutcome:
    """
    Execute a module's run(**kwargs) once, unless a run is already active.

    Returns:
        RunOutcome; status "busy" when another run holds the guard (nothing
        is queued), "ok" on success.
    Raises:
        Propagates exceptions from module execution after recording an
        "error" outcome (caller/CLI/scheduler will catch and log).
    """
    g = guard or GUARD
    run_id = uuid.uuid4().hex
    started_at = now_iso()

    if not g.try_enter(trigger_type):
        busy = RunOutcome(
            status="busy",
            run_id=run_id,
            trigger_type=trigger_type,
            started_at=started_at,
            finished_at=started_at,
            message="A session is already running",
            meta={"guard": g.describe()},
        )
        _emit({"ts": started_at, "event": "run_busy", **busy.to_dict()})
        log.info("Run skipped (%s trigger): already running", trigger_type)
        return busy

    kw = _normalize_kwargs_types(kwargs)
    kw["send_email"] = _effective_send(send_email if send_email is not None else kw.get("send_email"))  # type: ignore[arg-type]

    t0 = datetime.now()
    try:
        run_callable = _resolve_callable(module)
        value = run_callable(**kw)
    except BaseException as e:
        outcome = RunOutcome(
            status="error",
            run_id=run_id,
            trigger_type=trigger_type,
            started_at=started_at,
            finished_at=now_iso(),
            message=str(e),
            meta={"exception_type": type(e).__name__},
        )
        _emit(
            {
                "ts": now_iso(),
                "where": "runner.run_module_once",
                "module": module,
                "error": repr(e),
                "duration_ms": int((datetime.now() - t0).total_seconds() * 1000),
                **outcome.to_dict(),
            },
            error=True,
        )
        raise
    finally:
        g.leave()

    meta = value if isinstance(value, dict) else {}
    outcome = RunOutcome(
        status="ok",
        run_id=run_id,
        trigger_type=trigger_type,
        started_at=started_at,
        finished_at=now_iso(),
        count=int(meta.get("count") or 0),
        export_path=meta.get("export_path"),
        message=str(meta.get("message", "OK")),
        meta=meta,
    )
    _emit({
        "ts": now_iso(),
        "event": "run",
        "module": module,
        "duration_ms": int((datetime.now() - t0).total_seconds() * 1000),
        "kwargs": kw,
        **outcome.to_dict(),
    })
    return outcome
