# service/scheduler.py
from __future__ import annotations

import logging
import os
import random
import threading
import time as _time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, time, timedelta, timezone, tzinfo
from typing import Any

from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.jobstores.base import JobLookupError
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.date import DateTrigger
import pytz

# Project-local interfaces
from . import config_schema, runner
from .logging_utils import write_activity_log  # type: ignore[import-not-found]

LOG = logging.getLogger(__name__)

MODE_GAP = "gap"
MODE_FIXED_DAILY = "fixed_daily"
JOB_ID_PREFIX = "job_harvest"


# ---- Pure scheduling math ---------------------------------------------------


def pick_gap_hours(min_hours: float, max_hours: float, rng: random.Random | None = None) -> float:
    """Uniform in [min, max] (bounds may come in either order); exact when equal."""
    lo, hi = min(min_hours, max_hours), max(min_hours, max_hours)
    if hi == lo:
        return float(lo)
    return lo + (rng or random).random() * (hi - lo)


def seconds_until_midnight(now: datetime) -> float:
    """Seconds from ``now`` to the next midnight in now's own timezone."""
    naive = datetime.combine(now.date() + timedelta(days=1), time(0, 0))
    tz = now.tzinfo
    if tz is None:
        midnight = naive
    elif hasattr(tz, "localize"):  # pytz zones need localize() for the right offset
        midnight = tz.localize(naive)
    else:
        midnight = naive.replace(tzinfo=tz)
    return (midnight - now).total_seconds()


def next_gap_delay(
    sessions_done_today: int,
    sessions_per_day: int,
    now: datetime,
    min_gap_hours: float,
    max_gap_hours: float,
    rng: random.Random | None = None,
) -> tuple[float, int]:
    """
    Delay (seconds) until the next gap-mode run, given that a run just
    finished, and the updated sessions-done-today counter.

    When the daily quota is reached the counter resets and the delay is
    time-to-midnight plus a fresh random gap.
    """
    done = sessions_done_today + 1
    gap_s = pick_gap_hours(min_gap_hours, max_gap_hours, rng) * 3600.0
    if done >= sessions_per_day:
        return seconds_until_midnight(now) + gap_s, 0
    return gap_s, done


def parse_hhmm(value: str) -> tuple[int, int]:
    """``"10:00"`` -> (10, 0). Raises ValueError on bad shape or range."""
    parts = str(value).strip().split(":")
    if len(parts) != 2:
        raise ValueError(f"time must be 'HH:MM', got {value!r}")
    try:
        hh, mm = int(parts[0]), int(parts[1])
    except ValueError as err:
        raise ValueError(f"time must contain integers: {value!r}") from err
    time(hh, mm)  # validates ranges
    return hh, mm


def parse_utc_offset(value: str) -> timezone:
    """``"+05:30"`` / ``"-0400"`` / ``"Z"`` -> fixed-offset tzinfo (no DST)."""
    s = str(value).strip().upper()
    if not s:
        raise ValueError("utc offset cannot be empty")
    if s in ("Z", "UTC", "+00:00", "00:00"):
        return timezone.utc
    sign = 1
    if s[:1] in "+-":
        sign = -1 if s[0] == "-" else 1
        s = s[1:]
    hh, _, mm = s.partition(":") if ":" in s else (s[:2], "", s[2:])
    try:
        hours, minutes = int(hh), int(mm or 0)
    except ValueError as err:
        raise ValueError(f"utc offset must look like '+05:30', got {value!r}") from err
    if hours > 23 or minutes > 59:
        raise ValueError(f"utc offset out of range: {value!r}")
    return timezone(sign * timedelta(hours=hours, minutes=minutes))


def next_daily_fire(now: datetime, hour: int, minute: int, tz: tzinfo) -> datetime:
    """
    Next occurrence of HH:MM in ``tz`` strictly after ``now``; rolls to the
    following day when today's target already passed.
    """
    local_now = now.astimezone(tz)
    target = local_now.replace(hour=hour, minute=minute, second=0, microsecond=0)
    if target <= local_now:
        target += timedelta(days=1)
    return target


# ---- State ------------------------------------------------------------------


@dataclass
class ScheduleState:
    mode: str
    sessions_done_today: int = 0
    pending_job: Any = None  # apscheduler.job.Job
    next_fire: datetime | None = None
    runs: int = 0


# ---- Strategies -------------------------------------------------------------


class _SelfArmingSchedule:
    """
    Base for one-shot, self re-arming schedules on top of APScheduler.

    Each fire is a DateTrigger job. The wrapper runs the callback to
    completion and arms the next fire in ``finally``, so a raising callback
    never stops the schedule and runs never overlap.
    """

    mode = ""

    def __init__(
        self,
        callback: Callable[[], Any],
        *,
        scheduler: BackgroundScheduler,
        tz: tzinfo,
        rng: random.Random | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._callback = callback
        self._scheduler = scheduler
        self.tz = tz
        self._rng = rng or random.Random()
        self._clock = clock or (lambda: datetime.now(tz=self.tz))
        self._lock = threading.Lock()
        self._stopped = False
        self._seq = 0
        self.state = ScheduleState(mode=self.mode)

    # ---- contract ----

    def start(self) -> None:
        self._stopped = False
        self._arm_at(self._first_fire(self._clock()))

    def stop(self) -> None:
        """Cancel the pending fire. A run already in flight is not interrupted."""
        with self._lock:
            self._stopped = True
            job = self.state.pending_job
            self.state.pending_job = None
            self.state.next_fire = None
        if job is not None:
            try:
                job.remove()
            except JobLookupError:
                LOG.debug("Pending job already gone at stop()")

    def preview(self, count: int = 5) -> list[datetime]:
        """Upcoming fire times, assuming runs take no time (jitter/randomness excluded)."""
        raise NotImplementedError

    # ---- hooks ----

    def _first_fire(self, now: datetime) -> datetime:
        raise NotImplementedError

    def _next_fire_after_run(self, now: datetime) -> datetime:
        raise NotImplementedError

    # ---- internals ----

    def _arm_at(self, run_at: datetime) -> None:
        with self._lock:
            if self._stopped:
                return
            self._seq += 1
            # Unique ids: APScheduler drops the finished one-shot job asynchronously.
            job_id = f"{JOB_ID_PREFIX}-{self.mode}-{self._seq}"
            job = self._scheduler.add_job(
                func=self._fire,
                trigger=DateTrigger(run_date=run_at, timezone=run_at.tzinfo),
                id=job_id,
                max_instances=1,
                coalesce=True,
                misfire_grace_time=None,
                replace_existing=True,
            )
            self.state.pending_job = job
            self.state.next_fire = run_at
        LOG.info("Next %s run armed for %s", self.mode, run_at.isoformat())
        _write_activity(self.mode, "armed", next_fire=run_at.isoformat())

    def _fire(self) -> None:
        started = _time.monotonic()
        with self._lock:
            self.state.pending_job = None
        status = "ok"
        try:
            self._callback()
        except Exception:
            status = "error"
            LOG.exception("Scheduled %s run raised; next run is still armed.", self.mode)
        finally:
            self.state.runs += 1
            _write_activity(self.mode, status, duration_ms=int((_time.monotonic() - started) * 1000))
            if not self._stopped:
                self._arm_at(self._next_fire_after_run(self._clock()))


class GapScheduler(_SelfArmingSchedule):
    """
    Runs ``sessions_per_day`` times a day separated by random gaps in
    [min_gap_hours, max_gap_hours]; after the last session of the day it
    waits until local midnight plus a gap.
    """

    mode = MODE_GAP

    def __init__(
        self,
        callback: Callable[[], Any],
        *,
        sessions_per_day: int = 1,
        min_gap_hours: float = 24.0,
        max_gap_hours: float = 24.0,
        **kw: Any,
    ) -> None:
        super().__init__(callback, **kw)
        if sessions_per_day < 1:
            raise ValueError("sessions_per_day must be >= 1")
        self.sessions_per_day = sessions_per_day
        self.min_gap_hours = min_gap_hours
        self.max_gap_hours = max_gap_hours

    def _first_fire(self, now: datetime) -> datetime:
        return now + timedelta(hours=pick_gap_hours(self.min_gap_hours, self.max_gap_hours, self._rng))

    def _next_fire_after_run(self, now: datetime) -> datetime:
        delay_s, self.state.sessions_done_today = next_gap_delay(
            self.state.sessions_done_today,
            self.sessions_per_day,
            now,
            self.min_gap_hours,
            self.max_gap_hours,
            self._rng,
        )
        return now + timedelta(seconds=delay_s)

    def preview(self, count: int = 5) -> list[datetime]:
        mid = (self.min_gap_hours + self.max_gap_hours) / 2.0
        now = self._clock()
        done = self.state.sessions_done_today
        fire = now + timedelta(hours=mid)
        out: list[datetime] = []
        for _ in range(count):
            out.append(fire)
            delay_s, done = next_gap_delay(done, self.sessions_per_day, fire, mid, mid)
            fire = fire + timedelta(seconds=delay_s)
        return out


class DailyScheduler(_SelfArmingSchedule):
    """
    Fires once a day at HH:MM in a fixed UTC offset. A bounded random jitter
    is added to the first fire only; later fires are recomputed from the
    clock after each run, so there is no drift.
    """

    mode = MODE_FIXED_DAILY

    def __init__(
        self,
        callback: Callable[[], Any],
        *,
        daily_time: str = "10:00",
        utc_offset: str = "+05:30",
        startup_jitter_seconds: float = 300.0,
        **kw: Any,
    ) -> None:
        fixed_tz = parse_utc_offset(utc_offset)
        kw.setdefault("tz", fixed_tz)
        super().__init__(callback, **kw)
        self.hour, self.minute = parse_hhmm(daily_time)
        self.fire_tz = fixed_tz
        self.startup_jitter_seconds = max(0.0, float(startup_jitter_seconds))

    def _first_fire(self, now: datetime) -> datetime:
        jitter = self._rng.uniform(0.0, self.startup_jitter_seconds) if self.startup_jitter_seconds else 0.0
        return next_daily_fire(now, self.hour, self.minute, self.fire_tz) + timedelta(seconds=jitter)

    def _next_fire_after_run(self, now: datetime) -> datetime:
        return next_daily_fire(now, self.hour, self.minute, self.fire_tz)

    def preview(self, count: int = 5) -> list[datetime]:
        out: list[datetime] = []
        now = self._clock()
        for _ in range(count):
            now = next_daily_fire(now, self.hour, self.minute, self.fire_tz)
            out.append(now)
        return out


# ---- Public controller ------------------------------------------------------


class SchedulerController:
    """
    A small façade around APScheduler + the active strategy so the CLI can
    manage lifecycle cleanly.
    """

    def __init__(self, scheduler: BackgroundScheduler, strategy: _SelfArmingSchedule) -> None:
        self._scheduler = scheduler
        self.strategy = strategy
        self._stopped_evt = threading.Event()

    def stop(self) -> None:
        """
        Cancel the next fire and shut down APScheduler without waiting.
        """
        self.strategy.stop()
        if self._scheduler.running:
            LOG.info("Shutting down scheduler...")
            # wait=False -> stop immediately; a run in flight is allowed to finish.
            self._scheduler.shutdown(wait=False)
        self._stopped_evt.set()
        LOG.info("Scheduler shut down complete.")

    def join(self, timeout: float | None = None) -> bool:
        """
        Block until the scheduler is fully stopped (or timeout).
        Returns True if stopped before timeout, else False.
        """
        return self._stopped_evt.wait(timeout=timeout)

    def next_fire(self) -> datetime | None:
        return self.strategy.state.next_fire


# ---- Module API -------------------------------------------------------------


def build_engine(cfg: dict[str, Any]) -> BackgroundScheduler:
    """
    APScheduler 3.x prefers a pytz scheduler timezone; one worker is enough
    since runs never overlap.
    """
    return BackgroundScheduler(
        timezone=_resolve_timezone(cfg),
        job_defaults={"coalesce": True, "max_instances": 1},
        executors={"default": ThreadPoolExecutor(1)},
        jobstores={"default": MemoryJobStore()},
    )


def build_strategy(
    cfg: dict[str, Any],
    callback: Callable[[], Any],
    *,
    scheduler: BackgroundScheduler,
    rng: random.Random | None = None,
    clock: Callable[[], datetime] | None = None,
) -> _SelfArmingSchedule:
    """Instantiate GapScheduler or DailyScheduler from cfg['schedule']."""
    sched_cfg = dict(cfg.get("schedule") or {})
    mode = config_schema.normalize_mode(sched_cfg.get("mode"))
    common: dict[str, Any] = {"scheduler": scheduler, "rng": rng, "clock": clock}

    if mode == MODE_GAP:
        return GapScheduler(
            callback,
            sessions_per_day=int(sched_cfg.get("sessions_per_day", 1)),
            min_gap_hours=float(sched_cfg.get("min_gap_hours", 24)),
            max_gap_hours=float(sched_cfg.get("max_gap_hours", 24)),
            tz=_resolve_timezone(cfg),
            **common,
        )
    return DailyScheduler(
        callback,
        daily_time=str(sched_cfg.get("daily_time", "10:00")),
        utc_offset=str(sched_cfg.get("utc_offset", "+05:30")),
        startup_jitter_seconds=float(sched_cfg.get("startup_jitter_seconds", 300)),
        **common,
    )


def start(config_path: str | None = None, callback: Callable[[], Any] | None = None) -> SchedulerController:
    """
    Load configuration, build the engine and the configured strategy, arm the
    first fire and start. Returns a SchedulerController exposing stop()/join().
    """
    cfg = config_schema.load_config(config_path)
    config_schema.validate(cfg)

    scheduler = build_engine(cfg)
    strategy = build_strategy(cfg, callback or _default_callback(cfg), scheduler=scheduler)

    scheduler.start()
    strategy.start()
    LOG.info(
        "Scheduler started (mode=%s); upcoming: %s",
        strategy.mode,
        ", ".join(t.isoformat() for t in strategy.preview(3)),
    )
    return SchedulerController(scheduler, strategy)


# ---- Helpers ----------------------------------------------------------------


def _default_callback(cfg: dict[str, Any]) -> Callable[[], Any]:
    harvest_kwargs = dict(cfg.get("harvest") or {})
    send_email = bool((cfg.get("email") or {}).get("enabled", True))

    def _run() -> Any:
        return runner.run_module_once(
            kwargs=harvest_kwargs,
            send_email=send_email,
            trigger_type="scheduled",
        )

    return _run


def _resolve_timezone(cfg: dict[str, Any]):
    """
    APScheduler 3.x expects a pytz timezone. Accepts config['timezone'] or
    env TZ, defaulting to UTC.
    """
    tz_name = cfg.get("timezone") or os.getenv("TZ") or "UTC"
    try:
        return pytz.timezone(tz_name)
    except pytz.UnknownTimeZoneError:
        LOG.warning("Falling back to UTC timezone (invalid or missing tz '%s')", tz_name)
        return pytz.UTC


def _write_activity(mode: str, status: str, **fields: Any) -> None:
    """Best-effort JSONL activity logging; non-fatal on errors."""
    try:
        write_activity_log({
            "ts": datetime.now(timezone.utc).isoformat(),
            "source": "scheduler",
            "event": "job_run" if status in ("ok", "error") else status,
            "fields": {"mode": mode, "status": status, **fields},
        })
    except (OSError, TypeError, ValueError):
        LOG.debug("write_activity_log failed for %s scheduler", mode, exc_info=True)
