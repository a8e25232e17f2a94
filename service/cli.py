# service/cli.py
"""
Command-line entrypoints for the job harvest service.

Subcommands
-----------
serve
    - Starts the scheduler (gap or fixed-daily mode) via service.scheduler.start()
    - SIGINT/SIGTERM cancel the next fire and exit cleanly

run [--kwargs k=v ...] [--no-email]
    - One harvest session now, through runner.run_module_once(...)
    - Exits 75 (EX_TEMPFAIL) when a session is already running

stats
    - Seen-jobs store counters plus the last few runs from today's activity log

reset-seen --yes
    - Forgets every seen posting (the only way the store shrinks)

validate-config
    - Nonzero exit when the config (or the harvest kwargs in it) is invalid

preview-schedule [--count N]
    - Next fire times of the configured schedule
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import signal
import sys
import threading
import time
from collections.abc import Iterable, Sequence
from datetime import datetime
from typing import Any

from modules.job_harvest.lib import store as seen_store
from modules.job_harvest.lib.config import Settings
from service import config_schema as _config_schema
from service import logging_utils as L
from service import runner as _runner
from service import scheduler as _scheduler

LOG = logging.getLogger("service.cli")

EXIT_BUSY = 75  # EX_TEMPFAIL


# ------------------------------- Helpers -------------------------------------
def _configure_logging(level_name: str) -> None:
    """basicConfig once; an already-configured root logger is left alone."""
    if logging.getLogger().handlers:
        return
    logging.basicConfig(
        level=getattr(logging, level_name.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


def _kv_pair(raw: str) -> tuple[str, Any]:
    """
    argparse type for ``--kwargs`` items: ``key=value``, where the value is
    decoded as JSON when it parses (numbers, booleans, lists) and kept as a
    plain string otherwise.
    """
    key, sep, value = raw.partition("=")
    key = key.strip()
    if not sep or not key:
        raise argparse.ArgumentTypeError(f"expected key=value, got {raw!r}")
    value = value.strip()
    try:
        return key, json.loads(value)
    except json.JSONDecodeError:
        return key, value


def _print_table(headers: Sequence[str], rows: Iterable[Sequence[str]]) -> None:
    rows = [[str(c) for c in r] for r in rows]
    widths = [max([len(h)] + [len(r[i]) for r in rows]) for i, h in enumerate(headers)]
    rule = "+" + "+".join("-" * (w + 2) for w in widths) + "+"

    def line(cells: Sequence[str]) -> str:
        return "| " + " | ".join(c.ljust(w) for c, w in zip(cells, widths)) + " |"

    print(rule)
    print(line(headers))
    print(rule)
    for r in rows:
        print(line(r))
    print(rule)


def _now_iso() -> str:
    return datetime.now().astimezone().isoformat()


def _load_store_path(config_path: str | None) -> str:
    cfg = _config_schema.load_config(config_path)
    return Settings.from_env_and_kwargs(cfg["harvest"]).seen_store_path


# ------------------------------ Subcommands ----------------------------------
def cmd_validate_config(args: argparse.Namespace) -> int:
    try:
        _config_schema.validate(_config_schema.load_config(args.config))
    except _config_schema.ConfigError as e:
        LOG.error("Configuration validation failed: %s", e)
        print(f"ERROR: configuration invalid: {e}", file=sys.stderr)
        return 1
    print("OK: configuration is valid.")
    return 0


def cmd_run(args: argparse.Namespace) -> int:
    started = time.monotonic()
    kwargs: dict[str, Any] = {}
    try:
        cfg = _config_schema.load_config(args.config)
        kwargs = {**cfg["harvest"], **dict(args.kwargs or [])}
        send_email = False if args.no_email else bool(cfg["email"]["enabled"])
        LOG.debug("Ad-hoc run: send_email=%s kwargs=%s", send_email, L.redact(kwargs))

        outcome = _runner.run_module_once(kwargs=kwargs, send_email=send_email, trigger_type="adhoc")
    except KeyboardInterrupt:
        return 130
    except Exception as e:
        print(f"FAILURE: {e}", file=sys.stderr)
        L.write_error_log({
            "ts": _now_iso(),
            "where": "cli.run",
            "kwargs": kwargs,
            "error": repr(e),
            "duration_ms": int((time.monotonic() - started) * 1000),
        })
        return 1

    L.write_activity_log({
        "ts": _now_iso(),
        "event": "cli_run",
        "run_id": outcome.run_id,
        "status": outcome.status,
        "emailed": send_email,
        "duration_ms": int((time.monotonic() - started) * 1000),
    })
    if outcome.status == "busy":
        print("BUSY: a session is already running.", file=sys.stderr)
        return EXIT_BUSY
    print(f"DONE: {outcome.message}")
    if outcome.export_path:
        print(outcome.export_path)
    return 0


def cmd_stats(args: argparse.Namespace) -> int:
    try:
        path = _load_store_path(args.config)
    except _config_schema.ConfigError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1

    counts = seen_store.stats(path)
    _print_table(("STAT", "VALUE"), [("store", path), *((k, str(v)) for k, v in counts.items())])

    runs = [r for r in L.read_recent(200) if r.get("event") == "run"][-5:]
    if runs:
        _print_table(
            ("STARTED", "TRIGGER", "STATUS", "COUNT"),
            [(r.get("started_at", ""), r.get("trigger_type", ""), r.get("status", ""), r.get("count", 0)) for r in runs],
        )
    return 0


def cmd_reset_seen(args: argparse.Namespace) -> int:
    try:
        path = _load_store_path(args.config)
    except _config_schema.ConfigError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1

    if not args.yes:
        print(f"Refusing to reset {path} without --yes.", file=sys.stderr)
        return 2
    seen_store.reset(path)
    print(f"OK: seen-jobs store reset ({path}).")
    return 0


def cmd_preview_schedule(args: argparse.Namespace) -> int:
    try:
        cfg = _config_schema.load_config(args.config)
        _config_schema.validate(cfg)
        strategy = _scheduler.build_strategy(cfg, lambda: None, scheduler=_scheduler.build_engine(cfg))
    except (_config_schema.ConfigError, ValueError) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1

    _print_table(
        ("#", f"{strategy.mode.upper()} NEXT FIRE"),
        [(str(i), t.isoformat()) for i, t in enumerate(strategy.preview(args.count), start=1)],
    )
    return 0


def cmd_serve(args: argparse.Namespace) -> int:
    """Run the scheduler until SIGINT/SIGTERM."""
    shutdown = threading.Event()

    def _on_signal(signum, frame):
        LOG.info("Signal %s received; stopping scheduler", signum)
        shutdown.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        signal.signal(sig, _on_signal)

    try:
        controller = _scheduler.start(config_path=args.config)
    except Exception as e:
        LOG.exception("Scheduler failed to start: %s", e)
        return 1

    L.write_activity_log({"ts": _now_iso(), "event": "serve_start", "next_fire": str(controller.next_fire())})
    try:
        while not shutdown.wait(0.5):
            pass
    finally:
        controller.stop()
        controller.join(timeout=10.0)
        L.write_activity_log({"ts": _now_iso(), "event": "serve_stop"})
    return 0


# ------------------------------- Argparse ------------------------------------
def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="python -m service.cli",
        description="Job harvest service tools",
    )
    p.add_argument("--config", help="Config file (JSON/YAML). Defaults to CONFIG_PATH or built-in defaults.")
    p.add_argument("--log-level", default=os.getenv("LOG_LEVEL", "INFO"), help="Root log level (default: LOG_LEVEL or INFO).")
    sub = p.add_subparsers(dest="cmd", required=True)

    sub.add_parser("serve", help="Run the scheduler loop.").set_defaults(func=cmd_serve)

    sp = sub.add_parser("run", help="Run one harvest session now.")
    sp.add_argument(
        "--kwargs",
        metavar="k=v",
        nargs="*",
        type=_kv_pair,
        help="Harvest setting overrides; values are JSON-decoded when possible.",
    )
    sp.add_argument("--no-email", action="store_true", help="Export but do not send mail.")
    sp.set_defaults(func=cmd_run)

    sub.add_parser("stats", help="Show seen-jobs store counters.").set_defaults(func=cmd_stats)

    sp = sub.add_parser("reset-seen", help="Forget every seen posting.")
    sp.add_argument("--yes", action="store_true", help="Confirm the reset.")
    sp.set_defaults(func=cmd_reset_seen)

    sub.add_parser("validate-config", help="Check the configuration.").set_defaults(func=cmd_validate_config)

    sp = sub.add_parser("preview-schedule", help="Print upcoming fire times.")
    sp.add_argument("--count", type=int, default=5, help="How many fire times to show.")
    sp.set_defaults(func=cmd_preview_schedule)

    return p


def main(argv: Iterable[str] | None = None) -> int:
    args = _build_parser().parse_args(list(argv) if argv is not None else None)
    _configure_logging(args.log_level)
    return args.func(args)


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
