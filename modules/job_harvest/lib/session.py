"""
Session orchestrator: one complete harvest.

  load store -> acquire -> re-filter against store -> (startup narrowing)
  -> export -> mark seen -> best-effort mail

Identities are marked seen only after the export succeeded, so a crash
between acquisition and export never hides postings that were not reported.
All collaborators are injectable for tests.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import replace
from typing import Any

from . import classifiers, logging_bridge, render
from . import store as store_mod
from .config import Settings
from .models import JobRecord, SessionResult
from .store import IdentitySet

AcquireFn = Callable[[Settings, IdentitySet], list[JobRecord]]
ExportFn = Callable[[list[JobRecord], str], str]
MailFn = Callable[[str, dict[str, Any]], Any]


def _default_acquire(settings: Settings, seen: IdentitySet) -> list[JobRecord]:
    from .acquisition import acquire_jobs

    return acquire_jobs(settings, seen)


def _default_export(records: list[JobRecord], output_dir: str) -> str:
    from .export import write_csv

    return write_csv(records, output_dir)


def apply_startup_flag(records: list[JobRecord], startup_only: bool) -> list[JobRecord]:
    """
    Every returned record carries an explicit is_likely_startup value:
    narrowed + True when the filter is on, all False otherwise.
    """
    if startup_only:
        return classifiers.filter_startups(records)
    return [replace(r, is_likely_startup=False) for r in records]


def run_session(
    settings: Settings,
    *,
    acquire: AcquireFn | None = None,
    export: ExportFn | None = None,
    mail: MailFn | None = None,
) -> SessionResult:
    """
    Run one session and return the export path (None when nothing new) and
    the exported records.

    Export failures propagate and leave the store untouched. Mail failures
    are logged and swallowed.
    """
    start_ns = time.perf_counter_ns()
    acquire_fn = acquire or _default_acquire
    export_fn = export or _default_export

    seen = store_mod.load(settings.seen_store_path)
    logging_bridge.activity({
        "component": "job_harvest.session",
        "op": "start",
        "keywords": settings.keywords,
        "variants": len(settings.queries()),
        "location": settings.location,
        "cap": settings.results_per_session,
        "known_postings": seen.total_count,
        "flags": {
            "startup_only": settings.startup_only,
            "enrich_job_details": settings.enrich_job_details,
            "use_public_search": settings.use_public_search,
            "send_email": settings.send_email,
        },
    })

    acquired = acquire_fn(settings, seen)
    # The store may have been written by someone else since load; filter again.
    fresh = store_mod.filter_new(acquired, seen)
    fresh = apply_startup_flag(fresh, settings.startup_only)

    logging_bridge.activity({
        "component": "job_harvest.session",
        "op": "acquired",
        "acquired": len(acquired),
        "new": len(fresh),
        "startup_only": settings.startup_only,
    })

    if not fresh:
        logging_bridge.activity({
            "component": "job_harvest.session",
            "op": "no_new",
            "total_us": int((time.perf_counter_ns() - start_ns) // 1000),
        })
        return SessionResult(export_path=None, records=[])

    path = export_fn(fresh, settings.output_dir)
    store_mod.mark_seen(fresh, seen, settings.seen_store_path)
    logging_bridge.activity({
        "component": "job_harvest.session",
        "op": "exported",
        "path": path,
        "count": len(fresh),
        "known_postings": seen.total_count,
    })

    emailed = False
    if mail is not None:
        meta = build_mail_meta(settings, fresh)
        try:
            mail(path, meta)
            emailed = True
        except Exception as e:
            logging_bridge.error({
                "component": "job_harvest.session",
                "op": "mail_failed",
                "path": path,
                "error": repr(e),
            })

    logging_bridge.activity({
        "component": "job_harvest.session",
        "op": "summary",
        "count": len(fresh),
        "path": path,
        "emailed": emailed,
        "total_us": int((time.perf_counter_ns() - start_ns) // 1000),
    })
    return SessionResult(export_path=path, records=fresh)


def build_mail_meta(settings: Settings, records: list[JobRecord]) -> dict[str, Any]:
    count = len(records)
    message = f"{count} new posting{'s' if count != 1 else ''} for {settings.keywords!r} in {settings.location or 'any location'}"
    html = render.wrap_document(
        render.build_table(records),
        heading="LinkedIn job harvest",
        intro=message,
    )
    return {
        "keywords": settings.keywords,
        "location": settings.location,
        "count": count,
        "message": message,
        "html": html,
        "to": list(settings.email_to),
    }
