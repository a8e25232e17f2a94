from __future__ import annotations

from typing import Any

from .lib.config import Settings
from .lib.logging_bridge import activity as log_activity
from .lib.logging_bridge import error as log_error
from .lib.session import MailFn, run_session


def _build_mailer(settings: Settings) -> MailFn | None:
    """
    SMTP mail collaborator, or None when mail is off or the transport is
    incomplete (host, sender and a recipient are all required).
    """
    if not settings.send_email:
        return None

    from service import emailer

    try:
        transport = emailer.SmtpTransport.from_env()
    except emailer.EmailSendError as e:
        log_error({
            "component": "job_harvest.main",
            "op": "mail_skipped",
            "reason": "invalid smtp settings",
            "error": str(e),
        })
        return None
    recipients = list(settings.email_to) or list(transport.default_to)
    if not (transport.host and transport.from_addr and recipients):
        log_activity({
            "component": "job_harvest.main",
            "op": "mail_skipped",
            "reason": "smtp transport not configured",
        })
        return None

    def _mail(path: str, meta: dict[str, Any]) -> None:
        emailer.send_results(transport, path, meta, to=recipients)

    return _mail


def run(**kwargs: Any) -> dict[str, Any]:
    """
    Entry point for the 'job_harvest' module.

    Accepts kwargs (from scheduler/runner/CLI), see Settings.from_env_and_kwargs:
      keywords: str = "data engineer"
      keyword_variants: list[str]
      location: str = "India"
      results_per_session: int = 40
      time_posted: "any" | "past24h" | "pastWeek"
      startup_only: bool = False
      send_email: bool = True   # runner forces False for dry runs

    Returns a meta dict (message, count, export_path, subject).
    """
    settings = Settings.from_env_and_kwargs(kwargs)

    log_activity({
        "component": "job_harvest.main",
        "op": "start",
        "keywords": settings.keywords,
        "location": settings.location,
        "cap": settings.results_per_session,
        "store": settings.seen_store_path,
    })

    result = run_session(settings, mail=_build_mailer(settings))

    count = len(result.records)
    if count:
        message = f"{count} new job(s) exported to {result.export_path}"
    else:
        message = "No new unique jobs this session"
    return {
        "message": message,
        "count": count,
        "export_path": result.export_path,
        "subject": f"LinkedIn jobs — {count} new",
    }
