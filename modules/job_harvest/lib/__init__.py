# modules/job_harvest/lib/__init__.py
from __future__ import annotations

# Re-export commonly-used types for convenience
from .config import ConfigError, Pacing, PaginationPolicy, ScrollPolicy, Settings
from .models import JobRecord, ScrapeQuery, Seniority, SessionResult
from .session import run_session

__all__ = [
    "ConfigError",
    "JobRecord",
    "Pacing",
    "PaginationPolicy",
    "ScrapeQuery",
    "ScrollPolicy",
    "Seniority",
    "SessionResult",
    "Settings",
    "run_session",
]
