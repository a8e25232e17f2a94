from __future__ import annotations

import enum
from dataclasses import dataclass, field


class Seniority(str, enum.Enum):
    """Title-derived seniority hint. Values are what the CSV export shows."""

    ENTRY = "entry/intern"
    MID = "mid/unspecified"
    SENIOR = "senior"


@dataclass(frozen=True)
class JobRecord:
    """
    A single job posting as produced by the acquisition engine.

    Records are immutable; enrichment and final tagging build new instances
    with ``dataclasses.replace``. ``link`` is always the canonical link.
    """

    title: str
    company: str
    location: str
    link: str
    job_id: str | None = None
    listed_at: str | None = None  # ISO date/time as printed by the search page
    scraped_at: str = ""
    tech_stack: tuple[str, ...] = ()
    seniority: Seniority = Seniority.MID
    is_entry_level: bool = False
    is_likely_startup: bool = False
    startup_signal_in_description: bool = False


@dataclass(frozen=True)
class ScrapeQuery:
    """
    One search to execute. A session iterates several of these (keyword
    variants) that share location, time filter, keyword filters and cap.
    """

    keywords: str
    location: str = ""
    time_posted: str = "any"  # "any" | "past24h" | "pastWeek"
    include_keywords: tuple[str, ...] = ()
    exclude_keywords: tuple[str, ...] = ()
    cap: int = 40


@dataclass
class SessionResult:
    """
    Outcome of one orchestrated session.
    - export_path: file written by the export collaborator (None if nothing new)
    - records: the new, tagged records that were exported
    """

    export_path: str | None = None
    records: list[JobRecord] = field(default_factory=list)
