from __future__ import annotations

import csv
import os
from collections.abc import Iterable
from datetime import datetime, timezone

from .models import JobRecord

# Excel needs the BOM to pick UTF-8 for non-ASCII company names.
CSV_ENCODING = "utf-8-sig"

CSV_COLUMNS: tuple[str, ...] = (
    "Title",
    "Company",
    "Location",
    "Link",
    "TechStack",
    "ListedAt",
    "ScrapedAt",
    "SeniorityHint",
    "IsEntryLevel",
    "IsLikelyStartup",
)


class ExportError(RuntimeError):
    """Raised when the result file cannot be written."""


def export_filename(now: datetime | None = None) -> str:
    """``linkedin-jobs-2025-01-01T00-00-00-000Z.csv`` (colons and dots replaced)."""
    ts = (now or datetime.now(timezone.utc)).astimezone(timezone.utc)
    stamp = ts.strftime("%Y-%m-%dT%H-%M-%S-") + f"{ts.microsecond // 1000:03d}Z"
    return f"linkedin-jobs-{stamp}.csv"


def _yes_no(flag: bool) -> str:
    return "Yes" if flag else "No"


def record_row(r: JobRecord) -> dict[str, str]:
    return {
        "Title": r.title,
        "Company": r.company,
        "Location": r.location,
        "Link": r.link,
        "TechStack": ", ".join(r.tech_stack),
        "ListedAt": r.listed_at or "",
        "ScrapedAt": r.scraped_at,
        "SeniorityHint": r.seniority.value,
        "IsEntryLevel": _yes_no(r.is_entry_level),
        "IsLikelyStartup": _yes_no(r.is_likely_startup),
    }


def write_csv(records: Iterable[JobRecord], output_dir: str, *, now: datetime | None = None) -> str:
    """
    Write records (in order) to a new CSV file under ``output_dir``.

    Returns the absolute path. Any I/O failure is raised as ExportError.
    """
    try:
        os.makedirs(output_dir, exist_ok=True)
        path = os.path.abspath(os.path.join(output_dir, export_filename(now)))
        with open(path, "w", encoding=CSV_ENCODING, newline="") as f:
            writer = csv.DictWriter(f, fieldnames=list(CSV_COLUMNS))
            writer.writeheader()
            for r in records:
                writer.writerow(record_row(r))
    except OSError as e:
        raise ExportError(f"Failed to write CSV to {output_dir!r}: {e}") from e
    return path
