"""
Cross-run memory of reported postings ("seen jobs").

A posting is identified three ways, checked in this order:
  1. stable numeric job id (from the link path or a known query parameter)
  2. canonical link
  3. normalized "title|company" composite key

The persisted file is a single JSON object rewritten wholesale on every save
(temp file + os.replace). Reads fail open: a missing or unreadable file is an
empty store.
"""

from __future__ import annotations

import contextlib
import json
import os
import re
import tempfile
from collections.abc import Iterable
from dataclasses import dataclass, field
from urllib.parse import parse_qs, urlsplit

from .logging_bridge import activity as log_activity
from .logging_bridge import error as log_error
from .models import JobRecord
from .utils import collapse_ws, now_iso

DEFAULT_STORE_PATH = os.path.join("data", "seen-jobs.json")
CANONICAL_TEMPLATE = "https://www.linkedin.com/jobs/view/{job_id}/"

# /jobs/view/1234567890 or /jobs/view/data-engineer-at-acme-1234567890
_VIEW_PATH_RE = re.compile(r"/jobs/view/(?:[^/?#]*?-)?(\d+)(?=[/?#]|$)")
_ID_PARAMS = ("currentJobId", "jobId", "jk")


# ---- Identity helpers -------------------------------------------------------


def extract_id(link: str | None) -> str | None:
    """Return the numeric job id carried by ``link``, or None."""
    if not link:
        return None
    raw = str(link).strip()
    try:
        parts = urlsplit(raw)
    except ValueError:
        m = _VIEW_PATH_RE.search(raw)
        return m.group(1) if m else None

    m = _VIEW_PATH_RE.search(parts.path)
    if m:
        return m.group(1)

    params = parse_qs(parts.query)
    for name in _ID_PARAMS:
        for value in params.get(name, []):
            if value.isdigit():
                return value
    return None


def canonicalize(link: str | None) -> str | None:
    """
    Reduce ``link`` to a stable dedup key.

    Links with a job id collapse to the id-only detail URL; anything else
    loses its query string and fragment. Idempotent.
    """
    job_id = extract_id(link)
    if job_id:
        return CANONICAL_TEMPLATE.format(job_id=job_id)
    if not link:
        return None
    stripped = str(link).strip().split("#", 1)[0].split("?", 1)[0]
    return stripped or None


def composite_key(title: str | None, company: str | None) -> str | None:
    """Lower-cased, whitespace-collapsed "title|company"; None when both are empty."""
    t = collapse_ws(title).lower()
    c = collapse_ws(company).lower()
    if not t and not c:
        return None
    return f"{t}|{c}"


@dataclass
class IdentitySet:
    """
    The three identity sets plus membership helpers.

    Used on its own as the per-session dedup state inside one acquisition
    call, and as the base of the persisted store.
    """

    job_ids: set[str] = field(default_factory=set)
    links: set[str] = field(default_factory=set)
    title_company_keys: set[str] = field(default_factory=set)

    def contains(self, record: JobRecord) -> bool:
        job_id = record.job_id or extract_id(record.link)
        if job_id and str(job_id) in self.job_ids:
            return True
        link = canonicalize(record.link)
        if link and link in self.links:
            return True
        key = composite_key(record.title, record.company)
        return bool(key and key in self.title_company_keys)

    def add(self, record: JobRecord) -> None:
        job_id = record.job_id or extract_id(record.link)
        if job_id:
            self.job_ids.add(str(job_id))
        link = canonicalize(record.link)
        if link:
            self.links.add(link)
        key = composite_key(record.title, record.company)
        if key:
            self.title_company_keys.add(key)


@dataclass
class SeenJobsStore(IdentitySet):
    """Persisted identity sets with bookkeeping for the JSON file."""

    last_updated: str | None = None

    @property
    def total_count(self) -> int:
        return distinct_postings(self)


def distinct_postings(ids: IdentitySet) -> int:
    """Ids plus links that do not resolve to a known id (informational only)."""
    orphan_links = sum(1 for link in ids.links if extract_id(link) not in ids.job_ids)
    return len(ids.job_ids) + orphan_links


# ---- Public API -------------------------------------------------------------


def is_seen(record: JobRecord, store: IdentitySet) -> bool:
    return store.contains(record)


def filter_new(records: Iterable[JobRecord], store: IdentitySet) -> list[JobRecord]:
    """
    Return the records ``store`` has not seen, in input order.
    Records with neither a job id nor a link cannot be tracked and are dropped.
    """
    out: list[JobRecord] = []
    for r in records:
        if not (r.job_id or extract_id(r.link)) and not canonicalize(r.link):
            continue
        if is_seen(r, store):
            continue
        out.append(r)
    return out


def mark_seen(records: Iterable[JobRecord], store: SeenJobsStore, path: str = DEFAULT_STORE_PATH) -> None:
    """Add every record's identities to ``store`` and persist the whole store."""
    for r in records:
        store.add(r)
    save(store, path)


def load(path: str = DEFAULT_STORE_PATH) -> SeenJobsStore:
    """
    Load the store from ``path``. Never raises: a missing file or corrupt
    content yields an empty store (corruption is logged).
    """
    if not os.path.exists(path):
        return SeenJobsStore()

    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise ValueError(f"expected a JSON object, got {type(data).__name__}")
        return SeenJobsStore(
            job_ids={str(x) for x in _as_list(data.get("jobIds"))},
            links={str(x) for x in _as_list(data.get("links"))},
            title_company_keys={str(x) for x in _as_list(data.get("titleCompanyKeys"))},
            last_updated=data.get("lastUpdated") if isinstance(data.get("lastUpdated"), str) else None,
        )
    except (OSError, ValueError, TypeError) as e:
        log_error({
            "component": "job_harvest.store",
            "op": "load",
            "path": path,
            "error": repr(e),
            "action": "treating as empty store",
        })
        return SeenJobsStore()


def save(store: SeenJobsStore, path: str = DEFAULT_STORE_PATH) -> None:
    """
    Persist ``store`` atomically: write a sibling temp file, then replace.
    A crash mid-write leaves the previous file intact.
    """
    store.last_updated = now_iso()
    payload = {
        "jobIds": sorted(store.job_ids),
        "links": sorted(store.links),
        "titleCompanyKeys": sorted(store.title_company_keys),
        "lastUpdated": store.last_updated,
        "totalCount": store.total_count,
    }
    directory = _ensure_dir(path)
    fd, tmp_path = tempfile.mkstemp(prefix=".seen-jobs-", suffix=".tmp", dir=directory)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(payload, f, indent=2, ensure_ascii=False)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
    except BaseException:
        with contextlib.suppress(FileNotFoundError):
            os.remove(tmp_path)
        raise


# ---- Nice-to-have helpers for the CLI & tests -------------------------------


def stats(path: str = DEFAULT_STORE_PATH) -> dict[str, int | str | None]:
    store = load(path)
    return {
        "job_ids": len(store.job_ids),
        "links": len(store.links),
        "title_company_keys": len(store.title_company_keys),
        "total_count": store.total_count,
        "last_updated": store.last_updated,
    }


def reset(path: str = DEFAULT_STORE_PATH) -> None:
    """
    Forget everything. The only operation that removes identities.
    Safe if the file doesn't exist.
    """
    with contextlib.suppress(FileNotFoundError):
        os.remove(path)
    log_activity({"component": "job_harvest.store", "op": "reset", "path": path})


# ---- Internal utilities -----------------------------------------------------


def _as_list(value: object) -> list:
    if value is None:
        return []
    if not isinstance(value, list):
        raise TypeError(f"expected a list, got {type(value).__name__}")
    return value


def _ensure_dir(path: str) -> str:
    d = os.path.dirname(os.path.abspath(path)) or "."
    os.makedirs(d, exist_ok=True)
    return d
