"""
Acquisition engine: drives one browser page through paginated, multi-query
job search and turns rendered result cards into JobRecords.

Features:
  - Keyword variants tried in order until the session cap is reached
  - Navigation retry with a relaxed load state; a twice-failed page counts as empty
  - Incremental loading (scroll + "see more") with count/height stall detection
  - Keyword and location filters, then intra-session and cross-session dedup
  - Optional detail-page enrichment (tech stack, startup phrases), never fatal
  - Randomized pacing between browser actions (see config.Pacing)
"""

from __future__ import annotations

import logging
import random
import re
import time
from collections.abc import Callable, Iterable, Sequence
from dataclasses import replace
from urllib.parse import urlencode

from . import classifiers, logging_bridge
from .browser import NavigationError, NavigationTimeout, PageDriver, open_browser
from .config import Pacing, PaginationPolicy, ScrollPolicy, Settings
from .extractors import (
    ITEM_COUNT_SELECTORS,
    LOAD_MORE_SELECTORS,
    READY_SELECTORS,
    RESULTS_CONTAINER_SELECTORS,
    RawCandidate,
    RecordExtractor,
)
from .models import JobRecord, ScrapeQuery
from .store import IdentitySet, canonicalize, extract_id
from .utils import collapse_ws, now_iso, uniform

log = logging.getLogger(__name__)

SEARCH_URL = "https://www.linkedin.com/jobs/search/"
_TIME_POSTED_PARAM = {"past24h": "r86400", "pastWeek": "r604800"}

_REMOTE_RE = re.compile(r"remote|anywhere|global|worldwide")
_LOCATION_SPLIT_RE = re.compile(r"[\s,\-]+")
# Spellings that name the same place; a requested place must appear (in some spelling) in the card.
PLACE_ALIASES: tuple[tuple[str, ...], ...] = (
    ("bangalore", "bengaluru", "banglore"),
    ("gurgaon", "gurugram"),
    ("delhi", "new delhi"),
    ("mumbai", "bombay"),
    ("chennai", "madras"),
    ("india",),
)


# =============================================================================
# PURE HELPERS
# =============================================================================
def build_search_url(keywords: str, location: str, *, start: int = 0, time_posted: str = "any") -> str:
    params = {
        "keywords": keywords,
        "location": location,
        "trk": "public_jobs_jobs-search-bar_search-submit",
        "position": "1",
        "pageNum": "0",
        "start": str(start),
        "sortBy": "DD",  # newest first
    }
    tpr = _TIME_POSTED_PARAM.get(time_posted)
    if tpr:
        params["f_TPR"] = tpr
    return f"{SEARCH_URL}?{urlencode(params)}"


def passes_keyword_filters(text: str, include: Iterable[str], exclude: Iterable[str]) -> bool:
    """
    Case-insensitive substring filter: any exclude hit rejects; a non-empty
    include list needs at least one hit.
    """
    hay = (text or "").lower()
    inc = [k.strip().lower() for k in include if k and k.strip()]
    exc = [k.strip().lower() for k in exclude if k and k.strip()]
    if any(k in hay for k in exc):
        return False
    return not inc or any(k in hay for k in inc)


def is_remote_location(desired: str) -> bool:
    return bool(_REMOTE_RE.search((desired or "").lower()))


def location_matches(desired: str, actual: str) -> bool:
    """
    Does a card's location text satisfy the requested location?

    Remote/anywhere requests (and empty ones) accept everything. Otherwise
    the card must contain at least one requested token (aliases included),
    and every aliased place named in the request must appear in the card.
    """
    want = (desired or "").strip().lower()
    if not want or is_remote_location(want):
        return True
    loc = (actual or "").strip().lower()
    if not loc:
        return False

    tokens = {t for t in _LOCATION_SPLIT_RE.split(want) if t}
    named_groups = [g for g in PLACE_ALIASES if any(a in want for a in g)]
    for group in named_groups:
        tokens.update(group)

    if not any(t in loc for t in tokens):
        return False
    return all(any(a in loc for a in group) for group in named_groups)


# =============================================================================
# ENGINE
# =============================================================================
class AcquisitionEngine:
    """
    Sequential scraper bound to one PageDriver.

    Args:
        driver: browser page capability (see browser.PageDriver)
        extractor: selector strategies; default RecordExtractor()
        pagination / scroll / pacing: tunable policies from config
        nav_timeout_ms: per-navigation timeout
        rng / sleep: injectable for deterministic tests
    """

    def __init__(
        self,
        driver: PageDriver,
        *,
        extractor: RecordExtractor | None = None,
        pagination: PaginationPolicy | None = None,
        scroll: ScrollPolicy | None = None,
        pacing: Pacing | None = None,
        nav_timeout_ms: int = 60_000,
        rng: random.Random | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.driver = driver
        self.extractor = extractor or RecordExtractor()
        self.pagination = pagination or PaginationPolicy()
        self.scroll = scroll or ScrollPolicy()
        self.pacing = pacing or Pacing()
        self.nav_timeout_ms = nav_timeout_ms
        self._rng = rng or random.Random()
        self._sleep = sleep

    # ---- public ----

    def acquire(
        self,
        queries: Sequence[ScrapeQuery],
        store: IdentitySet | None = None,
        *,
        enrich: bool = False,
    ) -> list[JobRecord]:
        """
        Run every query variant in order and return at most ``cap`` new records
        (cap taken from the first query), in discovery order.
        """
        if not queries:
            return []
        cap = queries[0].cap
        scraped_at = now_iso()
        session_seen = IdentitySet()
        accepted: list[JobRecord] = []

        for query in queries:
            if len(accepted) >= cap:
                break
            if not query.keywords.strip():
                continue
            self._run_query(query, cap, session_seen, store, accepted, scraped_at)

        log.info("Collected %d unique jobs (requested: %d)", len(accepted), cap)

        if enrich and accepted:
            accepted = self._enrich(accepted)

        return [classifiers.tag_seniority(r) for r in accepted]

    # ---- pagination ----

    def _run_query(
        self,
        query: ScrapeQuery,
        cap: int,
        session_seen: IdentitySet,
        store: IdentitySet | None,
        accepted: list[JobRecord],
        scraped_at: str,
    ) -> None:
        max_pages = self.pagination.page_budget(cap)
        stalled_pages = 0

        for page_num in range(max_pages):
            if len(accepted) >= cap:
                break

            url = build_search_url(
                query.keywords,
                query.location,
                start=page_num * self.pagination.page_size,
                time_posted=query.time_posted,
            )
            candidates = self._collect_page(url) if self._load(url) else []

            before = len(accepted)
            for cand in candidates:
                record = self._admit(cand, query, session_seen, store, scraped_at)
                if record is None:
                    continue
                accepted.append(record)
                if len(accepted) >= cap:
                    break

            logging_bridge.activity({
                "component": "job_harvest.acquisition",
                "op": "page",
                "query": query.keywords,
                "page": page_num,
                "extracted": len(candidates),
                "accepted": len(accepted) - before,
                "total": len(accepted),
            })

            if not candidates:
                log.info("Query %r page %d yielded no cards; next query", query.keywords, page_num)
                break

            if len(accepted) == before:
                stalled_pages += 1
                if stalled_pages >= self.pagination.stall_pages:
                    log.info(
                        "No new unique jobs after %d pages for query %r, stopping pagination",
                        stalled_pages,
                        query.keywords,
                    )
                    break
            else:
                stalled_pages = 0

            if len(accepted) < cap:
                self._pause(self.pacing.between_pages)

    def _load(self, url: str) -> bool:
        """Navigate; on timeout retry once without waiting for network idle."""
        try:
            self.driver.goto(url, wait_until="networkidle", timeout_ms=self.nav_timeout_ms)
        except NavigationTimeout:
            try:
                self.driver.goto(url, wait_until="domcontentloaded", timeout_ms=self.nav_timeout_ms)
            except NavigationError as e:
                logging_bridge.error({
                    "component": "job_harvest.acquisition",
                    "op": "navigate",
                    "url": url,
                    "error": repr(e),
                    "action": "page treated as empty",
                })
                return False
        except NavigationError as e:
            logging_bridge.error({
                "component": "job_harvest.acquisition",
                "op": "navigate",
                "url": url,
                "error": repr(e),
                "action": "page treated as empty",
            })
            return False
        self._pause(self.pacing.after_navigation)
        return True

    def _collect_page(self, url: str) -> list[RawCandidate]:
        primary, fallback = READY_SELECTORS
        if not self.driver.wait_for_any(primary, timeout_ms=20_000):
            if not self.driver.wait_for_any(fallback, timeout_ms=10_000):
                log.debug("No results marker on %s; extracting anyway", url)
                self._pause(self.pacing.after_navigation)

        self._expand_results()
        candidates = self.extractor.candidates(self.driver.html())
        if not candidates:
            log.debug("No cards extracted from %s", url)
        return candidates[: self.scroll.per_page_limit]

    def _expand_results(self) -> int:
        """
        Scroll and press "see more" until the card count or the container
        height stops growing for ``stall_rounds`` rounds.
        Returns the last observed card count.
        """
        last_count = 0
        last_height = 0
        count_still = 0
        height_still = 0

        for i in range(self.scroll.max_rounds):
            if last_count >= self.scroll.per_page_limit:
                break

            height = self.driver.scroll(RESULTS_CONTAINER_SELECTORS)
            self._pause(self.pacing.scroll)

            if i % self.scroll.bottom_every == 0:
                height = max(height, self.driver.scroll(RESULTS_CONTAINER_SELECTORS, to_bottom=True))
                self._pause(self.pacing.bottom)
                if self.driver.click_first_visible(LOAD_MORE_SELECTORS):
                    self._pause(self.pacing.load_more)

            count = self.driver.count(ITEM_COUNT_SELECTORS)
            count_still = count_still + 1 if count <= last_count else 0
            height_still = height_still + 1 if height <= last_height else 0
            last_count = max(last_count, count)
            last_height = max(last_height, height)

            if max(count_still, height_still) >= self.scroll.stall_rounds:
                # one last nudge before giving up on this page
                if self.driver.click_first_visible(LOAD_MORE_SELECTORS):
                    self._pause(self.pacing.load_more)
                break

        return last_count

    # ---- filtering / dedup ----

    def _admit(
        self,
        cand: RawCandidate,
        query: ScrapeQuery,
        session_seen: IdentitySet,
        store: IdentitySet | None,
        scraped_at: str,
    ) -> JobRecord | None:
        link = canonicalize(cand.link)
        if not link:
            return None

        title = collapse_ws(cand.title)
        company = collapse_ws(cand.company)
        if not passes_keyword_filters(f"{title} {company}", query.include_keywords, query.exclude_keywords):
            return None
        if not location_matches(query.location, cand.location):
            return None

        record = JobRecord(
            title=title,
            company=company,
            location=collapse_ws(cand.location),
            link=link,
            job_id=extract_id(cand.link),
            listed_at=cand.listed_at,
            scraped_at=scraped_at,
        )
        if session_seen.contains(record):
            return None
        if store is not None and store.contains(record):
            return None
        session_seen.add(record)
        return record

    # ---- enrichment ----

    def _enrich(self, records: list[JobRecord]) -> list[JobRecord]:
        """Visit each detail page; any failure leaves that record unenriched."""
        out: list[JobRecord] = []
        for record in records:
            try:
                self.driver.goto(record.link, wait_until="domcontentloaded", timeout_ms=self.nav_timeout_ms)
                self._pause(self.pacing.detail_page)
                text = self.extractor.description(self.driver.html())
                out.append(
                    replace(
                        record,
                        tech_stack=classifiers.extract_tech_stack(text),
                        startup_signal_in_description=classifiers.has_startup_signal(text),
                    )
                )
            except Exception as e:
                log.warning("Enrichment failed for %s: %r", record.link, e)
                out.append(replace(record, tech_stack=(), startup_signal_in_description=False))
            self._pause(self.pacing.between_details)
        return out

    # ---- pacing ----

    def _pause(self, bounds: tuple[float, float]) -> None:
        delay = uniform(self._rng, bounds)
        if delay > 0:
            self._sleep(delay)


# =============================================================================
# DEFAULT ACQUISITION (PRODUCTION)
# =============================================================================
def acquire_jobs(
    settings: Settings,
    store: IdentitySet | None,
    *,
    browser_factory: Callable[..., object] = open_browser,
) -> list[JobRecord]:
    """
    Launch a browser, run all configured query variants and return new records.
    """
    cookie = None if settings.use_public_search else (settings.linkedin_cookie or None)
    started = time.perf_counter_ns()
    with browser_factory(headless=settings.headless, cookie=cookie) as driver:
        engine = AcquisitionEngine(
            driver,
            pagination=settings.pagination,
            scroll=settings.scroll,
            pacing=settings.pacing,
            nav_timeout_ms=settings.nav_timeout_ms,
        )
        records = engine.acquire(settings.queries(), store, enrich=settings.enrich_job_details)

    logging_bridge.activity({
        "component": "job_harvest.acquisition",
        "op": "acquired",
        "queries": len(settings.queries()),
        "count": len(records),
        "cap": settings.results_per_session,
        "enriched": settings.enrich_job_details,
        "total_us": int((time.perf_counter_ns() - started) // 1000),
    })
    return records
