# modules/job_harvest/lib/extractors.py
"""
Selector strategies for the job search page and detail pages.

Each list is ordered; the first selector that yields something wins. The
page layout changes often, so orchestration code never names a selector
directly - it asks a `RecordExtractor`.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from urllib.parse import urljoin

from bs4 import BeautifulSoup
from bs4.element import Tag

log = logging.getLogger(__name__)

BASE_URL = "https://www.linkedin.com"

RESULTS_CONTAINER_SELECTORS: tuple[str, ...] = (
    "[data-test-reusables-search__results-list]",
    ".jobs-search-two-pane__results-list",
    ".jobs-search__results-list",
    ".jobs-search-results-list",
)

ITEM_COUNT_SELECTORS: tuple[str, ...] = (
    "ul.jobs-search__results-list li",
    ".jobs-search__results-list .job-search-card",
    ".job-search-card",
    "[data-job-id]",
)

LOAD_MORE_SELECTORS: tuple[str, ...] = (
    "button.infinite-scroller__show-more-button",
    'button[aria-label*="more jobs"]',
    'button[aria-label*="See more"]',
    ".see-more-jobs button",
)

# Primary wait, then a looser one for the newer layout.
READY_SELECTORS: tuple[tuple[str, ...], ...] = (
    ("ul.jobs-search__results-list li", ".jobs-search__results-list .job-search-card", ".base-card"),
    (".job-search-card", ".base-card"),
)

ITEM_SELECTORS: tuple[str, ...] = (
    "ul.jobs-search__results-list li",
    ".jobs-search__results-list .base-card",
    ".job-search-card",
    '[data-entity-urn*="jobPosting"]',
    ".base-search-card",
)

LINK_SELECTORS: tuple[str, ...] = ('a[href*="/jobs/view"]', "a.base-card__full-link")
TITLE_SELECTORS: tuple[str, ...] = ("h3", ".base-search-card__title", '[class*="title"]')
COMPANY_SELECTORS: tuple[str, ...] = (
    "h4",
    ".base-search-card__subtitle",
    'a[data-tracking-control-name*="company"]',
)
LOCATION_SELECTORS: tuple[str, ...] = (
    ".job-search-card__location",
    ".base-search-card__metadata",
    '[class*="location"]',
)

DESCRIPTION_SELECTORS: tuple[str, ...] = (
    ".show-more-less-html__markup",
    ".description__text",
    ".jobs-description__content",
    "[data-test-job-description]",
)


@dataclass(frozen=True)
class RawCandidate:
    """One search-result card before normalization/canonicalization."""

    title: str
    company: str
    location: str
    link: str
    listed_at: str | None = None


class RecordExtractor:
    """
    Parses rendered HTML into raw candidates and descriptions using ordered
    selector fallbacks. Stateless; one instance can serve a whole session.
    """

    def __init__(
        self,
        *,
        item_selectors: Sequence[str] = ITEM_SELECTORS,
        base_url: str = BASE_URL,
    ) -> None:
        self.item_selectors = tuple(item_selectors)
        self.base_url = base_url

    # ---- search results ----

    def candidates(self, html: str) -> list[RawCandidate]:
        """
        Candidates from the first item strategy that yields any; cards
        lacking a usable link, or with neither title nor company, are skipped.
        """
        soup = BeautifulSoup(html or "", "html.parser")
        for sel in self.item_selectors:
            nodes = soup.select(sel)
            if not nodes:
                continue
            out = self._from_nodes(nodes)
            if out:
                return out
            log.debug("Item selector %r matched %d node(s) but no usable cards", sel, len(nodes))
        return []

    def _from_nodes(self, nodes: list[Tag]) -> list[RawCandidate]:
        out: list[RawCandidate] = []
        seen_links: set[str] = set()
        for node in nodes:
            link = self._link(node)
            if not link or link in seen_links:
                continue
            title = _first_text(node, TITLE_SELECTORS)
            company = _first_text(node, COMPANY_SELECTORS)
            if not title and not company:
                continue
            seen_links.add(link)
            time_el = node.select_one("time")
            listed_at = None
            if time_el is not None:
                listed_at = (time_el.get("datetime") or "").strip() or None
            out.append(
                RawCandidate(
                    title=title,
                    company=company,
                    location=_first_text(node, LOCATION_SELECTORS),
                    link=link,
                    listed_at=listed_at,
                )
            )
        return out

    def _link(self, node: Tag) -> str | None:
        anchor = None
        for sel in LINK_SELECTORS:
            anchor = node.select_one(sel)
            if anchor is not None:
                break
        if anchor is None:
            # Card nested inside the job link itself
            anchor = node.find_parent("a", href=lambda h: bool(h) and "/jobs/view" in h)
        if anchor is None:
            return None
        href = (anchor.get("href") or "").strip()
        if not href:
            return None
        url = href if href.startswith("http") else urljoin(self.base_url, href)
        return url if url.startswith("http") else None

    # ---- detail pages ----

    def description(self, html: str) -> str:
        """Free-text job description, or "" when no selector matches."""
        soup = BeautifulSoup(html or "", "html.parser")
        return _first_text(soup, DESCRIPTION_SELECTORS, separator=" ")


def _first_text(node: Tag, selectors: Sequence[str], *, separator: str = " ") -> str:
    for sel in selectors:
        el = node.select_one(sel)
        if el is None:
            continue
        text = el.get_text(separator, strip=True)
        if text:
            return " ".join(text.split())
    return ""
