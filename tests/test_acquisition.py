# tests/test_acquisition.py
import contextlib
from urllib.parse import parse_qs, urlsplit

import pytest

from modules.job_harvest.lib import acquisition, store
from modules.job_harvest.lib.browser import NavigationError, NavigationTimeout
from modules.job_harvest.lib.config import Pacing, PaginationPolicy, ScrollPolicy, Settings
from modules.job_harvest.lib.models import ScrapeQuery, Seniority


# ----------------------------------------------------------------------
# Fake browser page
# ----------------------------------------------------------------------
def card_html(n: int, *, title: str | None = None, company: str | None = None, location: str = "Bengaluru, Karnataka, India") -> str:
    title = title or f"Data Engineer {n}"
    company = company or f"Company {n}"
    return (
        "<li><div class='base-card'>"
        f"<a class='base-card__full-link' href='https://in.linkedin.com/jobs/view/data-engineer-at-co-{n}?refId=r{n}&trackingId=t'></a>"
        f"<h3 class='base-search-card__title'>{title}</h3>"
        f"<h4 class='base-search-card__subtitle'>{company}</h4>"
        f"<span class='job-search-card__location'>{location}</span>"
        "<time datetime='2025-01-01'>1 day ago</time>"
        "</div></li>"
    )


def page_html(cards: list[str]) -> str:
    return "<html><body><ul class='jobs-search__results-list'>" + "".join(cards) + "</ul></body></html>"


class FakeDriver:
    """
    Serves search pages keyed by (keywords, start offset) and detail pages
    keyed by job id. Unknown search pages are empty unless `default_page` is set.
    """

    def __init__(self, pages=None, *, details=None, default_page=None, nav_failures=None, detail_failures=()):
        self.pages = pages or {}
        self.details = details or {}
        self.default_page = default_page
        # url-substring -> set of wait_until values that time out
        self.nav_failures = nav_failures or {}
        self.detail_failures = set(detail_failures)
        self.current = ""
        self.gotos: list[tuple[str, str]] = []

    def _search_key(self, url):
        q = parse_qs(urlsplit(url).query)
        return q["keywords"][0], int(q["start"][0])

    def goto(self, url, *, wait_until="networkidle", timeout_ms=60_000):
        self.gotos.append((url, wait_until))
        for frag, modes in self.nav_failures.items():
            if frag in url and wait_until in modes:
                raise NavigationTimeout(f"{wait_until} timeout: {url}")
        job_id = store.extract_id(url)
        if "/jobs/view/" in url and job_id in self.detail_failures:
            raise NavigationError(f"detail failed: {url}")
        self.current = url

    def html(self):
        if "/jobs/view/" in self.current:
            job_id = store.extract_id(self.current)
            text = self.details.get(job_id, "")
            return f"<html><div class='show-more-less-html__markup'>{text}</div></html>"
        key = self._search_key(self.current)
        cards = self.pages.get(key, self.default_page)
        return page_html(cards) if cards else "<html><body></body></html>"

    def count(self, selectors):
        return self.html().count("<li>")

    def scroll(self, container_selectors, *, to_bottom=False, step=600):
        return 1000

    def click_first_visible(self, selectors):
        return False

    def wait_for_any(self, selectors, *, timeout_ms):
        return True

    def search_gotos(self):
        return [u for u, _ in self.gotos if "/jobs/search/" in u]


def make_engine(driver, *, stall_pages=10, max_pages=None):
    return acquisition.AcquisitionEngine(
        driver,
        pagination=PaginationPolicy(page_size=25, page_multiplier=3, stall_pages=stall_pages, max_pages=max_pages),
        scroll=ScrollPolicy(max_rounds=5, per_page_limit=100, stall_rounds=1, bottom_every=2),
        pacing=Pacing.none(),
        sleep=lambda s: None,
    )


def q(keywords, cap, **kw):
    return ScrapeQuery(keywords=keywords, location="India", cap=cap, **kw)


# ----------------------------------------------------------------------
# Incremental loading on one page
# ----------------------------------------------------------------------
class ScrollingDriver:
    """Scripted card counts and container heights, one value per call."""

    def __init__(self, counts, heights, *, load_more=False):
        self.counts = counts
        self.heights = heights
        self.load_more = load_more
        self.scrolls: list[bool] = []
        self.count_calls = 0
        self.clicks = 0

    def scroll(self, container_selectors, *, to_bottom=False, step=600):
        self.scrolls.append(to_bottom)
        return self.heights(len(self.scrolls))

    def count(self, selectors):
        self.count_calls += 1
        return self.counts(self.count_calls)

    def click_first_visible(self, selectors):
        self.clicks += 1
        return self.load_more


def expand(driver, **policy):
    engine = acquisition.AcquisitionEngine(
        driver,
        scroll=ScrollPolicy(**policy),
        pacing=Pacing.none(),
        sleep=lambda s: None,
    )
    return engine._expand_results()


def test_count_stall_ends_loading_while_height_keeps_growing():
    driver = ScrollingDriver(counts=lambda n: 25, heights=lambda n: 1000 + 10 * n)
    assert expand(driver, max_rounds=80, per_page_limit=100, stall_rounds=8, bottom_every=4) == 25

    # one growing round, eight flat ones; bottom scrolls on rounds 0, 4 and 8
    assert driver.count_calls == 9
    assert len(driver.scrolls) == 12
    # three periodic "see more" clicks plus the final nudge
    assert driver.clicks == 4


def test_height_stall_ends_loading_while_count_grows():
    driver = ScrollingDriver(counts=lambda n: 5 * n, heights=lambda n: 500)
    assert expand(driver, max_rounds=80, per_page_limit=100, stall_rounds=3, bottom_every=10) == 20
    assert driver.count_calls == 4


def test_per_page_limit_ends_loading():
    driver = ScrollingDriver(counts=lambda n: 100, heights=lambda n: 1000 * n)
    assert expand(driver, max_rounds=80, per_page_limit=100, stall_rounds=8, bottom_every=4) == 100
    assert driver.count_calls == 1
    assert driver.scrolls == [False, True]


def test_bottom_scroll_and_load_more_cadence():
    driver = ScrollingDriver(counts=lambda n: 10 * n, heights=lambda n: 1000 * n, load_more=True)
    assert expand(driver, max_rounds=6, per_page_limit=1000, stall_rounds=8, bottom_every=2) == 60
    assert driver.scrolls == [False, True, False, False, True, False, False, True, False]
    assert driver.clicks == 3


def test_unreadable_results_page_counts_as_empty():
    class UnreadableDriver(FakeDriver):
        def html(self):
            return ""

    driver = UnreadableDriver(default_page=[card_html(1)])
    assert make_engine(driver).acquire([q("a", 10)]) == []
    assert len(driver.search_gotos()) == 1


# ----------------------------------------------------------------------
# Cap and ordering
# ----------------------------------------------------------------------
def test_cap_is_exact_and_preserves_discovery_order():
    driver = FakeDriver({
        ("a", 0): [card_html(i) for i in (1, 2, 3)],
        ("a", 25): [card_html(i) for i in (4, 5)],
        ("b", 0): [card_html(i) for i in (6, 7, 8, 9, 10)],
    })
    records = make_engine(driver).acquire([q("a", 7), q("b", 7)])

    assert [r.job_id for r in records] == [str(i) for i in range(1, 8)]
    assert records[0].link == "https://www.linkedin.com/jobs/view/1/"
    assert records[0].listed_at == "2025-01-01"
    assert all(r.scraped_at for r in records)


def test_never_exceeds_cap_within_one_page():
    driver = FakeDriver({("a", 0): [card_html(i) for i in range(1, 31)]})
    records = make_engine(driver).acquire([q("a", 4)])
    assert len(records) == 4
    assert len(driver.search_gotos()) == 1


def test_duplicates_across_variants_are_collapsed():
    driver = FakeDriver({
        ("a", 0): [card_html(1), card_html(2)],
        ("b", 0): [card_html(2), card_html(3)],
    })
    records = make_engine(driver).acquire([q("a", 10), q("b", 10)])
    assert [r.job_id for r in records] == ["1", "2", "3"]


def test_store_members_are_excluded(make_record):
    seen = store.IdentitySet()
    seen.add(make_record(0, link="https://www.linkedin.com/jobs/view/2/", job_id="2"))
    driver = FakeDriver({("a", 0): [card_html(1), card_html(2), card_html(3)]})

    records = make_engine(driver).acquire([q("a", 10)], seen)
    assert [r.job_id for r in records] == ["1", "3"]


# ----------------------------------------------------------------------
# Pagination stop conditions
# ----------------------------------------------------------------------
def test_stall_detection_stops_pagination():
    # every page returns the same two cards
    driver = FakeDriver(default_page=[card_html(1), card_html(2)])
    records = make_engine(driver, stall_pages=2).acquire([q("a", 100)])

    assert len(records) == 2
    # page 0 yields, pages 1-2 add nothing -> stop after 3 pages
    assert len(driver.search_gotos()) == 3


def test_empty_page_ends_query_and_moves_to_next_variant():
    driver = FakeDriver({
        ("a", 0): [card_html(1)],
        ("b", 0): [card_html(2)],
    })
    records = make_engine(driver).acquire([q("a", 50), q("b", 50)])
    assert [r.job_id for r in records] == ["1", "2"]
    starts = [parse_qs(urlsplit(u).query)["start"][0] for u in driver.search_gotos()]
    assert starts == ["0", "25", "0", "25"]


def test_page_budget_respects_max_pages():
    driver = FakeDriver(default_page=None, pages={("a", i * 25): [card_html(i + 1)] for i in range(20)})
    records = make_engine(driver, max_pages=2).acquire([q("a", 100)])
    assert len(records) == 2


# ----------------------------------------------------------------------
# Navigation failures
# ----------------------------------------------------------------------
def test_navigation_timeout_retries_with_relaxed_wait():
    driver = FakeDriver({("a", 0): [card_html(1)]}, nav_failures={"keywords=a": {"networkidle"}})
    records = make_engine(driver).acquire([q("a", 1)])

    assert [r.job_id for r in records] == ["1"]
    assert driver.gotos[0][1] == "networkidle"
    assert driver.gotos[1][1] == "domcontentloaded"


def test_double_navigation_failure_treats_page_as_empty():
    driver = FakeDriver(
        {("a", 0): [card_html(1)], ("b", 0): [card_html(2)]},
        nav_failures={"keywords=a": {"networkidle", "domcontentloaded"}},
    )
    records = make_engine(driver).acquire([q("a", 5), q("b", 5)])
    assert [r.job_id for r in records] == ["2"]


# ----------------------------------------------------------------------
# Filters
# ----------------------------------------------------------------------
def test_exclude_and_include_keywords():
    driver = FakeDriver({
        ("a", 0): [
            card_html(1, title="Senior Data Engineer"),
            card_html(2, title="Python Data Engineer"),
            card_html(3, title="Data Analyst"),
        ]
    })
    records = make_engine(driver).acquire(
        [q("a", 10, include_keywords=("engineer",), exclude_keywords=("senior",))]
    )
    assert [r.job_id for r in records] == ["2"]


def test_location_filter_rejects_other_cities():
    driver = FakeDriver({
        ("a", 0): [
            card_html(1, location="Bengaluru, Karnataka, India"),
            card_html(2, location="Mumbai, Maharashtra, India"),
            card_html(3, location="Berlin, Germany"),
        ]
    })
    query = ScrapeQuery(keywords="a", location="Bangalore, India", cap=10)
    records = make_engine(driver).acquire([query])
    assert [r.job_id for r in records] == ["1"]


@pytest.mark.parametrize(
    "desired,actual,expected",
    [
        ("India", "Pune, Maharashtra, India", True),
        ("India", "Berlin, Germany", False),
        ("Bangalore", "Bengaluru, Karnataka, India", True),
        ("Gurugram", "Gurgaon, Haryana", True),
        ("Bombay", "Mumbai, Maharashtra", True),
        ("Remote", "Berlin, Germany", True),
        ("", "Anywhere", True),
        ("India", "", False),
    ],
)
def test_location_matches(desired, actual, expected):
    assert acquisition.location_matches(desired, actual) is expected


def test_keyword_filter_semantics():
    assert acquisition.passes_keyword_filters("Data Engineer Acme", [], [])
    assert not acquisition.passes_keyword_filters("Lead Engineer", [], ["lead"])
    assert not acquisition.passes_keyword_filters("Data Engineer", ["spark"], [])
    assert acquisition.passes_keyword_filters("Spark Engineer", ["SPARK", ""], [])


def test_build_search_url():
    url = acquisition.build_search_url("data engineer", "India", start=50, time_posted="past24h")
    qs = parse_qs(urlsplit(url).query)
    assert url.startswith("https://www.linkedin.com/jobs/search/?")
    assert qs["keywords"] == ["data engineer"]
    assert qs["location"] == ["India"]
    assert qs["start"] == ["50"]
    assert qs["sortBy"] == ["DD"]
    assert qs["f_TPR"] == ["r86400"]

    week = acquisition.build_search_url("x", "", time_posted="pastWeek")
    assert parse_qs(urlsplit(week).query)["f_TPR"] == ["r604800"]
    assert "f_TPR" not in acquisition.build_search_url("x", "", time_posted="any")


# ----------------------------------------------------------------------
# Enrichment + tagging
# ----------------------------------------------------------------------
def test_enrichment_sets_tech_and_signal_and_tolerates_failures():
    driver = FakeDriver(
        {("a", 0): [card_html(1), card_html(2, title="Junior Data Engineer")]},
        details={"1": "We use Python, Spark and AWS. Early-stage startup, small team."},
        detail_failures={"2"},
    )
    records = make_engine(driver).acquire([q("a", 5)], enrich=True)

    first, second = records
    assert first.tech_stack == ("python", "spark", "aws")
    assert first.startup_signal_in_description is True
    assert second.tech_stack == ()
    assert second.startup_signal_in_description is False
    assert second.seniority is Seniority.ENTRY and second.is_entry_level


def test_no_enrichment_visits_no_detail_pages():
    driver = FakeDriver({("a", 0): [card_html(1)]})
    make_engine(driver).acquire([q("a", 5)])
    assert all("/jobs/view/" not in u for u, _ in driver.gotos)


# ----------------------------------------------------------------------
# Production entry point with an injected browser
# ----------------------------------------------------------------------
def test_acquire_jobs_uses_browser_factory(tmp_path):
    driver = FakeDriver({("data engineer", 0): [card_html(1), card_html(2)]})
    calls = {}

    @contextlib.contextmanager
    def fake_browser(*, headless, cookie):
        calls.update(headless=headless, cookie=cookie)
        yield driver

    settings = Settings.from_env_and_kwargs({
        "keyword_variants": ["data engineer"],
        "results_per_session": 2,
        "enrich_job_details": False,
        "pacing_scale": 0,
        "use_public_search": False,
        "linkedin_cookie": "li_at=abc",
        "seen_store_path": str(tmp_path / "s.json"),
    })
    records = acquisition.acquire_jobs(settings, store.IdentitySet(), browser_factory=fake_browser)

    assert [r.job_id for r in records] == ["1", "2"]
    assert calls == {"headless": True, "cookie": "li_at=abc"}
