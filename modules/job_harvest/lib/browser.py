# modules/job_harvest/lib/browser.py
"""
Thin adapter over Playwright's sync API.

The acquisition engine only talks to `PageDriver`; tests substitute a fake
with the same methods, so nothing outside this file imports Playwright.
"""

from __future__ import annotations

import contextlib
import logging
import random
from collections.abc import Iterator, Sequence

from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import Page, sync_playwright
from playwright.sync_api import TimeoutError as PlaywrightTimeoutError

log = logging.getLogger(__name__)

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/126.0.0.0 Safari/537.36"
)
COOKIE_DOMAIN = ".linkedin.com"

# Scroll the first matching results container, else the document itself.
_SCROLL_JS = """
([selectors, toBottom, step]) => {
  let container = null;
  for (const sel of selectors) {
    const el = document.querySelector(sel);
    if (el) { container = el; break; }
  }
  if (!container) container = document.scrollingElement || document.body;
  if (toBottom) container.scrollTo(0, container.scrollHeight);
  else container.scrollBy(0, step);
  return container.scrollHeight || 0;
}
"""

_COUNT_JS = """
(selectors) => {
  for (const sel of selectors) {
    const n = document.querySelectorAll(sel).length;
    if (n > 0) return n;
  }
  return 0;
}
"""


class NavigationError(Exception):
    """Base exception for page navigation failures."""


class NavigationTimeout(NavigationError):
    """Navigation did not reach the requested load state in time."""


class PageDriver:
    """
    The browser capability surface the engine depends on.

    Every method maps onto one Playwright call; failures other than
    navigation are reported as falsy results, not exceptions.
    """

    def __init__(self, page: Page) -> None:
        self._page = page

    def goto(self, url: str, *, wait_until: str = "networkidle", timeout_ms: int = 60_000) -> None:
        try:
            self._page.goto(url, wait_until=wait_until, timeout=timeout_ms)
        except PlaywrightTimeoutError as e:
            raise NavigationTimeout(f"{wait_until} timeout after {timeout_ms}ms: {url}") from e
        except PlaywrightError as e:
            raise NavigationError(f"navigation failed: {url}: {e}") from e

    def html(self) -> str:
        """Rendered page markup; empty when the page cannot be read."""
        try:
            return self._page.content()
        except PlaywrightError:
            log.debug("content() failed", exc_info=True)
            return ""

    def count(self, selectors: Sequence[str]) -> int:
        """Item count for the first selector that matches anything."""
        try:
            return int(self._page.evaluate(_COUNT_JS, list(selectors)) or 0)
        except PlaywrightError:
            log.debug("count() evaluate failed", exc_info=True)
            return 0

    def scroll(self, container_selectors: Sequence[str], *, to_bottom: bool = False, step: int = 600) -> int:
        """Scroll the results container; returns its scrollHeight (0 on failure)."""
        try:
            return int(self._page.evaluate(_SCROLL_JS, [list(container_selectors), to_bottom, step]) or 0)
        except PlaywrightError:
            log.debug("scroll() evaluate failed", exc_info=True)
            return 0

    def click_first_visible(self, selectors: Sequence[str]) -> bool:
        """Click the first visible element among ``selectors``; True if clicked."""
        for sel in selectors:
            try:
                loc = self._page.locator(sel).first
                if loc.count() and loc.is_visible():
                    loc.click(timeout=5_000)
                    return True
            except PlaywrightError:
                continue
        return False

    def wait_for_any(self, selectors: Sequence[str], *, timeout_ms: int) -> bool:
        """Wait until any of ``selectors`` is attached; False on timeout."""
        try:
            self._page.wait_for_selector(", ".join(selectors), timeout=timeout_ms, state="attached")
            return True
        except PlaywrightError:
            return False


def parse_cookie_string(cookie_string: str, domain: str = COOKIE_DOMAIN) -> list[dict]:
    """Turn ``"a=1; b=2"`` into Playwright cookie dicts."""
    cookies: list[dict] = []
    for item in (cookie_string or "").split(";"):
        item = item.strip()
        if not item or "=" not in item:
            continue
        name, value = item.split("=", 1)
        cookies.append({
            "name": name.strip(),
            "value": value.strip(),
            "domain": domain,
            "path": "/",
            "httpOnly": True,
            "secure": True,
        })
    return cookies


@contextlib.contextmanager
def open_browser(
    *,
    headless: bool = True,
    cookie: str | None = None,
    rng: random.Random | None = None,
) -> Iterator[PageDriver]:
    """
    Launch Chromium with one context and one page; yields a PageDriver.
    The browser is always closed on exit.
    """
    rng = rng or random.Random()
    with sync_playwright() as p:
        browser = p.chromium.launch(
            headless=headless,
            args=["--disable-blink-features=AutomationControlled"],
        )
        try:
            context = browser.new_context(
                viewport={"width": 1366 + rng.randint(0, 49), "height": 768 + rng.randint(0, 49)},
                user_agent=USER_AGENT,
            )
            cookies = parse_cookie_string(cookie or "")
            if cookies:
                context.add_cookies(cookies)
                log.info("Injected %d cookie(s) for authenticated search", len(cookies))
            page = context.new_page()
            yield PageDriver(page)
        finally:
            browser.close()
