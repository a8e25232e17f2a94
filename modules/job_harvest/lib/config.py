from __future__ import annotations

import json
import math
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from .models import ScrapeQuery
from .store import DEFAULT_STORE_PATH
from .utils import getenv_str, truthy


# -----------------------------
# Exceptions
# -----------------------------
class ConfigError(ValueError):
    """Raised when provided kwargs/env cannot form a valid Settings."""


# -----------------------------
# Defaults
# -----------------------------
DEFAULT_KEYWORDS = "data engineer"

# Only used while `keywords` stays at its default; see Settings.from_env_and_kwargs.
DEFAULT_KEYWORD_VARIANTS: tuple[str, ...] = (
    "data engineer",
    "python data engineer",
    "ETL developer",
    "data pipeline engineer",
    "big data engineer",
    "cloud data engineer",
    "AWS data engineer",
    "Azure data engineer",
    "GCP data engineer",
    "Databricks engineer",
    "Spark engineer",
    "data platform engineer",
    "analytics engineer",
    "BI engineer",
    "data infrastructure engineer",
    "backend data engineer",
    "data integration engineer",
    "Snowflake engineer",
    "Airflow developer",
    "Kafka engineer",
    "streaming data engineer",
    "SQL developer",
    "database developer",
    "data warehouse engineer",
    "junior data engineer",
    "associate data engineer",
    "data engineering",
)

DEFAULT_EXCLUDE_KEYWORDS: tuple[str, ...] = ("senior", "sr", "lead", "manager", "staff", "principal", "director")

TIME_POSTED_VALUES = ("any", "past24h", "pastWeek")


# -----------------------------
# Models
# -----------------------------
@dataclass(frozen=True)
class PaginationPolicy:
    """
    How far to page through one keyword variant.

    The page budget is ceil(cap / page_size) * page_multiplier, optionally
    clipped by max_pages. It is computed per variant and independent of how
    many records earlier variants already produced; stall_pages bounds the
    cost when variants overlap heavily.
    """

    page_size: int = 25
    page_multiplier: int = 3
    stall_pages: int = 10
    max_pages: int | None = None

    def page_budget(self, cap: int) -> int:
        budget = math.ceil(max(cap, 1) / self.page_size) * self.page_multiplier
        if self.max_pages is not None:
            budget = min(budget, self.max_pages)
        return max(budget, 1)


@dataclass(frozen=True)
class ScrollPolicy:
    max_rounds: int = 80
    per_page_limit: int = 100
    stall_rounds: int = 8
    bottom_every: int = 4


@dataclass(frozen=True)
class Pacing:
    """
    Randomized pauses (seconds, (min, max)) between browser actions.
    """

    after_navigation: tuple[float, float] = (2.0, 3.5)
    scroll: tuple[float, float] = (0.4, 0.8)
    bottom: tuple[float, float] = (0.8, 1.2)
    load_more: tuple[float, float] = (1.5, 2.5)
    between_pages: tuple[float, float] = (2.5, 4.5)
    detail_page: tuple[float, float] = (0.9, 1.5)
    between_details: tuple[float, float] = (0.8, 1.4)

    @classmethod
    def none(cls) -> Pacing:
        zero = (0.0, 0.0)
        return cls(zero, zero, zero, zero, zero, zero, zero)

    @classmethod
    def scaled(cls, factor: float) -> Pacing:
        base = cls()
        return cls(*(tuple(v * factor for v in getattr(base, f)) for f in base.__dataclass_fields__))


@dataclass
class Settings:
    """
    Canonical configuration for a 'job_harvest' run.

    Built from the job kwargs (config file / CLI) with secrets taken from env:
      LINKEDIN_COOKIE - session cookie string used when use_public_search is false
    """

    keywords: str = DEFAULT_KEYWORDS
    keyword_variants: list[str] = field(default_factory=lambda: list(DEFAULT_KEYWORD_VARIANTS))
    location: str = "India"
    results_per_session: int = 40
    time_posted: str = "past24h"
    include_keywords: list[str] = field(default_factory=list)
    exclude_keywords: list[str] = field(default_factory=lambda: list(DEFAULT_EXCLUDE_KEYWORDS))

    # Browser
    headless: bool = True
    use_public_search: bool = True
    linkedin_cookie: str = field(default="", repr=False)
    nav_timeout_ms: int = 60_000

    # Post-processing
    enrich_job_details: bool = True
    startup_only: bool = False

    # Output / state
    output_dir: str = "out"
    seen_store_path: str = DEFAULT_STORE_PATH

    # Mail (transport comes from env via service.emailer)
    send_email: bool = True
    email_to: list[str] = field(default_factory=list)

    # Policies
    pagination: PaginationPolicy = field(default_factory=PaginationPolicy)
    scroll: ScrollPolicy = field(default_factory=ScrollPolicy)
    pacing: Pacing = field(default_factory=Pacing)

    # ------------- convenience -------------
    def queries(self) -> list[ScrapeQuery]:
        """Ordered keyword variants as ScrapeQuery objects (falls back to `keywords`)."""
        variants = [v.strip() for v in self.keyword_variants if v and v.strip()]
        if not variants:
            variants = [self.keywords.strip()]
        return [
            ScrapeQuery(
                keywords=v,
                location=self.location,
                time_posted=self.time_posted,
                include_keywords=tuple(self.include_keywords),
                exclude_keywords=tuple(self.exclude_keywords),
                cap=self.results_per_session,
            )
            for v in variants
            if v
        ]

    # ------------- constructors -------------
    @classmethod
    def from_env_and_kwargs(cls, kwargs: Mapping[str, Any] | None) -> Settings:
        """
        Build Settings from kwargs with validation.

        Expected kwargs (all optional):

            keywords: str = "data engineer"
            keyword_variants: list[str]   # default list only applies to the default keywords
            location: str = "India"
            results_per_session: int = 40
            time_posted: "any" | "past24h" | "pastWeek"
            include_keywords / exclude_keywords: list[str] | comma-separated str
            headless, use_public_search, enrich_job_details, startup_only, send_email: bool
            output_dir: str = "out"
            seen_store_path: str = "data/seen-jobs.json"
            email_to: list[str] | comma-separated str
            nav_timeout_ms: int
            page_size, page_multiplier, stall_pages, max_pages: int
            pacing_scale: float  # 0 disables pauses
        """
        kw = dict(kwargs or {})

        keywords = str(kw.get("keywords") or DEFAULT_KEYWORDS).strip()
        if "keyword_variants" in kw:
            variants = _str_list(kw.get("keyword_variants"), "keyword_variants")
        elif keywords.lower() == DEFAULT_KEYWORDS:
            variants = list(DEFAULT_KEYWORD_VARIANTS)
        else:
            # A custom role must not be drowned by the default data-engineering variants.
            variants = []

        exclude = (
            _str_list(kw.get("exclude_keywords"), "exclude_keywords")
            if "exclude_keywords" in kw
            else list(DEFAULT_EXCLUDE_KEYWORDS)
        )

        pagination = PaginationPolicy(
            page_size=_int(kw.get("page_size"), 25, "page_size"),
            page_multiplier=_int(kw.get("page_multiplier"), 3, "page_multiplier"),
            stall_pages=_int(kw.get("stall_pages"), 10, "stall_pages"),
            max_pages=_int(kw.get("max_pages"), None, "max_pages"),
        )
        pacing_scale = kw.get("pacing_scale")
        pacing = Pacing() if pacing_scale is None else Pacing.scaled(_float(pacing_scale, "pacing_scale"))

        settings = cls(
            keywords=keywords,
            keyword_variants=variants,
            location=str(kw.get("location") if kw.get("location") is not None else "India").strip(),
            results_per_session=_int(kw.get("results_per_session"), 40, "results_per_session"),
            time_posted=str(kw.get("time_posted") or "past24h").strip(),
            include_keywords=_str_list(kw.get("include_keywords"), "include_keywords"),
            exclude_keywords=exclude,
            headless=truthy(kw.get("headless", True)),
            use_public_search=truthy(kw.get("use_public_search", True)),
            linkedin_cookie=str(kw.get("linkedin_cookie") or getenv_str("LINKEDIN_COOKIE", "") or ""),
            nav_timeout_ms=_int(kw.get("nav_timeout_ms"), 60_000, "nav_timeout_ms"),
            enrich_job_details=truthy(kw.get("enrich_job_details", True)),
            startup_only=truthy(kw.get("startup_only", False)),
            output_dir=str(kw.get("output_dir") or "out"),
            seen_store_path=str(kw.get("seen_store_path") or DEFAULT_STORE_PATH),
            send_email=truthy(kw.get("send_email", True)),
            email_to=_str_list(kw.get("email_to") or getenv_str("MAIL_TO", ""), "email_to"),
            pagination=pagination,
            pacing=pacing,
        )
        _validate_settings(settings)
        return settings


# -----------------------------
# Helpers
# -----------------------------
def _str_list(value: Any, name: str) -> list[str]:
    """
    Accept a list of strings, a JSON array string, or a comma-separated string.
    """
    if value is None or value == "":
        return []
    if isinstance(value, str):
        s = value.strip()
        if s.startswith("["):
            try:
                value = json.loads(s)
            except json.JSONDecodeError as e:
                raise ConfigError(f"'{name}' is not a valid JSON list: {s!r}") from e
        else:
            return [p.strip() for p in s.split(",") if p.strip()]
    if not isinstance(value, (list, tuple)):
        raise ConfigError(f"'{name}' must be a list of strings.")
    return [str(v).strip() for v in value if str(v).strip()]


def _int(value: Any, default: int | None, name: str) -> int | None:
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"'{name}' must be an integer (got {value!r}).") from e


def _float(value: Any, name: str) -> float:
    try:
        return float(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"'{name}' must be a number (got {value!r}).") from e


def _validate_settings(s: Settings) -> None:
    if not s.keywords and not s.keyword_variants:
        raise ConfigError("Provide 'keywords' or a non-empty 'keyword_variants'.")
    if s.results_per_session <= 0:
        raise ConfigError("'results_per_session' must be >= 1.")
    if s.time_posted not in TIME_POSTED_VALUES:
        raise ConfigError(f"'time_posted' must be one of {TIME_POSTED_VALUES} (got {s.time_posted!r}).")
    if s.nav_timeout_ms <= 0:
        raise ConfigError("'nav_timeout_ms' must be >= 1.")
    if not s.output_dir.strip():
        raise ConfigError("'output_dir' cannot be empty.")
    if not s.seen_store_path.strip():
        raise ConfigError("'seen_store_path' cannot be empty.")

    p = s.pagination
    if p.page_size <= 0 or p.page_multiplier <= 0 or p.stall_pages <= 0:
        raise ConfigError("'page_size', 'page_multiplier' and 'stall_pages' must be >= 1.")
    if p.max_pages is not None and p.max_pages <= 0:
        raise ConfigError("'max_pages' must be >= 1 when provided.")
