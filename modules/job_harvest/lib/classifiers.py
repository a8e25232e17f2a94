"""
Pure record classifiers: startup likelihood, technology tags, seniority.

Nothing here touches the network or the store.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import replace

from .models import JobRecord, Seniority

# Large employers; a company containing (or equal to) any entry is never a startup.
# Trailing spaces are significant for short names ("hp ", "gm ") to limit substring hits.
BLOCKLIST: tuple[str, ...] = (
    "google", "microsoft", "amazon", "meta", "facebook", "apple", "netflix",
    "ibm", "oracle", "salesforce", "adobe", "sap", "cisco", "intel", "dell",
    "hp ", "hewlett", "accenture", "deloitte", "mckinsey", "bcg", "bain",
    "goldman sachs", "jpmorgan", "jpmorgan chase", "morgan stanley", "bank of america",
    "walmart", "exxon", "chevron", "berkshire", "unitedhealth", "cvs health",
    "johnson & johnson", "jnj", "procter & gamble", "p&g", "verizon", "at&t",
    "comcast", "disney", "walt disney", "nike", "coca-cola", "pepsi",
    "ford motor", "general motors", "gm ", "toyota", "honda", "tesla",
    "samsung", "sony", "lg ", "panasonic", "siemens", "ge ", "general electric",
    "boeing", "lockheed", "raytheon", "northrop", "honeywell",
    "ubs", "credit suisse", "barclays", "hsbc", "citigroup", "citi ",
    "wells fargo", "american express", "capital one", "blackrock", "kpmg",
    "ey ", "ernst & young", "pwc", "pricewaterhouse", "infosys", "tcs ",
    "wipro", "hcl tech", "cognizant", "capgemini", "tata consultancy",
    "servicenow", "workday", "vmware", "broadcom", "qualcomm", "nvidia",
    "amd ", "paypal", "visa", "mastercard", "intuit", "zoom", "slack",
    "spotify", "uber", "lyft", "airbnb", "twitter", "linkedin", "yelp",
    "ebay", "alibaba", "tencent", "bytedance", "tiktok", "snap", "snapchat",
    "dropbox", "box ", "atlassian", "twilio", "square", "block inc",
    "stripe", "coinbase", "robinhood", "chase", "american airlines",
    "delta air", "united airlines", "fedex", "ups ", "state farm",
    "allstate", "liberty mutual", "anthem", "cigna", "humana",
    "abbvie", "pfizer", "merck", "novartis", "roche", "sanofi",
    "glaxosmithkline", "gsk ", "astrazeneca",
    "bloomberg", "reuters", "thomson reuters", "lexisnexis", "moody",
    "s&p global", "nasdaq", "nyse", "citadel", "jane street", "two sigma",
    "optiver", "imc ", "flow traders", "government", "state of ", "federal ",
)

STARTUP_NAME_TOKENS: tuple[str, ...] = (
    "labs", "ventures", "studio", ".io", "hq", "capital", "startup", "startups",
    "tech", "software", "digital", "innovation", "solutions", "io",
)

STARTUP_DESC_PHRASES: tuple[str, ...] = (
    "startup", "early stage", "early-stage", "series a", "series b",
    "venture-backed", "venture backed", "fast-paced", "fast paced",
    "small team", "growing team", "founding", "founding team",
    "seed stage", "pre-seed", "preseed",
)

TECH_KEYWORDS: tuple[str, ...] = (
    # Languages
    "python", "java", "scala", "go", "golang", "javascript", "typescript", "sql", "bash", "shell",
    # Data/processing
    "spark", "pyspark", "hadoop", "hive", "trino", "presto", "athena", "databricks",
    "delta lake", "iceberg", "hudi", "airflow", "dagster", "dbt", "kafka", "flink", "beam",
    # Warehouses/lakes
    "snowflake", "bigquery", "redshift", "synapse",
    # Databases
    "postgres", "postgresql", "mysql", "mongodb", "cassandra", "dynamodb", "redis",
    # Cloud
    "aws", "azure", "gcp", "s3", "emr", "glue", "lambda", "ecs", "eks",
    "dataproc", "dataflow", "pubsub", "eventhub",
    # Infra/devops
    "docker", "kubernetes", "terraform", "ansible", "jenkins", "github actions", "ci/cd",
)

_ENTRY_RE = re.compile(r"\b(?:intern|internship|entry[\s-]level|graduate|fresher|junior)\b", re.I)
_SENIOR_RE = re.compile(r"\b(?:senior|sr\.?|lead|manager|staff|principal|director|head)(?!\w)", re.I)

# Letters, digits and the few symbols that appear inside tech names (c++, c#, ci/cd, node.js).
_DISALLOWED_RE = re.compile(r"[^\w\s+#./-]|_", re.UNICODE)
_WS_RE = re.compile(r"\s+")


# ---- Startup likelihood -----------------------------------------------------


def _normalize_company(name: str | None) -> str:
    return (name or "").strip().lower()


def is_blocklisted(company: str | None) -> bool:
    n = _normalize_company(company)
    if not n:
        return False
    # Pad so entries with a trailing space also match a name that ends with them.
    padded = f"{n} "
    return any(term.strip() == n or term in padded for term in BLOCKLIST)


def has_startup_like_name(company: str | None) -> bool:
    n = _normalize_company(company)
    if not n:
        return False
    return any(token in n for token in STARTUP_NAME_TOKENS)


def has_startup_signal(description: str | None) -> bool:
    """True when the description contains a startup-indicative phrase."""
    text = (description or "").strip().lower()
    if not text:
        return False
    return any(phrase in text for phrase in STARTUP_DESC_PHRASES)


def is_likely_startup(record: JobRecord) -> bool:
    """Blocklist wins; otherwise a startup-ish name OR a description signal."""
    if is_blocklisted(record.company):
        return False
    return has_startup_like_name(record.company) or record.startup_signal_in_description


def filter_startups(records: Iterable[JobRecord]) -> list[JobRecord]:
    """Keep startup-likely records, tagged ``is_likely_startup=True``; order preserved."""
    return [replace(r, is_likely_startup=True) for r in records if is_likely_startup(r)]


# ---- Technology tags --------------------------------------------------------


def _normalize_text(text: str | None) -> str:
    t = _DISALLOWED_RE.sub(" ", str(text or "").lower())
    return _WS_RE.sub(" ", t).strip()


_TECH_PATTERNS: tuple[tuple[str, re.Pattern[str]], ...] = tuple(
    (kw, re.compile(r"(?:^|[\s/])" + re.escape(_normalize_text(kw)) + r"(?=\.?(?:\s|$)|/)"))
    for kw in TECH_KEYWORDS
)


def extract_tech_stack(description: str | None) -> tuple[str, ...]:
    """
    Technology keywords present in ``description``, in vocabulary order.

    Matching is case-insensitive and bounded by whitespace or "/" after
    normalization (a trailing full stop is tolerated), so "go" does not fire
    on "google" while "aws" fires on "AWS/GCP" and "python" on "Python.".
    """
    text = _normalize_text(description)
    if not text:
        return ()
    found: list[str] = []
    for kw, pattern in _TECH_PATTERNS:
        if kw not in found and pattern.search(text):
            found.append(kw)
    return tuple(found)


# ---- Seniority --------------------------------------------------------------


def classify_seniority(title: str | None) -> tuple[Seniority, bool]:
    """
    Map a title to (seniority, is_entry_level). Entry keywords win over
    senior ones ("Senior Intern" is an internship).
    """
    t = title or ""
    if _ENTRY_RE.search(t):
        return Seniority.ENTRY, True
    if _SENIOR_RE.search(t):
        return Seniority.SENIOR, False
    return Seniority.MID, False


def tag_seniority(record: JobRecord) -> JobRecord:
    seniority, entry = classify_seniority(record.title)
    return replace(record, seniority=seniority, is_entry_level=entry)
