# tests/conftest.py
import os
import tempfile
import warnings

import pytest
from freezegun import freeze_time

from modules.job_harvest.lib import config as jh_config
from modules.job_harvest.lib.models import JobRecord

warnings.filterwarnings("error", category=DeprecationWarning, module="modules")


# ---------------------------------------------------------------------
# Live tests are opt-in: use --live or RUN_LIVE_TESTS=1
# ---------------------------------------------------------------------
def pytest_addoption(parser: pytest.Parser) -> None:
    parser.addoption(
        "--live",
        action="store_true",
        default=False,
        help="Run tests marked as 'live' (real browser against the public job search).",
    )


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line(
        "markers",
        "live: marks tests that drive a real browser against external sites (skipped by default).",
    )


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    run_live = config.getoption("--live") or os.getenv("RUN_LIVE_TESTS") == "1"
    if run_live:
        return
    skip_live = pytest.mark.skip(reason="live tests disabled (use --live or RUN_LIVE_TESTS=1)")
    for item in items:
        if "live" in item.keywords:
            item.add_marker(skip_live)


# ---------------------------------------------------------------------
# Test-wide env defaults (autouse, function-scoped)
# ---------------------------------------------------------------------
@pytest.fixture(autouse=True)
def _env_defaults(monkeypatch):
    # Write logs to a throwaway dir so real logs stay clean (per test)
    tmp_logs = tempfile.mkdtemp(prefix="jh-pytest-logs-")
    monkeypatch.setenv("LOG_DIR", tmp_logs)
    monkeypatch.setenv("ACTIVITY_LOG_PREFIX", "activity-test")
    monkeypatch.setenv("ERROR_LOG_PREFIX", "error-test")
    for name in ("LINKEDIN_COOKIE", "SMTP_HOST", "SMTP_USERNAME", "SMTP_USER", "SMTP_PASSWORD",
                 "SMTP_PASS", "SMTP_FROM", "MAIL_FROM", "MAIL_TO", "SMTP_PORT", "SMTP_USE_SSL"):
        monkeypatch.delenv(name, raising=False)
    yield


@pytest.fixture(autouse=True)
def no_email_env(monkeypatch):
    monkeypatch.setenv("SEND_EMAIL", "0")
    monkeypatch.setenv("JOB_HARVEST_DRY_RUN", "1")
    monkeypatch.delenv("CONFIG_PATH", raising=False)
    yield


@pytest.fixture
def frozen_utc():
    with freeze_time("2025-01-01T00:00:00Z"):
        yield


@pytest.fixture
def store_path(tmp_path):
    return str(tmp_path / "state" / "seen-jobs.json")


@pytest.fixture
def fresh_settings(tmp_path, store_path):
    """
    Brand-new Settings per test: temp output dir and store, no pauses,
    single keyword variant, no mail.
    """
    return jh_config.Settings.from_env_and_kwargs({
        "keywords": "data engineer",
        "keyword_variants": ["data engineer"],
        "location": "India",
        "results_per_session": 5,
        "output_dir": str(tmp_path / "out"),
        "seen_store_path": store_path,
        "pacing_scale": 0,
        "send_email": False,
    })


@pytest.fixture
def make_record():
    def _make(n: int, **overrides) -> JobRecord:
        fields = {
            "title": f"Data Engineer {n}",
            "company": f"Company {n}",
            "location": "Bengaluru, Karnataka, India",
            "link": f"https://www.linkedin.com/jobs/view/{1000 + n}/",
            "job_id": str(1000 + n),
            "scraped_at": "2025-01-01T00:00:00Z",
        }
        fields.update(overrides)
        return JobRecord(**fields)

    return _make
