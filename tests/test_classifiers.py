# tests/test_classifiers.py
import pytest

from modules.job_harvest.lib import classifiers
from modules.job_harvest.lib.models import Seniority


def test_blocklisted_bank_never_startup_even_with_description_signal(make_record):
    r = make_record(
        1,
        company="JPMorgan Chase & Co.",
        startup_signal_in_description=True,
    )
    assert classifiers.is_blocklisted(r.company)
    assert classifiers.is_likely_startup(r) is False
    assert classifiers.filter_startups([r]) == []


@pytest.mark.parametrize(
    "company,expected",
    [
        ("Acme Labs", True),
        ("Foo.io", True),
        ("Quantum Ventures", True),
        ("Acme Corp", False),
        ("", False),
    ],
)
def test_startup_like_name(company, expected):
    assert classifiers.has_startup_like_name(company) is expected


def test_description_signal_makes_plain_name_startup(make_record):
    r = make_record(1, company="Acme Corp", startup_signal_in_description=True)
    assert classifiers.is_likely_startup(r)


def test_filter_startups_tags_and_keeps_order(make_record):
    recs = [
        make_record(1, company="Zeta Labs"),
        make_record(2, company="Google"),
        make_record(3, company="Plain Co", startup_signal_in_description=True),
        make_record(4, company="Plain Co"),
    ]
    out = classifiers.filter_startups(recs)
    assert [r.job_id for r in out] == ["1001", "1003"]
    assert all(r.is_likely_startup for r in out)


def test_blocklist_short_entries_need_word_end():
    # "hp " must not hit "hpcl-ish" names, but does hit a bare "HP"
    assert classifiers.is_blocklisted("HP")
    assert not classifiers.is_blocklisted("Hphub Analytics")


@pytest.mark.parametrize(
    "text,expected",
    [
        ("We are an early-stage, venture backed team", True),
        ("Join our Series A company", True),
        ("Established enterprise with 50k employees", False),
        ("", False),
        (None, False),
    ],
)
def test_startup_signal(text, expected):
    assert classifiers.has_startup_signal(text) is expected


def test_tech_stack_in_vocabulary_order_and_deduplicated():
    text = "Must know Spark, Python and SQL. Python again! Experience with AWS/GCP and Airflow."
    assert classifiers.extract_tech_stack(text) == ("python", "sql", "spark", "airflow", "aws", "gcp")


def test_tech_stack_is_boundary_aware():
    text = "Google Cloud experience; hands-on gopher mascot; javascript"
    stack = classifiers.extract_tech_stack(text)
    assert "go" not in stack
    assert "java" not in stack
    assert "javascript" in stack


def test_tech_stack_handles_multiword_and_symbols():
    text = "CI/CD pipelines with GitHub Actions, Delta Lake tables; Kubernetes."
    stack = classifiers.extract_tech_stack(text)
    assert "ci/cd" in stack
    assert "github actions" in stack
    assert "delta lake" in stack
    assert "kubernetes" in stack


def test_tech_stack_empty_description():
    assert classifiers.extract_tech_stack("") == ()
    assert classifiers.extract_tech_stack(None) == ()


@pytest.mark.parametrize(
    "title,seniority,entry",
    [
        ("Data Engineer Intern", Seniority.ENTRY, True),
        ("Junior Data Engineer", Seniority.ENTRY, True),
        ("Entry-Level Data Analyst", Seniority.ENTRY, True),
        ("Senior Data Engineer", Seniority.SENIOR, False),
        ("Sr. Data Engineer", Seniority.SENIOR, False),
        ("Lead Data Engineer", Seniority.SENIOR, False),
        ("Senior Intern, Data", Seniority.ENTRY, True),
        ("Data Engineer", Seniority.MID, False),
        ("Leadership Programme Analyst", Seniority.MID, False),
    ],
)
def test_classify_seniority(title, seniority, entry):
    assert classifiers.classify_seniority(title) == (seniority, entry)


def test_tag_seniority_returns_new_record(make_record):
    r = make_record(1, title="Graduate Data Engineer")
    tagged = classifiers.tag_seniority(r)
    assert tagged is not r
    assert tagged.seniority is Seniority.ENTRY and tagged.is_entry_level
    assert r.seniority is Seniority.MID
