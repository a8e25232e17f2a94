# tests/test_store.py
import json

import pytest

from modules.job_harvest.lib import store
from modules.job_harvest.lib.models import JobRecord


@pytest.mark.parametrize(
    "link",
    [
        "https://www.linkedin.com/jobs/view/3812345678/",
        "https://in.linkedin.com/jobs/view/data-engineer-at-acme-3812345678?refId=abc&trackingId=xyz",
        "https://www.linkedin.com/jobs/search/?currentJobId=3812345678&keywords=data",
        "https://example.com/careers/data-engineer?utm_source=linkedin#apply",
        "/jobs/view/123",
        "",
        None,
    ],
)
def test_canonicalize_is_idempotent(link):
    once = store.canonicalize(link)
    assert store.canonicalize(once) == once


@pytest.mark.parametrize(
    "link",
    [
        "https://www.linkedin.com/jobs/view/3812345678",
        "https://www.linkedin.com/jobs/view/3812345678/",
        "https://www.linkedin.com/jobs/view/3812345678/?trk=public_jobs_topcard",
        "https://www.linkedin.com/jobs/view/3812345678?refId=1#section",
        "https://in.linkedin.com/jobs/view/senior-data-engineer-at-acme-3812345678?position=3",
    ],
)
def test_extract_id_returns_view_digits(link):
    assert store.extract_id(link) == "3812345678"


def test_extract_id_from_query_params():
    assert store.extract_id("https://www.linkedin.com/jobs/search/?currentJobId=42&start=25") == "42"
    assert store.extract_id("https://example.com/viewjob?jk=777") == "777"
    assert store.extract_id("https://example.com/viewjob?jk=abc") is None


def test_tracking_param_variants_collapse_to_one_record():
    a = "https://www.linkedin.com/jobs/view/555/?trackingId=AAA"
    b = "https://www.linkedin.com/jobs/view/555/?trackingId=BBB&refId=zzz"
    assert store.canonicalize(a) == store.canonicalize(b) == "https://www.linkedin.com/jobs/view/555/"

    seen = store.IdentitySet()
    seen.add(JobRecord(title="X", company="Y", location="", link=store.canonicalize(a)))
    assert seen.contains(JobRecord(title="Other", company="Corp", location="", link=b))


def test_link_without_id_drops_query_and_fragment():
    assert store.canonicalize("https://jobs.example.com/p/abc?utm=1#top") == "https://jobs.example.com/p/abc"


def test_composite_key_normalization():
    assert store.composite_key("  Data   Engineer ", "ACME  Corp") == "data engineer|acme corp"
    assert store.composite_key("", "  ") is None


def test_composite_key_matches_when_links_differ(make_record):
    seen = store.IdentitySet()
    seen.add(make_record(1))
    twin = make_record(1, link="https://www.linkedin.com/jobs/view/999999/", job_id="999999")
    assert seen.contains(twin)


def test_mark_seen_then_reload_is_seen(make_record, store_path):
    records = [make_record(i) for i in range(3)]
    s = store.load(store_path)
    store.mark_seen(records, s, store_path)

    reloaded = store.load(store_path)
    assert all(store.is_seen(r, reloaded) for r in records)
    assert reloaded.last_updated is not None


def test_saved_layout_is_exact(make_record, store_path):
    s = store.load(store_path)
    store.mark_seen([make_record(1)], s, store_path)

    with open(store_path, encoding="utf-8") as f:
        data = json.load(f)
    assert set(data) == {"jobIds", "links", "titleCompanyKeys", "lastUpdated", "totalCount"}
    assert data["jobIds"] == ["1001"]
    assert data["links"] == ["https://www.linkedin.com/jobs/view/1001/"]
    assert data["titleCompanyKeys"] == ["data engineer 1|company 1"]
    assert data["totalCount"] == 1


def test_filter_twice_never_readmits(make_record, store_path):
    s = store.load(store_path)
    batch = [make_record(1), make_record(2)]

    first = store.filter_new(batch, s)
    assert first == batch
    store.mark_seen(first, s, store_path)

    second = store.filter_new(batch + [make_record(3)], store.load(store_path))
    assert [r.job_id for r in second] == ["1003"]


def test_filter_new_drops_untrackable_records():
    s = store.IdentitySet()
    untrackable = JobRecord(title="T", company="C", location="", link="")
    assert store.filter_new([untrackable], s) == []


@pytest.mark.parametrize("content", ["{not json", "[1, 2, 3]", '{"jobIds": "oops"}', ""])
def test_corrupt_file_loads_empty(tmp_path, content):
    p = tmp_path / "seen-jobs.json"
    p.write_text(content, encoding="utf-8")
    s = store.load(str(p))
    assert s.job_ids == set() and s.links == set() and s.title_company_keys == set()


def test_missing_file_loads_empty(tmp_path):
    s = store.load(str(tmp_path / "nope.json"))
    assert s.total_count == 0


def test_save_leaves_no_temp_files(make_record, tmp_path):
    path = str(tmp_path / "seen-jobs.json")
    s = store.load(path)
    store.mark_seen([make_record(1)], s, path)
    store.mark_seen([make_record(2)], s, path)
    assert sorted(p.name for p in tmp_path.iterdir()) == ["seen-jobs.json"]


def test_total_count_counts_orphan_links():
    s = store.SeenJobsStore(
        job_ids={"1", "2"},
        links={"https://www.linkedin.com/jobs/view/1/", "https://jobs.example.com/x"},
    )
    assert s.total_count == 3


def test_stats_and_reset(make_record, store_path):
    s = store.load(store_path)
    store.mark_seen([make_record(1), make_record(2)], s, store_path)

    st = store.stats(store_path)
    assert st["job_ids"] == 2
    assert st["total_count"] == 2

    store.reset(store_path)
    assert store.stats(store_path)["total_count"] == 0
    # Resetting twice is harmless
    store.reset(store_path)


def test_mark_seen_stamps_last_updated(make_record, store_path, frozen_utc):
    s = store.load(store_path)
    store.mark_seen([make_record(1)], s, store_path)
    with open(store_path, encoding="utf-8") as f:
        assert json.load(f)["lastUpdated"] == "2025-01-01T00:00:00Z"
