# tests/test_cli.py
import argparse
import json

import pytest

from modules.job_harvest.lib import store
from service import cli, runner


@pytest.fixture
def config_file(tmp_path, store_path):
    p = tmp_path / "config.json"
    p.write_text(
        json.dumps({
            "harvest": {"seen_store_path": store_path, "output_dir": str(tmp_path / "out")},
            "schedule": {"mode": "fixed_daily", "daily_time": "10:00", "utc_offset": "+05:30"},
            "email": {"enabled": False},
        }),
        encoding="utf-8",
    )
    return str(p)


def test_validate_config_ok(config_file, capsys):
    assert cli.main(["--config", config_file, "validate-config"]) == 0
    assert "OK" in capsys.readouterr().out


def test_validate_config_reports_errors(tmp_path, capsys):
    p = tmp_path / "bad.json"
    p.write_text(json.dumps({"schedule": {"mode": "hourly"}}), encoding="utf-8")
    assert cli.main(["--config", str(p), "validate-config"]) == 1
    assert "invalid" in capsys.readouterr().err


def test_stats_prints_store_counters(config_file, store_path, make_record, capsys):
    store.mark_seen([make_record(1), make_record(2)], store.load(store_path), store_path)

    assert cli.main(["--config", config_file, "stats"]) == 0
    out = capsys.readouterr().out
    assert store_path in out
    assert "| total_count" in out
    assert "| 2 " in out


def test_reset_seen_requires_confirmation(config_file, store_path, make_record, capsys):
    store.mark_seen([make_record(1)], store.load(store_path), store_path)

    assert cli.main(["--config", config_file, "reset-seen"]) == 2
    assert store.stats(store_path)["total_count"] == 1

    assert cli.main(["--config", config_file, "reset-seen", "--yes"]) == 0
    assert store.stats(store_path)["total_count"] == 0


def test_preview_schedule(config_file, capsys):
    assert cli.main(["--config", config_file, "preview-schedule", "--count", "3"]) == 0
    out = capsys.readouterr().out
    assert "FIXED_DAILY" in out
    assert out.count("T10:00:00+05:30") == 3


def _outcome(status, **kw):
    return runner.RunOutcome(status=status, run_id="r1", trigger_type="adhoc", started_at="now", **kw)


def test_run_passes_merged_kwargs_and_disables_mail(config_file, monkeypatch, capsys):
    seen = {}

    def fake_run_module_once(**kwargs):
        seen.update(kwargs)
        return _outcome("ok", count=3, export_path="/tmp/out.csv", message="3 new job(s)")

    monkeypatch.setattr(runner, "run_module_once", fake_run_module_once)

    rc = cli.main(["--config", config_file, "run", "--kwargs", "results_per_session=3", "startup_only=true", "--no-email"])
    assert rc == 0
    assert seen["kwargs"]["results_per_session"] == 3
    assert seen["kwargs"]["startup_only"] is True
    assert seen["kwargs"]["output_dir"].endswith("out")
    assert seen["send_email"] is False
    assert seen["trigger_type"] == "adhoc"
    assert "/tmp/out.csv" in capsys.readouterr().out


def test_run_reports_busy(config_file, monkeypatch, capsys):
    monkeypatch.setattr(runner, "run_module_once", lambda **kw: _outcome("busy"))
    assert cli.main(["--config", config_file, "run"]) == cli.EXIT_BUSY
    assert "BUSY" in capsys.readouterr().err


def test_run_failure_returns_one(config_file, monkeypatch, capsys):
    def boom(**kw):
        raise RuntimeError("browser crashed")

    monkeypatch.setattr(runner, "run_module_once", boom)
    assert cli.main(["--config", config_file, "run"]) == 1
    assert "browser crashed" in capsys.readouterr().err


def test_bad_kwargs_item_is_rejected():
    with pytest.raises(argparse.ArgumentTypeError):
        cli._kv_pair("no-equals-sign")


def test_kv_pair_decodes_json_values():
    assert cli._kv_pair("results_per_session=10") == ("results_per_session", 10)
    assert cli._kv_pair('keyword_variants=["a","b"]') == ("keyword_variants", ["a", "b"])
    assert cli._kv_pair("location=Bangalore, India") == ("location", "Bangalore, India")
    assert cli._kv_pair("output_dir=") == ("output_dir", "")
