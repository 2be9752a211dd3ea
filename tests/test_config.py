"""Tests for settings and error helpers."""

from genflow.config import Settings, get_settings
from genflow.errors import (
    MAX_ERROR_CHARS,
    Cancelled,
    InvalidInput,
    ProviderTimeout,
    UnknownGenerationError,
    short_message,
)


def test_defaults_are_loaded():
    s = Settings(_env_file=None)
    assert s.genflow_max_retries == 2
    assert s.genflow_stuck_job_age_s == 360
    assert s.genflow_retention_s == 86400
    assert s.concurrency_for("screens") == 3
    assert s.concurrency_for("unknown-stage") == 1


def test_env_overrides(monkeypatch, tmp_path):
    monkeypatch.setenv("GENFLOW_DATA_DIR", str(tmp_path / "d"))
    monkeypatch.setenv("GENFLOW_MAX_RETRIES", "5")
    monkeypatch.setenv("GENFLOW_STAGE_CONCURRENCY", '{"screens": 0}')
    s = Settings(_env_file=None)
    assert s.genflow_max_retries == 5
    assert s.data_dir == (tmp_path / "d").resolve()
    # a zero bound still lets one unit run
    assert s.concurrency_for("screens") == 1


def test_cors_origin_list():
    s = Settings(_env_file=None, cors_origins=" http://a.test , ,http://b.test")
    assert s.cors_origin_list == ["http://a.test", "http://b.test"]


def test_get_settings_creates_dirs(monkeypatch, tmp_path):
    monkeypatch.setenv("GENFLOW_DATA_DIR", str(tmp_path / "data"))
    s = get_settings()
    assert s.jobs_dir.is_dir()
    assert s.assets_dir.is_dir()


def test_short_message_caps_length():
    assert len(short_message("x" * 2000)) == MAX_ERROR_CHARS
    assert short_message(ValueError("boom")) == "boom"
    assert short_message(RuntimeError()) == "RuntimeError"


def test_retry_flags():
    assert ProviderTimeout.retryable
    assert UnknownGenerationError.retryable
    assert not InvalidInput.retryable
    assert not Cancelled.retryable


def test_stuck_job_age_covers_a_unit_with_all_retries():
    s = Settings(_env_file=None)
    assert s.unit_budget_s == 543.0
    assert s.stuck_job_age == 603
    quick = Settings(_env_file=None, genflow_unit_timeout_s=10.0, genflow_max_retries=0, genflow_retry_backoff_s=0.0)
    assert quick.stuck_job_age == 360
    slow = Settings(_env_file=None, genflow_unit_timeout_s=300.0, genflow_max_retries=1, genflow_retry_backoff_s=2.0)
    assert slow.stuck_job_age == 662
