"""Pytest configuration and shared fixtures."""

import pytest

from genflow.assets.store import InMemoryAssetStore
from genflow.config import Settings
from genflow.jobs.store import InMemoryJobStore
from genflow.orchestrator import JobOrchestrator
from genflow.owners import InMemoryOwnerRegistry
from genflow.providers import MockProvider

OWNER_ID = "app_test"


def make_settings(tmp_path, **overrides) -> Settings:
    """Fast settings for in-process runs: memory stores, mock provider, no retry backoff."""
    values = dict(
        genflow_data_dir=str(tmp_path / "data"),
        genflow_job_store="memory",
        genflow_asset_store="memory",
        genflow_provider="mock",
        genflow_max_retries=2,
        genflow_retry_backoff_s=0.0,
        genflow_unit_timeout_s=5.0,
        genflow_heartbeat_interval_s=0.01,
        genflow_progress_table_path=None,
    )
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def settings(tmp_path):
    return make_settings(tmp_path)


@pytest.fixture
def provider():
    return MockProvider()


@pytest.fixture
def assets():
    return InMemoryAssetStore()


@pytest.fixture
def job_store():
    return InMemoryJobStore()


@pytest.fixture
def owners():
    return InMemoryOwnerRegistry([OWNER_ID])


@pytest.fixture
def orchestrator(job_store, assets, provider, owners, settings):
    return JobOrchestrator(job_store, assets, provider, owners, settings)


@pytest.fixture
def settings_factory(tmp_path):
    """Settings with per-test overrides, e.g. ``settings_factory(genflow_max_retries=0)``."""
    def _make(**overrides) -> Settings:
        return make_settings(tmp_path, **overrides)
    return _make


@pytest.fixture
def orchestrator_factory(job_store, assets, provider, owners, settings_factory):
    def _make(**overrides) -> JobOrchestrator:
        return JobOrchestrator(job_store, assets, provider, owners, settings_factory(**overrides))
    return _make


@pytest.fixture
def owner_id():
    return OWNER_ID
