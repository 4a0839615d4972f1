"""Pytest configuration and shared fixtures."""

from pathlib import Path

import pytest

from update_pilot.config import ManagerSettings
from update_pilot.engine import WorkflowEngine
from update_pilot.models import Step

from fakes import FakeManagerApi


@pytest.fixture
def fast_settings() -> ManagerSettings:
    """Settings with a short poll interval so workflows finish quickly."""
    return ManagerSettings(
        base_url="https://manager.example.com",
        poll_interval=0.01,
        max_poll_duration=5.0,
    )


@pytest.fixture
def fake_api() -> FakeManagerApi:
    """Fake API with a manager update available and no pending migrations."""
    return FakeManagerApi()


@pytest.fixture
def engine(fake_api: FakeManagerApi, fast_settings: ManagerSettings) -> WorkflowEngine:
    return WorkflowEngine(fake_api, fast_settings)


@pytest.fixture
def sample_step() -> Step:
    return Step(
        id="composer-update",
        title="Composer Update",
        description="Update the installed packages",
    )


@pytest.fixture
def sites_dir(tmp_path: Path) -> Path:
    """Directory with one valid site profile."""
    directory = tmp_path / "sites"
    directory.mkdir()
    (directory / "staging.yaml").write_text(
        "site:\n"
        "  name: Staging\n"
        "  url: https://staging.example.com/api\n"
        "  token_env: STAGING_MANAGER_TOKEN\n"
        "workflow:\n"
        "  perform_dry_run: true\n"
        "  with_deletes: false\n"
    )
    return directory
