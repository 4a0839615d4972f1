"""Integration tests for CLI functionality."""

import argparse
from typing import Iterator
from unittest.mock import AsyncMock, patch

import pytest

from update_pilot.config import ManagerSettings, SiteProfile
from update_pilot.main import (
    EXIT_COMPLETE,
    EXIT_ERROR,
    EXIT_STOPPED,
    build_workflow_config,
    choose_action,
    exit_code_for,
    format_state_output,
    main,
    run_update,
)
from update_pilot.models import Step, StepStatus, WorkflowConfig, WorkflowState

from fakes import FakeManagerApi


def cli_args(**overrides: bool) -> argparse.Namespace:
    values = {
        "dry_run": False,
        "skip_composer": False,
        "with_deletes": False,
        "unroll_migrations": False,
    }
    values.update(overrides)
    return argparse.Namespace(**values)


def scripted_prompt(*answers: str):
    remaining: Iterator[str] = iter(answers)
    return lambda message: next(remaining)


def finished_state() -> WorkflowState:
    return WorkflowState(
        current_step=1,
        steps=[
            Step(
                id="update-versions",
                title="Update Version Info",
                description="",
                status=StepStatus.COMPLETE,
            )
        ],
    )


class TestWorkflowConfigFlags:
    """Test how flags and profiles combine."""

    def test_flags_without_profile(self) -> None:
        config = build_workflow_config(cli_args(dry_run=True, with_deletes=True))

        assert config == WorkflowConfig(perform_dry_run=True, with_deletes=True)

    def test_profile_defaults_apply(self) -> None:
        profile = SiteProfile(
            name="Staging",
            url="https://staging.example.com",
            workflow=WorkflowConfig(perform_dry_run=True, unroll_migration_cycles=True),
        )

        config = build_workflow_config(cli_args(skip_composer=True), profile)

        assert config.perform_dry_run is True
        assert config.skip_composer is True
        assert config.unroll_migration_cycles is True
        assert config.with_deletes is False


class TestRunUpdate:
    """Test driving a workflow with operator answers."""

    @pytest.mark.asyncio
    async def test_assume_yes_picks_primary_actions(
        self, fast_settings: ManagerSettings
    ) -> None:
        api = FakeManagerApi(migration_hashes=["abc123"])

        state = await run_update(
            api,
            WorkflowConfig(perform_dry_run=True),
            settings=fast_settings,
            assume_yes=True,
        )

        assert state.is_complete
        assert exit_code_for(state) == EXIT_COMPLETE
        assert {"hash": "abc123", "withDeletes": False} in api.migration_requests

    @pytest.mark.asyncio
    async def test_prompt_answers_are_applied(self, fast_settings: ManagerSettings) -> None:
        api = FakeManagerApi()

        # An out of range answer is asked again
        state = await run_update(
            api,
            WorkflowConfig(perform_dry_run=True),
            settings=fast_settings,
            prompt=scripted_prompt("9", "2"),
        )

        assert state.is_complete
        assert state.find_step("composer-update").status == StepStatus.SKIPPED

    @pytest.mark.asyncio
    async def test_quit_leaves_workflow_paused(self, fast_settings: ManagerSettings) -> None:
        state = await run_update(
            FakeManagerApi(),
            WorkflowConfig(perform_dry_run=True),
            settings=fast_settings,
            prompt=scripted_prompt("q"),
        )

        assert state.is_paused
        assert exit_code_for(state) == EXIT_STOPPED
        assert "Workflow stopped before completion" in format_state_output(state)

    @pytest.mark.asyncio
    async def test_assume_yes_never_picks_destructive_action(
        self, fast_settings: ManagerSettings
    ) -> None:
        api = FakeManagerApi()
        api.task = {"status": "active", "title": "Composer update"}

        state = await run_update(
            api, WorkflowConfig(), settings=fast_settings, assume_yes=True
        )

        assert state.error == "Pending tasks found. Please resolve before continuing."
        assert exit_code_for(state) == EXIT_ERROR
        assert "delete_task_data" not in api.calls
        assert choose_action(state, assume_yes=True) is None


class TestMain:
    """Test the command line entry point."""

    def test_list_sites(self, capsys: pytest.CaptureFixture) -> None:
        assert main(["--list-sites"]) == EXIT_COMPLETE

        captured = capsys.readouterr()
        assert "example" in captured.out

    def test_missing_url(
        self, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture
    ) -> None:
        monkeypatch.delenv("UPDATE_PILOT_URL", raising=False)

        assert main([]) == EXIT_ERROR
        assert "No API URL given" in capsys.readouterr().out

    def test_unknown_site(self, capsys: pytest.CaptureFixture) -> None:
        assert main(["--site", "does-not-exist"]) == EXIT_ERROR
        assert "Critical Error" in capsys.readouterr().out

    def test_runs_update_with_flags(
        self, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture
    ) -> None:
        monkeypatch.delenv("UPDATE_PILOT_TOKEN", raising=False)

        with patch(
            "update_pilot.main.update_site", new=AsyncMock(return_value=finished_state())
        ) as mock_update:
            result = main(
                ["--url", "https://manager.example.com", "--token", "secret", "--dry-run", "-y"]
            )

        assert result == EXIT_COMPLETE
        settings, config = mock_update.call_args.args
        assert settings.base_url == "https://manager.example.com"
        assert settings.api_token == "secret"
        assert config.perform_dry_run is True
        assert mock_update.call_args.kwargs["assume_yes"] is True
        assert "Update workflow complete" in capsys.readouterr().out
