"""Unit tests for the step handlers."""

from typing import Any, Awaitable, Callable, List, Optional
from unittest.mock import AsyncMock

import pytest

from update_pilot.models import (
    OutcomeAction,
    ResultStatus,
    Step,
    StepStatus,
    WorkflowConfig,
)
from update_pilot.steps import StepRegistry, build_update_steps
from update_pilot.steps.composer import ComposerDryRunHandler, ComposerUpdateHandler
from update_pilot.steps.manager import CheckManagerHandler, UpdateManagerHandler
from update_pilot.steps.migrations import (
    CheckMigrationsHandler,
    ExecuteMigrationsHandler,
    build_cycle_steps,
    paired_check_id,
    paired_execute_id,
)
from update_pilot.steps.tasks import CheckTasksHandler

from fakes import FakeManagerApi


class StubContext:
    """Minimal StepContext: polls without delay and records progress."""

    def __init__(
        self,
        api: Any,
        config: Optional[WorkflowConfig] = None,
        steps: Optional[List[Step]] = None,
    ) -> None:
        self.api = api
        self.config = config or WorkflowConfig()
        self._steps = {step.id: step for step in steps or []}
        self.progress: List[Any] = []

    def find_step(self, step_id: str) -> Optional[Step]:
        return self._steps.get(step_id)

    def emit_progress(self, data: Any) -> None:
        self.progress.append(data)

    async def poll(
        self,
        poll_fn: Callable[[], Awaitable[Any]],
        should_continue: Callable[[Any], bool],
        label: str = "Task",
    ) -> Any:
        while True:
            result = await poll_fn()
            self.progress.append(result)
            if not should_continue(result):
                return result


def step_for(step_id: str) -> Step:
    return next(
        step
        for step in build_update_steps(WorkflowConfig(perform_dry_run=True))
        if step.id == step_id
    )


class TestCheckTasksHandler:
    """Test the pending task check."""

    @pytest.mark.asyncio
    async def test_no_conflicts(self) -> None:
        api = FakeManagerApi()
        result = await CheckTasksHandler().execute(step_for("check-tasks"), StubContext(api))

        assert result.status == ResultStatus.SUCCESS

    @pytest.mark.asyncio
    async def test_pending_task_blocks(self) -> None:
        api = FakeManagerApi()
        api.task = {"id": "composer/update", "status": "active", "title": "Composer update"}

        result = await CheckTasksHandler().execute(step_for("check-tasks"), StubContext(api))

        assert result.status == ResultStatus.ERROR
        assert result.error == "Pending tasks found. Please resolve before continuing."
        assert result.data["status"] == "active"
        assert [action.id for action in result.user_actions] == ["clear-tasks"]

        outcome = await result.user_actions[0].execute()
        assert outcome.action == OutcomeAction.RESTART
        assert api.calls[-2:] == ["patch_task_status:aborting", "delete_task_data"]
        assert api.task == {}

    @pytest.mark.asyncio
    async def test_pending_migration_blocks(self) -> None:
        api = FakeManagerApi()
        api.migration = {"status": "pending", "hash": "abc", "operations": []}

        result = await CheckTasksHandler().execute(step_for("check-tasks"), StubContext(api))

        assert result.status == ResultStatus.ERROR
        assert result.error.startswith("Pending database migration task found")
        assert result.data["migrationType"] == "database-migration"
        assert result.data["migrationStatus"]["hash"] == "abc"

        await result.user_actions[0].execute()
        assert "delete_database_migration_task" in api.calls
        assert "delete_task_data" not in api.calls

    @pytest.mark.asyncio
    async def test_finished_migration_does_not_block(self) -> None:
        api = FakeManagerApi()
        api.migration = {"status": "complete", "hash": "abc"}

        result = await CheckTasksHandler().execute(step_for("check-tasks"), StubContext(api))

        assert result.status == ResultStatus.SUCCESS


class TestManagerHandlers:
    """Test the manager version check and update."""

    @pytest.mark.asyncio
    async def test_update_available(self) -> None:
        api = FakeManagerApi(current_version="1.8.0", latest_version="1.9.0")

        result = await CheckManagerHandler().execute(step_for("check-manager"), StubContext(api))

        assert result.status == ResultStatus.SUCCESS
        assert result.skip_steps == []
        assert result.data["selfUpdate"]["latest_version"] == "1.9.0"

    @pytest.mark.asyncio
    async def test_up_to_date_skips_update(self) -> None:
        api = FakeManagerApi(current_version="1.9.0", latest_version="1.9.0")

        result = await CheckManagerHandler().execute(step_for("check-manager"), StubContext(api))

        assert result.skip_steps == ["update-manager"]

    @pytest.mark.asyncio
    async def test_missing_self_update(self) -> None:
        api = AsyncMock()
        api.get_update_status.return_value = {"composer": {}}

        result = await CheckManagerHandler().execute(step_for("check-manager"), StubContext(api))

        assert result.status == ResultStatus.ERROR
        assert result.error == "Could not check manager update status"

    @pytest.mark.asyncio
    async def test_update_manager_runs_task(self) -> None:
        api = FakeManagerApi()

        result = await UpdateManagerHandler().execute(step_for("update-manager"), StubContext(api))

        assert result.status == ResultStatus.SUCCESS
        assert api.started_tasks == [{"name": "manager/self-update"}]
        assert "delete_task_data" in api.calls


class TestTaskHandlers:
    """Test remote task polling through the composer handlers."""

    @pytest.mark.asyncio
    async def test_task_error_keeps_console(self) -> None:
        api = FakeManagerApi(task_statuses={"composer/update": "error"})

        result = await ComposerUpdateHandler().execute(step_for("composer-update"), StubContext(api))

        assert result.status == ResultStatus.ERROR
        assert result.error == "composer/update exploded"
        assert "delete_task_data" not in api.calls

    @pytest.mark.asyncio
    async def test_task_error_without_console(self) -> None:
        api = AsyncMock()
        api.get_task_data.return_value = {"status": "stopped"}

        result = await ComposerUpdateHandler().execute(step_for("composer-update"), StubContext(api))

        assert result.error == "Composer Update failed"

    @pytest.mark.asyncio
    async def test_empty_response_is_success(self) -> None:
        """Test a task that disappears from the slot counts as finished."""
        api = AsyncMock()
        api.get_task_data.side_effect = [{"status": "active", "title": "Update"}, {}]

        context = StubContext(api)
        result = await ComposerUpdateHandler().execute(step_for("composer-update"), context)

        assert result.status == ResultStatus.SUCCESS
        assert result.data == {"status": "active", "title": "Update"}
        api.set_task_data.assert_awaited_once_with(
            {"name": "composer/update", "config": {"dry_run": False}}
        )
        api.delete_task_data.assert_not_awaited()
        assert context.progress[0]["status"] == "active"

    @pytest.mark.asyncio
    async def test_dry_run_asks_user(self) -> None:
        api = FakeManagerApi()

        result = await ComposerDryRunHandler().execute(step_for("composer-dry-run"), StubContext(api))

        assert result.status == ResultStatus.USER_ACTION_REQUIRED
        assert result.pause_workflow is True
        assert [action.id for action in result.user_actions] == [
            "continue-update",
            "skip-composer-update",
            "cancel-workflow",
        ]
        assert api.started_tasks == [{"name": "composer/update", "config": {"dry_run": True}}]

        outcomes = [await action.execute() for action in result.user_actions]
        assert [outcome.action for outcome in outcomes] == [
            OutcomeAction.CONTINUE,
            OutcomeAction.SKIP_NEXT,
            OutcomeAction.CANCEL,
        ]

    @pytest.mark.asyncio
    async def test_cancel_aborts_active_task(self) -> None:
        api = FakeManagerApi()
        api.task = {"status": "active"}

        await ComposerUpdateHandler().on_cancel(step_for("composer-update"), StubContext(api))

        assert "patch_task_status:aborting" in api.calls


class TestMigrationHandlers:
    """Test the migration check and execute handlers."""

    @pytest.mark.asyncio
    async def test_check_without_hash_skips_execute(self) -> None:
        api = FakeManagerApi()

        result = await CheckMigrationsHandler().execute(
            step_for("check-migrations-loop"), StubContext(api)
        )

        assert result.status == ResultStatus.SUCCESS
        assert result.skip_steps == ["execute-migrations"]
        assert result.pause_workflow is False
        assert api.migration_requests == [{}]
        assert "delete_database_migration_task" in api.calls

    @pytest.mark.asyncio
    async def test_check_with_hash_pauses(self) -> None:
        api = FakeManagerApi(migration_hashes=["abc123"])

        result = await CheckMigrationsHandler().execute(
            step_for("check-migrations-loop"), StubContext(api)
        )

        assert result.status == ResultStatus.SUCCESS
        assert result.pause_workflow is True
        assert result.data["hash"] == "abc123"
        assert [action.id for action in result.user_actions] == [
            "confirm-migrations",
            "confirm-with-deletes",
            "skip-migrations",
            "cancel-workflow",
        ]
        confirm = await result.user_actions[1].execute()
        assert confirm.data == {"withDeletes": True}

    @pytest.mark.asyncio
    async def test_check_error(self) -> None:
        api = AsyncMock()
        api.get_database_migration_status.return_value = {"status": "error"}

        result = await CheckMigrationsHandler().execute(
            step_for("check-migrations-loop"), StubContext(api)
        )

        assert result.error == "Database migration check failed"

    @pytest.mark.asyncio
    async def test_execute_without_hash_fails(self) -> None:
        """Test an execute step reached without a confirmed check refuses to run."""
        api = FakeManagerApi()
        check = step_for("check-migrations-loop")

        result = await ExecuteMigrationsHandler().execute(
            step_for("execute-migrations"), StubContext(api, steps=[check])
        )

        assert result.status == ResultStatus.ERROR
        assert result.error == "No migration hash found from previous step"
        assert result.skip_steps == []
        assert api.migration_requests == []

    @pytest.mark.asyncio
    async def test_execute_uses_confirmed_hash(self) -> None:
        api = FakeManagerApi()
        check = step_for("check-migrations-loop")
        check.status = StepStatus.COMPLETE
        check.data = {"hash": "abc123", "withDeletes": True}

        result = await ExecuteMigrationsHandler().execute(
            step_for("execute-migrations"), StubContext(api, steps=[check])
        )

        assert result.status == ResultStatus.SUCCESS
        assert api.migration_requests == [{"hash": "abc123", "withDeletes": True}]
        assert api.calls[-1] == "delete_database_migration_task"

    @pytest.mark.asyncio
    async def test_execute_falls_back_to_config_deletes(self) -> None:
        api = FakeManagerApi()
        check = step_for("check-migrations-loop")
        check.data = {"hash": "abc123"}

        await ExecuteMigrationsHandler().execute(
            step_for("execute-migrations"),
            StubContext(api, config=WorkflowConfig(with_deletes=True), steps=[check]),
        )

        assert api.migration_requests == [{"hash": "abc123", "withDeletes": True}]

    @pytest.mark.asyncio
    async def test_execute_error(self) -> None:
        api = FakeManagerApi(execute_statuses=["error"])
        check = step_for("check-migrations-loop")
        check.data = {"hash": "abc123"}

        result = await ExecuteMigrationsHandler().execute(
            step_for("execute-migrations"), StubContext(api, steps=[check])
        )

        assert result.status == ResultStatus.ERROR
        assert result.error == "Database migration failed"
        assert result.data["status"] == "error"

    @pytest.mark.asyncio
    async def test_execute_unexpected_pending(self) -> None:
        api = FakeManagerApi(execute_statuses=["pending"])
        check = step_for("check-migrations-loop")
        check.data = {"hash": "abc123"}

        result = await ExecuteMigrationsHandler().execute(
            step_for("execute-migrations"), StubContext(api, steps=[check])
        )

        assert result.error == "Unexpected pending status during migration execution"

    def test_cycle_step_pairing(self) -> None:
        check, execute = build_cycle_steps(3)

        assert check.id == "check-migrations-loop-3"
        assert execute.id == "execute-migrations-3"
        assert check.kind == "check-migrations-loop"
        assert execute.conditional is True
        assert paired_execute_id(check) == execute.id
        assert paired_check_id(execute) == check.id


class TestStepSequenceBuilder:
    """Test build_update_steps and the handler registry."""

    def test_full_sequence(self) -> None:
        steps = build_update_steps(WorkflowConfig(perform_dry_run=True))

        assert [step.id for step in steps] == [
            "check-tasks",
            "check-manager",
            "update-manager",
            "composer-dry-run",
            "composer-update",
            "check-migrations-loop",
            "execute-migrations",
            "update-versions",
        ]
        assert all(step.status == StepStatus.PENDING for step in steps)

    def test_without_dry_run(self) -> None:
        ids = [step.id for step in build_update_steps(WorkflowConfig())]

        assert "composer-dry-run" not in ids
        assert "composer-update" in ids

    def test_skip_composer_drops_both_steps(self) -> None:
        ids = [
            step.id
            for step in build_update_steps(
                WorkflowConfig(perform_dry_run=True, skip_composer=True)
            )
        ]

        assert "composer-dry-run" not in ids
        assert "composer-update" not in ids

    def test_every_kind_has_a_handler(self) -> None:
        for step in build_update_steps(WorkflowConfig(perform_dry_run=True)):
            assert StepRegistry.get_handler(step.kind) is not None

    def test_unknown_kind(self) -> None:
        with pytest.raises(ValueError, match="No handler found"):
            StepRegistry.get_handler("reboot-server")
