from typing import TYPE_CHECKING, Any, Dict, List, Optional

from ..errors import ManagerApiError
from ..models import ActionOutcome, OutcomeAction, Step, TimelineResult, UserAction
from .base import ACTION_CLEAR_TASKS, BaseStepHandler

if TYPE_CHECKING:
    from ..engine.context import StepContext

PENDING_TASKS_MESSAGE = "Pending tasks found. Please resolve before continuing."
PENDING_MIGRATION_MESSAGE = (
    "Pending database migration task found. Please resolve before continuing."
)

TASK_RUNNING_STATUSES = ("active", "aborting")
TASK_FAILED_STATUSES = ("error", "stopped")
BLOCKING_MIGRATION_STATUSES = ("active", "pending")


class CheckTasksHandler(BaseStepHandler):
    """
    Fails fast when the remote instance already has a task or migration in flight.

    The remote side only holds one task and one migration at a time, so
    starting while either exists would collide with it.
    """

    async def execute(self, step: Step, context: "StepContext") -> TimelineResult:
        task = await context.api.get_task_data()
        if task:
            self.logger.warning(f"Found pending task: {task.get('title') or task.get('id')}")
            return TimelineResult.failure(
                PENDING_TASKS_MESSAGE,
                data=task,
                user_actions=[self._clear_action(context, task=task)],
            )

        migration = await context.api.get_database_migration_status()
        if migration and migration.get("status") in BLOCKING_MIGRATION_STATUSES:
            self.logger.warning(
                f"Found pending database migration ({migration.get('status')})"
            )
            return TimelineResult.failure(
                PENDING_MIGRATION_MESSAGE,
                data={"migrationType": "database-migration", "migrationStatus": migration},
                user_actions=[self._clear_action(context, migration=migration)],
            )

        return TimelineResult.success()

    def _clear_action(
        self,
        context: "StepContext",
        task: Optional[Dict[str, Any]] = None,
        migration: Optional[Dict[str, Any]] = None,
    ) -> UserAction:
        api = context.api
        logger = self.logger

        async def execute() -> ActionOutcome:
            if task:
                if task.get("status") == "active":
                    logger.info("Requesting abort of the active task before deleting it")
                    await api.patch_task_status("aborting")
                await api.delete_task_data()
            if migration:
                await api.delete_database_migration_task()
            return ActionOutcome(OutcomeAction.RESTART)

        return UserAction(
            id=ACTION_CLEAR_TASKS,
            label="Clear Pending Tasks",
            execute=execute,
            variant="danger",
            description="Remove the blocking task and start the workflow over",
        )


class RemoteTaskHandler(BaseStepHandler):
    """
    Starts a remote task and follows it until it finishes.

    Subclasses describe the task in ``build_task``; ``on_task_complete`` turns
    the final task payload into the step result.
    """

    task_name = ""

    def build_task(self, step: Step, context: "StepContext") -> Dict[str, Any]:
        return {"name": self.task_name}

    async def execute(self, step: Step, context: "StepContext") -> TimelineResult:
        task = self.build_task(step, context)
        self.logger.info(f"Starting remote task {task['name']}")
        await context.api.set_task_data(task)

        last_seen: List[Dict[str, Any]] = []

        async def poll_task() -> Dict[str, Any]:
            data = await context.api.get_task_data()
            if data:
                last_seen[:] = [data]
            return data

        final = await context.poll(
            poll_task,
            lambda result: bool(result) and result.get("status") in TASK_RUNNING_STATUSES,
            label="Task",
        )

        if not final:
            # Task vanished from the single slot: it finished and was archived
            self.logger.debug("Task endpoint returned no content, treating as complete")
            return self.on_task_complete(step, context, last_seen[0] if last_seen else {})

        status = final.get("status")
        if status in TASK_FAILED_STATUSES:
            return TimelineResult.failure(
                final.get("console") or f"{step.title} failed", data=final
            )
        if status != "complete":
            return TimelineResult.failure(
                f"Unexpected task status: {status}", data=final
            )

        try:
            await context.api.delete_task_data()
        except ManagerApiError as e:
            return TimelineResult.failure(f"Failed to clean up task: {str(e)}", data=final)

        return self.on_task_complete(step, context, final)

    def on_task_complete(
        self, step: Step, context: "StepContext", task: Dict[str, Any]
    ) -> TimelineResult:
        return TimelineResult.success(task)

    async def on_cancel(self, step: Step, context: "StepContext") -> None:
        task = await context.api.get_task_data()
        if task and task.get("status") == "active":
            self.logger.info(f"Aborting remote task for step {step.id}")
            await context.api.patch_task_status("aborting")
