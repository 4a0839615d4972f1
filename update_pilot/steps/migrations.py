from typing import TYPE_CHECKING, Any, Dict, List

from ..models import OutcomeAction, Step, TimelineResult, UserAction
from ..utils.migration_summary import summarize_migration
from .base import (
    ACTION_CONFIRM_MIGRATIONS,
    ACTION_CONFIRM_WITH_DELETES,
    ACTION_SKIP_MIGRATIONS,
    BaseStepHandler,
    cancel_workflow_action,
    fixed_action,
)

if TYPE_CHECKING:
    from ..engine.context import StepContext

CHECK_KIND = "check-migrations-loop"
EXECUTE_KIND = "execute-migrations"

CHECK_TITLE = "Check Database Migrations"
EXECUTE_TITLE = "Execute Database Migrations"

MIGRATION_CHECK_FAILED = "Database migration check failed"
MIGRATION_FAILED = "Database migration failed"
UNEXPECTED_PENDING = "Unexpected pending status during migration execution"
MISSING_HASH = "No migration hash found from previous step"


def cycle_step_id(kind: str, cycle: int) -> str:
    """Cycle 1 uses the bare kind as id, later cycles get a numeric suffix."""
    if cycle <= 1:
        return kind
    return f"{kind}-{cycle}"


def paired_execute_id(check_step: Step) -> str:
    return cycle_step_id(EXECUTE_KIND, check_step.cycle)


def paired_check_id(execute_step: Step) -> str:
    return cycle_step_id(CHECK_KIND, execute_step.cycle)


def build_cycle_steps(cycle: int) -> List[Step]:
    suffix = f" (Cycle {cycle})" if cycle > 1 else ""
    return [
        Step(
            id=cycle_step_id(CHECK_KIND, cycle),
            kind=CHECK_KIND,
            title=f"{CHECK_TITLE}{suffix}",
            description="Check whether the database schema needs changes",
            cycle=cycle,
        ),
        Step(
            id=cycle_step_id(EXECUTE_KIND, cycle),
            kind=EXECUTE_KIND,
            title=f"{EXECUTE_TITLE}{suffix}",
            description="Apply the pending database schema changes",
            conditional=True,
            cycle=cycle,
        ),
    ]


def _still_running(result: Any) -> bool:
    return bool(result) and result.get("status") == "active"


class CheckMigrationsHandler(BaseStepHandler):
    """
    Asks the remote side which schema changes are pending.

    Without a migration hash there is nothing to do and the paired execute
    step is skipped. With a hash the workflow pauses for confirmation; schema
    changes never run unattended.
    """

    async def execute(self, step: Step, context: "StepContext") -> TimelineResult:
        await context.api.start_database_migration({})
        final = await context.poll(
            context.api.get_database_migration_status, _still_running, label="Migration"
        )

        status = final.get("status") if final else None
        if status == "error":
            return TimelineResult.failure(MIGRATION_CHECK_FAILED, data=final)
        if final and status not in ("pending", "complete"):
            return TimelineResult.failure(
                f"Unexpected migration status: {status}", data=final
            )

        if final:
            await context.api.delete_database_migration_task()

        execute_id = paired_execute_id(step)
        if not final or not final.get("hash"):
            self.logger.info("No database migrations pending")
            return TimelineResult.success(final or {}, skip_steps=[execute_id])

        summary = summarize_migration(final)
        if summary:
            self.logger.info(summary.describe())
        return TimelineResult.success(
            final,
            pause_workflow=True,
            user_actions=self._confirmation_actions(final),
        )

    def _confirmation_actions(self, migration: Dict[str, Any]) -> List[UserAction]:
        summary = summarize_migration(migration)
        delete_count = len(summary.delete_operations) if summary else 0
        return [
            fixed_action(
                ACTION_CONFIRM_MIGRATIONS,
                "Execute Migrations",
                OutcomeAction.CONTINUE,
                variant="primary",
                description="Run the pending migrations without removing data",
                data={"withDeletes": False},
            ),
            fixed_action(
                ACTION_CONFIRM_WITH_DELETES,
                "Execute Including Deletes",
                OutcomeAction.CONTINUE,
                variant="danger",
                description=f"Also run {delete_count} operations that remove data",
                data={"withDeletes": True},
            ),
            fixed_action(
                ACTION_SKIP_MIGRATIONS,
                "Skip Migrations",
                OutcomeAction.SKIP_NEXT,
                description="Leave the database schema unchanged",
            ),
            cancel_workflow_action(),
        ]


class ExecuteMigrationsHandler(BaseStepHandler):
    """Runs the migration confirmed on the paired check step."""

    async def execute(self, step: Step, context: "StepContext") -> TimelineResult:
        check = context.find_step(paired_check_id(step))
        check_data = check.data if check and isinstance(check.data, dict) else {}
        migration_hash = check_data.get("hash")
        if not migration_hash:
            return TimelineResult.failure(MISSING_HASH)

        with_deletes = bool(check_data.get("withDeletes", context.config.with_deletes))
        self.logger.info(f"Executing migration {migration_hash} (with deletes: {with_deletes})")
        await context.api.start_database_migration(
            {"hash": migration_hash, "withDeletes": with_deletes}
        )
        final = await context.poll(
            context.api.get_database_migration_status, _still_running, label="Migration"
        )

        status = final.get("status") if final else None
        if status == "error":
            return TimelineResult.failure(MIGRATION_FAILED, data=final)
        if status == "pending":
            return TimelineResult.failure(UNEXPECTED_PENDING, data=final)
        if final and status != "complete":
            return TimelineResult.failure(
                f"Unexpected migration status: {status}", data=final
            )

        if final:
            await context.api.delete_database_migration_task()
        return TimelineResult.success(final or {})
