from typing import TYPE_CHECKING

from ..models import Step, TimelineResult
from .base import BaseStepHandler
from .tasks import RemoteTaskHandler

if TYPE_CHECKING:
    from ..engine.context import StepContext

UPDATE_MANAGER_STEP_ID = "update-manager"


class CheckManagerHandler(BaseStepHandler):
    """Compares the installed manager version against the latest release."""

    async def execute(self, step: Step, context: "StepContext") -> TimelineResult:
        status = await context.api.get_update_status()
        self_update = status.get("selfUpdate") if status else None
        if not self_update:
            return TimelineResult.failure(
                "Could not check manager update status", data=status
            )

        current = self_update.get("current_version")
        latest = self_update.get("latest_version")
        if current == latest:
            self.logger.info(f"Manager is up to date ({current})")
            return TimelineResult.success(status, skip_steps=[UPDATE_MANAGER_STEP_ID])

        self.logger.info(f"Manager update available: {current} -> {latest}")
        return TimelineResult.success(status)


class UpdateManagerHandler(RemoteTaskHandler):
    task_name = "manager/self-update"
