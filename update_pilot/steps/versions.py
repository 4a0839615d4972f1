from typing import TYPE_CHECKING

from ..models import Step, TimelineResult
from .base import BaseStepHandler

if TYPE_CHECKING:
    from ..engine.context import StepContext


class UpdateVersionsHandler(BaseStepHandler):
    async def execute(self, step: Step, context: "StepContext") -> TimelineResult:
        result = await context.api.update_version_info()
        if result.get("success") is False:
            return TimelineResult.failure(
                result.get("error") or "Failed to update version info", data=result
            )
        return TimelineResult.success(result)
