from typing import TYPE_CHECKING, Any, Dict

from ..models import OutcomeAction, Step, TimelineResult
from .base import (
    ACTION_CONTINUE_UPDATE,
    ACTION_SKIP_COMPOSER_UPDATE,
    cancel_workflow_action,
    fixed_action,
)
from .tasks import RemoteTaskHandler

if TYPE_CHECKING:
    from ..engine.context import StepContext


class ComposerUpdateHandler(RemoteTaskHandler):
    """Runs ``composer update`` on the remote instance."""

    task_name = "composer/update"
    dry_run = False

    def build_task(self, step: Step, context: "StepContext") -> Dict[str, Any]:
        return {"name": self.task_name, "config": {"dry_run": self.dry_run}}


class ComposerDryRunHandler(ComposerUpdateHandler):
    """
    Simulates the package update and hands the result to the operator.

    The step always ends in ``user_action_required`` so the operator can read
    the dry-run output before the real update touches the installation.
    """

    dry_run = True

    def on_task_complete(
        self, step: Step, context: "StepContext", task: Dict[str, Any]
    ) -> TimelineResult:
        actions = [
            fixed_action(
                ACTION_CONTINUE_UPDATE,
                "Continue Update",
                OutcomeAction.CONTINUE,
                variant="primary",
                description="Run the real composer update",
            ),
            fixed_action(
                ACTION_SKIP_COMPOSER_UPDATE,
                "Skip Composer Update",
                OutcomeAction.SKIP_NEXT,
                description="Keep the installed packages and continue",
            ),
            cancel_workflow_action(),
        ]
        return TimelineResult.needs_user(actions, data=task)
