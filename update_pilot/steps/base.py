import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Optional

from ..models import ActionOutcome, OutcomeAction, Step, TimelineResult, UserAction

if TYPE_CHECKING:
    from ..engine.context import StepContext

# Action ids the engine's named operations resolve to
ACTION_CLEAR_TASKS = "clear-tasks"
ACTION_CONFIRM_MIGRATIONS = "confirm-migrations"
ACTION_CONFIRM_WITH_DELETES = "confirm-with-deletes"
ACTION_SKIP_MIGRATIONS = "skip-migrations"
ACTION_CONTINUE_UPDATE = "continue-update"
ACTION_SKIP_COMPOSER_UPDATE = "skip-composer-update"
ACTION_CANCEL_WORKFLOW = "cancel-workflow"


def fixed_action(
    action_id: str,
    label: str,
    outcome: OutcomeAction,
    variant: str = "secondary",
    description: Optional[str] = None,
    data: Optional[dict] = None,
) -> UserAction:
    """Build a user action that needs no remote call and always yields ``outcome``."""

    async def execute() -> ActionOutcome:
        return ActionOutcome(outcome, data=data)

    return UserAction(
        id=action_id,
        label=label,
        execute=execute,
        variant=variant,
        description=description,
    )


def cancel_workflow_action() -> UserAction:
    return fixed_action(
        ACTION_CANCEL_WORKFLOW,
        "Cancel Workflow",
        OutcomeAction.CANCEL,
        variant="danger",
        description="Cancel the entire workflow",
    )


class BaseStepHandler(ABC):
    """
    Executes one kind of step.

    A handler gets a detached copy of its step plus a StepContext, talks to
    the remote API, and describes what happened in a TimelineResult. The
    engine owns every state change.
    """

    def __init__(self) -> None:
        self.logger = logging.getLogger(self.__class__.__name__)

    @abstractmethod
    async def execute(self, step: Step, context: "StepContext") -> TimelineResult:
        pass

    async def on_cancel(self, step: Step, context: "StepContext") -> None:
        """Called when the workflow is cancelled while this step is running."""
        return None
