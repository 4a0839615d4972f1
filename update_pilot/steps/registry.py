from typing import Dict, List, Type

from ..models import Step, WorkflowConfig
from .base import BaseStepHandler
from .composer import ComposerDryRunHandler, ComposerUpdateHandler
from .manager import CheckManagerHandler, UpdateManagerHandler
from .migrations import CheckMigrationsHandler, ExecuteMigrationsHandler, build_cycle_steps
from .tasks import CheckTasksHandler
from .versions import UpdateVersionsHandler


class StepRegistry:
    _handlers: Dict[str, Type[BaseStepHandler]] = {
        "check-tasks": CheckTasksHandler,
        "check-manager": CheckManagerHandler,
        "update-manager": UpdateManagerHandler,
        "composer-dry-run": ComposerDryRunHandler,
        "composer-update": ComposerUpdateHandler,
        "check-migrations-loop": CheckMigrationsHandler,
        "execute-migrations": ExecuteMigrationsHandler,
        "update-versions": UpdateVersionsHandler,
    }

    @classmethod
    def get_handler(cls, kind: str) -> Type[BaseStepHandler]:
        if kind not in cls._handlers:
            raise ValueError(f"No handler found for step kind: {kind}")
        return cls._handlers[kind]


def build_update_steps(config: WorkflowConfig) -> List[Step]:
    """
    Build the initial step sequence for one update run.

    The sequence only depends on ``config``, so building twice with the same
    config yields equal, all-pending steps.
    """
    steps = [
        Step(
            id="check-tasks",
            title="Check Pending Tasks",
            description="Make sure no other task or migration is running",
        ),
        Step(
            id="check-manager",
            title="Check Manager Updates",
            description="Compare the installed manager version with the latest release",
        ),
        Step(
            id="update-manager",
            title="Update Manager",
            description="Install the latest manager release",
            conditional=True,
        ),
    ]

    if not config.skip_composer:
        if config.perform_dry_run:
            steps.append(
                Step(
                    id="composer-dry-run",
                    title="Composer Dry Run",
                    description="Simulate the package update without changing anything",
                )
            )
        steps.append(
            Step(
                id="composer-update",
                title="Composer Update",
                description="Update the installed packages",
            )
        )

    steps.extend(build_cycle_steps(1))
    steps.append(
        Step(
            id="update-versions",
            title="Update Version Info",
            description="Refresh the stored version information",
        )
    )
    return steps
