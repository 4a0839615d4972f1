import copy
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import List, Optional

from .results import UserAction
from .step import Step, StepStatus


@dataclass(frozen=True)
class WorkflowConfig:
    """Options fixed for one workflow run."""

    perform_dry_run: bool = False
    skip_composer: bool = False
    with_deletes: bool = False
    unroll_migration_cycles: bool = False


@dataclass
class WorkflowState:
    current_step: int = 0
    steps: List[Step] = field(default_factory=list)
    is_running: bool = False
    is_paused: bool = False
    config: WorkflowConfig = field(default_factory=WorkflowConfig)
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    error: Optional[str] = None
    pending_actions: List[UserAction] = field(default_factory=list)
    awaiting_step_id: Optional[str] = None

    @property
    def is_complete(self) -> bool:
        return (
            bool(self.steps)
            and self.current_step >= len(self.steps)
            and not self.is_running
        )

    @property
    def current(self) -> Optional[Step]:
        if 0 <= self.current_step < len(self.steps):
            return self.steps[self.current_step]
        return None

    def find_step(self, step_id: str) -> Optional[Step]:
        for step in self.steps:
            if step.id == step_id:
                return step
        return None

    def active_steps(self) -> List[Step]:
        return [step for step in self.steps if step.status == StepStatus.ACTIVE]

    def snapshot(self) -> "WorkflowState":
        """Detached copy for observers; mutating it never affects the engine."""
        return replace(
            self,
            steps=copy.deepcopy(self.steps),
            pending_actions=list(self.pending_actions),
        )
