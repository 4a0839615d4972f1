from .results import (
    ActionOutcome,
    OutcomeAction,
    ResultStatus,
    TimelineResult,
    UserAction,
)
from .step import MigrationExecutionHistory, Step, StepStatus, TERMINAL_STATUSES
from .workflow import WorkflowConfig, WorkflowState

__all__ = [
    "ActionOutcome",
    "MigrationExecutionHistory",
    "OutcomeAction",
    "ResultStatus",
    "Step",
    "StepStatus",
    "TERMINAL_STATUSES",
    "TimelineResult",
    "UserAction",
    "WorkflowConfig",
    "WorkflowState",
]
