from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, List, Optional


class StepStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    COMPLETE = "complete"
    ERROR = "error"
    SKIPPED = "skipped"
    CANCELLED = "cancelled"
    USER_ACTION_REQUIRED = "user_action_required"


TERMINAL_STATUSES = frozenset(
    {StepStatus.COMPLETE, StepStatus.ERROR, StepStatus.SKIPPED, StepStatus.CANCELLED}
)


@dataclass
class MigrationExecutionHistory:
    """One check or execute round of the database migration loop."""

    cycle: int
    step_type: str  # "check" or "execute"
    timestamp: datetime
    data: Any
    start_time: datetime
    status: StepStatus
    end_time: Optional[datetime] = None
    error: Optional[str] = None


@dataclass
class Step:
    """
    A single unit of the update workflow.

    ``kind`` selects the handler that executes the step; it equals ``id`` for
    static steps and stays the same for the numbered copies created by the
    migration loop (``check-migrations-loop-2`` has kind ``check-migrations-loop``).
    """

    id: str
    title: str
    description: str
    kind: str = ""
    status: StepStatus = StepStatus.PENDING
    data: Any = None
    error: Optional[str] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    conditional: bool = False
    cycle: int = 1
    migration_history: List[MigrationExecutionHistory] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not self.kind:
            self.kind = self.id

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def duration(self) -> Optional[float]:
        """Seconds between start and end, if the step has finished."""
        if self.start_time and self.end_time:
            return (self.end_time - self.start_time).total_seconds()
        return None

    def __str__(self) -> str:
        return f"{self.id} [{self.status.value}]: {self.title}"
