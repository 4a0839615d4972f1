from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, List, Optional

from .step import Step


class ResultStatus(str, Enum):
    SUCCESS = "success"
    ERROR = "error"
    USER_ACTION_REQUIRED = "user_action_required"


class OutcomeAction(str, Enum):
    CONTINUE = "continue"
    SKIP_NEXT = "skip_next"
    CANCEL = "cancel"
    RESTART = "restart"


@dataclass
class ActionOutcome:
    """What the engine should do after a user action ran."""

    action: OutcomeAction
    data: Any = None


@dataclass(frozen=True)
class UserAction:
    """A resolution the operator can pick for a paused or failed step."""

    id: str
    label: str
    execute: Callable[[], Awaitable[ActionOutcome]]
    variant: str = "secondary"  # "primary", "secondary" or "danger"
    description: Optional[str] = None


@dataclass
class TimelineResult:
    """
    Outcome of a single step execution.

    Handlers never touch workflow state; the engine applies the result:
    ``skip_steps`` are marked skipped, ``next_steps`` are spliced in after the
    step, and ``pause_workflow``/``user_actions`` suspend the run until the
    operator picks one of the offered actions.
    """

    status: ResultStatus
    data: Any = None
    error: Optional[str] = None
    user_actions: List[UserAction] = field(default_factory=list)
    skip_steps: List[str] = field(default_factory=list)
    next_steps: List[Step] = field(default_factory=list)
    pause_workflow: bool = False

    @classmethod
    def success(cls, data: Any = None, **kwargs: Any) -> "TimelineResult":
        return cls(status=ResultStatus.SUCCESS, data=data, **kwargs)

    @classmethod
    def failure(cls, error: str, data: Any = None, **kwargs: Any) -> "TimelineResult":
        return cls(status=ResultStatus.ERROR, error=error, data=data, **kwargs)

    @classmethod
    def needs_user(
        cls, actions: List[UserAction], data: Any = None
    ) -> "TimelineResult":
        return cls(
            status=ResultStatus.USER_ACTION_REQUIRED,
            data=data,
            user_actions=list(actions),
            pause_workflow=True,
        )
