from .base import (
    ACTION_CANCEL_WORKFLOW,
    ACTION_CLEAR_TASKS,
    ACTION_CONFIRM_MIGRATIONS,
    ACTION_CONFIRM_WITH_DELETES,
    ACTION_CONTINUE_UPDATE,
    ACTION_SKIP_COMPOSER_UPDATE,
    ACTION_SKIP_MIGRATIONS,
    BaseStepHandler,
)
from .registry import StepRegistry, build_update_steps

__all__ = [
    "ACTION_CANCEL_WORKFLOW",
    "ACTION_CLEAR_TASKS",
    "ACTION_CONFIRM_MIGRATIONS",
    "ACTION_CONFIRM_WITH_DELETES",
    "ACTION_CONTINUE_UPDATE",
    "ACTION_SKIP_COMPOSER_UPDATE",
    "ACTION_SKIP_MIGRATIONS",
    "BaseStepHandler",
    "StepRegistry",
    "build_update_steps",
]
