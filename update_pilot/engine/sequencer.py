import copy
from dataclasses import replace
from typing import Any, Iterable, List, Optional

from ..models import Step, StepStatus
from ..utils.time_utils import utc_now

# Fields a reset clears; identity and migration history survive.
TRANSIENT_FIELDS = {
    "status": StepStatus.PENDING,
    "data": None,
    "error": None,
    "start_time": None,
    "end_time": None,
}


class StepSequencer:
    """
    Ordered list of steps plus the cursor pointing at the one to run next.

    Steps are addressed by id. Patching replaces the single affected Step
    object; every other step keeps its identity and position.
    """

    def __init__(self, steps: Optional[Iterable[Step]] = None) -> None:
        self.steps: List[Step] = list(steps or [])
        self.cursor = 0

    def load(self, steps: Iterable[Step]) -> None:
        self.steps = list(steps)
        self.cursor = 0

    @property
    def current(self) -> Optional[Step]:
        if 0 <= self.cursor < len(self.steps):
            return self.steps[self.cursor]
        return None

    def index_of(self, step_id: str) -> int:
        for index, step in enumerate(self.steps):
            if step.id == step_id:
                return index
        raise KeyError(f"No step with id: {step_id}")

    def get(self, step_id: str) -> Step:
        return self.steps[self.index_of(step_id)]

    def find(self, step_id: str) -> Optional[Step]:
        try:
            return self.get(step_id)
        except KeyError:
            return None

    def advance(self, count: int = 1) -> None:
        self.cursor = min(self.cursor + count, len(self.steps))

    def move_to(self, step_id: str) -> None:
        self.cursor = self.index_of(step_id)

    def replace_step_at(self, step_id: str, **patch: Any) -> Step:
        """Merge ``patch`` into the step with ``step_id`` and return the new step."""
        index = self.index_of(step_id)
        if "data" in patch:
            patch["data"] = copy.deepcopy(patch["data"])
        updated = replace(self.steps[index], **patch)
        self.steps[index] = updated
        return updated

    def insert_steps_after(self, after_id: str, new_steps: Iterable[Step]) -> None:
        new_steps = list(new_steps)
        existing = {step.id for step in self.steps}
        for step in new_steps:
            if step.id in existing:
                raise ValueError(f"Duplicate step id: {step.id}")
            existing.add(step.id)

        index = self.index_of(after_id) + 1
        self.steps[index:index] = new_steps

        # Keep the cursor on the same step when inserting ahead of it
        if index <= self.cursor:
            self.cursor += len(new_steps)

    def mark_skipped(self, step_id: str) -> Step:
        return self.replace_step_at(
            step_id, status=StepStatus.SKIPPED, end_time=utc_now()
        )

    def reset_step(self, step_id: str) -> Step:
        return self.replace_step_at(step_id, **TRANSIENT_FIELDS)

    def skip_past_skipped(self) -> None:
        """Move the cursor over steps that were already marked skipped."""
        while self.current is not None and self.current.status == StepStatus.SKIPPED:
            self.cursor += 1
