import copy
import logging

from ..models import MigrationExecutionHistory, Step, StepStatus
from ..steps.migrations import (
    CHECK_KIND,
    EXECUTE_KIND,
    build_cycle_steps,
    paired_check_id,
)
from ..utils.time_utils import utc_now
from .sequencer import StepSequencer

logger = logging.getLogger(__name__)


class MigrationLoopController:
    """
    Repeats the check/execute migration pair until a check finds nothing to do.

    In loop-back mode the same two steps are reset after every successful
    execution and the cursor returns to the check step; their
    ``migration_history`` collects one entry per cycle. In unrolled mode a
    fresh numbered pair is inserted after each successful execution instead.
    """

    def __init__(self, sequencer: StepSequencer, unroll: bool = False) -> None:
        self._sequencer = sequencer
        self.unroll = unroll

    def cycle_for(self, step: Step) -> int:
        if self.unroll:
            return step.cycle
        if step.kind == CHECK_KIND:
            return len(step.migration_history) + 1
        check = self._sequencer.find(paired_check_id(step))
        if check is None:
            return 1
        return max(len(check.migration_history), 1)

    def record(self, step: Step, step_type: str) -> Step:
        """Append a history entry describing the step's latest attempt."""
        now = utc_now()
        entry = MigrationExecutionHistory(
            cycle=self.cycle_for(step),
            step_type=step_type,
            timestamp=now,
            data=copy.deepcopy(step.data),
            start_time=step.start_time or now,
            status=step.status,
            end_time=step.end_time,
            error=step.error,
        )
        logger.debug(f"Recording {step_type} cycle {entry.cycle} on {step.id}")
        return self._sequencer.replace_step_at(
            step.id, migration_history=step.migration_history + [entry]
        )

    def after_success(self, step: Step) -> bool:
        """
        Apply loop policy once ``step`` completed.

        Returns True when the cursor was moved, in which case the caller must
        not advance it again.
        """
        if step.kind == CHECK_KIND:
            if (
                step.status == StepStatus.COMPLETE
                and isinstance(step.data, dict)
                and step.data.get("hash")
            ):
                self.record(step, "check")
            return False

        # A skipped execute step (no hash) ends the loop
        if step.kind != EXECUTE_KIND or step.status != StepStatus.COMPLETE:
            return False

        self.record(step, "execute")

        if self.unroll:
            next_cycle = build_cycle_steps(step.cycle + 1)
            logger.info(f"Adding migration cycle {step.cycle + 1}")
            self._sequencer.insert_steps_after(step.id, next_cycle)
            return False

        check_id = paired_check_id(step)
        self._sequencer.reset_step(check_id)
        self._sequencer.reset_step(step.id)
        self._sequencer.move_to(check_id)
        logger.info("Migrations executed, checking again")
        return True

    def after_error(self, step: Step) -> None:
        if step.kind == EXECUTE_KIND:
            self.record(step, "execute")

    def retry_target(self, step: Step) -> str:
        """A failed execution is retried from its check, since its hash is stale."""
        if step.kind == EXECUTE_KIND:
            return paired_check_id(step)
        return step.id
