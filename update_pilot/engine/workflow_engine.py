import asyncio
import copy
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple, Type

from ..config.settings import ManagerSettings
from ..errors import StepCancelled, WorkflowStateError
from ..models import (
    ActionOutcome,
    OutcomeAction,
    ResultStatus,
    Step,
    StepStatus,
    TimelineResult,
    UserAction,
    WorkflowConfig,
    WorkflowState,
)
from ..steps import (
    ACTION_CLEAR_TASKS,
    ACTION_CONFIRM_MIGRATIONS,
    ACTION_CONFIRM_WITH_DELETES,
    ACTION_CONTINUE_UPDATE,
    ACTION_SKIP_COMPOSER_UPDATE,
    ACTION_SKIP_MIGRATIONS,
    BaseStepHandler,
    StepRegistry,
    build_update_steps,
)
from ..utils.time_utils import utc_now
from .context import StepContext
from .migration_loop import MigrationLoopController
from .sequencer import StepSequencer

EVENT_NAMES = (
    "started",
    "paused",
    "resumed",
    "stopped",
    "cancelled",
    "completed",
    "item_started",
    "item_completed",
    "item_error",
    "item_progress",
    "user_action_required",
)

CANCELLABLE_STATUSES = (
    StepStatus.PENDING,
    StepStatus.ACTIVE,
    StepStatus.USER_ACTION_REQUIRED,
)


@dataclass
class WorkflowEvent:
    name: str
    step_id: Optional[str]
    state: WorkflowState


EventHandler = Callable[[WorkflowEvent], None]


def _merge_data(current: Any, extra: Any) -> Any:
    if extra is None:
        return current
    if isinstance(current, dict) and isinstance(extra, dict):
        return {**current, **extra}
    return extra


class WorkflowEngine:
    """
    Runs the update workflow one step at a time.

    The engine is the only owner of workflow state. A single driver task per
    run executes the step at the cursor, applies the handler's TimelineResult
    and loops until the run completes, fails, pauses for the operator, or is
    stopped. Operations that (re)start execution return as soon as the driver
    is launched; ``await join()`` waits for it to settle.

    Each launch gets a new run id. ``stop()`` bumps the id, so a driver or a
    step context from an older run drops whatever it was waiting for.
    """

    def __init__(
        self,
        api: Any,
        settings: Optional[ManagerSettings] = None,
        registry: Type[StepRegistry] = StepRegistry,
    ) -> None:
        self.api = api
        self.settings = settings or ManagerSettings()
        self.registry = registry
        self.logger = logging.getLogger(__name__)

        self.config = WorkflowConfig()

        self._sequencer = StepSequencer()
        self._migrations = MigrationLoopController(self._sequencer)
        self._is_running = False
        self._is_paused = False
        self._cancelled = False
        self._start_time: Optional[datetime] = None
        self._end_time: Optional[datetime] = None
        self._error: Optional[str] = None
        self._pending_actions: List[UserAction] = []
        self._awaiting_step_id: Optional[str] = None

        self._run_id = 0
        self._driver: Optional["asyncio.Future[None]"] = None
        self._active_context: Optional[StepContext] = None
        self._active_handler: Optional[BaseStepHandler] = None
        self._listeners: Dict[str, List[EventHandler]] = {}
        self._queued_events: List[Tuple[str, Optional[str]]] = []

    # State

    def _view(self) -> WorkflowState:
        return WorkflowState(
            current_step=self._sequencer.cursor,
            steps=self._sequencer.steps,
            is_running=self._is_running,
            is_paused=self._is_paused,
            config=self.config,
            start_time=self._start_time,
            end_time=self._end_time,
            error=self._error,
            pending_actions=self._pending_actions,
            awaiting_step_id=self._awaiting_step_id,
        )

    def get_state(self) -> WorkflowState:
        """Detached snapshot of the current workflow state."""
        return self._view().snapshot()

    def is_current_run(self, run_id: int) -> bool:
        return run_id == self._run_id and self._is_running

    def report_progress(self, step_id: str, data: Any, run_id: int) -> None:
        if not self.is_current_run(run_id) or self._sequencer.find(step_id) is None:
            return
        self._sequencer.replace_step_at(step_id, data=data)
        self._emit("item_progress", step_id)
        self._flush_events()

    # Events

    def on(self, event: str, handler: EventHandler) -> None:
        if event not in EVENT_NAMES:
            raise ValueError(f"Unknown workflow event: {event}")
        self._listeners.setdefault(event, []).append(handler)

    def off(self, event: str, handler: EventHandler) -> None:
        handlers = self._listeners.get(event, [])
        if handler in handlers:
            handlers.remove(handler)

    def _emit(self, name: str, step_id: Optional[str] = None) -> None:
        # Delivered by _flush_events once the transition is complete
        self._queued_events.append((name, step_id))

    def _flush_events(self) -> None:
        queued, self._queued_events = self._queued_events, []
        state: Optional[WorkflowState] = None
        for name, step_id in queued:
            handlers = list(self._listeners.get(name, []))
            if not handlers:
                continue
            if state is None:
                state = self.get_state()
            event = WorkflowEvent(name=name, step_id=step_id, state=state)
            for handler in handlers:
                try:
                    handler(event)
                except Exception as e:
                    self.logger.error(f"Error in {name} event handler: {e}")

    # Lifecycle

    def initialize(self, config: Optional[WorkflowConfig] = None) -> None:
        """Build a fresh step sequence for ``config`` without starting it."""
        self._invalidate_run()
        self.config = config or WorkflowConfig()
        self._sequencer.load(build_update_steps(self.config))
        self._migrations = MigrationLoopController(
            self._sequencer, unroll=self.config.unroll_migration_cycles
        )
        self._is_running = False
        self._is_paused = False
        self._cancelled = False
        self._start_time = None
        self._end_time = None
        self._error = None
        self._clear_pending_actions()
        self.logger.info(
            f"Initialized workflow with {len(self._sequencer.steps)} steps"
        )

    async def start(self) -> None:
        self._require_resumable()
        if self._is_running:
            raise WorkflowStateError("Workflow is already running")
        if self._pending_actions:
            raise WorkflowStateError("Workflow is waiting for a user action")

        self._start_time = utc_now()
        self._end_time = None
        self._error = None
        self._emit("started")
        self._launch_at_cursor()

    def stop(self) -> None:
        """
        Halt the run right away.

        Polling stops before this returns. The active step goes back to
        ``pending`` so ``resume()`` runs it again. Calling stop on a workflow
        that is not running does nothing.
        """
        if not self._is_running:
            return

        self._invalidate_run()
        active = self._sequencer.current
        if active is not None and active.status == StepStatus.ACTIVE:
            self._sequencer.replace_step_at(
                active.id, status=StepStatus.PENDING, start_time=None
            )

        self._is_running = False
        self._is_paused = True
        self._end_time = utc_now()
        self.logger.info("Workflow stopped")
        self._emit("stopped")
        self._flush_events()

    async def resume(self) -> None:
        self._require_resumable()
        if self._pending_actions:
            raise WorkflowStateError(
                "Workflow is waiting for a user action, resolve it before resuming"
            )
        if self._is_running:
            self.logger.debug("Resume called on a running workflow")
            return

        if self._start_time is None:
            self._start_time = utc_now()
        self._end_time = None
        self._error = None
        self._emit("resumed")
        self._launch_at_cursor()

    async def join(self) -> None:
        """Wait until the current driver reaches a pause, error, stop or completion."""
        while True:
            driver = self._driver
            if driver is None or driver.done():
                return
            await asyncio.wait([driver])

    # Operator decisions

    async def handle_user_action(self, action_id: str) -> ActionOutcome:
        action = self._find_action(action_id)
        step_id = self._awaiting_step_id
        pending = self._pending_actions

        self.logger.info(f"Running user action {action_id} for step {step_id}")
        self._pending_actions = []
        try:
            outcome = await action.execute()
        except Exception as e:
            self._pending_actions = pending
            self._error = str(e)
            if step_id is not None and self._sequencer.find(step_id) is not None:
                step = self._sequencer.get(step_id)
                if step.status == StepStatus.ERROR:
                    self._sequencer.replace_step_at(step_id, error=str(e))
            self.logger.error(f"User action {action_id} failed: {e}")
            raise

        self._awaiting_step_id = None
        await self._apply_outcome(step_id, outcome)
        return outcome

    async def confirm_migrations(self, with_deletes: Optional[bool] = None) -> None:
        if with_deletes is None:
            with_deletes = self.config.with_deletes
        action_id = ACTION_CONFIRM_WITH_DELETES if with_deletes else ACTION_CONFIRM_MIGRATIONS
        await self.handle_user_action(action_id)

    async def skip_migrations(self) -> None:
        await self.handle_user_action(ACTION_SKIP_MIGRATIONS)

    async def clear_pending_tasks(self) -> None:
        await self.handle_user_action(ACTION_CLEAR_TASKS)

    async def continue_update(self) -> None:
        await self.handle_user_action(ACTION_CONTINUE_UPDATE)

    async def skip_composer_update(self) -> None:
        await self.handle_user_action(ACTION_SKIP_COMPOSER_UPDATE)

    async def cancel_workflow(self) -> None:
        """
        Abandon the run.

        Every step that has not finished becomes ``cancelled``. If a step was
        running a remote task, its handler is asked to abort it.
        """
        self._require_initialized()
        context = self._active_context
        handler = self._active_handler
        active = self._sequencer.current
        running_step = (
            copy.deepcopy(active)
            if active is not None and active.status == StepStatus.ACTIVE
            else None
        )

        self._invalidate_run()
        now = utc_now()
        for step in list(self._sequencer.steps):
            if step.status in CANCELLABLE_STATUSES:
                self._sequencer.replace_step_at(
                    step.id, status=StepStatus.CANCELLED, end_time=now
                )

        self._clear_pending_actions()
        self._is_running = False
        self._is_paused = False
        self._cancelled = True
        self._end_time = now
        self.logger.info("Workflow cancelled")
        self._emit("cancelled")
        self._flush_events()

        if handler is not None and context is not None and running_step is not None:
            try:
                await handler.on_cancel(running_step, context)
            except Exception as e:
                self.logger.warning(
                    f"Could not abort remote work for {running_step.id}: {e}"
                )

    async def retry_step(self) -> None:
        self._require_resumable()
        step = self._sequencer.current
        if step is None or step.status != StepStatus.ERROR:
            raise WorkflowStateError("There is no failed step to retry")
        self._retry(step.id)

    async def skip_step(self, step_id: Optional[str] = None) -> None:
        self._require_resumable()
        if self._is_running:
            raise WorkflowStateError("Cannot skip a step while the workflow is running")
        step = self._sequencer.current
        if step is None:
            raise WorkflowStateError("There is no step to skip")
        if step_id is not None and step_id != step.id:
            raise WorkflowStateError(f"Only the current step can be skipped, not {step_id}")
        if not step.conditional:
            raise WorkflowStateError(f"Step {step.id} is required and cannot be skipped")
        if step.status == StepStatus.COMPLETE:
            raise WorkflowStateError(f"Step {step.id} already completed")

        self.logger.info(f"Skipping step {step.id}")
        self._sequencer.mark_skipped(step.id)
        self._sequencer.advance()
        self._clear_pending_actions()
        self._error = None
        self._launch()

    async def start_from_step(self, step_id: str) -> None:
        """Start at ``step_id``, marking every unfinished earlier step skipped."""
        self._require_resumable()
        if self._is_running:
            raise WorkflowStateError("Workflow is already running")
        try:
            index = self._sequencer.index_of(step_id)
        except KeyError:
            raise WorkflowStateError(f"Unknown step: {step_id}")

        for step in self._sequencer.steps[:index]:
            if step.status != StepStatus.COMPLETE:
                self._sequencer.mark_skipped(step.id)
        self._sequencer.move_to(step_id)
        self._clear_pending_actions()
        self._start_time = self._start_time or utc_now()
        self._end_time = None
        self._error = None
        self._emit("started", step_id)
        self._launch()

    # Internals

    def _require_initialized(self) -> None:
        if not self._sequencer.steps:
            raise WorkflowStateError("Workflow has not been initialized")

    def _require_resumable(self) -> None:
        self._require_initialized()
        if self._cancelled:
            raise WorkflowStateError("Workflow was cancelled, initialize a new run")

    def _find_action(self, action_id: str) -> UserAction:
        for action in self._pending_actions:
            if action.id == action_id:
                return action
        offered = ", ".join(action.id for action in self._pending_actions) or "none"
        raise WorkflowStateError(
            f"Action {action_id} is not available (offered: {offered})"
        )

    def _clear_pending_actions(self) -> None:
        self._pending_actions = []
        self._awaiting_step_id = None

    def _invalidate_run(self) -> None:
        self._run_id += 1
        if self._active_context is not None:
            self._active_context.cancel()
        self._active_context = None
        self._active_handler = None

    def _launch_at_cursor(self) -> None:
        """Launch at the cursor; a failed step is retried from its retry target."""
        step = self._sequencer.current
        if step is not None and step.status == StepStatus.ERROR:
            self._retry(step.id)
        else:
            self._launch()

    def _launch(self) -> None:
        """Start a new run at the cursor; the first step is active on return."""
        self._run_id += 1
        self._is_running = True
        self._is_paused = False

        step = self._activate_next()
        if step is None:
            self._finish()
        else:
            self._driver = asyncio.ensure_future(self._drive(self._run_id, step))
            self._driver.add_done_callback(self._log_driver_failure)
        self._flush_events()

    def _log_driver_failure(self, driver: "asyncio.Future[None]") -> None:
        if not driver.cancelled() and driver.exception() is not None:
            self.logger.error(f"Workflow driver crashed: {driver.exception()}")

    def _activate_next(self) -> Optional[Step]:
        """Move the cursor to the next runnable step and mark it active."""
        while True:
            self._sequencer.skip_past_skipped()
            step = self._sequencer.current
            if step is None:
                return None
            if step.status == StepStatus.COMPLETE:
                self._sequencer.advance()
                continue
            started = self._sequencer.replace_step_at(
                step.id,
                status=StepStatus.ACTIVE,
                start_time=utc_now(),
                end_time=None,
                error=None,
            )
            self._emit("item_started", step.id)
            return started

    async def _drive(self, run_id: int, step: Step) -> None:
        current: Optional[Step] = step
        while current is not None:
            # An observer may have stopped the run while events were flushed
            if not self.is_current_run(run_id):
                self.logger.debug(f"Run stopped before {current.id} started")
                return
            proceed = await self._run_step(current, run_id)
            if not proceed or not self.is_current_run(run_id):
                self._flush_events()
                return
            current = self._activate_next()
            if current is not None:
                self._flush_events()
        self._finish()
        self._flush_events()

    async def _run_step(self, step: Step, run_id: int) -> bool:
        context = StepContext(self, step.id, run_id)
        try:
            handler = self.registry.get_handler(step.kind)()
            self._active_context = context
            self._active_handler = handler
            result = await handler.execute(copy.deepcopy(step), context)
        except StepCancelled:
            self.logger.debug(f"Step {step.id} was cancelled")
            return False
        except Exception as e:
            if not self.is_current_run(run_id):
                return False
            self.logger.error(f"Step {step.id} failed: {e}")
            result = TimelineResult.failure(str(e) or e.__class__.__name__)
        finally:
            if self._active_context is context:
                self._active_context = None

        if not self.is_current_run(run_id):
            self.logger.debug(f"Discarding result of {step.id} from a stopped run")
            return False

        return self._apply_result(step.id, result)

    def _apply_result(self, step_id: str, result: TimelineResult) -> bool:
        """Apply a handler result; returns True when the driver should keep going."""
        now = utc_now()
        current = self._sequencer.get(step_id)
        data = result.data if result.data is not None else current.data

        if result.status == ResultStatus.ERROR:
            failed = self._sequencer.replace_step_at(
                step_id, status=StepStatus.ERROR, error=result.error, data=data, end_time=now
            )
            self._migrations.after_error(failed)
            self._is_running = False
            self._error = result.error
            self._end_time = now
            self._pending_actions = list(result.user_actions)
            self._awaiting_step_id = step_id if result.user_actions else None
            self.logger.error(f"Step {step_id} failed: {result.error}")
            self._emit("item_error", step_id)
            return False

        if result.status == ResultStatus.USER_ACTION_REQUIRED:
            self._sequencer.replace_step_at(
                step_id, status=StepStatus.USER_ACTION_REQUIRED, data=data
            )
            self._pause_for_user(step_id, result.user_actions)
            return False

        completed = self._sequencer.replace_step_at(
            step_id, status=StepStatus.COMPLETE, data=data, end_time=now
        )
        self._apply_skips(step_id, result.skip_steps)
        if result.next_steps:
            self._sequencer.insert_steps_after(step_id, result.next_steps)
        moved = self._migrations.after_success(self._sequencer.get(step_id))
        self.logger.info(f"Step {completed.id} complete")
        self._emit("item_completed", step_id)

        if result.pause_workflow:
            self._pause_for_user(step_id, result.user_actions)
            return False

        if not moved:
            self._sequencer.advance()
        return True

    def _apply_skips(self, step_id: str, skip_ids: List[str]) -> None:
        for skip_id in skip_ids:
            target = self._sequencer.find(skip_id)
            if target is None:
                self.logger.debug(f"Nothing to skip, no step {skip_id}")
                continue
            if skip_id != step_id and target.status != StepStatus.PENDING:
                self.logger.warning(f"Not skipping {skip_id}, it is {target.status.value}")
                continue
            self._sequencer.mark_skipped(skip_id)

    def _pause_for_user(self, step_id: str, actions: List[UserAction]) -> None:
        self._is_running = False
        self._is_paused = True
        self._pending_actions = list(actions)
        self._awaiting_step_id = step_id
        self.logger.info(f"Waiting for user action on step {step_id}")
        self._emit("user_action_required", step_id)
        self._emit("paused", step_id)

    def _finish(self) -> None:
        self._is_running = False
        self._is_paused = False
        self._end_time = utc_now()
        self.logger.info("Workflow complete")
        self._emit("completed")

    def _retry(self, step_id: str) -> None:
        step = self._sequencer.get(step_id)
        target_id = self._migrations.retry_target(step)
        self._sequencer.reset_step(step_id)
        if target_id != step_id:
            self._sequencer.reset_step(target_id)
        self._sequencer.move_to(target_id)
        self._clear_pending_actions()
        self._error = None
        self.logger.info(f"Retrying from step {target_id}")
        self._launch()

    async def _apply_outcome(self, step_id: Optional[str], outcome: ActionOutcome) -> None:
        action = outcome.action

        if action == OutcomeAction.CANCEL:
            await self.cancel_workflow()
            return
        if action == OutcomeAction.RESTART:
            self._restart()
            return
        if step_id is None:
            raise WorkflowStateError(f"No step is waiting for {action.value}")

        now = utc_now()
        step = self._sequencer.get(step_id)
        if step.status == StepStatus.USER_ACTION_REQUIRED:
            self._sequencer.replace_step_at(step_id, status=StepStatus.ACTIVE)
        self._sequencer.replace_step_at(
            step_id,
            status=StepStatus.COMPLETE,
            data=_merge_data(step.data, outcome.data),
            end_time=step.end_time or now,
        )
        self._sequencer.move_to(step_id)
        self._sequencer.advance()

        if action == OutcomeAction.SKIP_NEXT:
            following = self._sequencer.current
            if following is not None and following.status == StepStatus.PENDING:
                self._sequencer.mark_skipped(following.id)
                self._sequencer.advance()

        self._emit("item_completed", step_id)
        self._emit("resumed", step_id)
        self._launch()

    def _restart(self) -> None:
        first = self._sequencer.steps[0]
        self._sequencer.reset_step(first.id)
        self._sequencer.move_to(first.id)
        self._clear_pending_actions()
        self._error = None
        self._end_time = None
        self._start_time = utc_now()
        self.logger.info("Restarting workflow from the first step")
        self._emit("started", first.id)
        self._launch()

