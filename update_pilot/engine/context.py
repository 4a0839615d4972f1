import asyncio
import logging
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional

from ..errors import PollingTimeout, StepCancelled
from ..models import Step, WorkflowConfig
from ..utils.time_utils import format_duration
from .polling import PollingSession

if TYPE_CHECKING:
    from ..api import ManagerApiClient
    from .workflow_engine import WorkflowEngine

logger = logging.getLogger(__name__)


class StepContext:
    """
    Handle given to a step handler for one execution.

    Handlers read the run's configuration and other steps through it, report
    progress, and wait on remote tasks with ``poll``. They never change
    workflow state directly. Once the run that created the context is stopped,
    ``cancelled`` turns true and any wait raises StepCancelled.
    """

    def __init__(self, engine: "WorkflowEngine", step_id: str, run_id: int) -> None:
        self._engine = engine
        self.step_id = step_id
        self.run_id = run_id
        self._session: Optional[PollingSession] = None
        self._waiter: Optional["asyncio.Future[Any]"] = None
        self._cancelled = False

    @property
    def api(self) -> "ManagerApiClient":
        return self._engine.api

    @property
    def config(self) -> WorkflowConfig:
        return self._engine.config

    @property
    def cancelled(self) -> bool:
        return self._cancelled or not self._engine.is_current_run(self.run_id)

    def find_step(self, step_id: str) -> Optional[Step]:
        return self._engine.get_state().find_step(step_id)

    def emit_progress(self, data: Any) -> None:
        if not self.cancelled:
            self._engine.report_progress(self.step_id, data, self.run_id)

    async def poll(
        self,
        poll_fn: Callable[[], Awaitable[Any]],
        should_continue: Callable[[Any], bool],
        label: str = "Task",
    ) -> Any:
        """
        Poll until ``should_continue`` returns False and return that final result.

        Every intermediate result is reported as progress. Raises the poll
        error, PollingTimeout, or StepCancelled if the run is stopped meanwhile.
        """
        if self.cancelled:
            raise StepCancelled(self.step_id)

        loop = asyncio.get_running_loop()
        waiter: "asyncio.Future[Any]" = loop.create_future()
        settings = self._engine.settings
        timeout_message = (
            f"{label} timeout after {format_duration(settings.max_poll_duration)}"
        )

        def on_result(result: Any) -> None:
            self.emit_progress(result)
            if not should_continue(result) and not waiter.done():
                waiter.set_result(result)

        def on_error(error: Exception) -> None:
            if not waiter.done():
                waiter.set_exception(error)

        def on_timeout() -> None:
            if not waiter.done():
                waiter.set_exception(PollingTimeout(timeout_message))

        session = PollingSession(
            poll_fn,
            should_continue,
            on_result,
            on_error=on_error,
            on_timeout=on_timeout,
            interval=settings.poll_interval,
            max_duration=settings.max_poll_duration,
        )
        self._session = session
        self._waiter = waiter
        session.start()
        try:
            return await waiter
        finally:
            session.stop()
            self._session = None
            self._waiter = None

    def cancel(self) -> None:
        """Stop any polling right away and release a waiting handler."""
        self._cancelled = True
        if self._session is not None:
            self._session.stop()
        if self._waiter is not None and not self._waiter.done():
            self._waiter.set_exception(StepCancelled(self.step_id))
