import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Optional

DEFAULT_POLL_INTERVAL = 2.0
DEFAULT_MAX_DURATION = 600.0

logger = logging.getLogger(__name__)


class PollingSession:
    """
    Call ``poll_fn`` until ``should_continue`` says stop, an error occurs, or
    ``max_duration`` seconds have passed.

    The first poll happens immediately on ``start()``. Once ``stop()`` returns,
    none of ``on_result``, ``on_error`` or ``on_timeout`` fire again for this
    session, even if a poll was still in flight; its result is dropped.
    Errors are never retried here.
    """

    def __init__(
        self,
        poll_fn: Callable[[], Awaitable[Any]],
        should_continue: Callable[[Any], bool],
        on_result: Callable[[Any], None],
        on_error: Optional[Callable[[Exception], None]] = None,
        on_timeout: Optional[Callable[[], None]] = None,
        interval: float = DEFAULT_POLL_INTERVAL,
        max_duration: float = DEFAULT_MAX_DURATION,
    ) -> None:
        self.poll_fn = poll_fn
        self.should_continue = should_continue
        self.on_result = on_result
        self.on_error = on_error
        self.on_timeout = on_timeout
        self.interval = interval
        self.max_duration = max_duration
        self.is_active = False
        self.started_at: Optional[float] = None
        self._stopped: Optional[asyncio.Event] = None
        self._task: Optional["asyncio.Task[None]"] = None

    def start(self) -> None:
        if self.is_active:
            self.stop()

        stopped = asyncio.Event()
        self._stopped = stopped
        self.is_active = True
        self.started_at = time.monotonic()
        self._task = asyncio.ensure_future(self._run(stopped))

    def stop(self) -> None:
        self.is_active = False
        if self._stopped is not None:
            self._stopped.set()
            self._stopped = None

    def elapsed(self) -> float:
        if self.started_at is None:
            return 0.0
        return time.monotonic() - self.started_at

    async def wait(self) -> None:
        """Wait for the polling loop of the latest start() to exit."""
        if self._task is not None:
            await self._task

    def _is_current(self, stopped: asyncio.Event) -> bool:
        return self._stopped is stopped and not stopped.is_set()

    async def _run(self, stopped: asyncio.Event) -> None:
        while self._is_current(stopped):
            try:
                result = await self.poll_fn()
            except Exception as e:
                if not self._is_current(stopped):
                    logger.debug(f"Dropping error from stopped polling session: {e}")
                    return
                self.stop()
                if self.on_error:
                    self.on_error(e)
                return

            if not self._is_current(stopped):
                logger.debug("Dropping result from stopped polling session")
                return

            self.on_result(result)

            # on_result may have stopped us
            if not self._is_current(stopped):
                return

            if not self.should_continue(result):
                self.stop()
                return

            if self.elapsed() > self.max_duration:
                self.stop()
                if self.on_timeout:
                    self.on_timeout()
                return

            remaining = self.max_duration - self.elapsed()
            delay = max(0.0, min(self.interval, remaining))
            try:
                await asyncio.wait_for(stopped.wait(), timeout=delay)
            except asyncio.TimeoutError:
                continue
            return
