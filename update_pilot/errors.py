from typing import Any, Optional


class UpdatePilotError(Exception):
    """Base class for all errors raised by update_pilot."""


class ManagerApiError(UpdatePilotError):
    """Raised when a call to the remote management API fails."""

    def __init__(
        self, message: str, status: Optional[int] = None, body: Any = None
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status = status
        self.body = body

    def __str__(self) -> str:
        if self.status is not None:
            return f"HTTP {self.status}: {self.message}"
        return self.message


class PollingTimeout(UpdatePilotError):
    """Raised when a remote task did not finish within the allowed duration."""


class StepCancelled(UpdatePilotError):
    """Raised inside a step when the workflow was stopped while it was running."""

    def __init__(self, step_id: str) -> None:
        super().__init__(f"Step {step_id} was cancelled")
        self.step_id = step_id


class WorkflowStateError(UpdatePilotError):
    """Raised when an operation is not valid in the current workflow state."""
