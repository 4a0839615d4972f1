from .context import StepContext
from .migration_loop import MigrationLoopController
from .polling import PollingSession
from .sequencer import StepSequencer
from .workflow_engine import WorkflowEngine, WorkflowEvent

__all__ = [
    "MigrationLoopController",
    "PollingSession",
    "StepContext",
    "StepSequencer",
    "WorkflowEngine",
    "WorkflowEvent",
]
