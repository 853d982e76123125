"""Error types raised by the orchestration core."""

from __future__ import annotations


class OrchestratorError(Exception):
    """Base class for orchestration failures."""


class ConfigurationError(OrchestratorError):
    """Required configuration (for example model credentials) is missing."""


class TaskNotFoundError(OrchestratorError, KeyError):
    """A task instance, template or submission id does not exist."""

    def __init__(self, kind: str, record_id: str) -> None:
        super().__init__(f"{kind} {record_id} does not exist")
        self.kind = kind
        self.record_id = record_id

    def __str__(self) -> str:
        return f"{self.kind} {self.record_id} does not exist"


class TaskNotApplicableError(OrchestratorError):
    """The worker was pointed at a task it must not run (not AI-tagged)."""


class InvalidTransitionError(OrchestratorError):
    """A status change is not allowed by the state machine."""

    def __init__(self, record: str, current: str, target: str) -> None:
        super().__init__(f"{record} cannot move from {current!r} to {target!r}")
        self.current = current
        self.target = target


class CompletionError(OrchestratorError):
    """Neither the completion endpoint nor the direct update succeeded."""


class PropagationError(OrchestratorError):
    """The task is completed but dependents could not be updated."""

    def __init__(self, task_id: str, cause: BaseException) -> None:
        super().__init__(
            f"Task {task_id} is completed but dependent tasks may need a manual "
            f"nudge: {cause}"
        )
        self.task_id = task_id


class DispatchQueueFullError(OrchestratorError):
    """The dispatcher refused new work because too much is already pending."""
