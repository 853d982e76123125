"""Dependency discovery and status propagation after a task completes.

Propagation never recurses synchronously. Each AI dependent is handed to
``trigger`` (normally the dispatcher), and its own completion later runs its
own propagation; the worker's idempotency guard keeps a cycle from looping.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field

from renewal_orchestrator.storage.models import DependencyRef, TaskInstance
from renewal_orchestrator.storage.repository import WorkflowRepository

logger = logging.getLogger(__name__)

Trigger = Callable[[str], object]


@dataclass
class PropagationResult:
    unblocked: list[str] = field(default_factory=list)
    triggered: list[str] = field(default_factory=list)
    trigger_failed: list[str] = field(default_factory=list)


def references(ref: DependencyRef, completed: TaskInstance, dependent: TaskInstance) -> bool:
    """Whether ``ref`` on ``dependent`` points at ``completed``."""
    if ref.kind == "instance":
        return ref.ref == completed.task_id
    return (
        completed.template_id is not None
        and ref.ref == completed.template_id
        and dependent.company_id == completed.company_id
    )


def find_dependents(repository: WorkflowRepository, completed: TaskInstance) -> list[TaskInstance]:
    # Full scan; fine at tens of tasks per company.
    return [
        task
        for task in repository.list_tasks()
        if task.task_id != completed.task_id
        and any(references(ref, completed, task) for ref in task.dependencies)
    ]


def resolve_dependency(
    repository: WorkflowRepository, ref: DependencyRef, company_id: str
) -> TaskInstance | None:
    """Instance id first, then a template match inside the same company."""
    task = repository.get_task(ref.ref)
    if task is not None:
        return task
    matches = repository.find_tasks_by_template(ref.ref, company_id)
    return matches[0] if matches else None


def dependencies_satisfied(repository: WorkflowRepository, task: TaskInstance) -> bool:
    for ref in task.dependencies:
        upstream = resolve_dependency(repository, ref, task.company_id)
        if upstream is None:
            logger.warning(
                "dependency_unresolved task_id=%s ref=%s:%s", task.task_id, ref.kind, ref.ref
            )
            return False
        if upstream.status != "completed":
            return False
    return True


def propagate(
    repository: WorkflowRepository,
    completed_id: str,
    trigger: Trigger | None = None,
) -> PropagationResult:
    completed = repository.require_task(completed_id)
    result = PropagationResult()
    for dependent in find_dependents(repository, completed):
        if dependent.status == "completed":
            continue
        if not dependencies_satisfied(repository, dependent):
            continue
        if dependent.status != "needs_attention":
            repository.update_task(dependent.task_id, status="needs_attention", error=None)
            result.unblocked.append(dependent.task_id)
            logger.info(
                "propagation event=unblocked task_id=%s upstream=%s",
                dependent.task_id,
                completed_id,
            )
        if dependent.is_ai and trigger is not None:
            try:
                trigger(dependent.task_id)
            except Exception:
                # The upstream completion stands; the dependent stays actionable.
                logger.exception(
                    "propagation event=trigger_failed task_id=%s upstream=%s",
                    dependent.task_id,
                    completed_id,
                )
                result.trigger_failed.append(dependent.task_id)
                continue
            result.triggered.append(dependent.task_id)
            logger.info(
                "propagation event=triggered task_id=%s upstream=%s",
                dependent.task_id,
                completed_id,
            )
    return result
