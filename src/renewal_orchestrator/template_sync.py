"""Pull template changes into existing task instances."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from renewal_orchestrator.errors import TaskNotFoundError
from renewal_orchestrator.storage.models import DependencyRef, TaskInstance, TaskTemplate, utc_now
from renewal_orchestrator.storage.repository import WorkflowRepository

logger = logging.getLogger(__name__)

SYNCABLE_FIELDS = (
    "system_prompt",
    "test_criteria",
    "description",
    "predefined_buttons",
    "dependencies",
)


@dataclass
class SyncResult:
    synced: bool
    updated_fields: list[str] = field(default_factory=list)
    skipped: bool = False
    reason: str | None = None


def sync_task_with_template(
    repository: WorkflowRepository,
    task_id: str,
    *,
    force: bool = False,
    fields: Iterable[str] | None = None,
) -> SyncResult:
    """Copy template fields onto a task instance.

    Without ``force`` only fields the instance has left empty are filled, so
    per-company edits survive; with ``force`` every differing field is
    overwritten.
    """
    task = repository.require_task(task_id)
    if task.template_id is None:
        return SyncResult(synced=False, skipped=True, reason="Task has no template")

    template = repository.get_template(task.template_id)
    if template is None:
        raise TaskNotFoundError("Template", task.template_id)

    requested = list(fields) if fields is not None else list(SYNCABLE_FIELDS)
    unknown = [name for name in requested if name not in SYNCABLE_FIELDS]
    if unknown:
        raise ValueError(f"Fields cannot be synced from a template: {', '.join(unknown)}")

    updates: dict[str, Any] = {}
    for name in requested:
        template_value = _template_value(template, name)
        current_value = getattr(task, name)
        if not template_value or template_value == current_value:
            continue
        if current_value and not force:
            continue
        updates[name] = template_value

    if not updates:
        return SyncResult(synced=False, skipped=True, reason="Task already up to date")

    repository.update_task(task_id, **updates, last_synced_at=utc_now())
    logger.info(
        "template_sync event=synced task_id=%s template_id=%s fields=%s force=%s",
        task_id,
        task.template_id,
        ",".join(updates),
        force,
    )
    return SyncResult(synced=True, updated_fields=list(updates))


def backfill_instructions(repository: WorkflowRepository, task: TaskInstance) -> TaskInstance:
    """Copy the template's prompt and completion rule onto an instance missing them."""
    if task.system_prompt or task.template_id is None:
        return task
    if repository.get_template(task.template_id) is None:
        logger.warning(
            "template_sync event=template_missing task_id=%s template_id=%s",
            task.task_id,
            task.template_id,
        )
        return task
    result = sync_task_with_template(
        repository, task.task_id, fields=("system_prompt", "test_criteria")
    )
    if result.synced:
        logger.info("template_sync event=backfill task_id=%s", task.task_id)
        return repository.require_task(task.task_id)
    return task


def _template_value(template: TaskTemplate, name: str) -> Any:
    if name == "dependencies":
        return [DependencyRef.by_template(template_id) for template_id in template.dependencies]
    return getattr(template, name)
