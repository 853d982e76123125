"""Persist extracted documents with single/multi replace semantics."""

from __future__ import annotations

import logging
from collections.abc import Sequence

from renewal_orchestrator.extraction import ExtractedDocument
from renewal_orchestrator.storage.models import ArtifactRecord, TaskInstance, utc_now
from renewal_orchestrator.storage.repository import WorkflowRepository

logger = logging.getLogger(__name__)


def persist_artifacts(
    repository: WorkflowRepository,
    task: TaskInstance,
    documents: Sequence[ExtractedDocument],
) -> list[ArtifactRecord]:
    """Store documents for a task, replacing whatever an earlier run left.

    A single document overwrites the first existing record in place (its id
    and created_at survive) and removes any extras. Several documents replace
    the whole set and carry ``artifact_index``/``total_artifacts``.
    """
    if not documents:
        return []

    existing = repository.list_artifacts(task.task_id)
    if len(documents) == 1:
        saved = [_save_single(repository, task, documents[0], existing)]
    else:
        saved = _save_multiple(repository, task, documents, existing)

    logger.info(
        "artifacts_persisted task_id=%s documents=%d replaced=%d",
        task.task_id,
        len(saved),
        len(existing),
    )
    return saved


def _save_single(
    repository: WorkflowRepository,
    task: TaskInstance,
    document: ExtractedDocument,
    existing: list[ArtifactRecord],
) -> ArtifactRecord:
    for extra in existing[1:]:
        repository.delete_artifact(extra.artifact_id)

    name = document.title or document.id or task.name
    if existing:
        record = existing[0].model_copy(
            update={
                "name": name,
                "body": document.body,
                "source_id": document.id,
                "artifact_index": None,
                "total_artifacts": None,
                "updated_at": utc_now(),
            }
        )
    else:
        record = ArtifactRecord(
            task_id=task.task_id,
            company_id=task.company_id,
            name=name,
            body=document.body,
            description=f"Generated by AI for task: {task.name}",
            source_id=document.id,
            tags=["ai-generated"],
        )
    return repository.save_artifact(record)


def _save_multiple(
    repository: WorkflowRepository,
    task: TaskInstance,
    documents: Sequence[ExtractedDocument],
    existing: list[ArtifactRecord],
) -> list[ArtifactRecord]:
    for record in existing:
        repository.delete_artifact(record.artifact_id)

    total = len(documents)
    saved: list[ArtifactRecord] = []
    for index, document in enumerate(documents):
        name = document.title or document.id or f"{task.name} ({index + 1} of {total})"
        record = ArtifactRecord(
            task_id=task.task_id,
            company_id=task.company_id,
            name=name,
            body=document.body,
            description=f"Generated by AI for task: {task.name}",
            source_id=document.id,
            artifact_index=index,
            total_artifacts=total,
            tags=["ai-generated"],
        )
        saved.append(repository.save_artifact(record))
    return saved
