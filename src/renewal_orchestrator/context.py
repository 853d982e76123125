"""Context bundle handed to the generator for one task run."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

from renewal_orchestrator.storage.models import ArtifactRecord, TaskInstance
from renewal_orchestrator.storage.repository import WorkflowRepository

logger = logging.getLogger(__name__)

MAX_ARTIFACT_CHARS = 4000


@dataclass
class TaskContext:
    facts: dict[str, Any] = field(default_factory=dict)
    prior_artifacts: list[ArtifactRecord] = field(default_factory=list)
    prior_tasks: list[TaskInstance] = field(default_factory=list)
    retrieved_excerpts: list[str] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not (
            self.facts or self.prior_artifacts or self.prior_tasks or self.retrieved_excerpts
        )

    def render(self) -> str:
        """Render the bundle as Markdown sections for the system prompt."""
        sections: list[str] = []
        if self.facts:
            sections.append(
                "## Company facts\n```json\n"
                + json.dumps(self.facts, indent=2, sort_keys=True, default=str)
                + "\n```"
            )
        if self.prior_tasks:
            lines = [f"- {task.name} ({task.status})" for task in self.prior_tasks]
            sections.append("## Completed tasks\n" + "\n".join(lines))
        if self.prior_artifacts:
            blocks = []
            for artifact in self.prior_artifacts:
                body = artifact.body
                if len(body) > MAX_ARTIFACT_CHARS:
                    body = body[:MAX_ARTIFACT_CHARS] + "\n[truncated]"
                blocks.append(f"### {artifact.name}\n{body}")
            sections.append("## Documents from earlier tasks\n" + "\n\n".join(blocks))
        if self.retrieved_excerpts:
            excerpts = "\n\n".join(f"> {excerpt}" for excerpt in self.retrieved_excerpts)
            sections.append("## Relevant excerpts\n" + excerpts)
        return "\n\n".join(sections)


class ContextAssembler(Protocol):
    def get_context(self, company_id: str, task_id: str) -> TaskContext: ...


class Retriever(Protocol):
    """Similarity search over a company's uploaded material."""

    def search(self, company_id: str, query: str, top_k: int = 5) -> list[str]: ...


class RepositoryContextAssembler:
    """Builds context from the repository: company facts, finished work, excerpts."""

    def __init__(
        self,
        repository: WorkflowRepository,
        *,
        retriever: Retriever | None = None,
        top_k: int = 5,
    ) -> None:
        self.repository = repository
        self.retriever = retriever
        self.top_k = top_k

    def get_context(self, company_id: str, task_id: str) -> TaskContext:
        company = self.repository.get_company(company_id)
        completed = [
            task
            for task in self.repository.list_tasks(company_id)
            if task.status == "completed" and task.task_id != task_id
        ]
        artifacts: list[ArtifactRecord] = []
        for task in completed:
            artifacts.extend(self.repository.list_artifacts(task.task_id))

        excerpts: list[str] = []
        if self.retriever is not None:
            current = self.repository.get_task(task_id)
            query = current.name if current is not None else task_id
            excerpts = self.retriever.search(company_id, query, self.top_k)

        logger.info(
            "context_assembled company_id=%s task_id=%s prior_tasks=%d artifacts=%d excerpts=%d",
            company_id,
            task_id,
            len(completed),
            len(artifacts),
            len(excerpts),
        )
        return TaskContext(
            facts=dict(company.facts) if company is not None else {},
            prior_artifacts=artifacts,
            prior_tasks=completed,
            retrieved_excerpts=excerpts,
        )
