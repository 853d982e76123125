from __future__ import annotations

from support import make_task

from renewal_orchestrator.context import MAX_ARTIFACT_CHARS, RepositoryContextAssembler, TaskContext
from renewal_orchestrator.prompts import DEFAULT_INSTRUCTIONS, build_system_prompt
from renewal_orchestrator.storage.models import ArtifactRecord
from renewal_orchestrator.storage.repository import WorkflowRepository


class _StaticRetriever:
    def __init__(self) -> None:
        self.queries: list[tuple[str, str, int]] = []

    def search(self, company_id: str, query: str, top_k: int = 5) -> list[str]:
        self.queries.append((company_id, query, top_k))
        return ["2024 loss run shows two minor claims."]


def test_context_contains_only_other_completed_work(repository: WorkflowRepository) -> None:
    done = make_task(repository, "Collect loss runs", status="completed")
    repository.save_artifact(
        ArtifactRecord(task_id=done.task_id, company_id="acme", name="Loss runs", body="five years")
    )
    make_task(repository, "Payroll", status="needs_attention")
    current = make_task(repository, "Narrative", status="completed")
    retriever = _StaticRetriever()

    context = RepositoryContextAssembler(repository, retriever=retriever, top_k=3).get_context(
        "acme", current.task_id
    )

    assert context.facts == {"state": "OH"}
    assert [task.task_id for task in context.prior_tasks] == [done.task_id]
    assert [artifact.name for artifact in context.prior_artifacts] == ["Loss runs"]
    assert context.retrieved_excerpts == ["2024 loss run shows two minor claims."]
    assert retriever.queries == [("acme", "Narrative", 3)]


def test_render_truncates_long_documents() -> None:
    artifact = ArtifactRecord(
        task_id="t", company_id="acme", name="Huge", body="x" * (MAX_ARTIFACT_CHARS + 50)
    )

    rendered = TaskContext(prior_artifacts=[artifact]).render()

    assert "### Huge" in rendered
    assert rendered.endswith("[truncated]")


def test_system_prompt_falls_back_to_default_instructions(
    repository: WorkflowRepository,
) -> None:
    task = make_task(repository, "Narrative", description="Describe operations.")

    prompt = build_system_prompt("", task, TaskContext())

    assert prompt.startswith(DEFAULT_INSTRUCTIONS)
    assert "Describe operations." in prompt
    assert "## Context" not in prompt
