from __future__ import annotations

import pytest
from support import make_task

from renewal_orchestrator.errors import TaskNotFoundError
from renewal_orchestrator.storage.memory import InMemoryDocumentStore
from renewal_orchestrator.storage.models import ArtifactRecord, DependencyRef, TaskInstance
from renewal_orchestrator.storage.repository import WorkflowRepository


def test_memory_store_filters_and_isolates_documents() -> None:
    store = InMemoryDocumentStore()
    document = {"task_id": "t1", "tags": ["a"]}
    store.put("artifacts", "x", document)
    store.put("artifacts", "y", {"task_id": "t2", "tags": []})

    document["tags"].append("mutated")
    found = store.find("artifacts", task_id="t1")
    found[0]["tags"].append("also mutated")

    assert store.get("artifacts", "x") == {"task_id": "t1", "tags": ["a"]}
    assert store.find("artifacts", task_id="missing") == []
    assert store.delete("artifacts", "x") is True
    assert store.delete("artifacts", "x") is False


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("abc-123", DependencyRef(kind="instance", ref="abc-123")),
        ("template:tpl-loss-runs", DependencyRef(kind="template", ref="tpl-loss-runs")),
        ("instance:abc", DependencyRef(kind="instance", ref="abc")),
        ("other:thing", DependencyRef(kind="instance", ref="other:thing")),
        ({"kind": "template", "ref": "tpl-x"}, DependencyRef(kind="template", ref="tpl-x")),
    ],
)
def test_dependency_ref_parse(raw: object, expected: DependencyRef) -> None:
    parsed = DependencyRef.parse(raw)

    assert (parsed.kind, parsed.ref) == (expected.kind, expected.ref)


def test_task_dependencies_accept_mixed_forms() -> None:
    task = TaskInstance(
        company_id="acme",
        name="Narrative",
        dependencies=["t1", "template:tpl-loss-runs", {"kind": "instance", "ref": "t2"}],
    )

    assert [(ref.kind, ref.ref) for ref in task.dependencies] == [
        ("instance", "t1"),
        ("template", "tpl-loss-runs"),
        ("instance", "t2"),
    ]


def test_update_task_changes_only_given_fields(repository: WorkflowRepository) -> None:
    task = make_task(repository, "Narrative", system_prompt="Keep me.", status="upcoming")

    updated = repository.update_task(task.task_id, status="needs_attention")

    assert updated.status == "needs_attention"
    assert updated.system_prompt == "Keep me."
    assert updated.updated_at >= task.updated_at
    assert repository.require_task(task.task_id).status == "needs_attention"
    with pytest.raises(TaskNotFoundError):
        repository.update_task("missing", status="failed")


def test_artifacts_are_listed_in_set_order(repository: WorkflowRepository) -> None:
    task = make_task(repository, "Carrier emails")
    for index in (2, 0, 1):
        repository.save_artifact(
            ArtifactRecord(
                task_id=task.task_id,
                company_id=task.company_id,
                name=f"doc {index}",
                body="x",
                artifact_index=index,
                total_artifacts=3,
            )
        )

    names = [artifact.name for artifact in repository.list_artifacts(task.task_id)]

    assert names == ["doc 0", "doc 1", "doc 2"]
    assert repository.delete_artifacts_for_task(task.task_id) == 3
    assert repository.list_artifacts(task.task_id) == []


def test_tasks_are_listed_by_sort_order_per_company(repository: WorkflowRepository) -> None:
    late = make_task(repository, "Send submissions", sort_order=5)
    early = make_task(repository, "Collect loss runs", sort_order=1)
    make_task(repository, "Elsewhere", company_id="globex")

    assert [task.task_id for task in repository.list_tasks("acme")] == [
        early.task_id,
        late.task_id,
    ]
    assert len(repository.list_tasks()) == 3
