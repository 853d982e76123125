from __future__ import annotations

import json
from typing import Any
from urllib import error, request

import pytest
from support import make_task

from renewal_orchestrator import completion as completion_module
from renewal_orchestrator.completion import CompletionService, HttpCompletionClient
from renewal_orchestrator.config.settings import Settings
from renewal_orchestrator.errors import CompletionError, PropagationError, TaskNotFoundError
from renewal_orchestrator.storage.repository import WorkflowRepository


class _FakeHTTPResponse:
    def __init__(self, payload: dict[str, object]) -> None:
        self._raw_body = json.dumps(payload).encode("utf-8")

    def read(self) -> bytes:
        return self._raw_body

    def __enter__(self) -> _FakeHTTPResponse:
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        _ = (exc_type, exc, tb)
        return False


class _UnreachableClient:
    def __init__(self) -> None:
        self.calls: list[str] = []

    def complete(self, task_id: str, *, completed_by: str | None = None) -> dict[str, Any]:
        self.calls.append(task_id)
        raise error.URLError("connection refused")


class _RecordingClient:
    def __init__(self) -> None:
        self.calls: list[tuple[str, str | None]] = []

    def complete(self, task_id: str, *, completed_by: str | None = None) -> dict[str, Any]:
        self.calls.append((task_id, completed_by))
        return {"status": "completed"}


def test_fallback_runs_after_every_retry_fails(
    repository: WorkflowRepository, settings: Settings
) -> None:
    sleeps: list[float] = []
    client = _UnreachableClient()
    service = CompletionService(repository, settings, client=client, sleep=sleeps.append)
    task = make_task(repository, "Upstream", status="needs_attention")
    dependent = make_task(repository, "Downstream", dependencies=[task.task_id])

    service.complete(task.task_id, completed_by="AI System")

    assert len(client.calls) == 4
    assert sleeps == [0.5, 1.0, 2.0]
    stored = repository.require_task(task.task_id)
    assert stored.status == "completed"
    assert stored.completed_by == "AI System"
    assert repository.require_task(dependent.task_id).status == "needs_attention"


def test_primary_success_skips_the_fallback(
    repository: WorkflowRepository, settings: Settings
) -> None:
    client = _RecordingClient()
    service = CompletionService(repository, settings, client=client, sleep=lambda _: None)
    task = make_task(repository, "Upstream", status="needs_attention")

    service.complete(task.task_id, completed_by="broker")

    assert client.calls == [(task.task_id, "broker")]
    # The endpoint owns the update; nothing was written locally.
    assert repository.require_task(task.task_id).status == "needs_attention"


def test_no_base_url_goes_straight_to_fallback(
    repository: WorkflowRepository, settings: Settings
) -> None:
    service = CompletionService(repository, settings)
    task = make_task(repository, "Upstream", status="needs_attention")

    assert service.client is None
    service.complete(task.task_id)

    stored = repository.require_task(task.task_id)
    assert stored.status == "completed"
    assert stored.completed_at is not None


def test_base_url_builds_http_client(repository: WorkflowRepository, settings: Settings) -> None:
    configured = settings.model_copy(update={"completion_base_url": "http://orchestrator:8000/"})

    service = CompletionService(repository, configured)

    assert isinstance(service.client, HttpCompletionClient)
    assert service.client.base_url == "http://orchestrator:8000"


def test_http_client_posts_to_completion_endpoint(monkeypatch: pytest.MonkeyPatch) -> None:
    captured: dict[str, Any] = {}

    def fake_urlopen(req: request.Request, timeout: float):
        captured["url"] = req.full_url
        captured["method"] = req.get_method()
        captured["timeout"] = timeout
        captured["payload"] = json.loads(req.data.decode("utf-8"))
        return _FakeHTTPResponse({"task": {"status": "completed"}})

    monkeypatch.setattr(completion_module.request, "urlopen", fake_urlopen)
    client = HttpCompletionClient("http://orchestrator:8000", timeout_s=3.0)

    response = client.complete("task-1", completed_by="AI System")

    assert captured["url"] == "http://orchestrator:8000/tasks/task-1/complete"
    assert captured["method"] == "POST"
    assert captured["timeout"] == 3.0
    assert captured["payload"] == {"completed_by": "AI System"}
    assert response == {"task": {"status": "completed"}}


def test_propagation_failure_keeps_completion(
    repository: WorkflowRepository, settings: Settings, monkeypatch: pytest.MonkeyPatch
) -> None:
    def broken_propagate(*args: object, **kwargs: object) -> None:
        raise RuntimeError("store offline")

    monkeypatch.setattr(completion_module, "propagate", broken_propagate)
    service = CompletionService(repository, settings)
    task = make_task(repository, "Upstream", status="needs_attention")

    with pytest.raises(PropagationError) as excinfo:
        service.complete(task.task_id)

    assert excinfo.value.task_id == task.task_id
    assert repository.require_task(task.task_id).status == "completed"


def test_failed_direct_update_raises_completion_error(
    repository: WorkflowRepository, settings: Settings, monkeypatch: pytest.MonkeyPatch
) -> None:
    task = make_task(repository, "Upstream", status="needs_attention")

    def broken_update(task_id: str, **changes: object) -> None:
        raise OSError("disk full")

    monkeypatch.setattr(repository, "update_task", broken_update)
    service = CompletionService(repository, settings)

    with pytest.raises(CompletionError, match="disk full"):
        service.complete(task.task_id)


def test_unknown_task_is_not_found(repository: WorkflowRepository, settings: Settings) -> None:
    service = CompletionService(repository, settings)

    with pytest.raises(TaskNotFoundError):
        service.complete("missing")


def test_completing_twice_keeps_first_timestamp(
    repository: WorkflowRepository, settings: Settings
) -> None:
    service = CompletionService(repository, settings)
    task = make_task(repository, "Upstream", status="needs_attention")

    service.complete_locally(task.task_id)
    first = repository.require_task(task.task_id).completed_at
    service.complete_locally(task.task_id)

    assert repository.require_task(task.task_id).completed_at == first
