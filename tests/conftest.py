from __future__ import annotations

from collections.abc import Iterator

import pytest
from fastapi.testclient import TestClient
from support import COMPANY_ID, FakeGenerator

from renewal_orchestrator.api.main import create_app
from renewal_orchestrator.config.settings import Settings
from renewal_orchestrator.services import Orchestrator, build_orchestrator
from renewal_orchestrator.storage.memory import InMemoryDocumentStore
from renewal_orchestrator.storage.models import CompanyRecord
from renewal_orchestrator.storage.repository import WorkflowRepository


@pytest.fixture
def settings() -> Settings:
    return Settings(
        database_url="",
        openai_api_key="",
        completion_base_url="",
        completion_max_retries=3,
        completion_backoff_s=0.5,
        dispatch_max_workers=2,
        dispatch_max_pending=16,
        dispatch_enqueue_timeout_s=1.0,
    )


@pytest.fixture
def store() -> InMemoryDocumentStore:
    return InMemoryDocumentStore()


@pytest.fixture
def repository(store: InMemoryDocumentStore) -> WorkflowRepository:
    repo = WorkflowRepository(store)
    repo.upsert_company(
        CompanyRecord(company_id=COMPANY_ID, name="Acme Manufacturing", facts={"state": "OH"})
    )
    return repo


@pytest.fixture
def generator() -> FakeGenerator:
    return FakeGenerator()


@pytest.fixture
def orchestrator(
    settings: Settings, repository: WorkflowRepository, generator: FakeGenerator
) -> Iterator[Orchestrator]:
    instance = build_orchestrator(
        settings, repository, generator=generator, sleep=lambda _seconds: None
    )
    yield instance
    instance.dispatcher.drain(timeout=10)
    instance.shutdown()


@pytest.fixture
def client(
    settings: Settings,
    store: InMemoryDocumentStore,
    repository: WorkflowRepository,
    generator: FakeGenerator,
) -> Iterator[TestClient]:
    app = create_app(storage=store, settings_override=settings, generator=generator)
    with TestClient(app) as test_client:
        yield test_client
    app.state.orchestrator.dispatcher.drain(timeout=10)
    app.state.orchestrator.shutdown()
