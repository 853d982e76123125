"""FastAPI app entrypoint for renewal-orchestrator."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import asynccontextmanager, contextmanager
from typing import Any

from fastapi import FastAPI, HTTPException, Request
from pydantic import BaseModel, Field

from renewal_orchestrator.completion import CompletionClient
from renewal_orchestrator.config.settings import Settings, get_settings
from renewal_orchestrator.errors import (
    CompletionError,
    DispatchQueueFullError,
    InvalidTransitionError,
    PropagationError,
    TaskNotApplicableError,
    TaskNotFoundError,
)
from renewal_orchestrator.llm import GenerationService
from renewal_orchestrator.mailer import EmailSender
from renewal_orchestrator.services import Orchestrator, build_orchestrator
from renewal_orchestrator.storage.base import DocumentStore
from renewal_orchestrator.storage.models import (
    ArtifactRecord,
    ChatMessage,
    CompanyRecord,
    DependencyRef,
    JobRecord,
    PredefinedButton,
    SubmissionRecord,
    TaskInstance,
    TaskStatus,
    TaskTag,
    TaskTemplate,
)
from renewal_orchestrator.storage.postgres import PostgresDocumentStore
from renewal_orchestrator.storage.repository import WorkflowRepository
from renewal_orchestrator.submissions import TrackingEvent
from renewal_orchestrator.template_sync import sync_task_with_template


class TemplateRequest(BaseModel):
    name: str = Field(min_length=1)
    description: str = ""
    system_prompt: str = ""
    test_criteria: str = ""
    dependencies: list[str] = Field(default_factory=list)
    tag: TaskTag = "manual"
    phase: str = ""
    sort_order: int = 0
    predefined_buttons: list[PredefinedButton] = Field(default_factory=list)
    creates_submissions: bool = False


class CompanyRequest(BaseModel):
    name: str = Field(min_length=1)
    facts: dict[str, Any] = Field(default_factory=dict)


class CreateTaskRequest(BaseModel):
    company_id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    description: str = ""
    tag: TaskTag = "manual"
    system_prompt: str = ""
    test_criteria: str = ""
    # "template:<id>", "instance:<id>", a bare task id or a {kind, ref} object.
    dependencies: list[str | DependencyRef] = Field(default_factory=list)
    predefined_buttons: list[PredefinedButton] = Field(default_factory=list)
    status: TaskStatus = "upcoming"


class StatusRequest(BaseModel):
    status: TaskStatus
    actor: str = "user"


class CompleteRequest(BaseModel):
    completed_by: str | None = None


class CompleteResponse(BaseModel):
    task: TaskInstance
    unblocked: list[str]
    triggered: list[str]
    trigger_failed: list[str] = []


class UserMessageRequest(BaseModel):
    content: str = Field(min_length=1)


class SyncRequest(BaseModel):
    force: bool = False
    fields: list[str] | None = None


class SyncResponse(BaseModel):
    synced: bool
    updated_fields: list[str]
    skipped: bool
    reason: str | None = None


class FromArtifactsRequest(BaseModel):
    artifact_ids: list[str] | None = None


class FromDependenciesRequest(BaseModel):
    dependency_task_ids: list[str] | None = None


class SendAllResponse(BaseModel):
    sent: list[str]
    failed: list[str]
    task_completed: bool


class TrackingEventRequest(BaseModel):
    event: TrackingEvent


class ReplyRequest(BaseModel):
    body: str = Field(min_length=1)
    sender: str = "underwriter@carrier.com"
    sender_name: str = "Underwriter"
    subject: str = ""


def _ensure_runtime_state(
    app: FastAPI,
    *,
    settings: Settings,
    storage_override: DocumentStore | None,
    generator: GenerationService | None,
    email_sender: EmailSender | None,
    completion_client: CompletionClient | None,
) -> None:
    if not hasattr(app.state, "repository"):
        database_url = settings.resolved_database_url()
        if storage_override is None and not database_url:
            raise RuntimeError(
                "Missing database URL. Set RENEWAL_ORCHESTRATOR_DATABASE_URL "
                "or ORCHESTRATOR_DATABASE_URL before starting the app."
            )
        store = storage_override or PostgresDocumentStore(database_url)
        app.state.repository = WorkflowRepository(store)
        app.state.repository.migrate()

    if not hasattr(app.state, "settings"):
        app.state.settings = settings

    if not hasattr(app.state, "orchestrator"):
        app.state.orchestrator = build_orchestrator(
            settings,
            app.state.repository,
            generator=generator,
            email_sender=email_sender,
            completion_client=completion_client,
        )


@contextmanager
def _translate_errors() -> Iterator[None]:
    try:
        yield
    except TaskNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except (TaskNotApplicableError, InvalidTransitionError) as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except DispatchQueueFullError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    except (CompletionError, PropagationError) as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc


def create_app(
    *,
    storage: DocumentStore | None = None,
    settings_override: Settings | None = None,
    generator: GenerationService | None = None,
    email_sender: EmailSender | None = None,
    completion_client: CompletionClient | None = None,
) -> FastAPI:
    settings = settings_override or get_settings()
    runtime: dict[str, Any] = {
        "settings": settings,
        "storage_override": storage,
        "generator": generator,
        "email_sender": email_sender,
        "completion_client": completion_client,
    }

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        _ensure_runtime_state(app, **runtime)
        yield
        app.state.orchestrator.shutdown()

    app_lifespan = lifespan if storage is None else None
    app = FastAPI(title=settings.app_name, lifespan=app_lifespan)

    # Keep test paths reliable when lifespan is not executed by the client.
    if storage is not None:
        _ensure_runtime_state(app, **runtime)

    def _get_orchestrator(request: Request) -> Orchestrator:
        if not hasattr(request.app.state, "orchestrator"):
            _ensure_runtime_state(request.app, **runtime)
        return request.app.state.orchestrator

    @app.get("/health")
    @app.get("/healthz")
    @app.get("/live")
    def health() -> dict[str, str]:
        return {"status": "ok", "service": settings.app_name}

    # Templates and companies

    @app.put("/templates/{template_id}", response_model=TaskTemplate)
    def upsert_template(
        template_id: str, payload: TemplateRequest, request: Request
    ) -> TaskTemplate:
        orchestrator = _get_orchestrator(request)
        template = TaskTemplate(template_id=template_id, **payload.model_dump())
        return orchestrator.repository.upsert_template(template)

    @app.get("/templates", response_model=list[TaskTemplate])
    def list_templates(request: Request) -> list[TaskTemplate]:
        return _get_orchestrator(request).repository.list_templates()

    @app.put("/companies/{company_id}", response_model=CompanyRecord)
    def upsert_company(company_id: str, payload: CompanyRequest, request: Request) -> CompanyRecord:
        orchestrator = _get_orchestrator(request)
        company = CompanyRecord(company_id=company_id, name=payload.name, facts=payload.facts)
        return orchestrator.repository.upsert_company(company)

    @app.post(
        "/companies/{company_id}/tasks/instantiate",
        response_model=list[TaskInstance],
        status_code=201,
    )
    def instantiate_company_tasks(company_id: str, request: Request) -> list[TaskInstance]:
        orchestrator = _get_orchestrator(request)
        with _translate_errors():
            return orchestrator.instantiate_company_tasks(company_id)

    @app.get("/companies/{company_id}/tasks", response_model=list[TaskInstance])
    def list_company_tasks(company_id: str, request: Request) -> list[TaskInstance]:
        return _get_orchestrator(request).repository.list_tasks(company_id)

    @app.get("/companies/{company_id}/submissions", response_model=list[SubmissionRecord])
    def list_company_submissions(
        company_id: str, request: Request, status: str | None = None
    ) -> list[SubmissionRecord]:
        repository = _get_orchestrator(request).repository
        return repository.list_submissions(company_id=company_id, status=status)

    # Tasks

    @app.post("/tasks", response_model=TaskInstance, status_code=201)
    def create_task(payload: CreateTaskRequest, request: Request) -> TaskInstance:
        repository = _get_orchestrator(request).repository
        return repository.create_task(TaskInstance(**payload.model_dump()))

    @app.get("/tasks/{task_id}", response_model=TaskInstance)
    def get_task(task_id: str, request: Request) -> TaskInstance:
        record = _get_orchestrator(request).repository.get_task(task_id)
        if record is None:
            raise HTTPException(status_code=404, detail="Task not found")
        return record

    @app.post("/tasks/{task_id}/status", response_model=TaskInstance)
    def set_task_status(task_id: str, payload: StatusRequest, request: Request) -> TaskInstance:
        orchestrator = _get_orchestrator(request)
        with _translate_errors():
            return orchestrator.set_status(task_id, payload.status, actor=payload.actor)

    @app.post("/tasks/{task_id}/trigger", response_model=JobRecord, status_code=202)
    def trigger_task(task_id: str, request: Request) -> JobRecord:
        orchestrator = _get_orchestrator(request)
        with _translate_errors():
            return orchestrator.trigger_task(task_id)

    @app.post("/tasks/{task_id}/rerun", response_model=JobRecord, status_code=202)
    def rerun_task(task_id: str, request: Request) -> JobRecord:
        orchestrator = _get_orchestrator(request)
        with _translate_errors():
            return orchestrator.trigger_task(task_id, rerun=True)

    @app.get("/tasks/{task_id}/job", response_model=JobRecord)
    def get_job(task_id: str, request: Request) -> JobRecord:
        job = _get_orchestrator(request).repository.get_job(task_id)
        if job is None:
            raise HTTPException(status_code=404, detail="Job not found")
        return job

    @app.post("/tasks/{task_id}/complete", response_model=CompleteResponse)
    def complete_task(
        task_id: str, request: Request, payload: CompleteRequest | None = None
    ) -> CompleteResponse:
        orchestrator = _get_orchestrator(request)
        completed_by = payload.completed_by if payload is not None else None
        with _translate_errors():
            result = orchestrator.completion.complete_locally(task_id, completed_by=completed_by)
        return CompleteResponse(
            task=orchestrator.repository.require_task(task_id),
            unblocked=result.unblocked,
            triggered=result.triggered,
            trigger_failed=result.trigger_failed,
        )

    @app.get("/tasks/{task_id}/artifacts", response_model=list[ArtifactRecord])
    def list_artifacts(task_id: str, request: Request) -> list[ArtifactRecord]:
        return _get_orchestrator(request).repository.list_artifacts(task_id)

    @app.get("/tasks/{task_id}/messages", response_model=list[ChatMessage])
    def list_messages(task_id: str, request: Request) -> list[ChatMessage]:
        return _get_orchestrator(request).repository.list_messages(task_id)

    @app.post("/tasks/{task_id}/messages", response_model=ChatMessage, status_code=201)
    def post_message(task_id: str, payload: UserMessageRequest, request: Request) -> ChatMessage:
        repository = _get_orchestrator(request).repository
        with _translate_errors():
            repository.require_task(task_id)
        message = ChatMessage(
            task_id=task_id,
            role="user",
            kind="user",
            content=payload.content,
            system_generated=False,
        )
        return repository.append_message(message)

    @app.post("/tasks/{task_id}/sync", response_model=SyncResponse)
    def sync_task(task_id: str, payload: SyncRequest, request: Request) -> SyncResponse:
        repository = _get_orchestrator(request).repository
        with _translate_errors():
            result = sync_task_with_template(
                repository, task_id, force=payload.force, fields=payload.fields
            )
        return SyncResponse(
            synced=result.synced,
            updated_fields=result.updated_fields,
            skipped=result.skipped,
            reason=result.reason,
        )

    # Submissions

    @app.post(
        "/tasks/{task_id}/submissions/from-artifacts",
        response_model=list[SubmissionRecord],
        status_code=201,
    )
    def submissions_from_artifacts(
        task_id: str, payload: FromArtifactsRequest, request: Request
    ) -> list[SubmissionRecord]:
        submissions = _get_orchestrator(request).submissions
        with _translate_errors():
            return submissions.create_from_artifacts(task_id, artifact_ids=payload.artifact_ids)

    @app.post(
        "/tasks/{task_id}/submissions/from-dependencies",
        response_model=list[SubmissionRecord],
        status_code=201,
    )
    def submissions_from_dependencies(
        task_id: str, payload: FromDependenciesRequest, request: Request
    ) -> list[SubmissionRecord]:
        submissions = _get_orchestrator(request).submissions
        with _translate_errors():
            return submissions.create_from_dependencies(
                task_id, dependency_task_ids=payload.dependency_task_ids
            )

    @app.get("/tasks/{task_id}/submissions", response_model=list[SubmissionRecord])
    def list_task_submissions(task_id: str, request: Request) -> list[SubmissionRecord]:
        return _get_orchestrator(request).repository.list_submissions(task_id=task_id)

    @app.post("/tasks/{task_id}/submissions/send-all", response_model=SendAllResponse)
    def send_all_submissions(task_id: str, request: Request) -> SendAllResponse:
        submissions = _get_orchestrator(request).submissions
        with _translate_errors():
            result = submissions.send_all_for_task(task_id)
        return SendAllResponse(
            sent=result.sent, failed=result.failed, task_completed=result.task_completed
        )

    @app.delete("/tasks/{task_id}/submissions")
    def reset_submissions(task_id: str, request: Request) -> dict[str, int]:
        submissions = _get_orchestrator(request).submissions
        return {"deleted": submissions.reset_for_task(task_id)}

    @app.post("/submissions/{submission_id}/ready", response_model=SubmissionRecord)
    def mark_submission_ready(submission_id: str, request: Request) -> SubmissionRecord:
        submissions = _get_orchestrator(request).submissions
        with _translate_errors():
            return submissions.mark_ready(submission_id)

    @app.post("/submissions/{submission_id}/send", response_model=SubmissionRecord)
    def send_submission(submission_id: str, request: Request) -> SubmissionRecord:
        submissions = _get_orchestrator(request).submissions
        with _translate_errors():
            return submissions.send(submission_id)

    @app.post("/submissions/{submission_id}/events", response_model=SubmissionRecord)
    def record_submission_event(
        submission_id: str, payload: TrackingEventRequest, request: Request
    ) -> SubmissionRecord:
        submissions = _get_orchestrator(request).submissions
        with _translate_errors():
            return submissions.record_event(submission_id, payload.event)

    @app.post("/submissions/{submission_id}/replies", response_model=SubmissionRecord)
    def add_submission_reply(
        submission_id: str, payload: ReplyRequest, request: Request
    ) -> SubmissionRecord:
        submissions = _get_orchestrator(request).submissions
        with _translate_errors():
            return submissions.add_reply(
                submission_id,
                body=payload.body,
                sender=payload.sender,
                sender_name=payload.sender_name,
                subject=payload.subject,
            )

    @app.post("/submissions/{submission_id}/retry", response_model=SubmissionRecord)
    def retry_submission(submission_id: str, request: Request) -> SubmissionRecord:
        submissions = _get_orchestrator(request).submissions
        with _translate_errors():
            return submissions.retry(submission_id)

    return app


app = create_app()
