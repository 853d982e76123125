"""Typed access to workflow records on top of any DocumentStore."""

from __future__ import annotations

from typing import Any, TypeVar

from pydantic import BaseModel

from renewal_orchestrator.errors import TaskNotFoundError
from renewal_orchestrator.storage.base import DocumentStore
from renewal_orchestrator.storage.models import (
    ArtifactRecord,
    ChatMessage,
    CompanyRecord,
    JobRecord,
    SubmissionRecord,
    TaskInstance,
    TaskTemplate,
    utc_now,
)

TModel = TypeVar("TModel", bound=BaseModel)

TEMPLATES = "task_templates"
TASKS = "company_tasks"
JOBS = "ai_task_jobs"
ARTIFACTS = "artifacts"
MESSAGES = "task_messages"
SUBMISSIONS = "submissions"
COMPANIES = "companies"


class WorkflowRepository:
    """Read/write workflow records; knows nothing about orchestration rules."""

    def __init__(self, store: DocumentStore) -> None:
        self.store = store

    def migrate(self) -> None:
        self.store.migrate()

    # Templates

    def upsert_template(self, template: TaskTemplate) -> TaskTemplate:
        self._put(TEMPLATES, template.template_id, template)
        return template

    def get_template(self, template_id: str) -> TaskTemplate | None:
        return self._get(TEMPLATES, template_id, TaskTemplate)

    def list_templates(self) -> list[TaskTemplate]:
        templates = self._find(TEMPLATES, TaskTemplate)
        return sorted(templates, key=lambda item: (item.sort_order, item.name))

    # Companies

    def upsert_company(self, company: CompanyRecord) -> CompanyRecord:
        self._put(COMPANIES, company.company_id, company)
        return company

    def get_company(self, company_id: str) -> CompanyRecord | None:
        return self._get(COMPANIES, company_id, CompanyRecord)

    # Task instances

    def create_task(self, task: TaskInstance) -> TaskInstance:
        self._put(TASKS, task.task_id, task)
        return task

    def get_task(self, task_id: str) -> TaskInstance | None:
        return self._get(TASKS, task_id, TaskInstance)

    def require_task(self, task_id: str) -> TaskInstance:
        task = self.get_task(task_id)
        if task is None:
            raise TaskNotFoundError("Task", task_id)
        return task

    def list_tasks(self, company_id: str | None = None) -> list[TaskInstance]:
        filters = {"company_id": company_id} if company_id is not None else {}
        tasks = self._find(TASKS, TaskInstance, **filters)
        return sorted(tasks, key=lambda item: (item.sort_order, item.created_at))

    def find_tasks_by_template(self, template_id: str, company_id: str) -> list[TaskInstance]:
        return self._find(TASKS, TaskInstance, template_id=template_id, company_id=company_id)

    def update_task(self, task_id: str, **changes: Any) -> TaskInstance:
        """Apply a partial update while keeping unspecified fields unchanged."""
        current = self.require_task(task_id)
        updated = current.model_copy(update={**changes, "updated_at": utc_now()})
        self._put(TASKS, task_id, updated)
        return updated

    # Jobs

    def get_job(self, task_id: str) -> JobRecord | None:
        return self._get(JOBS, task_id, JobRecord)

    def save_job(self, job: JobRecord) -> JobRecord:
        self._put(JOBS, job.task_id, job)
        return job

    # Artifacts

    def list_artifacts(self, task_id: str) -> list[ArtifactRecord]:
        artifacts = self._find(ARTIFACTS, ArtifactRecord, task_id=task_id)
        return sorted(
            artifacts,
            key=lambda item: (
                item.artifact_index if item.artifact_index is not None else -1,
                item.created_at,
            ),
        )

    def get_artifact(self, artifact_id: str) -> ArtifactRecord | None:
        return self._get(ARTIFACTS, artifact_id, ArtifactRecord)

    def save_artifact(self, artifact: ArtifactRecord) -> ArtifactRecord:
        self._put(ARTIFACTS, artifact.artifact_id, artifact)
        return artifact

    def delete_artifact(self, artifact_id: str) -> bool:
        return self.store.delete(ARTIFACTS, artifact_id)

    def delete_artifacts_for_task(self, task_id: str) -> int:
        deleted = 0
        for artifact in self.list_artifacts(task_id):
            if self.delete_artifact(artifact.artifact_id):
                deleted += 1
        return deleted

    # Conversation log

    def append_message(self, message: ChatMessage) -> ChatMessage:
        self._put(MESSAGES, message.message_id, message)
        return message

    def list_messages(self, task_id: str) -> list[ChatMessage]:
        messages = self._find(MESSAGES, ChatMessage, task_id=task_id)
        return sorted(messages, key=lambda item: item.created_at)

    # Submissions

    def save_submission(self, submission: SubmissionRecord) -> SubmissionRecord:
        submission = submission.model_copy(update={"updated_at": utc_now()})
        self._put(SUBMISSIONS, submission.submission_id, submission)
        return submission

    def get_submission(self, submission_id: str) -> SubmissionRecord | None:
        return self._get(SUBMISSIONS, submission_id, SubmissionRecord)

    def require_submission(self, submission_id: str) -> SubmissionRecord:
        submission = self.get_submission(submission_id)
        if submission is None:
            raise TaskNotFoundError("Submission", submission_id)
        return submission

    def list_submissions(
        self,
        *,
        task_id: str | None = None,
        company_id: str | None = None,
        status: str | None = None,
    ) -> list[SubmissionRecord]:
        filters: dict[str, Any] = {}
        if task_id is not None:
            filters["task_id"] = task_id
        if company_id is not None:
            filters["company_id"] = company_id
        if status is not None:
            filters["status"] = status
        submissions = self._find(SUBMISSIONS, SubmissionRecord, **filters)
        return sorted(submissions, key=lambda item: item.created_at)

    def delete_submission(self, submission_id: str) -> bool:
        return self.store.delete(SUBMISSIONS, submission_id)

    def _put(self, collection: str, doc_id: str, record: BaseModel) -> None:
        self.store.put(collection, doc_id, record.model_dump(mode="json"))

    def _get(self, collection: str, doc_id: str, model: type[TModel]) -> TModel | None:
        raw = self.store.get(collection, doc_id)
        if raw is None:
            return None
        return model.model_validate(raw)

    def _find(self, collection: str, model: type[TModel], **filters: Any) -> list[TModel]:
        return [model.model_validate(raw) for raw in self.store.find(collection, **filters)]
