"""Background execution of AI-tagged tasks.

One run loads the task, assembles context, asks the generator for the
deliverable, stores the extracted documents and, when the task carries a
completion rule that a validator accepts, completes the task. Progress is
mirrored onto the task's Job Record so a UI can poll it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from renewal_orchestrator.artifacts import persist_artifacts
from renewal_orchestrator.completion import CompletionService
from renewal_orchestrator.config.settings import Settings
from renewal_orchestrator.context import ContextAssembler
from renewal_orchestrator.errors import ConfigurationError, TaskNotApplicableError
from renewal_orchestrator.extraction import extract_artifacts
from renewal_orchestrator.llm import GenerationService
from renewal_orchestrator.prompts import (
    VALIDATOR_SYSTEM_PROMPT,
    build_system_prompt,
    build_user_prompt,
    build_validation_prompt,
    completion_commentary,
    completion_summary,
    is_pass,
    validation_message,
)
from renewal_orchestrator.storage.models import (
    ChatMessage,
    JobRecord,
    JobStatus,
    MessageKind,
    TaskInstance,
    utc_now,
)
from renewal_orchestrator.storage.repository import WorkflowRepository
from renewal_orchestrator.submissions import SubmissionService
from renewal_orchestrator.template_sync import backfill_instructions

logger = logging.getLogger(__name__)

AI_COMPLETED_BY = "AI System"


@dataclass
class WorkerOutcome:
    task_id: str
    skipped: bool = False
    documents: list[str] = field(default_factory=list)
    validated: bool | None = None
    completed: bool = False

    @property
    def has_document(self) -> bool:
        return bool(self.documents)


class AITaskWorker:
    def __init__(
        self,
        repository: WorkflowRepository,
        *,
        generator: GenerationService | None,
        context_assembler: ContextAssembler,
        completion: CompletionService,
        settings: Settings,
        submissions: SubmissionService | None = None,
    ) -> None:
        self.repository = repository
        self.generator = generator
        self.context_assembler = context_assembler
        self.completion = completion
        self.settings = settings
        self.submissions = submissions

    def mark_queued(self, task_id: str) -> JobRecord:
        """Write the queued Job Record a trigger creates before dispatching."""
        task = self.repository.require_task(task_id)
        if not task.is_ai:
            raise TaskNotApplicableError(f"Task {task_id} is not AI-automated (tag={task.tag})")
        job = JobRecord(task_id=task_id, company_id=task.company_id, progress="Queued")
        logger.info("task_run event=queued task_id=%s", task_id)
        return self.repository.save_job(job)

    def run(self, task_id: str, *, rerun: bool = False) -> WorkerOutcome:
        task = self.repository.require_task(task_id)
        if not task.is_ai:
            raise TaskNotApplicableError(f"Task {task_id} is not AI-automated (tag={task.tag})")

        if not rerun and self._already_done(task):
            logger.info("task_run event=skipped task_id=%s status=%s", task_id, task.status)
            job = self.repository.get_job(task_id)
            if job is not None and job.status == "queued":
                self._update_job(task, "completed", "Skipped: task already has a result")
            return WorkerOutcome(task_id=task_id, skipped=True)

        logger.info("task_run event=started task_id=%s rerun=%s", task_id, rerun)
        self._update_job(task, "processing", "Initializing AI task completion...")
        try:
            outcome = self._execute(task, rerun=rerun)
        except Exception as exc:
            logger.exception("task_run event=failed task_id=%s", task_id)
            self._update_job(task, "failed", f"Error: {exc}", error=str(exc))
            self._say(task_id, "error", f"❌ The AI run for this task failed: {exc}")
            raise

        self._update_job(task, "completed", "AI task processing completed successfully")
        logger.info(
            "task_run event=finished task_id=%s documents=%d validated=%s completed=%s",
            task_id,
            len(outcome.documents),
            outcome.validated,
            outcome.completed,
        )
        return outcome

    def validate(self, result_text: str, criteria: str) -> tuple[bool, str]:
        """Ask the generator, acting as a strict reviewer, for a PASS/FAIL verdict."""
        generator = self._require_generator()
        verdict = generator.generate(
            system_prompt=VALIDATOR_SYSTEM_PROMPT,
            user_prompt=build_validation_prompt(result_text, criteria),
            temperature=self.settings.validator_temperature,
        )
        return is_pass(verdict), verdict

    def _execute(self, task: TaskInstance, *, rerun: bool) -> WorkerOutcome:
        task_id = task.task_id
        generator = self._require_generator()
        outcome = WorkerOutcome(task_id=task_id)

        if rerun:
            removed = self.repository.delete_artifacts_for_task(task_id)
            if task.status == "completed":
                task = self.repository.update_task(
                    task_id, status="needs_attention", completed_at=None, completed_by=None
                )
            self._say(
                task_id, "start", f"🔄 Re-running task; {removed} earlier document(s) discarded."
            )

        self._update_job(task, "processing", "Syncing with task template...")
        task = backfill_instructions(self.repository, task)

        self._update_job(task, "processing", "Gathering company data and context...")
        context = self.context_assembler.get_context(task.company_id, task_id)

        self._update_job(task, "processing", "Generating AI response...")
        response = generator.generate(
            system_prompt=build_system_prompt(task.system_prompt, task, context),
            user_prompt=build_user_prompt(task),
        )

        self._update_job(task, "processing", "Saving AI response...")
        extraction = extract_artifacts(response, min_length=self.settings.artifact_min_length)
        self.repository.append_message(
            ChatMessage(
                task_id=task_id,
                kind="result",
                content=completion_commentary(extraction.commentary, len(extraction.documents)),
                has_artifact=extraction.has_document,
            )
        )

        if extraction.has_document:
            self._update_job(
                task, "processing", f"Saving {len(extraction.documents)} artifact(s)..."
            )
            saved = persist_artifacts(self.repository, task, extraction.documents)
            outcome.documents = [artifact.artifact_id for artifact in saved]
            self._create_submissions(task)

        if task.test_criteria.strip():
            self._update_job(task, "processing", "Running test validation...")
            passed, verdict = self.validate(response, task.test_criteria)
            outcome.validated = passed
            self._say(task_id, "validation", validation_message(verdict))
            logger.info("task_run event=validated task_id=%s passed=%s", task_id, passed)

        if outcome.has_document and outcome.validated:
            self._update_job(task, "processing", "Marking task as completed...")
            self._say(task_id, "completion", completion_summary(task, len(outcome.documents)))
            self.completion.complete(task_id, completed_by=AI_COMPLETED_BY)
            outcome.completed = True
        return outcome

    def _already_done(self, task: TaskInstance) -> bool:
        return task.status == "completed" or bool(self.repository.list_artifacts(task.task_id))

    def _require_generator(self) -> GenerationService:
        if self.generator is None:
            raise ConfigurationError(
                "No generation service configured; set RENEWAL_ORCHESTRATOR_OPENAI_API_KEY"
            )
        return self.generator

    def _create_submissions(self, task: TaskInstance) -> None:
        if self.submissions is None or task.template_id is None:
            return
        template = self.repository.get_template(task.template_id)
        if template is None or not template.creates_submissions:
            return
        self._update_job(task, "processing", "Creating email submissions...")
        try:
            created = self.submissions.create_from_dependencies(task.task_id)
        except Exception:
            logger.exception("task_run event=submissions_failed task_id=%s", task.task_id)
            return
        logger.info(
            "task_run event=submissions_created task_id=%s count=%d", task.task_id, len(created)
        )

    def _update_job(
        self,
        task: TaskInstance,
        status: JobStatus,
        progress: str,
        *,
        error: str | None = None,
    ) -> JobRecord:
        now = utc_now()
        job = self.repository.get_job(task.task_id) or JobRecord(
            task_id=task.task_id, company_id=task.company_id
        )
        changes: dict[str, object] = {
            "status": status,
            "progress": progress,
            "error": error,
            "updated_at": now,
        }
        if status == "processing" and job.status != "processing":
            changes["started_at"] = now
            changes["completed_at"] = None
        if status in ("completed", "failed"):
            changes["completed_at"] = now
        return self.repository.save_job(job.model_copy(update=changes))

    def _say(self, task_id: str, kind: MessageKind, content: str) -> None:
        self.repository.append_message(ChatMessage(task_id=task_id, kind=kind, content=content))
