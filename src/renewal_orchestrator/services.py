"""Wiring of the worker, completion service, submissions and dispatcher."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable

from renewal_orchestrator.completion import CompletionClient, CompletionService
from renewal_orchestrator.config.settings import Settings
from renewal_orchestrator.context import ContextAssembler, RepositoryContextAssembler
from renewal_orchestrator.dispatch import TaskDispatcher
from renewal_orchestrator.errors import InvalidTransitionError, TaskNotFoundError
from renewal_orchestrator.llm import GenerationService, build_generation_service
from renewal_orchestrator.mailer import EmailSender, MockEmailSender
from renewal_orchestrator.storage.models import (
    DependencyRef,
    JobRecord,
    TaskInstance,
    TaskStatus,
)
from renewal_orchestrator.storage.repository import WorkflowRepository
from renewal_orchestrator.submissions import SubmissionService
from renewal_orchestrator.worker import AITaskWorker, WorkerOutcome

logger = logging.getLogger(__name__)

# Status changes a person may make directly; completion goes through CompletionService.
HUMAN_TRANSITIONS: dict[str, frozenset[str]] = {
    "upcoming": frozenset({"needs_attention", "failed"}),
    "needs_attention": frozenset({"failed"}),
    "failed": frozenset({"needs_attention"}),
    "completed": frozenset(),
}


class Orchestrator:
    def __init__(
        self,
        repository: WorkflowRepository,
        settings: Settings,
        *,
        worker: AITaskWorker,
        completion: CompletionService,
        submissions: SubmissionService,
        dispatcher: TaskDispatcher,
    ) -> None:
        self.repository = repository
        self.settings = settings
        self.worker = worker
        self.completion = completion
        self.submissions = submissions
        self.dispatcher = dispatcher

    def trigger_task(self, task_id: str, *, rerun: bool = False) -> JobRecord:
        """Queue an AI run and return immediately with the queued Job Record."""
        job = self.worker.mark_queued(task_id)
        self.dispatcher.submit(task_id, rerun=rerun)
        return job

    def run_task_now(self, task_id: str, *, rerun: bool = False) -> WorkerOutcome:
        return self.worker.run(task_id, rerun=rerun)

    def set_status(self, task_id: str, status: TaskStatus, *, actor: str = "user") -> TaskInstance:
        task = self.repository.require_task(task_id)
        if status == task.status:
            return task
        if status == "completed":
            self.completion.complete(task_id, completed_by=actor)
            return self.repository.require_task(task_id)
        if status not in HUMAN_TRANSITIONS[task.status]:
            raise InvalidTransitionError(f"Task {task_id}", task.status, status)
        logger.info(
            "task_status event=changed task_id=%s from=%s to=%s actor=%s",
            task_id,
            task.status,
            status,
            actor,
        )
        return self.repository.update_task(task_id, status=status)

    def instantiate_company_tasks(self, company_id: str) -> list[TaskInstance]:
        """Create one task per template for a company, skipping ones that already exist."""
        if self.repository.get_company(company_id) is None:
            raise TaskNotFoundError("Company", company_id)

        created: list[TaskInstance] = []
        for template in self.repository.list_templates():
            if self.repository.find_tasks_by_template(template.template_id, company_id):
                continue
            task = TaskInstance(
                company_id=company_id,
                template_id=template.template_id,
                name=template.name,
                description=template.description,
                tag=template.tag,
                phase=template.phase,
                sort_order=template.sort_order,
                system_prompt=template.system_prompt,
                test_criteria=template.test_criteria,
                predefined_buttons=template.predefined_buttons,
                dependencies=[DependencyRef.by_template(dep) for dep in template.dependencies],
                status="upcoming" if template.dependencies else "needs_attention",
            )
            created.append(self.repository.create_task(task))
        logger.info(
            "company_tasks event=instantiated company_id=%s created=%d", company_id, len(created)
        )
        return created

    def shutdown(self) -> None:
        self.dispatcher.shutdown()


def build_orchestrator(
    settings: Settings,
    repository: WorkflowRepository,
    *,
    generator: GenerationService | None = None,
    context_assembler: ContextAssembler | None = None,
    email_sender: EmailSender | None = None,
    completion_client: CompletionClient | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> Orchestrator:
    dispatcher = TaskDispatcher(
        max_workers=settings.dispatch_max_workers,
        max_pending=settings.dispatch_max_pending,
        enqueue_timeout_s=settings.dispatch_enqueue_timeout_s,
    )
    completion = CompletionService(repository, settings, client=completion_client, sleep=sleep)
    submissions = SubmissionService(
        repository, email_sender or MockEmailSender(), completion=completion
    )
    worker = AITaskWorker(
        repository,
        generator=generator if generator is not None else build_generation_service(settings),
        context_assembler=context_assembler or RepositoryContextAssembler(repository),
        completion=completion,
        settings=settings,
        submissions=submissions,
    )
    orchestrator = Orchestrator(
        repository,
        settings,
        worker=worker,
        completion=completion,
        submissions=submissions,
        dispatcher=dispatcher,
    )
    # Dependents unblocked by a completion re-enter through the same trigger path.
    completion.trigger = orchestrator.trigger_task
    dispatcher.set_handler(lambda task_id, rerun: worker.run(task_id, rerun=rerun))
    return orchestrator
