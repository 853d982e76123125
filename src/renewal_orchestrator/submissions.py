"""Outbound carrier submissions: drafting from artifacts, sending and tracking.

Status moves forward only::

    draft -> ready -> sending -> sent -> opened -> clicked -> replied
                                    \\-> bounced        sending -> failed -> ready

A task that emails carriers is gated on its submissions: once every one of
them has reached ``sent`` or better, the task is completed through the same
completion path the worker uses.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Literal

from renewal_orchestrator.completion import CompletionService
from renewal_orchestrator.errors import InvalidTransitionError
from renewal_orchestrator.mailer import EmailSender, OutboundEmail
from renewal_orchestrator.propagation import resolve_dependency
from renewal_orchestrator.storage.models import (
    ArtifactRecord,
    SubmissionAttachment,
    SubmissionRecord,
    SubmissionReply,
    SubmissionStatus,
    TaskInstance,
    utc_now,
)
from renewal_orchestrator.storage.repository import WorkflowRepository

logger = logging.getLogger(__name__)

TrackingEvent = Literal["delivered", "opened", "clicked", "bounced"]

ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    "draft": frozenset({"ready", "sending"}),
    "ready": frozenset({"sending"}),
    "sending": frozenset({"sent", "failed"}),
    "sent": frozenset({"opened", "clicked", "replied", "bounced"}),
    "opened": frozenset({"clicked", "replied"}),
    "clicked": frozenset({"replied"}),
    "replied": frozenset(),
    "bounced": frozenset(),
    "failed": frozenset({"ready", "sending"}),
}
SENT_OR_BETTER = frozenset({"sent", "opened", "clicked", "replied"})
SENDABLE = frozenset({"draft", "ready", "failed"})

MIN_BODY_LENGTH = 100
# Completed tasks whose documents travel with every submission.
ATTACHMENT_KEYWORDS = (
    "acord",
    "loss run",
    "narrative",
    "coverage suggestion",
    "payroll",
    "application",
)

_SUBJECT_RE = re.compile(r"^\s*subject:\s*(?P<subject>.+?)\s*$", re.IGNORECASE | re.MULTILINE)
_EMAIL_IN_TEXT_RE = re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}")
_DEAR_EMAIL_RE = re.compile(
    r"Dear\s+(?P<email>[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,})", re.IGNORECASE
)
_CARRIER_LINE_RE = re.compile(r"(?:Carrier|Company|To):\s*(?P<name>[^\n]+)", re.IGNORECASE)


@dataclass
class SendAllResult:
    sent: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    task_completed: bool = False


@dataclass(frozen=True)
class _Draft:
    carrier_name: str
    body: str


def extract_subject(body: str, task_name: str, carrier_name: str) -> str:
    match = _SUBJECT_RE.search(body)
    if match:
        return match.group("subject")
    return f"{task_name} - {carrier_name or 'Submission'}"


def extract_carrier_email(body: str, carrier_name: str = "") -> str:
    """Address from a ``Dear x@y`` greeting, any address in the body, or a placeholder."""
    dear = _DEAR_EMAIL_RE.search(body)
    if dear:
        return dear.group("email")
    match = _EMAIL_IN_TEXT_RE.search(body)
    if match:
        return match.group(0)
    slug = re.sub(r"\s+", "", (carrier_name or "carrier").lower())
    return f"underwriter@{slug}.com"


def carrier_name_for(artifact: ArtifactRecord) -> str:
    source_id = artifact.source_id or ""
    if source_id.endswith("-email"):
        parts = source_id[: -len("-email")].split("-")
        return " ".join(part.capitalize() for part in parts if part)
    if artifact.name:
        return artifact.name
    match = _CARRIER_LINE_RE.search(artifact.body)
    return match.group("name").strip() if match else ""


class SubmissionService:
    def __init__(
        self,
        repository: WorkflowRepository,
        sender: EmailSender,
        *,
        completion: CompletionService | None = None,
    ) -> None:
        self.repository = repository
        self.sender = sender
        self.completion = completion

    def create_from_artifacts(
        self,
        task_id: str,
        *,
        artifact_ids: Iterable[str] | None = None,
    ) -> list[SubmissionRecord]:
        """One ready submission per carrier-specific artifact of the task itself."""
        task = self.repository.require_task(task_id)
        artifacts = self.repository.list_artifacts(task_id)
        if artifact_ids is not None:
            wanted = set(artifact_ids)
            artifacts = [artifact for artifact in artifacts if artifact.artifact_id in wanted]
        drafts = [
            _Draft(carrier_name=carrier_name_for(artifact), body=artifact.body)
            for artifact in artifacts
        ]
        return self._create(task, drafts, attachments=[])

    def create_from_dependencies(
        self,
        task_id: str,
        *,
        dependency_task_ids: Iterable[str] | None = None,
    ) -> list[SubmissionRecord]:
        """Draft submissions from the documents produced by upstream tasks.

        Upstream artifacts become message bodies; documents of completed tasks
        matching ``ATTACHMENT_KEYWORDS`` are attached to every submission.
        """
        task = self.repository.require_task(task_id)
        if dependency_task_ids is None:
            upstream_ids = []
            for ref in task.dependencies:
                upstream = resolve_dependency(self.repository, ref, task.company_id)
                if upstream is not None:
                    upstream_ids.append(upstream.task_id)
        else:
            upstream_ids = list(dependency_task_ids)

        drafts = []
        for upstream_id in upstream_ids:
            for artifact in self.repository.list_artifacts(upstream_id):
                drafts.append(_Draft(carrier_name=carrier_name_for(artifact), body=artifact.body))
        return self._create(task, drafts, attachments=self._collect_attachments(task.company_id))

    def mark_ready(self, submission_id: str) -> SubmissionRecord:
        submission = self.repository.require_submission(submission_id)
        return self._transition(submission, "ready")

    def send(self, submission_id: str) -> SubmissionRecord:
        submission = self.repository.require_submission(submission_id)
        if submission.status not in SENDABLE:
            raise InvalidTransitionError(
                f"Submission {submission_id}", submission.status, "sending"
            )
        submission = self._transition(submission, "sending")
        email = OutboundEmail(
            to=submission.carrier_email,
            subject=submission.subject,
            body=submission.body,
            attachment_names=[attachment.name for attachment in submission.attachments],
        )
        try:
            result = self.sender.send(email)
        except Exception as exc:
            logger.exception("submission event=send_error submission_id=%s", submission_id)
            return self._transition(submission, "failed", notes=f"Send error: {exc}")

        if not result.success:
            logger.warning(
                "submission event=send_failed submission_id=%s error=%s",
                submission_id,
                result.error,
            )
            return self._transition(submission, "failed", notes=result.error)

        now = utc_now()
        tracking = submission.tracking.model_copy(update={"delivered_at": now})
        logger.info(
            "submission event=sent submission_id=%s email_id=%s", submission_id, result.email_id
        )
        return self._transition(
            submission, "sent", email_id=result.email_id, sent_at=now, tracking=tracking
        )

    def send_all_for_task(self, task_id: str) -> SendAllResult:
        """Send every ready submission; complete the task once all are out."""
        self.repository.require_task(task_id)
        result = SendAllResult()
        for submission in self.repository.list_submissions(task_id=task_id, status="ready"):
            sent = self.send(submission.submission_id)
            if sent.status == "sent":
                result.sent.append(sent.submission_id)
            else:
                result.failed.append(sent.submission_id)

        submissions = self.repository.list_submissions(task_id=task_id)
        all_out = bool(submissions) and all(item.status in SENT_OR_BETTER for item in submissions)
        if all_out and self.completion is not None:
            self.completion.complete(task_id, completed_by="Submission dispatch")
            result.task_completed = True
        logger.info(
            "submission event=send_all task_id=%s sent=%d failed=%d task_completed=%s",
            task_id,
            len(result.sent),
            len(result.failed),
            result.task_completed,
        )
        return result

    def record_event(self, submission_id: str, event: TrackingEvent) -> SubmissionRecord:
        """Apply a delivery-tracking event. Counters always move; status only forward."""
        submission = self.repository.require_submission(submission_id)
        if submission.status not in SENT_OR_BETTER and submission.status != "bounced":
            raise InvalidTransitionError(f"Submission {submission_id}", submission.status, event)

        now = utc_now()
        tracking = submission.tracking
        target: str | None = None
        if event == "delivered":
            tracking = tracking.model_copy(update={"delivered_at": tracking.delivered_at or now})
        elif event == "opened":
            tracking = tracking.model_copy(
                update={"opens": tracking.opens + 1, "last_opened_at": now}
            )
            target = "opened"
        elif event == "clicked":
            tracking = tracking.model_copy(
                update={"clicks": tracking.clicks + 1, "last_clicked_at": now}
            )
            target = "clicked"
        elif event == "bounced":
            if submission.status != "sent":
                raise InvalidTransitionError(
                    f"Submission {submission_id}", submission.status, "bounced"
                )
            tracking = tracking.model_copy(update={"bounce_reason": "bounced"})
            target = "bounced"

        if target is not None and target in ALLOWED_TRANSITIONS[submission.status]:
            return self._transition(submission, target, tracking=tracking)
        return self.repository.save_submission(submission.model_copy(update={"tracking": tracking}))

    def add_reply(
        self,
        submission_id: str,
        *,
        body: str,
        sender: str = "underwriter@carrier.com",
        sender_name: str = "Underwriter",
        subject: str = "",
    ) -> SubmissionRecord:
        submission = self.repository.require_submission(submission_id)
        if submission.status not in SENT_OR_BETTER:
            raise InvalidTransitionError(
                f"Submission {submission_id}", submission.status, "replied"
            )
        reply = SubmissionReply(
            sender=sender,
            sender_name=sender_name,
            subject=subject or f"Re: {submission.subject}",
            body=body,
        )
        updated = submission.model_copy(
            update={"replies": [*submission.replies, reply], "status": "replied"}
        )
        logger.info(
            "submission event=reply submission_id=%s replies=%d",
            submission_id,
            len(updated.replies),
        )
        return self.repository.save_submission(updated)

    def retry(self, submission_id: str) -> SubmissionRecord:
        submission = self.repository.require_submission(submission_id)
        if submission.status != "failed":
            raise InvalidTransitionError(f"Submission {submission_id}", submission.status, "ready")
        return self._transition(submission, "ready", notes=None)

    def reset_for_task(self, task_id: str) -> int:
        deleted = 0
        for submission in self.repository.list_submissions(task_id=task_id):
            if self.repository.delete_submission(submission.submission_id):
                deleted += 1
        logger.info("submission event=reset task_id=%s deleted=%d", task_id, deleted)
        return deleted

    def _create(
        self,
        task: TaskInstance,
        drafts: list[_Draft],
        *,
        attachments: list[SubmissionAttachment],
    ) -> list[SubmissionRecord]:
        created: list[SubmissionRecord] = []
        for draft in drafts:
            if not draft.carrier_name or len(draft.body) <= MIN_BODY_LENGTH:
                continue
            record = SubmissionRecord(
                company_id=task.company_id,
                task_id=task.task_id,
                carrier_name=draft.carrier_name,
                carrier_email=extract_carrier_email(draft.body, draft.carrier_name),
                subject=extract_subject(draft.body, task.name, draft.carrier_name),
                body=draft.body,
                attachments=attachments,
                status="ready",
            )
            created.append(self.repository.save_submission(record))
        logger.info(
            "submission event=created task_id=%s created=%d candidates=%d",
            task.task_id,
            len(created),
            len(drafts),
        )
        return created

    def _collect_attachments(self, company_id: str) -> list[SubmissionAttachment]:
        attachments: list[SubmissionAttachment] = []
        for task in self.repository.list_tasks(company_id):
            if task.status != "completed":
                continue
            lowered = task.name.lower()
            if not any(keyword in lowered for keyword in ATTACHMENT_KEYWORDS):
                continue
            for artifact in self.repository.list_artifacts(task.task_id):
                attachments.append(
                    SubmissionAttachment(
                        artifact_id=artifact.artifact_id,
                        name=artifact.name or task.name,
                        task_name=task.name,
                    )
                )
        return attachments

    def _transition(
        self,
        submission: SubmissionRecord,
        target: SubmissionStatus,
        **changes: object,
    ) -> SubmissionRecord:
        if target not in ALLOWED_TRANSITIONS[submission.status]:
            raise InvalidTransitionError(
                f"Submission {submission.submission_id}", submission.status, target
            )
        updated = submission.model_copy(update={**changes, "status": target})
        return self.repository.save_submission(updated)
