"""Records shared by the orchestration core, the API and the storage backends."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any, Literal
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator

# Capability tags: human-manual, human-approval-gated, ai-automated, blocked-on-upstream.
TaskTag = Literal["manual", "approval", "ai", "waiting"]
TaskStatus = Literal["upcoming", "needs_attention", "completed", "failed"]
JobStatus = Literal["queued", "processing", "completed", "failed"]
SubmissionStatus = Literal[
    "draft",
    "ready",
    "sending",
    "sent",
    "opened",
    "clicked",
    "replied",
    "bounced",
    "failed",
]
MessageKind = Literal["start", "result", "validation", "completion", "error", "user"]


def utc_now() -> datetime:
    return datetime.now(tz=UTC)


def new_id() -> str:
    return str(uuid4())


class PredefinedButton(BaseModel):
    label: str
    action: str


class DependencyRef(BaseModel):
    """One dependency entry: an instance id or a template id.

    Instance ids are authoritative; template ids only resolve inside the
    dependent's own company.
    """

    kind: Literal["instance", "template"] = "instance"
    ref: str

    @classmethod
    def parse(cls, raw: Any) -> DependencyRef:
        if isinstance(raw, DependencyRef):
            return raw
        if isinstance(raw, dict):
            return cls.model_validate(raw)
        text = str(raw).strip()
        prefix, sep, rest = text.partition(":")
        if sep and prefix in ("instance", "template") and rest:
            return cls(kind=prefix, ref=rest)
        return cls(kind="instance", ref=text)

    @classmethod
    def by_instance(cls, task_id: str) -> DependencyRef:
        return cls(kind="instance", ref=task_id)

    @classmethod
    def by_template(cls, template_id: str) -> DependencyRef:
        return cls(kind="template", ref=template_id)


class TaskTemplate(BaseModel):
    """Administrator-authored definition that task instances are spawned from."""

    template_id: str
    name: str
    description: str = ""
    system_prompt: str = ""
    test_criteria: str = ""
    # Template ids of the templates this one waits on.
    dependencies: list[str] = Field(default_factory=list)
    tag: TaskTag = "manual"
    phase: str = ""
    sort_order: int = 0
    predefined_buttons: list[PredefinedButton] = Field(default_factory=list)
    creates_submissions: bool = False


class TaskInstance(BaseModel):
    """One template applied to one company."""

    task_id: str = Field(default_factory=new_id)
    company_id: str
    template_id: str | None = None
    name: str
    description: str = ""
    tag: TaskTag = "manual"
    phase: str = ""
    sort_order: int = 0
    # Snapshot of the template's instructions, backfilled lazily.
    system_prompt: str = ""
    test_criteria: str = ""
    predefined_buttons: list[PredefinedButton] = Field(default_factory=list)
    dependencies: list[DependencyRef] = Field(default_factory=list)
    status: TaskStatus = "upcoming"
    completed_by: str | None = None
    completed_at: datetime | None = None
    error: str | None = None
    last_synced_at: datetime | None = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @field_validator("dependencies", mode="before")
    @classmethod
    def _coerce_dependencies(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, list):
            return [DependencyRef.parse(item) for item in value]
        return value

    @property
    def is_ai(self) -> bool:
        return self.tag == "ai"


class JobRecord(BaseModel):
    """Progress projection of the latest AI execution attempt for a task."""

    task_id: str
    company_id: str
    status: JobStatus = "queued"
    progress: str = ""
    error: str | None = None
    created_at: datetime = Field(default_factory=utc_now)
    started_at: datetime | None = None
    completed_at: datetime | None = None
    updated_at: datetime = Field(default_factory=utc_now)


class ArtifactRecord(BaseModel):
    artifact_id: str = Field(default_factory=new_id)
    task_id: str
    company_id: str
    name: str
    body: str
    description: str = ""
    source_id: str | None = None
    artifact_index: int | None = None
    total_artifacts: int | None = None
    tags: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class ChatMessage(BaseModel):
    """Append-only conversation log entry for a task."""

    message_id: str = Field(default_factory=new_id)
    task_id: str
    role: Literal["assistant", "user"] = "assistant"
    kind: MessageKind = "result"
    content: str
    system_generated: bool = True
    has_artifact: bool = False
    created_at: datetime = Field(default_factory=utc_now)


class SubmissionAttachment(BaseModel):
    artifact_id: str
    name: str
    task_name: str = ""


class SubmissionReply(BaseModel):
    sender: str = "underwriter@carrier.com"
    sender_name: str = "Underwriter"
    subject: str = ""
    body: str
    received_at: datetime = Field(default_factory=utc_now)


class SubmissionTracking(BaseModel):
    opens: int = 0
    clicks: int = 0
    delivered_at: datetime | None = None
    last_opened_at: datetime | None = None
    last_clicked_at: datetime | None = None
    bounce_reason: str | None = None


class SubmissionRecord(BaseModel):
    """One outbound message to one carrier."""

    submission_id: str = Field(default_factory=new_id)
    company_id: str
    task_id: str
    carrier_name: str
    carrier_email: str
    subject: str
    body: str
    attachments: list[SubmissionAttachment] = Field(default_factory=list)
    status: SubmissionStatus = "draft"
    replies: list[SubmissionReply] = Field(default_factory=list)
    tracking: SubmissionTracking = Field(default_factory=SubmissionTracking)
    email_id: str | None = None
    sent_at: datetime | None = None
    notes: str | None = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class CompanyRecord(BaseModel):
    company_id: str
    name: str
    facts: dict[str, Any] = Field(default_factory=dict)
