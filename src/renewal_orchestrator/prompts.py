"""Prompt text for generation and validation, plus log message wording."""

from __future__ import annotations

from renewal_orchestrator.context import TaskContext
from renewal_orchestrator.storage.models import TaskInstance

DEFAULT_INSTRUCTIONS = (
    "You are an AI assistant helping an insurance broker prepare a client's "
    "policy renewal. Complete the task described below using the company "
    "information provided."
)

ARTIFACT_REQUIREMENT = """\
## Output requirements
Your deliverable MUST be wrapped in artifact tags:

<artifact id="short-identifier">
...document content...
</artifact>

If the task calls for several separate documents (for example one email per
carrier), emit one artifact block per document, each with its own id.
Anything outside the artifact tags is treated as a short note to the broker."""

FORMAT_GUIDANCE = """\
## Formatting
Write documents in Markdown: use headings, bullet lists and tables where they
help, and keep the tone professional."""

VALIDATOR_SYSTEM_PROMPT = """\
You are a strict reviewer of work produced for an insurance broker.
Decide whether the result satisfies the completion criteria.

Respond with PASS or FAIL on the first line, followed by a brief explanation
on the following lines. Do not write anything before PASS or FAIL."""

MIN_COMMENTARY_LENGTH = 20
COMPLETED_PREFIX = "✅ Task completed!"


def build_system_prompt(instructions: str, task: TaskInstance, context: TaskContext) -> str:
    parts = [
        instructions.strip() or DEFAULT_INSTRUCTIONS,
        f"## Task\n**{task.name}**" + (f"\n\n{task.description}" if task.description else ""),
        ARTIFACT_REQUIREMENT,
        FORMAT_GUIDANCE,
    ]
    if not context.is_empty():
        parts.append("## Context\n\n" + context.render())
    return "\n\n".join(parts)


def build_user_prompt(task: TaskInstance) -> str:
    return f'Please complete the task "{task.name}" now.'


def build_validation_prompt(result_text: str, criteria: str) -> str:
    return (
        f"## Completion criteria\n{criteria.strip()}\n\n"
        f"## Result to review\n{result_text}\n\n"
        "Does the result satisfy the criteria? Answer PASS or FAIL."
    )


def is_pass(verdict: str) -> bool:
    return verdict.strip().upper().startswith("PASS")


def completion_commentary(commentary: str, document_count: int) -> str:
    """Conversation message for a finished generation."""
    if document_count == 0:
        text = commentary.strip()
        note = (
            "⚠️ No document was produced for this task, so it was not marked "
            "complete. Review the response and re-run the task if needed."
        )
        return f"{note}\n\n{text}" if text else note

    if len(commentary.strip()) < MIN_COMMENTARY_LENGTH:
        plural = "document" if document_count == 1 else "documents"
        return (
            f"I've completed the task and generated {document_count} {plural}. "
            "You can review them in the artifacts panel."
        )

    text = commentary.strip()
    if "✅" in text or "completed" in text.lower():
        return text
    return f"{COMPLETED_PREFIX}\n\n{text}"


def validation_message(verdict: str) -> str:
    label = "passed" if is_pass(verdict) else "did not pass"
    return f"Validation {label}.\n\n{verdict.strip()}"


def completion_summary(task: TaskInstance, document_count: int) -> str:
    plural = "document" if document_count == 1 else "documents"
    return (
        f"✅ **{task.name}** was completed by the AI System with "
        f"{document_count} {plural}. Dependent tasks have been notified."
    )
