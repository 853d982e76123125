"""Shared test doubles and record builders."""

from __future__ import annotations

import threading
from collections.abc import Callable
from typing import Any

from renewal_orchestrator.prompts import VALIDATOR_SYSTEM_PROMPT
from renewal_orchestrator.storage.models import TaskInstance
from renewal_orchestrator.storage.repository import WorkflowRepository

COMPANY_ID = "acme"

BODY = (
    "# Renewal summary\n\n"
    "Acme Manufacturing renews its workers compensation and general liability "
    "program on 1 July. Payroll grew 12% and there were no lost-time claims."
)


def artifact_block(body: str = BODY, artifact_id: str | None = None) -> str:
    attrs = f' id="{artifact_id}"' if artifact_id else ""
    return f"<artifact{attrs}>\n{body}\n</artifact>"


def document_response(*ids: str, commentary: str = "Here is the draft you asked for.") -> str:
    blocks = [artifact_block(f"{BODY}\n\nPrepared for {item}.", item) for item in ids or ("",)]
    return commentary + "\n\n" + "\n\n".join(blocks)


class FakeGenerator:
    """Scripted stand-in for the LLM: one reply for generation, one for validation."""

    def __init__(
        self,
        response: str | Callable[[str, str], str] = "",
        *,
        verdict: str = "PASS\nThe document covers every required item.",
    ) -> None:
        self.response = response or document_response("summary")
        self.verdict = verdict
        self.calls: list[dict[str, Any]] = []
        self._lock = threading.Lock()

    @property
    def generation_calls(self) -> list[dict[str, Any]]:
        return [call for call in self.calls if call["system_prompt"] != VALIDATOR_SYSTEM_PROMPT]

    @property
    def validation_calls(self) -> list[dict[str, Any]]:
        return [call for call in self.calls if call["system_prompt"] == VALIDATOR_SYSTEM_PROMPT]

    def generate(
        self,
        *,
        system_prompt: str,
        user_prompt: str,
        temperature: float | None = None,
    ) -> str:
        with self._lock:
            self.calls.append(
                {
                    "system_prompt": system_prompt,
                    "user_prompt": user_prompt,
                    "temperature": temperature,
                }
            )
        if system_prompt == VALIDATOR_SYSTEM_PROMPT:
            return self.verdict
        if callable(self.response):
            return self.response(system_prompt, user_prompt)
        return self.response


def make_task(repository: WorkflowRepository, name: str = "Task", **fields: Any) -> TaskInstance:
    fields.setdefault("company_id", COMPANY_ID)
    return repository.create_task(TaskInstance(name=name, **fields))
