"""Mark tasks completed and make sure dependents find out.

The primary path asks the orchestrator's own completion endpoint to do the
work. When that endpoint is unreachable after every retry, the status
update and dependent propagation run locally instead, so a task is never left
completed with its downstream work stuck behind it.
"""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Callable
from typing import Any, Protocol
from urllib import error, request

from renewal_orchestrator.config.settings import Settings
from renewal_orchestrator.errors import CompletionError, PropagationError, TaskNotFoundError
from renewal_orchestrator.propagation import PropagationResult, Trigger, propagate
from renewal_orchestrator.storage.models import utc_now
from renewal_orchestrator.storage.repository import WorkflowRepository

logger = logging.getLogger(__name__)


class CompletionClient(Protocol):
    def complete(self, task_id: str, *, completed_by: str | None = None) -> dict[str, Any]: ...


class HttpCompletionClient:
    """POSTs to ``{base_url}/tasks/{task_id}/complete``."""

    def __init__(self, base_url: str, *, timeout_s: float = 10.0) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout_s = timeout_s

    def complete(self, task_id: str, *, completed_by: str | None = None) -> dict[str, Any]:
        payload: dict[str, Any] = {}
        if completed_by:
            payload["completed_by"] = completed_by
        req = request.Request(
            url=f"{self.base_url}/tasks/{task_id}/complete",
            data=json.dumps(payload).encode("utf-8"),
            method="POST",
            headers={"Content-Type": "application/json"},
        )
        try:
            with request.urlopen(req, timeout=self.timeout_s) as response:
                body = response.read().decode("utf-8")
        except error.HTTPError as exc:
            raw_error = exc.read().decode("utf-8", errors="replace")
            raise error.HTTPError(
                exc.url,
                exc.code,
                f"Completion endpoint failed: {raw_error}",
                exc.headers,
                exc.fp,
            ) from exc
        parsed = json.loads(body) if body else {}
        return parsed if isinstance(parsed, dict) else {}


class CompletionService:
    def __init__(
        self,
        repository: WorkflowRepository,
        settings: Settings,
        *,
        client: CompletionClient | None = None,
        trigger: Trigger | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.repository = repository
        self.settings = settings
        self.trigger = trigger
        self._sleep = sleep
        if client is None:
            base_url = settings.resolved_completion_base_url()
            if base_url:
                client = HttpCompletionClient(base_url, timeout_s=settings.completion_timeout_s)
        self.client = client

    def complete(self, task_id: str, *, completed_by: str | None = None) -> None:
        """Complete a task through the endpoint, falling back to a local update.

        Raises ``CompletionError`` if the local status update fails and
        ``PropagationError`` if the status was committed but dependents could
        not be updated.
        """
        client = self.client
        if client is not None and self._complete_remotely(client, task_id, completed_by):
            return

        logger.warning("completion event=fallback task_id=%s", task_id)
        self.complete_locally(task_id, completed_by=completed_by)

    def complete_locally(
        self, task_id: str, *, completed_by: str | None = None
    ) -> PropagationResult:
        try:
            current = self.repository.require_task(task_id)
            changes: dict[str, Any] = {"status": "completed", "error": None}
            if current.completed_at is None or current.status != "completed":
                changes["completed_at"] = utc_now()
            if completed_by:
                changes["completed_by"] = completed_by
            self.repository.update_task(task_id, **changes)
        except TaskNotFoundError:
            raise
        except Exception as exc:
            raise CompletionError(f"Could not mark task {task_id} completed: {exc}") from exc

        try:
            result = propagate(self.repository, task_id, self.trigger)
        except Exception as exc:
            logger.exception("completion event=propagation_failed task_id=%s", task_id)
            raise PropagationError(task_id, exc) from exc

        logger.info(
            "completion event=completed task_id=%s unblocked=%d triggered=%d trigger_failed=%d",
            task_id,
            len(result.unblocked),
            len(result.triggered),
            len(result.trigger_failed),
        )
        return result

    def _complete_remotely(
        self, client: CompletionClient, task_id: str, completed_by: str | None
    ) -> bool:
        attempts = self.settings.completion_max_retries + 1
        for attempt in range(attempts):
            try:
                client.complete(task_id, completed_by=completed_by)
                logger.info(
                    "completion event=primary_ok task_id=%s attempt=%d", task_id, attempt + 1
                )
                return True
            except Exception as exc:
                logger.warning(
                    "completion event=primary_failed task_id=%s attempt=%d/%d reason=%s",
                    task_id,
                    attempt + 1,
                    attempts,
                    exc,
                )
                if attempt < attempts - 1:
                    self._sleep(self.settings.completion_backoff_s * 2**attempt)
        return False
