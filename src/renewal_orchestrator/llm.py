"""Text generation for task runs and validation.

Only single-shot chat completions are needed: one system prompt, one user
prompt, one reply. The OpenAI adapter talks to the REST endpoint directly.
"""

from __future__ import annotations

import json
import logging
import time
from typing import Any, Protocol
from urllib import error, request

from renewal_orchestrator.config.settings import Settings

logger = logging.getLogger(__name__)

RETRYABLE_ERRORS = (TimeoutError, ValueError, error.URLError)


class GenerationService(Protocol):
    """Single-shot text completion; no tool calling."""

    def generate(
        self,
        *,
        system_prompt: str,
        user_prompt: str,
        temperature: float | None = None,
    ) -> str: ...


class OpenAIChatCompletionsAdapter:
    def __init__(
        self,
        *,
        api_key: str,
        model: str = "gpt-4o-mini",
        base_url: str = "https://api.openai.com/v1",
        timeout_s: float = 120.0,
        max_retries: int = 1,
        backoff_s: float = 0.2,
        trace: bool = False,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.endpoint = f"{base_url.rstrip('/')}/chat/completions"
        self.timeout_s = timeout_s
        self.max_retries = max(0, max_retries)
        self.backoff_s = max(0.0, backoff_s)
        self.trace = trace

    def generate(
        self,
        *,
        system_prompt: str,
        user_prompt: str,
        temperature: float | None = None,
    ) -> str:
        body: dict[str, Any] = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
        }
        if temperature is not None:
            body["temperature"] = temperature

        attempts = self.max_retries + 1
        for attempt in range(1, attempts + 1):
            try:
                return reply_text(self._post(body))
            except RETRYABLE_ERRORS as exc:
                logger.warning(
                    "llm event=request_failed model=%s attempt=%d/%d reason=%s",
                    self.model,
                    attempt,
                    attempts,
                    exc,
                )
                if attempt == attempts:
                    raise
                time.sleep(self.backoff_s)
        raise RuntimeError("unreachable")

    def _post(self, body: dict[str, Any]) -> dict[str, Any]:
        if self.trace:
            logger.info("llm event=trace_request model=%s url=%s", self.model, self.endpoint)
        req = request.Request(
            url=self.endpoint,
            data=json.dumps(body).encode("utf-8"),
            method="POST",
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
            },
        )
        try:
            with request.urlopen(req, timeout=self.timeout_s) as response:
                raw = response.read().decode("utf-8")
        except error.HTTPError as exc:
            detail = exc.read().decode("utf-8", errors="replace")
            raise error.HTTPError(
                exc.url, exc.code, f"Chat completion failed: {detail}", exc.headers, exc.fp
            ) from exc
        if self.trace:
            logger.info("llm event=trace_response model=%s bytes=%d", self.model, len(raw))
        return json.loads(raw)


def reply_text(response_json: dict[str, Any]) -> str:
    """Pull the assistant text out of a chat-completions response."""
    choices = response_json.get("choices") or []
    if not choices:
        raise ValueError("Chat completion response has no choices")

    content = choices[0].get("message", {}).get("content", "")
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        joined = "".join(
            part["text"]
            for part in content
            if isinstance(part, dict) and isinstance(part.get("text"), str)
        ).strip()
        if joined:
            return joined
    raise ValueError("Chat completion content is not text")


def build_generation_service(settings: Settings) -> GenerationService | None:
    """Return the configured adapter, or None when credentials are missing."""
    api_key = settings.resolved_openai_api_key()
    if settings.llm_provider.lower() != "openai" or not api_key:
        return None
    return OpenAIChatCompletionsAdapter(
        api_key=api_key,
        model=settings.llm_model,
        base_url=settings.llm_base_url,
        timeout_s=settings.llm_timeout_s,
        max_retries=settings.llm_max_retries,
        backoff_s=settings.llm_backoff_s,
        trace=settings.llm_trace,
    )
