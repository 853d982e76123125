from __future__ import annotations

import json
from typing import Any
from urllib import request

import pytest

from renewal_orchestrator import llm as llm_module
from renewal_orchestrator.config.settings import Settings
from renewal_orchestrator.llm import OpenAIChatCompletionsAdapter, build_generation_service


class _FakeHTTPResponse:
    def __init__(self, payload: dict[str, object]) -> None:
        self._raw_body = json.dumps(payload).encode("utf-8")

    def read(self) -> bytes:
        return self._raw_body

    def __enter__(self) -> _FakeHTTPResponse:
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        _ = (exc_type, exc, tb)
        return False


def _install_urlopen(
    monkeypatch: pytest.MonkeyPatch, content: object, captured: dict[str, Any]
) -> None:
    def fake_urlopen(req: request.Request, timeout: float):
        captured["url"] = req.full_url
        captured["auth"] = req.get_header("Authorization")
        captured["payload"] = json.loads(req.data.decode("utf-8"))
        return _FakeHTTPResponse({"choices": [{"message": {"content": content}}]})

    monkeypatch.setattr(llm_module.request, "urlopen", fake_urlopen)


def test_adapter_sends_prompts_and_temperature(monkeypatch: pytest.MonkeyPatch) -> None:
    captured: dict[str, Any] = {}
    _install_urlopen(monkeypatch, "PASS\nLooks complete.", captured)
    adapter = OpenAIChatCompletionsAdapter(api_key="sk-test", base_url="https://llm.local/v1/")

    text = adapter.generate(system_prompt="Judge.", user_prompt="Result", temperature=0.1)

    assert text == "PASS\nLooks complete."
    assert captured["url"] == "https://llm.local/v1/chat/completions"
    assert captured["auth"] == "Bearer sk-test"
    assert captured["payload"]["temperature"] == 0.1
    assert [message["role"] for message in captured["payload"]["messages"]] == [
        "system",
        "user",
    ]


def test_adapter_omits_temperature_by_default(monkeypatch: pytest.MonkeyPatch) -> None:
    captured: dict[str, Any] = {}
    _install_urlopen(monkeypatch, "draft", captured)

    OpenAIChatCompletionsAdapter(api_key="sk-test").generate(system_prompt="s", user_prompt="u")

    assert "temperature" not in captured["payload"]


def test_adapter_joins_text_parts(monkeypatch: pytest.MonkeyPatch) -> None:
    _install_urlopen(
        monkeypatch,
        [{"type": "text", "text": "Part one. "}, {"type": "text", "text": "Part two."}],
        {},
    )

    text = OpenAIChatCompletionsAdapter(api_key="sk-test").generate(
        system_prompt="s", user_prompt="u"
    )

    assert text == "Part one. Part two."


def test_adapter_rejects_empty_choices(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(
        llm_module.request, "urlopen", lambda req, timeout: _FakeHTTPResponse({"choices": []})
    )
    adapter = OpenAIChatCompletionsAdapter(api_key="sk-test", max_retries=0)

    with pytest.raises(ValueError, match="choices"):
        adapter.generate(system_prompt="s", user_prompt="u")


def test_build_generation_service_needs_key_and_openai_provider(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)

    assert build_generation_service(Settings(openai_api_key="")) is None
    assert build_generation_service(Settings(openai_api_key="sk", llm_provider="local")) is None
    adapter = build_generation_service(Settings(openai_api_key="sk", llm_model="gpt-4o"))
    assert isinstance(adapter, OpenAIChatCompletionsAdapter)
    assert adapter.model == "gpt-4o"


def test_trace_flag_comes_from_settings(
    monkeypatch: pytest.MonkeyPatch, caplog: pytest.LogCaptureFixture
) -> None:
    monkeypatch.setenv("RENEWAL_ORCHESTRATOR_LLM_TRACE", "true")
    _install_urlopen(monkeypatch, "draft", {})
    adapter = build_generation_service(Settings(openai_api_key="sk"))
    assert isinstance(adapter, OpenAIChatCompletionsAdapter)
    assert adapter.trace is True

    with caplog.at_level("INFO", logger="renewal_orchestrator.llm"):
        adapter.generate(system_prompt="s", user_prompt="u")

    messages = [record.getMessage() for record in caplog.records]
    assert any("event=trace_request" in message for message in messages)
    assert any("event=trace_response" in message for message in messages)


def test_trace_is_off_by_default(
    monkeypatch: pytest.MonkeyPatch, caplog: pytest.LogCaptureFixture
) -> None:
    _install_urlopen(monkeypatch, "draft", {})

    with caplog.at_level("INFO", logger="renewal_orchestrator.llm"):
        OpenAIChatCompletionsAdapter(api_key="sk-test").generate(
            system_prompt="s", user_prompt="u"
        )

    assert "event=trace_request" not in caplog.text
