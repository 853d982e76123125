from __future__ import annotations

import pytest
from pydantic import ValidationError

from renewal_orchestrator.config.settings import Settings


def test_settings_read_prefixed_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("RENEWAL_ORCHESTRATOR_COMPLETION_MAX_RETRIES", "5")
    monkeypatch.setenv("RENEWAL_ORCHESTRATOR_LLM_MODEL", "gpt-4.1-mini")

    settings = Settings()

    assert settings.completion_max_retries == 5
    assert settings.llm_model == "gpt-4.1-mini"


def test_defaults_match_documented_behaviour(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("COMPLETION_MAX_RETRIES", "COMPLETION_BACKOFF_S", "VALIDATOR_TEMPERATURE"):
        monkeypatch.delenv(f"RENEWAL_ORCHESTRATOR_{name}", raising=False)

    settings = Settings()

    assert settings.completion_max_retries == 3
    assert settings.completion_backoff_s == 0.5
    assert settings.validator_temperature == 0.1
    assert settings.artifact_min_length == 100


def test_resolved_values_fall_back_to_unprefixed_variables(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("ORCHESTRATOR_DATABASE_URL", "postgresql://localhost/renewals")
    monkeypatch.setenv("OPENAI_API_KEY", "sk-fallback")

    settings = Settings(database_url="", openai_api_key="")

    assert settings.resolved_database_url() == "postgresql://localhost/renewals"
    assert settings.resolved_openai_api_key() == "sk-fallback"
    assert Settings(openai_api_key="sk-explicit").resolved_openai_api_key() == "sk-explicit"


def test_completion_base_url_is_normalized() -> None:
    settings = Settings(completion_base_url="http://orchestrator:8000/")

    assert settings.resolved_completion_base_url() == "http://orchestrator:8000"


def test_invalid_dispatch_limits_are_rejected() -> None:
    with pytest.raises(ValidationError):
        Settings(dispatch_max_workers=0)
