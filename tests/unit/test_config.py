"""Unit tests for settings loading."""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from canvas_personas.config import PersonaSettings

_ENV_NAMES = (
    "CANVUS_SERVER",
    "CANVAS_ID",
    "CANVUS_API_KEY",
    "OPENAI_API_KEY",
    "LOG_LEVEL",
    "DEBUG",
    "MIN_REQUIRED_ANSWERS",
    "RETRY_INITIAL_DELAY",
    "RETRY_MAX_DELAY",
    "QUESTION_TIMEOUT",
)


@pytest.fixture(autouse=True)
def _clean_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    for name in _ENV_NAMES:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)


def test_settings_loads_from_dotenv(tmp_path: Path) -> None:
    (tmp_path / ".env").write_text(
        "\n".join(
            [
                "CANVUS_SERVER=https://canvus.example.com/",
                "CANVAS_ID=abc-123",
                "CANVUS_API_KEY=secret",
                "LOG_LEVEL=DEBUG",
                "QUESTION_TIMEOUT=30",
                "",
            ]
        ),
        encoding="utf-8",
    )

    settings = PersonaSettings()

    assert settings.log_level == "DEBUG"
    assert settings.question_timeout_seconds == 30
    assert settings.canvas_base_url == "https://canvus.example.com/api/v1/canvases/abc-123"
    settings.require_canvas()


def test_defaults() -> None:
    settings = PersonaSettings()

    assert settings.debounce_seconds == 1.0
    assert settings.question_timeout_seconds == 300
    assert settings.min_required_answers == 1
    assert settings.chat_token_limit == 256
    assert settings.workflow_timeout_seconds == 900


def test_require_canvas_lists_missing_settings() -> None:
    settings = PersonaSettings()

    with pytest.raises(ValueError, match="CANVUS_SERVER"):
        settings.require_canvas()
    with pytest.raises(ValueError, match="OPENAI_API_KEY"):
        settings.require_openai()


def test_thresholds_are_validated(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("MIN_REQUIRED_ANSWERS", "0")

    with pytest.raises(ValidationError):
        PersonaSettings()


def test_backoff_bounds_are_validated(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("RETRY_INITIAL_DELAY", "10")
    monkeypatch.setenv("RETRY_MAX_DELAY", "1")

    with pytest.raises(ValidationError):
        PersonaSettings()


def test_retry_policy_from_settings() -> None:
    policy = PersonaSettings().retry_policy(max_attempts=2)

    assert policy.max_attempts == 2
    assert policy.initial_delay == 1.0
    assert policy.max_delay == 32.0
