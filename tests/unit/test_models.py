from __future__ import annotations

import json
import logging

import pytest

from canvas_personas.logging import JsonFormatter, timed
from canvas_personas.models import Persona, Trigger, TriggerKind
from canvas_personas.text import clean_question, looks_like_question, mask_key, normalize_color, strip_code_fence


def test_persona_coerces_goals_and_age() -> None:
    persona = Persona.model_validate({"name": "Ada", "goals": ["Save money", "Grow"], "age": 41})

    assert persona.goals == "Save money\nGrow"
    assert persona.age == "41"


def test_persona_note_text_round_trips() -> None:
    persona = Persona(
        name="Ada Lovelace",
        role="Procurement lead",
        description="Buys in bulk",
        background="Hospitality",
        goals="Reliable supply",
        age="38",
        sex="F",
        race="White",
    )

    assert Persona.from_note_text(persona.to_note_text()) == persona
    assert Persona.from_note_text("just some words") == Persona()


def test_persona_system_prompt_carries_context_and_name() -> None:
    prompt = Persona(name="Ada").system_prompt("KEY PARTNERS: Flour mill")

    assert "KEY PARTNERS: Flour mill" in prompt
    assert "Name: Ada\n" in prompt


def test_trigger_from_record_ignores_non_string_fields() -> None:
    trigger = Trigger.from_record(
        TriggerKind.CONNECTOR_CREATED,
        {"id": "c1", "widget_type": "Connector", "title": None, "text": 3},
    )

    assert trigger.entity_id == "c1"
    assert trigger.entity_type == "Connector"
    assert trigger.title == ""
    assert trigger.text == ""
    assert trigger.raw["text"] == 3


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("Helper: type here --> What now? Please wait...", "What now?"),
        ("  Plain question?  ", "Plain question?"),
    ],
)
def test_clean_question(raw: str, expected: str) -> None:
    assert clean_question(raw) == expected


def test_text_helpers() -> None:
    assert looks_like_question("how much")
    assert not looks_like_question("bread")
    assert strip_code_fence("```json\n[1]\n```") == "[1]"
    assert strip_code_fence("[1]") == "[1]"
    assert mask_key("sk-abcdef") == "*****cdef"
    assert mask_key("abc") == "abc"
    assert normalize_color("#FFFFFFFF") == "#ffffff"
    assert normalize_color("#2196F3") == "#2196f3"
    assert normalize_color("#ffe4b380") == "#ffe4b380"


def test_json_formatter_nests_extra() -> None:
    record = logging.LogRecord("canvas_personas.test", logging.INFO, __file__, 1, "hello %s", ("there",), None)
    record.note_id = "n1"

    payload = json.loads(JsonFormatter().format(record))

    assert payload["message"] == "hello there"
    assert payload["level"] == "INFO"
    assert payload["extra"] == {"note_id": "n1"}


def test_timed_logs_failure(caplog: pytest.LogCaptureFixture) -> None:
    logger = logging.getLogger("canvas_personas.test.timed")

    with caplog.at_level(logging.DEBUG, logger=logger.name):
        with pytest.raises(RuntimeError):
            with timed(logger, "explode", note_id="n1"):
                raise RuntimeError("boom")

    record = caplog.records[-1]
    assert record.operation == "explode"
    assert record.success is False
    assert record.note_id == "n1"
