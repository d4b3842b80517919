from __future__ import annotations

import json

import pytest

from conftest import FakeGenerator, FakeSurface, add_business_notes, add_personas, persona_dicts
from canvas_personas.canvas.surface import Rect
from canvas_personas.errors import MissingBusinessNotesError, PersonaGenerationError
from canvas_personas.models import PERSONA_COLORS
from canvas_personas.workflow.personas import (
    BUSINESS_NOTE_TITLES,
    MISSING_ANCHOR_LABEL,
    PersonaService,
    extract_business_context,
    find_persona_notes,
    parse_personas,
    persona_layout,
)


def _service(surface: FakeSurface, generator: FakeGenerator, no_wait_retry, **kwargs) -> PersonaService:
    return PersonaService(surface, generator, retry=no_wait_retry, **kwargs)


def test_business_context_joins_notes_in_canvas_order() -> None:
    surface = FakeSurface()
    add_business_notes(surface)

    context = extract_business_context(surface.list_widgets())

    blocks = context.text.split("\n\n")
    assert [b.split(":", 1)[0] for b in blocks] == list(BUSINESS_NOTE_TITLES)
    assert context.anchor_rect == Rect(x=1000.0, y=0.0, width=2000.0, height=1000.0)


def test_business_context_reports_every_missing_piece() -> None:
    surface = FakeSurface()
    surface.add({"widget_type": "Note", "title": "key partners", "text": "Flour mill"})

    with pytest.raises(MissingBusinessNotesError) as excinfo:
        extract_business_context(surface.list_widgets())

    missing = excinfo.value.missing
    assert "KEY PARTNERS" not in missing
    assert "REVENUE STREAMS" in missing
    assert missing[-1] == MISSING_ANCHOR_LABEL


def test_find_persona_notes_skips_failed_and_foreign_notes() -> None:
    surface = FakeSurface()
    add_personas(surface, ("Ada", "Bram"))
    surface.add({"widget_type": "Note", "title": "Persona 3: FAILED", "text": ""})
    surface.add({"widget_type": "Note", "title": "Persona 9: Out of range", "text": ""})
    surface.add({"widget_type": "Note", "title": "Persona 4: Dana", "text": "free text"})

    personas = find_persona_notes(surface.list_widgets())

    assert sorted(personas) == [0, 1, 3]
    assert personas[0].persona.name == "Ada"
    assert personas[1].persona.goals == "Save money\nSave time"
    assert personas[3].persona.name == "Dana"
    assert personas[3].color == PERSONA_COLORS[3]


def test_parse_personas_accepts_fenced_array_and_object() -> None:
    fenced = "```json\n" + json.dumps(persona_dicts(("Ada",))) + "\n```"
    wrapped = json.dumps({"personas": persona_dicts(("Bram", "Chloe"))})

    assert [p.name for p in parse_personas(fenced)] == ["Ada"]
    assert [p.name for p in parse_personas(wrapped)] == ["Bram", "Chloe"]
    assert parse_personas(fenced)[0].age == "30"


@pytest.mark.parametrize("reply", ["not json", '{"personas": "nope"}'])
def test_parse_personas_rejects_bad_replies(reply: str) -> None:
    with pytest.raises(PersonaGenerationError):
        parse_personas(reply)


def test_persona_layout_places_columns_inside_anchor() -> None:
    anchor = Rect(x=1000, y=0, width=2000, height=1000)

    first_note, first_image = persona_layout(0, anchor)
    last_note, _ = persona_layout(3, anchor)

    assert first_note.x == pytest.approx(1040)
    assert first_note.y == pytest.approx(340)
    assert first_image.y == pytest.approx(20)
    assert first_image.height == pytest.approx(100)
    assert last_note.right <= anchor.right


def test_ensure_personas_uses_existing_notes(surface: FakeSurface, generator: FakeGenerator, no_wait_retry) -> None:
    service = _service(surface, generator, no_wait_retry)

    personas = service.ensure_personas("q-1", minimum=4)

    assert [p.persona.name for p in personas] == ["Ada", "Bram", "Chloe", "Dev"]
    assert service.note_ids("q-1") == [p.note_id for p in personas]
    assert generator.prompts == []


def test_ensure_personas_generates_notes_and_headshots(no_wait_retry) -> None:
    surface = FakeSurface()
    add_business_notes(surface)
    generator = FakeGenerator()
    service = _service(surface, generator, no_wait_retry)

    personas = service.ensure_personas("q-1", minimum=4)
    service.join_images(timeout=5)

    assert [p.title for p in personas] == [
        "Persona 1: Ada",
        "Persona 2: Bram",
        "Persona 3: Chloe",
        "Persona 4: Dev",
    ]
    headshots = sorted(w["title"] for w in surface.of_type("Image"))
    assert headshots == [f"{p.title} Headshot" for p in personas]
    assert len(generator.images) == 4
    assert any("Ada" in prompt for prompt in generator.images)


def test_ensure_personas_fills_only_missing_slots(no_wait_retry) -> None:
    surface = FakeSurface()
    add_business_notes(surface)
    add_personas(surface, ("Ada", "Bram"))
    generator = FakeGenerator(personas=persona_dicts(("Eve", "Finn", "Gus")))
    service = _service(surface, generator, no_wait_retry, generate_images=False)

    personas = service.ensure_personas("q-1", minimum=4)

    assert [p.persona.name for p in personas] == ["Ada", "Bram", "Eve", "Finn"]
    assert len(surface.of_type("Note")) == len(BUSINESS_NOTE_TITLES) + 4


def test_ensure_personas_raises_when_too_few_were_created(no_wait_retry) -> None:
    surface = FakeSurface()
    add_business_notes(surface)
    surface.fail_note_titles = {"Persona 2: Bram", "Persona 3: Chloe", "Persona 4: Dev"}
    service = _service(surface, FakeGenerator(), no_wait_retry, generate_images=False)

    with pytest.raises(PersonaGenerationError):
        service.ensure_personas("q-1", minimum=2)

    assert service.ensure_personas("q-2", minimum=1)[0].persona.name == "Ada"


def test_ensure_personas_needs_business_notes(no_wait_retry) -> None:
    service = _service(FakeSurface(), FakeGenerator(), no_wait_retry)

    with pytest.raises(MissingBusinessNotesError):
        service.ensure_personas("q-1")
