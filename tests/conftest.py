"""Test configuration and fixtures."""

from __future__ import annotations

import copy
import itertools
import json
import threading
from typing import Any, Callable

import pytest

from canvas_personas.errors import PermanentRemoteError
from canvas_personas.llm.provider import GenerationProvider
from canvas_personas.models import PERSONA_COLORS, Persona
from canvas_personas.retry import RetryPolicy
from canvas_personas.workflow.guard import ProcessingGuard
from canvas_personas.workflow.helpers import HelperNotes
from canvas_personas.workflow.orchestrator import QuestionWorkflow
from canvas_personas.workflow.personas import BUSINESS_NOTE_TITLES, PERSONA_PROMPT, PersonaService

Widget = dict[str, Any]

PERSONA_NAMES = ("Ada", "Bram", "Chloe", "Dev")


class FakeSurface:
    """In-memory, thread-safe canvas."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._ids = itertools.count(1)
        self.widgets: dict[str, Widget] = {}
        self.fail_note_titles: set[str] = set()
        self.deleted: list[str] = []

    def _next_id(self, prefix: str) -> str:
        return f"{prefix}-{next(self._ids)}"

    def add(self, widget: Widget) -> str:
        with self._lock:
            widget = dict(widget)
            widget.setdefault("id", self._next_id(widget.get("widget_type", "w").lower()))
            self.widgets[widget["id"]] = widget
            return widget["id"]

    def of_type(self, widget_type: str) -> list[Widget]:
        with self._lock:
            return [copy.deepcopy(w) for w in self.widgets.values() if w.get("widget_type") == widget_type]

    def notes_titled(self, suffix: str) -> list[Widget]:
        return [w for w in self.of_type("Note") if str(w.get("title", "")).endswith(suffix)]

    def list_widgets(self) -> list[Widget]:
        with self._lock:
            return [copy.deepcopy(w) for w in self.widgets.values()]

    def get_widget(self, widget_id: str) -> Widget:
        with self._lock:
            if widget_id not in self.widgets:
                raise PermanentRemoteError(f"widget {widget_id} not found", status_code=404)
            return copy.deepcopy(self.widgets[widget_id])

    def create_note(self, attributes: Widget) -> Widget:
        if attributes.get("title") in self.fail_note_titles:
            raise PermanentRemoteError("note rejected", status_code=400)
        return self._create("Note", attributes)

    def update_note(self, note_id: str, attributes: Widget) -> Widget:
        with self._lock:
            if note_id not in self.widgets:
                raise PermanentRemoteError(f"note {note_id} not found", status_code=404)
            self.widgets[note_id].update(copy.deepcopy(attributes))
            return copy.deepcopy(self.widgets[note_id])

    def delete_note(self, note_id: str) -> None:
        with self._lock:
            if self.widgets.pop(note_id, None) is None:
                raise PermanentRemoteError(f"note {note_id} not found", status_code=404)
            self.deleted.append(note_id)

    def create_connector(self, attributes: Widget) -> Widget:
        return self._create("Connector", attributes)

    def create_anchor(self, attributes: Widget) -> Widget:
        return self._create("Anchor", attributes)

    def create_image(self, image: bytes, attributes: Widget, *, filename: str = "image.png") -> Widget:
        return self._create("Image", {**attributes, "filename": filename, "bytes": len(image)})

    def _create(self, widget_type: str, attributes: Widget) -> Widget:
        with self._lock:
            widget = copy.deepcopy(attributes)
            widget["widget_type"] = widget_type
            widget["id"] = self._next_id(widget_type.lower())
            self.widgets[widget["id"]] = widget
            return copy.deepcopy(widget)


class FakeGenerator(GenerationProvider):
    """Scripted generator. Personas named in ``fail_for`` always fail."""

    def __init__(
        self,
        *,
        fail_for: set[str] | None = None,
        reply: Callable[[str, str], str] | None = None,
        personas: list[dict[str, Any]] | None = None,
    ) -> None:
        self._lock = threading.Lock()
        self.fail_for = fail_for or set()
        self._reply = reply
        self._personas = personas
        self.prompts: list[str] = []
        self.conversations: list[list[dict[str, str]]] = []
        self.images: list[str] = []

    def chat(
        self,
        messages: list[dict[str, str]],
        max_tokens: int | None = None,
        temperature: float | None = None,
        **kwargs: Any,
    ) -> str:
        system = messages[0]["content"] if messages[0]["role"] == "system" else ""
        prompt = messages[-1]["content"]
        with self._lock:
            self.prompts.append(prompt)
            self.conversations.append(copy.deepcopy(messages))
        if prompt.startswith(PERSONA_PROMPT):
            return json.dumps(self._personas if self._personas is not None else persona_dicts())
        for name in self.fail_for:
            if f"Name: {name}\n" in system:
                raise PermanentRemoteError(f"generation refused for {name}", status_code=400)
        if self._reply is not None:
            return self._reply(system, prompt)
        return f"Short reply to: {prompt[:40]}"

    def generate_image(self, prompt: str) -> bytes:
        with self._lock:
            self.images.append(prompt)
        return b"\x89PNG\r\n\x1a\n"


def persona_dicts(names: tuple[str, ...] = PERSONA_NAMES) -> list[dict[str, Any]]:
    return [
        {
            "name": name,
            "role": "Buyer",
            "description": f"{name} buys things",
            "background": "Retail",
            "goals": ["Save money", "Save time"],
            "age": 30 + i,
            "sex": "F",
            "race": "Any",
        }
        for i, name in enumerate(names)
    ]


def add_business_notes(surface: FakeSurface) -> None:
    for title in BUSINESS_NOTE_TITLES:
        surface.add(
            {
                "widget_type": "Note",
                "title": title,
                "text": f"Details about {title.lower()} for a neighbourhood bakery.",
                "location": {"x": 0.0, "y": 0.0},
                "size": {"width": 100.0, "height": 100.0},
            }
        )
    surface.add(
        {
            "widget_type": "Anchor",
            "anchor_name": "Personas",
            "location": {"x": 1000.0, "y": 0.0},
            "size": {"width": 2000.0, "height": 1000.0},
        }
    )


def add_personas(surface: FakeSurface, names: tuple[str, ...] = PERSONA_NAMES) -> list[str]:
    ids = []
    for i, data in enumerate(persona_dicts(names)):
        persona = Persona.model_validate(data)
        ids.append(
            surface.add(
                {
                    "widget_type": "Note",
                    "title": f"Persona {i + 1}: {persona.name}",
                    "text": persona.to_note_text(),
                    "background_color": PERSONA_COLORS[i],
                    "location": {"x": 1000.0 + i * 500, "y": 340.0},
                    "size": {"width": 460.0, "height": 400.0},
                }
            )
        )
    return ids


def add_question(surface: FakeSurface, text: str = "What changed?", color: str = "#ffffffff") -> str:
    return surface.add(
        {
            "widget_type": "Note",
            "title": "New_AI_Question",
            "text": text,
            "background_color": color,
            "location": {"x": 0.0, "y": 2000.0},
            "size": {"width": 300.0, "height": 200.0},
            "scale": 1.0,
        }
    )


@pytest.fixture
def no_wait_retry() -> RetryPolicy:
    """Single-attempt policy so failures surface immediately."""
    return RetryPolicy(max_attempts=1, sleep=lambda _delay: None)


@pytest.fixture
def surface() -> FakeSurface:
    """Provide a canvas with business notes and four personas."""
    canvas = FakeSurface()
    add_business_notes(canvas)
    add_personas(canvas)
    return canvas


@pytest.fixture
def generator() -> FakeGenerator:
    return FakeGenerator()


@pytest.fixture
def make_workflow(no_wait_retry: RetryPolicy) -> Callable[..., QuestionWorkflow]:
    """Build a QuestionWorkflow over fakes; keyword overrides go to the constructor."""

    def _make(surface: FakeSurface, generator: GenerationProvider, **overrides: Any) -> QuestionWorkflow:
        params: dict[str, Any] = {
            "surface": surface,
            "generator": generator,
            "guard": ProcessingGuard(),
            "helpers": HelperNotes(surface),
            "personas": PersonaService(surface, generator, retry=no_wait_retry, generate_images=False),
            "retry": no_wait_retry,
            "question_timeout": 1.0,
            "poll_interval": 0.01,
        }
        params.update(overrides)
        return QuestionWorkflow(**params)

    return _make
