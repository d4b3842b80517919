"""Persona prerequisites: business context, persona notes and headshots."""

from __future__ import annotations

import json
import logging
import re
import threading
from dataclasses import dataclass
from typing import Any

from pydantic import ValidationError

from canvas_personas.canvas.surface import CanvasSurface, Rect, Widget, note_payload, widget_rect
from canvas_personas.errors import MissingBusinessNotesError, PersonaGenerationError, RemoteError
from canvas_personas.events.classifier import NOTE_TYPE
from canvas_personas.llm.provider import GenerationProvider
from canvas_personas.logging import timed
from canvas_personas.models import PERSONA_COLORS, PERSONA_COUNT, GeneratedPersonas, Persona
from canvas_personas.retry import RetryPolicy
from canvas_personas.text import strip_code_fence

logger = logging.getLogger(__name__)

BUSINESS_NOTE_TITLES: tuple[str, ...] = (
    "KEY PARTNERS",
    "KEY ACTIVITIES",
    "VALUE PROPOSITIONS",
    "CUSTOMER RELATIONSHIPS",
    "CUSTOMER SEGMENTS",
    "KEY RESOURCES",
    "CHANNELS",
    "COST STRUCTURE",
    "REVENUE STREAMS",
)
ANCHOR_TYPE = "Anchor"
PERSONAS_ANCHOR_NAME = "Personas"
MISSING_ANCHOR_LABEL = "Personas (anchor)"
FAILED_MARKER = "FAILED"
MIN_CONTEXT_LENGTH = 100

_PERSONA_TITLE_RE = re.compile(r"^Persona (\d+): ")

PERSONA_PROMPT = """Given the following business model context, generate exactly 4 diverse personas as a JSON array. \
These personas should represent POTENTIAL CLIENTS from 4 DIFFERENT MARKET SECTORS who would be interested \
in the products/services described. They should NOT be employees of the company, but rather external \
customers, buyers, or decision-makers from different industries or market segments.

Each persona should have the following fields: name, role, description, background, goals, age, sex, race. \
The "goals" field should be an array of strings representing their key objectives related to the business context.

Respond ONLY with the JSON array, no extra text.

Business Context:
"""


@dataclass(frozen=True, slots=True)
class BusinessContext:
    text: str
    anchor: Widget | None = None

    @property
    def anchor_rect(self) -> Rect | None:
        return widget_rect(self.anchor) if self.anchor is not None else None


@dataclass(frozen=True, slots=True)
class PersonaNote:
    """A persona as it exists on the canvas. ``index`` is zero-based."""

    index: int
    note_id: str
    persona: Persona

    @property
    def color(self) -> str:
        return PERSONA_COLORS[self.index % len(PERSONA_COLORS)]

    @property
    def title(self) -> str:
        return f"Persona {self.index + 1}: {self.persona.name}"


def _str(widget: Widget, key: str) -> str:
    value = widget.get(key)
    return value if isinstance(value, str) else ""


def find_personas_anchor(widgets: list[Widget]) -> Widget | None:
    for widget in widgets:
        if _str(widget, "widget_type") != ANCHOR_TYPE:
            continue
        if _str(widget, "anchor_name").strip().lower() == PERSONAS_ANCHOR_NAME.lower():
            return widget
    return None


def extract_business_context(widgets: list[Widget]) -> BusinessContext:
    """Collect the nine Business Model Canvas notes and the Personas anchor.

    Raises:
        MissingBusinessNotesError: If any note or the anchor is absent.
    """

    found: dict[str, Widget] = {}
    for widget in widgets:
        if _str(widget, "widget_type") != NOTE_TYPE:
            continue
        title = _str(widget, "title").strip().upper()
        if title in BUSINESS_NOTE_TITLES and title not in found:
            found[title] = widget

    anchor = find_personas_anchor(widgets)
    missing = [t for t in BUSINESS_NOTE_TITLES if t not in found]
    if anchor is None:
        missing.append(MISSING_ANCHOR_LABEL)
    if missing:
        raise MissingBusinessNotesError(missing)

    text = "\n\n".join(f"{_str(found[t], 'title')}: {_str(found[t], 'text')}" for t in BUSINESS_NOTE_TITLES)
    if len(text.strip()) < MIN_CONTEXT_LENGTH:
        logger.warning("Business context looks too short", extra={"length": len(text.strip())})
    return BusinessContext(text=text, anchor=anchor)


def find_persona_notes(widgets: list[Widget]) -> dict[int, PersonaNote]:
    """Existing persona notes by zero-based index. Notes marked FAILED are ignored."""

    personas: dict[int, PersonaNote] = {}
    for widget in widgets:
        if _str(widget, "widget_type") != NOTE_TYPE:
            continue
        title = _str(widget, "title").strip()
        match = _PERSONA_TITLE_RE.match(title)
        if match is None or FAILED_MARKER in title:
            continue
        index = int(match.group(1)) - 1
        note_id = _str(widget, "id")
        if not 0 <= index < PERSONA_COUNT or not note_id:
            continue
        persona = Persona.from_note_text(_str(widget, "text"))
        if not persona.name:
            persona = persona.model_copy(update={"name": title[match.end():].strip()})
        personas[index] = PersonaNote(index=index, note_id=note_id, persona=persona)
    return personas


def parse_personas(text: str) -> list[Persona]:
    """Parse the generator's JSON reply (a bare array or ``{"personas": [...]}``)."""

    try:
        data: Any = json.loads(strip_code_fence(text))
    except json.JSONDecodeError as e:
        raise PersonaGenerationError(f"Persona reply is not valid JSON: {e}") from e
    if isinstance(data, list):
        data = {"personas": data}
    try:
        return GeneratedPersonas.model_validate(data).personas
    except ValidationError as e:
        raise PersonaGenerationError(f"Persona reply has the wrong shape: {e}") from e


def persona_layout(index: int, anchor: Rect) -> tuple[Rect, Rect]:
    """(note rect, headshot rect) for the persona column ``index`` inside the anchor."""

    border, col_w, gap, img_h, note_h = 0.02, 0.23, 0.01, 0.10, 0.40
    x = anchor.x + anchor.width * border + index * (anchor.width * col_w + anchor.width * gap)
    width = anchor.width * col_w
    note = Rect(x=x, y=anchor.y + anchor.height * 0.34, width=width, height=note_h * anchor.height)
    image = Rect(x=x, y=anchor.y + anchor.height * border, width=width, height=anchor.height * img_h)
    return note, image


def headshot_prompt(persona: Persona) -> str:
    return (
        f"Business Appropriate Headshot of {persona.name}, a {persona.role}. "
        f"{persona.age}, {persona.sex}, {persona.race}. The headshot should be tightly cropped, "
        "centered on the face, with the full head visible and minimal chest."
    )


class PersonaService:
    """Makes sure the canvas carries persona notes before a question is answered.

    Persona note ids are remembered per owner (question note) id.
    """

    def __init__(
        self,
        surface: CanvasSurface,
        generator: GenerationProvider,
        *,
        retry: RetryPolicy | None = None,
        generate_images: bool = True,
    ) -> None:
        self._surface = surface
        self._generator = generator
        self._retry = retry or RetryPolicy()
        self._generate_images = generate_images
        self._lock = threading.Lock()
        self._note_ids: dict[str, list[str]] = {}
        self._image_threads: list[threading.Thread] = []

    def note_ids(self, owner_id: str) -> list[str]:
        with self._lock:
            return list(self._note_ids.get(owner_id, []))

    def business_context(self, widgets: list[Widget] | None = None) -> BusinessContext:
        if widgets is None:
            widgets = self._surface.list_widgets()
        return extract_business_context(widgets)

    def load_personas(self, widgets: list[Widget] | None = None) -> list[PersonaNote]:
        if widgets is None:
            widgets = self._surface.list_widgets()
        existing = find_persona_notes(widgets)
        return [existing[i] for i in sorted(existing)]

    def ensure_personas(
        self,
        owner_id: str,
        *,
        minimum: int = 1,
        widgets: list[Widget] | None = None,
        context: BusinessContext | None = None,
    ) -> list[PersonaNote]:
        """Return the canvas personas, generating missing ones when fewer than ``minimum`` exist.

        Raises:
            MissingBusinessNotesError: Generation is needed but the business notes are absent.
            PersonaGenerationError: Generation left fewer than ``minimum`` personas.
        """

        if widgets is None:
            widgets = self._surface.list_widgets()
        existing = find_persona_notes(widgets)
        if len(existing) >= minimum:
            return self._remember(owner_id, existing)

        if context is None:
            context = extract_business_context(widgets)
        logger.info(
            "Generating personas",
            extra={"owner_id": owner_id, "existing": len(existing), "minimum": minimum},
        )
        generated = self.generate(context.text)
        created = self._create_notes(generated, existing, context)
        merged = {**existing, **created}
        if len(merged) < minimum:
            raise PersonaGenerationError(
                f"Created {len(merged)}/{PERSONA_COUNT} personas; at least {minimum} required"
            )
        if len(merged) < PERSONA_COUNT:
            logger.warning(
                "Continuing with fewer personas than requested",
                extra={"owner_id": owner_id, "personas": len(merged)},
            )
        return self._remember(owner_id, merged)

    def generate(self, business_context: str) -> list[Persona]:
        with timed(logger, "generate_personas"):
            reply = self._retry.execute(
                lambda: self._generator.chat([{"role": "user", "content": PERSONA_PROMPT + business_context}]),
                name="generate_personas",
            )
        personas = parse_personas(reply)
        if not personas:
            raise PersonaGenerationError("Generator returned no personas")
        logger.info("Personas generated", extra={"count": len(personas)})
        return personas

    def join_images(self, timeout: float | None = None) -> None:
        """Wait for background headshot uploads. Only tests and shutdown need this."""

        with self._lock:
            threads = list(self._image_threads)
        for thread in threads:
            thread.join(timeout)

    def _remember(self, owner_id: str, personas: dict[int, PersonaNote]) -> list[PersonaNote]:
        ordered = [personas[i] for i in sorted(personas)]
        with self._lock:
            self._note_ids[owner_id] = [p.note_id for p in ordered]
        return ordered

    def _create_notes(
        self,
        generated: list[Persona],
        existing: dict[int, PersonaNote],
        context: BusinessContext,
    ) -> dict[int, PersonaNote]:
        anchor = context.anchor_rect
        if anchor is None:
            raise MissingBusinessNotesError([MISSING_ANCHOR_LABEL])

        created: dict[int, PersonaNote] = {}
        candidates = iter(generated)
        for index in range(PERSONA_COUNT):
            if index in existing:
                continue
            persona = next(candidates, None)
            if persona is None:
                break
            note_rect, image_rect = persona_layout(index, anchor)
            placeholder = PersonaNote(index=index, note_id="", persona=persona)
            try:
                note = self._surface.create_note(
                    note_payload(
                        title=placeholder.title,
                        text=persona.to_note_text(),
                        rect=note_rect,
                        color=placeholder.color,
                    )
                )
            except RemoteError as e:
                logger.warning(
                    "Failed to create persona note",
                    extra={"persona": placeholder.title, "error": str(e)},
                )
                continue
            note_id = note.get("id")
            if not isinstance(note_id, str) or not note_id:
                logger.warning("Persona note created without an id", extra={"persona": placeholder.title})
                continue
            created[index] = PersonaNote(index=index, note_id=note_id, persona=persona)
            logger.info("Persona note created", extra={"persona": placeholder.title, "note_id": note_id})
            if self._generate_images:
                self._start_headshot(persona, placeholder.title, image_rect)
        return created

    def _start_headshot(self, persona: Persona, title: str, rect: Rect) -> None:
        thread = threading.Thread(
            target=self._upload_headshot,
            args=(persona, title, rect),
            name=f"headshot-{persona.name}",
            daemon=True,
        )
        with self._lock:
            self._image_threads = [t for t in self._image_threads if t.is_alive()]
            self._image_threads.append(thread)
        thread.start()

    def _upload_headshot(self, persona: Persona, title: str, rect: Rect) -> None:
        # Best effort: a missing headshot never affects the persona itself.
        try:
            image = self._retry.execute(
                lambda: self._generator.generate_image(headshot_prompt(persona)),
                name="generate_headshot",
            )
            widget = self._surface.create_image(
                image,
                {
                    "title": f"{title} Headshot",
                    "location": {"x": rect.x, "y": rect.y},
                    "size": {"width": rect.width, "height": rect.height},
                },
                filename=f"{persona.name or 'persona'}.png",
            )
        except Exception:
            logger.exception("Headshot generation failed", extra={"persona": title})
            return
        logger.info("Headshot uploaded", extra={"persona": title, "image_id": widget.get("id")})
