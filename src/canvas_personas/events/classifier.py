"""Map raw widget records to triggers.

Rules are evaluated in a fixed priority order; the first match wins. Records that
match nothing are noise and are dropped without logging above DEBUG.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping

from canvas_personas.models import Trigger, TriggerKind
from canvas_personas.text import normalize_color

logger = logging.getLogger(__name__)

IMAGE_TYPE = "Image"
NOTE_TYPE = "Note"
CONNECTOR_TYPE = "Connector"

COMPLETED_IMAGE_TITLE = "bac_complete"
QUESTION_NOTE_TITLE = "New_AI_Question"
PERSONA_SETUP_TITLE = "Create_Personas"
UNCLAIMED_NOTE_COLOR = "#ffffff"

_IMAGE_EXTENSIONS = (".png", ".jpg", ".jpeg")


def _field(record: Mapping[str, Any], key: str) -> str:
    value = record.get(key)
    return value if isinstance(value, str) else ""


def _image_stem(title: str) -> str:
    stem = title.strip().lower()
    for ext in _IMAGE_EXTENSIONS:
        if stem.endswith(ext):
            return stem[: -len(ext)]
    return stem


def is_question_title(title: str) -> bool:
    return title.strip().casefold() == QUESTION_NOTE_TITLE.casefold()


def classify(record: Mapping[str, Any]) -> Trigger | None:
    """Return the trigger for ``record``, or None when no direct rule matches.

    Question-text edits are not handled here: see :func:`question_candidate`.
    """

    widget_type = _field(record, "widget_type")
    title = _field(record, "title")

    if widget_type == IMAGE_TYPE and _image_stem(title) == COMPLETED_IMAGE_TITLE:
        return Trigger.from_record(TriggerKind.IMAGE_COMPLETED, record)

    if widget_type == NOTE_TYPE and is_question_title(title):
        color = normalize_color(_field(record, "background_color"))
        if color == UNCLAIMED_NOTE_COLOR:
            return Trigger.from_record(TriggerKind.QUESTION_NOTE_CREATED, record)

    if widget_type == NOTE_TYPE and title.strip() == PERSONA_SETUP_TITLE:
        return Trigger.from_record(TriggerKind.PERSONA_SETUP_REQUESTED, record)

    if widget_type == CONNECTOR_TYPE:
        return Trigger.from_record(TriggerKind.CONNECTOR_CREATED, record)

    return None


def question_candidate(record: Mapping[str, Any], expected_color: str | None) -> Trigger | None:
    """Candidate question-text trigger for a registered, claimed question note.

    Returns None unless the record is a question note with an id whose colour
    matches ``expected_color``. The result still has to pass the debounce gate.
    """

    if expected_color is None:
        return None
    if _field(record, "widget_type") != NOTE_TYPE:
        return None
    if not _field(record, "id") or not is_question_title(_field(record, "title")):
        return None
    color = normalize_color(_field(record, "background_color"))
    if color != normalize_color(expected_color):
        return None
    return Trigger.from_record(TriggerKind.QUESTION_TEXT_DETECTED, record)
