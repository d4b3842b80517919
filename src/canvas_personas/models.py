"""Domain types shared across the event pipeline and the workflows."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping

from pydantic import BaseModel, Field, field_validator

# Persona note colours, in persona order. Answer and meta notes reuse them.
PERSONA_COLORS: tuple[str, ...] = ("#2196f3ff", "#4caf50ff", "#ff9800ff", "#9c27b0ff")
PERSONA_COUNT = len(PERSONA_COLORS)


class TriggerKind(str, Enum):
    IMAGE_COMPLETED = "image_completed"
    QUESTION_NOTE_CREATED = "question_note_created"
    PERSONA_SETUP_REQUESTED = "persona_setup_requested"
    QUESTION_TEXT_DETECTED = "question_text_detected"
    CONNECTOR_CREATED = "connector_created"


@dataclass(frozen=True, slots=True)
class Trigger:
    """A classified widget event.

    Triggers are produced by the classifier (or the debounce gate) and consumed
    exactly once by the dispatcher.
    """

    kind: TriggerKind
    entity_id: str
    entity_type: str = ""
    title: str = ""
    text: str = ""
    color: str = ""
    raw: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))

    @classmethod
    def from_record(cls, kind: TriggerKind, record: Mapping[str, Any]) -> Trigger:
        def _str(key: str) -> str:
            value = record.get(key)
            return value if isinstance(value, str) else ""

        return cls(
            kind=kind,
            entity_id=_str("id"),
            entity_type=_str("widget_type"),
            title=_str("title"),
            text=_str("text"),
            color=_str("background_color"),
            raw=MappingProxyType(dict(record)),
        )


class Persona(BaseModel):
    """A generated focus-group participant."""

    name: str = ""
    role: str = ""
    description: str = ""
    background: str = ""
    goals: str = ""
    age: str = ""
    sex: str = ""
    race: str = ""

    @field_validator("goals", mode="before")
    @classmethod
    def _join_goals(cls, value: object) -> object:
        if isinstance(value, list):
            return "\n".join(str(v) for v in value)
        return value

    @field_validator("age", mode="before")
    @classmethod
    def _age_as_text(cls, value: object) -> object:
        if isinstance(value, bool):
            return value
        if isinstance(value, (int, float)):
            return str(int(value))
        return value

    def to_note_text(self) -> str:
        return (
            f"🧑 Name: {self.name}\n\n"
            f"💼 Role: {self.role}\n\n"
            f"📝 Description: {self.description}\n\n"
            f"🏫 Background: {self.background}\n\n"
            f"🎯 Goals: {self.goals}\n\n"
            f"🎂 Age: {self.age}\n\n"
            f"⚧ Sex: {self.sex}\n\n"
            f"🌍 Race: {self.race}"
        )

    @classmethod
    def from_note_text(cls, text: str) -> Persona:
        """Parse the text written by :meth:`to_note_text`. Unknown layouts yield blanks."""

        match = _PERSONA_NOTE_RE.search(text)
        if match is None:
            return cls()
        return cls(**{k: v.strip() for k, v in match.groupdict().items()})

    def system_prompt(self, business_context: str) -> str:
        return (
            "Assume the role of the following persona for a business focus group. "
            "You are a client or potential client of the business. "
            "Here is the business outline:\n\n"
            f"{business_context}\n\n"
            "Persona:\n"
            f"Name: {self.name}\nRole: {self.role}\nDescription: {self.description}\n"
            f"Background: {self.background}\nGoals: {self.goals}\nAge: {self.age}\n"
            f"Sex: {self.sex}\nRace: {self.race}\n\n"
            "Respond only as this persona, in a short conversational style as if speaking. "
            "Do not restate the question and do not say 'As a persona'. "
            "Just answer as if you are the person."
        )


_PERSONA_NOTE_RE = re.compile(
    r"^🧑 Name: (?P<name>.*?)$[\s\S]*?"
    r"^💼 Role: (?P<role>.*?)$[\s\S]*?"
    r"^📝 Description: (?P<description>.*?)$[\s\S]*?"
    r"^🏫 Background: (?P<background>.*?)$[\s\S]*?"
    r"^🎯 Goals: (?P<goals>.*?)$[\s\S]*?"
    r"^🎂 Age: (?P<age>.*?)$[\s\S]*?"
    r"^⚧ Sex: (?P<sex>.*?)$[\s\S]*?"
    r"^🌍 Race: (?P<race>.*?)$",
    re.MULTILINE,
)


class GeneratedPersonas(BaseModel):
    """Wrapper used to validate the JSON array returned by the generator."""

    personas: list[Persona] = Field(default_factory=list)
