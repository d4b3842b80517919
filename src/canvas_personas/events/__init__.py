"""Widget event ingestion: stream, classification and debouncing."""

from canvas_personas.events.classifier import classify, question_candidate
from canvas_personas.events.debounce import DebounceGate, QuestionRegistration
from canvas_personas.events.monitor import EventMonitor
from canvas_personas.events.stream import StreamReconnector, StreamState

__all__ = [
    "DebounceGate",
    "EventMonitor",
    "QuestionRegistration",
    "StreamReconnector",
    "StreamState",
    "classify",
    "question_candidate",
]
