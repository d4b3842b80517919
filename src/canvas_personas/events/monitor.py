"""Glue between the widget stream, the classifier and the debounce gate."""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable

from canvas_personas.events.classifier import classify, question_candidate
from canvas_personas.events.debounce import DebounceGate
from canvas_personas.events.stream import LineStream, StreamReconnector
from canvas_personas.models import Trigger

logger = logging.getLogger(__name__)


class EventMonitor:
    """Turn widget records into triggers for ``dispatch``.

    Direct triggers are dispatched immediately. Edits to registered question notes
    go through the debounce gate, which dispatches once the text settles.
    """

    def __init__(
        self,
        *,
        dispatch: Callable[[Trigger], None],
        debounce: DebounceGate,
    ) -> None:
        self._dispatch = dispatch
        self.debounce = debounce

    def handle_record(self, record: dict[str, Any]) -> Trigger | None:
        trigger = classify(record)
        if trigger is not None:
            logger.info(
                "Trigger detected",
                extra={"kind": trigger.kind.value, "entity_id": trigger.entity_id},
            )
            self._dispatch(trigger)
            return trigger

        entity_id = record.get("id")
        if not isinstance(entity_id, str) or not entity_id:
            return None
        registration = self.debounce.registration(entity_id)
        candidate = question_candidate(
            record, registration.expected_color if registration is not None else None
        )
        if candidate is not None:
            self.debounce.observe(entity_id, candidate)
        return None

    def build_stream(
        self,
        *,
        connect: Callable[[], LineStream],
        cancel: threading.Event,
        **options: Any,
    ) -> StreamReconnector:
        return StreamReconnector(connect=connect, sink=self.handle_record, cancel=cancel, **options)
