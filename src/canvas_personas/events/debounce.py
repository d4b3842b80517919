"""Per-entity debouncing of noisy note edits.

Each observed edit replaces the pending value for its key and restarts a quiet-period
timer. When the timer fires it reads the *current* pending value, so a burst of edits
collapses into one action carrying the last one.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Callable

from canvas_personas.models import Trigger, TriggerKind
from canvas_personas.text import looks_like_question

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class QuestionRegistration:
    """Who to notify when a debounced question settles on a note.

    ``on_fire`` runs on the timer thread and must return promptly.
    """

    expected_color: str
    on_fire: Callable[[Trigger], None]


@dataclass(slots=True)
class _Entry:
    lock: threading.Lock = field(default_factory=threading.Lock)
    pending: Trigger | None = None
    timer: threading.Timer | None = None
    generation: int = 0
    removed: bool = False


class DebounceGate:
    """Coalesce rapid edits per key into a single delayed trigger.

    Keys are independent: each has its own lock and timer. The shared dicts are
    only touched for single-key insert/lookup/delete under a short map lock.
    """

    def __init__(
        self,
        *,
        emit: Callable[[Trigger], None],
        quiet_period: float = 1.0,
        predicate: Callable[[str], bool] = looks_like_question,
        timer_factory: Callable[..., threading.Timer] = threading.Timer,
    ) -> None:
        if quiet_period <= 0:
            raise ValueError("quiet_period must be > 0")
        self._emit = emit
        self._quiet_period = quiet_period
        self._predicate = predicate
        self._timer_factory = timer_factory
        self._map_lock = threading.Lock()
        self._entries: dict[str, _Entry] = {}
        self._registrations: dict[str, QuestionRegistration] = {}

    def register(self, key: str, color: str, on_fire: Callable[[Trigger], None]) -> None:
        with self._map_lock:
            self._registrations[key] = QuestionRegistration(expected_color=color, on_fire=on_fire)
        logger.debug("Question handler registered", extra={"entity_id": key, "color": color})

    def registration(self, key: str) -> QuestionRegistration | None:
        with self._map_lock:
            return self._registrations.get(key)

    def unregister(self, key: str) -> None:
        """Drop the registration and any pending edit for ``key``. Safe if absent."""

        with self._map_lock:
            self._registrations.pop(key, None)
            entry = self._entries.pop(key, None)
        if entry is None:
            return
        with entry.lock:
            entry.removed = True
            entry.generation += 1
            entry.pending = None
            if entry.timer is not None:
                entry.timer.cancel()
                entry.timer = None

    def pending(self, key: str) -> Trigger | None:
        with self._map_lock:
            entry = self._entries.get(key)
        if entry is None:
            return None
        with entry.lock:
            return entry.pending

    def observe(self, key: str, value: Trigger) -> None:
        """Record the latest edit for ``key`` and restart its quiet-period timer."""

        while True:
            with self._map_lock:
                entry = self._entries.get(key)
                if entry is None:
                    entry = _Entry()
                    self._entries[key] = entry
            with entry.lock:
                if entry.removed:
                    # Lost a race with unregister/fire; retry against a fresh entry.
                    continue
                entry.pending = value
                entry.generation += 1
                if entry.timer is not None:
                    entry.timer.cancel()
                timer = self._timer_factory(
                    self._quiet_period, self._fire, args=(key, entry, entry.generation)
                )
                timer.daemon = True
                entry.timer = timer
                timer.start()
                return

    def _fire(self, key: str, entry: _Entry, generation: int) -> None:
        with entry.lock:
            if entry.removed or entry.generation != generation:
                return
            entry.timer = None
            latest = entry.pending
            if latest is None or not self._predicate(latest.text):
                logger.debug("Debounced edit is not a question", extra={"entity_id": key})
                return
            with self._map_lock:
                if self._entries.get(key) is not entry:
                    # unregister() already detached this entry.
                    return
                del self._entries[key]
                registration = self._registrations.get(key)
            entry.removed = True
            trigger = Trigger(
                kind=TriggerKind.QUESTION_TEXT_DETECTED,
                entity_id=latest.entity_id or key,
                entity_type=latest.entity_type,
                title=latest.title,
                text=latest.text,
                color=latest.color,
                raw=latest.raw,
            )
            self._emit(trigger)

        if registration is not None:
            try:
                registration.on_fire(trigger)
            except Exception:
                logger.exception("Question handler failed", extra={"entity_id": key})
