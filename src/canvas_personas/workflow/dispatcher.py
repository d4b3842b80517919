"""Route classified triggers to workflows, one daemon thread per trigger."""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable

from canvas_personas.models import Trigger, TriggerKind
from canvas_personas.workflow.orchestrator import QuestionWorkflow

logger = logging.getLogger(__name__)


class TriggerDispatcher:
    """Hands each trigger to a new thread so the stream reader never blocks.

    Faults inside a handler are logged with a traceback and never reach the caller.
    """

    def __init__(
        self,
        workflow: QuestionWorkflow,
        *,
        spawn: Callable[[Callable[[], None], str], None] | None = None,
    ) -> None:
        self._workflow = workflow
        self._spawn = spawn or self._spawn_tracked
        self._lock = threading.Lock()
        self._threads: list[threading.Thread] = []
        self._handlers: dict[TriggerKind, Callable[[Trigger], object]] = {
            TriggerKind.QUESTION_NOTE_CREATED: workflow.handle_question,
            TriggerKind.PERSONA_SETUP_REQUESTED: workflow.handle_persona_setup,
            TriggerKind.CONNECTOR_CREATED: workflow.handle_followup,
        }

    def __call__(self, trigger: Trigger) -> None:
        self.dispatch(trigger)

    def dispatch(self, trigger: Trigger) -> None:
        handler = self._handlers.get(trigger.kind)
        if handler is None:
            # Image completions and settled question text are informational here;
            # the waiting question workflow consumes the latter directly.
            logger.info(
                "Trigger observed",
                extra={"kind": trigger.kind.value, "entity_id": trigger.entity_id},
            )
            return

        logger.info("Dispatching trigger", extra={"kind": trigger.kind.value, "entity_id": trigger.entity_id})

        def _task() -> None:
            try:
                handler(trigger)
            except Exception:
                logger.exception(
                    "Trigger handler failed",
                    extra={"kind": trigger.kind.value, "entity_id": trigger.entity_id},
                )

        self._spawn(_task, f"{trigger.kind.value}-{trigger.entity_id}")

    def join(self, timeout: float | None = None) -> bool:
        """Wait for spawned handlers to finish. Returns False if any is still running."""

        deadline = None if timeout is None else time.monotonic() + timeout
        with self._lock:
            threads = list(self._threads)
        for thread in threads:
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
            thread.join(remaining)
        with self._lock:
            self._threads = [t for t in self._threads if t.is_alive()]
            running = len(self._threads)
        if running:
            logger.warning("Workflows still running after shutdown wait", extra={"running": running})
        return running == 0

    def _spawn_tracked(self, task: Callable[[], None], name: str) -> None:
        # Daemon so a wedged handler cannot block exit once join() gives up.
        thread = threading.Thread(target=task, name=name, daemon=True)
        with self._lock:
            self._threads = [t for t in self._threads if t.is_alive()]
            self._threads.append(thread)
        thread.start()


def run_inline(task: Callable[[], None], name: str) -> None:
    """Spawner that runs the task on the calling thread (tests, one-shot CLI use)."""

    task()
