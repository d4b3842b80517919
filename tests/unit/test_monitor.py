"""Unit tests for the event monitor and trigger dispatch."""

from __future__ import annotations

import threading
import time
from unittest.mock import Mock

from canvas_personas.events.debounce import DebounceGate
from canvas_personas.events.monitor import EventMonitor
from canvas_personas.models import Trigger, TriggerKind
from canvas_personas.workflow.dispatcher import TriggerDispatcher, run_inline
from canvas_personas.workflow.orchestrator import QuestionWorkflow


def test_direct_triggers_are_dispatched() -> None:
    dispatched: list[Trigger] = []
    monitor = EventMonitor(dispatch=dispatched.append, debounce=DebounceGate(emit=dispatched.append))

    monitor.handle_record({"widget_type": "Connector", "id": "c1"})
    monitor.handle_record({"widget_type": "Note", "id": "n1", "title": "Groceries"})

    assert [t.kind for t in dispatched] == [TriggerKind.CONNECTOR_CREATED]


def test_registered_question_edits_go_through_debounce() -> None:
    dispatched: list[Trigger] = []
    debounce = DebounceGate(emit=dispatched.append, quiet_period=0.05)
    monitor = EventMonitor(dispatch=dispatched.append, debounce=debounce)
    debounce.register("n1", "#ffe4b3", lambda _t: None)

    record = {"widget_type": "Note", "id": "n1", "title": "New_AI_Question", "background_color": "#ffe4b3"}
    monitor.handle_record({**record, "text": "Wh"})
    monitor.handle_record({**record, "text": "What now?"})

    assert dispatched == []
    deadline = time.monotonic() + 2.0
    while not dispatched and time.monotonic() < deadline:
        time.sleep(0.01)
    assert [(t.kind, t.text) for t in dispatched] == [(TriggerKind.QUESTION_TEXT_DETECTED, "What now?")]


def test_unregistered_question_edits_are_ignored() -> None:
    dispatched: list[Trigger] = []
    debounce = DebounceGate(emit=dispatched.append, quiet_period=0.05)
    monitor = EventMonitor(dispatch=dispatched.append, debounce=debounce)

    monitor.handle_record(
        {"widget_type": "Note", "id": "n1", "title": "New_AI_Question", "background_color": "#ffe4b3"}
    )

    assert debounce.pending("n1") is None


def test_dispatcher_routes_by_kind() -> None:
    workflow = Mock(spec=QuestionWorkflow)
    dispatcher = TriggerDispatcher(workflow, spawn=run_inline)

    dispatcher(Trigger(kind=TriggerKind.QUESTION_NOTE_CREATED, entity_id="n1"))
    dispatcher(Trigger(kind=TriggerKind.PERSONA_SETUP_REQUESTED, entity_id="n2"))
    dispatcher(Trigger(kind=TriggerKind.CONNECTOR_CREATED, entity_id="c1"))
    dispatcher(Trigger(kind=TriggerKind.IMAGE_COMPLETED, entity_id="i1"))

    assert workflow.handle_question.call_count == 1
    assert workflow.handle_persona_setup.call_count == 1
    assert workflow.handle_followup.call_count == 1


def test_dispatcher_contains_handler_faults() -> None:
    workflow = Mock(spec=QuestionWorkflow)
    workflow.handle_question.side_effect = RuntimeError("bug")
    dispatcher = TriggerDispatcher(workflow, spawn=run_inline)

    dispatcher(Trigger(kind=TriggerKind.QUESTION_NOTE_CREATED, entity_id="n1"))

    workflow.handle_question.assert_called_once()


def test_dispatcher_join_waits_for_running_handlers() -> None:
    release = threading.Event()
    started = threading.Event()
    workflow = Mock(spec=QuestionWorkflow)

    def slow(_trigger: Trigger) -> None:
        started.set()
        release.wait(5.0)

    workflow.handle_question.side_effect = slow
    dispatcher = TriggerDispatcher(workflow)

    dispatcher.dispatch(Trigger(kind=TriggerKind.QUESTION_NOTE_CREATED, entity_id="q1"))
    assert started.wait(2.0)

    assert dispatcher.join(0.05) is False
    release.set()
    assert dispatcher.join(2.0) is True
