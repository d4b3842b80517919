"""Question workflow: turn one question note into a persona focus-group result set.

Pipeline for a question note:

1. make sure persona notes exist (generate them if too few)
2. wait for the note to hold a question
3. ask every persona concurrently
4. stop unless enough personas answered
5. create answer notes around the question
6. ask every answering persona to react to the others
7. connect question -> answer -> reaction
8. group everything under one anchor
9. mark the question answered

Each stage starts only if the workflow has not been cancelled or run out of time.
Failures of individual personas are tolerated down to ``min_required_answers``.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable

from canvas_personas.canvas.surface import (
    CanvasSurface,
    Rect,
    Widget,
    bounding_box,
    build_connector,
    note_payload,
    widget_rect,
)
from canvas_personas.config import PersonaSettings
from canvas_personas.errors import MissingBusinessNotesError, PersonaGenerationError, RemoteError
from canvas_personas.events.classifier import NOTE_TYPE
from canvas_personas.events.debounce import DebounceGate
from canvas_personas.llm.provider import ChatSession, GenerationProvider, SessionManager
from canvas_personas.logging import timed
from canvas_personas.models import PERSONA_COLORS, PERSONA_COUNT, Trigger
from canvas_personas.retry import RetryPolicy
from canvas_personas.text import clean_question, ends_with_question, normalize_color
from canvas_personas.workflow.guard import ProcessingGuard
from canvas_personas.workflow.helpers import (
    FAILURE_COLOR,
    FAILURE_TITLE,
    PERSONA_HELPER_TITLE,
    QUESTION_HELPER_TITLE,
    TIMEOUT_COLOR,
    TIMEOUT_TITLE,
    HelperNotes,
    owner_rect,
    show_missing_notes,
)
from canvas_personas.workflow.personas import BusinessContext, PersonaNote, PersonaService, find_personas_anchor
from canvas_personas.workflow.run import Slot, WorkflowRun

logger = logging.getLogger(__name__)

WAITING_COLOR = "#ffe4b3"
ANSWERED_COLOR = "#ccffcc"
NO_PEERS_TEXT = "No other responses to react to."
ANCHOR_SUFFIX = " (Script Made)"

# Grid offsets around the question note: top, right, bottom, left.
ANSWER_OFFSETS: tuple[tuple[int, int], ...] = ((0, -1), (1, 0), (0, 1), (-1, 0))
# Diagonals: top-right, bottom-right, bottom-left, top-left.
META_OFFSETS: tuple[tuple[int, int], ...] = ((1, -1), (1, 1), (-1, 1), (-1, -1))


class WorkflowOutcome(str, Enum):
    COMPLETED = "completed"
    SKIPPED = "skipped"
    TIMED_OUT = "timed_out"
    ABORTED = "aborted"
    FAILED = "failed"


@dataclass(slots=True)
class WorkflowResult:
    outcome: WorkflowOutcome
    entity_id: str = ""
    question: str = ""
    detail: str = ""
    answer_ids: list[str] = field(default_factory=list)
    meta_ids: list[str] = field(default_factory=list)
    connector_ids: list[str] = field(default_factory=list)
    anchor_id: str | None = None

    @property
    def note_ids(self) -> list[str]:
        return [*self.answer_ids, *self.meta_ids]


class _Stop(Exception):
    """Ends the pipeline early with a non-crash outcome."""

    def __init__(self, outcome: WorkflowOutcome, detail: str) -> None:
        super().__init__(detail)
        self.outcome = outcome
        self.detail = detail


def rephrase_prompt(limit: int) -> str:
    return (
        "Please rephrase your answer in a much more succinct, short, and verbal way. "
        f"Limit your response to {limit} characters."
    )


def meta_prompt(name: str, peers: list[tuple[str, str]]) -> str:
    heard = "; ".join(f"{peer} said: {answer}" for peer, answer in peers)
    return (
        f"Thank you {name} for the interesting answer. Does what you heard from the others "
        f"change what you think in any way? You heard: {heard}"
    )


def grid_rect(question: Rect, offset: tuple[int, int]) -> Rect:
    """Place a note the size of ``question`` one grid cell away in direction ``offset``."""

    spacing = question.width * question.scale / 5.0
    return Rect(
        x=question.x + offset[0] * (question.width * question.scale + spacing),
        y=question.y + offset[1] * (question.height * question.scale + spacing),
        width=question.width,
        height=question.height,
        scale=question.scale,
    )


def persona_name_from_title(title: str) -> str:
    name = title.strip()
    for suffix in (" Followup Answer", " Meta Answer", " Answer"):
        if name.endswith(suffix):
            return name[: -len(suffix)].strip()
    return name


class QuestionWorkflow:
    """Runs the question, follow-up and persona-setup workflows against a canvas."""

    def __init__(
        self,
        *,
        surface: CanvasSurface,
        generator: GenerationProvider,
        guard: ProcessingGuard,
        helpers: HelperNotes,
        personas: PersonaService,
        debounce: DebounceGate | None = None,
        sessions: Callable[[], SessionManager] = SessionManager,
        retry: RetryPolicy | None = None,
        cancel: threading.Event | None = None,
        min_required_answers: int = 1,
        min_required_personas: int = 1,
        question_timeout: float = 300.0,
        poll_interval: float = 0.5,
        workflow_timeout: float = 900.0,
        chat_token_limit: int = 256,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if min_required_answers < 1:
            raise ValueError("min_required_answers must be >= 1")
        if poll_interval <= 0:
            raise ValueError("poll_interval must be > 0")
        self._surface = surface
        self._generator = generator
        self._guard = guard
        self._helpers = helpers
        self._personas = personas
        self._debounce = debounce
        self._new_sessions = sessions
        self._retry = retry or RetryPolicy()
        self._cancel = cancel or threading.Event()
        self._min_answers = min_required_answers
        self._min_personas = min_required_personas
        self._question_timeout = question_timeout
        self._poll_interval = poll_interval
        self._workflow_timeout = workflow_timeout
        self._chat_token_limit = chat_token_limit
        self._clock = clock

    @classmethod
    def from_settings(
        cls,
        settings: PersonaSettings,
        *,
        surface: CanvasSurface,
        generator: GenerationProvider,
        debounce: DebounceGate | None = None,
        cancel: threading.Event | None = None,
    ) -> QuestionWorkflow:
        cancel = cancel or threading.Event()
        retry = settings.retry_policy(sleep=cancel.wait)
        return cls(
            surface=surface,
            generator=generator,
            guard=ProcessingGuard(),
            helpers=HelperNotes(surface),
            personas=PersonaService(
                surface, generator, retry=retry, generate_images=settings.generate_images
            ),
            debounce=debounce,
            retry=retry,
            cancel=cancel,
            min_required_answers=settings.min_required_answers,
            min_required_personas=settings.min_required_personas,
            question_timeout=settings.question_timeout_seconds,
            poll_interval=settings.question_poll_seconds,
            workflow_timeout=settings.workflow_timeout_seconds,
            chat_token_limit=settings.chat_token_limit,
        )

    @property
    def guard(self) -> ProcessingGuard:
        return self._guard

    @property
    def helpers(self) -> HelperNotes:
        return self._helpers

    @property
    def personas(self) -> PersonaService:
        return self._personas

    def attach_debounce(self, debounce: DebounceGate) -> None:
        self._debounce = debounce

    # ------------------------------------------------------------------
    # Question workflow
    # ------------------------------------------------------------------

    def handle_question(self, trigger: Trigger) -> WorkflowResult:
        """Run the full pipeline for a question note. Never raises."""

        entity_id = trigger.entity_id
        if not entity_id:
            return WorkflowResult(WorkflowOutcome.SKIPPED, detail="trigger has no entity id")
        if not self._guard.try_claim(entity_id):
            logger.info("Question note already being processed", extra={"entity_id": entity_id})
            return WorkflowResult(WorkflowOutcome.SKIPPED, entity_id=entity_id, detail="already claimed")

        result = WorkflowResult(WorkflowOutcome.FAILED, entity_id=entity_id)
        try:
            with timed(logger, "question_workflow", entity_id=entity_id) as ctx:
                self._run_question(trigger, result)
                ctx["answers"] = len(result.answer_ids)
        except _Stop as stop:
            result.outcome = stop.outcome
            result.detail = stop.detail
            log = logger.warning if stop.outcome is WorkflowOutcome.FAILED else logger.info
            log(
                "Question workflow stopped",
                extra={"entity_id": entity_id, "outcome": stop.outcome.value, "detail": stop.detail},
            )
        except Exception as e:
            result.outcome = WorkflowOutcome.FAILED
            result.detail = str(e)
            logger.exception("Question workflow crashed", extra={"entity_id": entity_id})
        finally:
            if self._debounce is not None:
                self._debounce.unregister(entity_id)
            self._helpers.remove(entity_id)
            self._guard.release(entity_id)
        return result

    def _run_question(self, trigger: Trigger, result: WorkflowResult) -> None:
        entity_id = trigger.entity_id
        deadline = self._clock() + self._workflow_timeout
        question_rect = owner_rect(self._surface, entity_id)

        # 1. Prerequisites
        self._checkpoint(deadline, "prerequisites")
        widgets = self._surface.list_widgets()
        context, personas = self._prerequisites(entity_id, question_rect, widgets)

        # 2. Input wait
        self._checkpoint(deadline, "input")
        question = self._await_question(trigger, question_rect, deadline)
        result.question = question
        self._helpers.update(entity_id, "Processing Question...")
        logger.info(
            "Answering question",
            extra={"entity_id": entity_id, "question": question, "personas": len(personas)},
        )

        # 3-4. Answers
        self._checkpoint(deadline, "answers")
        # Chat history lives only as long as this run.
        sessions = self._new_sessions()
        answers = WorkflowRun(personas, name="answers")
        with timed(logger, "generate_answers", entity_id=entity_id):
            answers.fan_out(lambda slot: self._ask(self._session(sessions, slot.input, context), question))
        if answers.success_count < self._min_answers:
            self._failure_notice(entity_id, question_rect, answers.success_count)
            raise _Stop(
                WorkflowOutcome.FAILED,
                f"{answers.success_count} of {len(answers)} personas answered; "
                f"{self._min_answers} required",
            )

        # 5. Answer notes
        self._checkpoint(deadline, "answer_notes")
        answers.fan_out(
            lambda slot: self._create_result_note(slot, question_rect, ANSWER_OFFSETS, "Answer"),
            only=lambda slot: slot.ok,
        )
        result.answer_ids = [s.entity_id for s in answers.materialized()]

        # 6. Reactions
        self._checkpoint(deadline, "meta_answers")
        reactions = self._react(answers, sessions, context, question_rect)
        result.meta_ids = [s.entity_id for s in reactions.materialized()]

        # 7. Connectors
        self._checkpoint(deadline, "connectors")
        result.connector_ids = self._link(entity_id, answers, reactions)

        # 8. Anchor
        self._checkpoint(deadline, "anchor")
        result.anchor_id = self._group(question, result.note_ids)

        # 9. Finalize
        self._finalize(entity_id, question)
        result.outcome = WorkflowOutcome.COMPLETED

    def _checkpoint(self, deadline: float, stage: str) -> None:
        if self._cancel.is_set():
            raise _Stop(WorkflowOutcome.ABORTED, f"cancelled before {stage}")
        if self._clock() > deadline:
            raise _Stop(WorkflowOutcome.ABORTED, f"workflow timeout before {stage}")

    def _prerequisites(
        self, entity_id: str, question_rect: Rect, widgets: list[Widget]
    ) -> tuple[BusinessContext, list[PersonaNote]]:
        try:
            context = self._personas.business_context(widgets)
        except MissingBusinessNotesError as e:
            anchor = find_personas_anchor(widgets)
            show_missing_notes(self._surface, e.missing, widget_rect(anchor) if anchor else None)
            raise _Stop(WorkflowOutcome.ABORTED, str(e)) from e

        existing = self._personas.load_personas(widgets)
        if len(existing) >= self._min_personas:
            return context, self._personas.ensure_personas(
                entity_id, minimum=self._min_personas, widgets=widgets, context=context
            )

        self._helpers.show(
            entity_id,
            title=PERSONA_HELPER_TITLE,
            text="Generating personas from the Business Model Canvas notes. Please wait...",
            anchor=question_rect,
            above=True,
        )
        try:
            personas = self._personas.ensure_personas(
                entity_id, minimum=self._min_personas, widgets=widgets, context=context
            )
        except (PersonaGenerationError, RemoteError) as e:
            raise _Stop(WorkflowOutcome.ABORTED, f"persona generation failed: {e}") from e
        finally:
            self._helpers.remove(entity_id)
        return context, personas

    def _await_question(self, trigger: Trigger, question_rect: Rect, deadline: float) -> str:
        entity_id = trigger.entity_id
        question = clean_question(trigger.text)
        if ends_with_question(question):
            return question

        fired = threading.Event()
        latest: list[str] = []

        def on_fire(detected: Trigger) -> None:
            latest.append(detected.text)
            fired.set()

        self._set_color(entity_id, WAITING_COLOR)
        if self._debounce is not None:
            self._debounce.register(entity_id, WAITING_COLOR, on_fire)
        self._helpers.show(
            entity_id,
            title=QUESTION_HELPER_TITLE,
            text="Please type a question ending with '?' into this note.",
            anchor=question_rect,
        )
        logger.info("Waiting for question text", extra={"entity_id": entity_id})

        wait_until = min(self._clock() + self._question_timeout, deadline)
        try:
            while True:
                if latest:
                    question = clean_question(latest[-1])
                    if ends_with_question(question):
                        return question
                question = self._current_text(entity_id)
                if ends_with_question(question):
                    return question
                remaining = wait_until - self._clock()
                if remaining <= 0:
                    break
                fired.wait(min(self._poll_interval, remaining))
                fired.clear()
                if self._cancel.is_set():
                    raise _Stop(WorkflowOutcome.ABORTED, "cancelled while waiting for a question")
        finally:
            if self._debounce is not None:
                self._debounce.unregister(entity_id)

        self._helpers.remove(entity_id)
        self._helpers.notice(
            entity_id,
            title=TIMEOUT_TITLE,
            text="No question was entered in time. Create a new question note to try again.",
            anchor=question_rect,
            color=TIMEOUT_COLOR,
        )
        raise _Stop(WorkflowOutcome.TIMED_OUT, "no question entered in time")

    def _current_text(self, entity_id: str) -> str:
        try:
            widget = self._surface.get_widget(entity_id)
        except RemoteError as e:
            logger.warning("Failed to poll question note", extra={"entity_id": entity_id, "error": str(e)})
            return ""
        text = widget.get("text")
        return clean_question(text) if isinstance(text, str) else ""

    def _session(self, sessions: SessionManager, persona: PersonaNote, context: BusinessContext) -> ChatSession:
        return sessions.get_or_create(
            persona.persona.name or persona.title, persona.persona.system_prompt(context.text)
        )

    def _ask(self, session: ChatSession, prompt: str) -> str:
        """Generate one reply in ``session``, asking once for a shorter one if it is too long."""

        reply = self._retry.execute(
            lambda: self._generator.generate_text(prompt, session), name="generate_text"
        ).strip()
        if len(reply) <= self._chat_token_limit:
            return reply
        try:
            shorter = self._retry.execute(
                lambda: self._generator.generate_text(rephrase_prompt(self._chat_token_limit), session),
                name="rephrase_text",
            ).strip()
        except Exception as e:
            logger.warning("Rephrase failed, keeping the long answer", extra={"error": str(e)})
            return reply
        return shorter or reply

    def _create_result_note(
        self,
        slot: Slot[PersonaNote],
        question_rect: Rect,
        offsets: tuple[tuple[int, int], ...],
        kind: str,
    ) -> None:
        persona = slot.input
        rect = grid_rect(question_rect, offsets[persona.index % len(offsets)])
        note = self._surface.create_note(
            note_payload(
                title=f"{persona.persona.name} {kind}",
                text=slot.result,
                rect=rect,
                color=persona.color,
                scale=question_rect.scale,
            )
        )
        note_id = note.get("id")
        if not isinstance(note_id, str) or not note_id:
            raise RemoteError(f"{kind} note for {persona.persona.name} was created without an id")
        slot.entity_id = note_id
        return None

    def _react(
        self,
        answers: WorkflowRun[PersonaNote],
        sessions: SessionManager,
        context: BusinessContext,
        question_rect: Rect,
    ) -> WorkflowRun[PersonaNote]:
        materialized = answers.materialized()
        reactions = WorkflowRun([s.input for s in materialized], name="meta_answers")

        def react(slot: Slot[PersonaNote]) -> str:
            peers = [
                (s.input.persona.name, s.result)
                for s in materialized
                if s.input.index != slot.input.index
            ]
            if not peers:
                return NO_PEERS_TEXT
            return self._ask(
                self._session(sessions, slot.input, context), meta_prompt(slot.input.persona.name, peers)
            )

        reactions.fan_out(react)
        if reactions.success_count < self._min_answers:
            # Reactions are a second pass; falling short only skips them.
            logger.warning(
                "Too few reactions, skipping reaction notes",
                extra={"reactions": reactions.success_count, "required": self._min_answers},
            )
            return WorkflowRun([], name="meta_answers")

        reactions.fan_out(
            lambda slot: self._create_result_note(slot, question_rect, META_OFFSETS, "Meta Answer"),
            only=lambda slot: slot.ok,
        )
        return reactions

    def _link(
        self,
        entity_id: str,
        answers: WorkflowRun[PersonaNote],
        reactions: WorkflowRun[PersonaNote],
    ) -> list[str]:
        answer_ids = {s.input.index: s.entity_id for s in answers.materialized()}
        pairs: list[tuple[str, str]] = [(entity_id, note_id) for note_id in answer_ids.values()]
        for slot in reactions.materialized():
            answer_id = answer_ids.get(slot.input.index)
            if answer_id:
                pairs.append((answer_id, slot.entity_id))

        links = WorkflowRun(pairs, name="connectors")

        def connect(slot: Slot[tuple[str, str]]) -> str:
            src, dst = slot.input
            connector = self._surface.create_connector(build_connector(src, dst))
            connector_id = connector.get("id")
            slot.entity_id = connector_id if isinstance(connector_id, str) else ""
            return slot.entity_id or f"{src}->{dst}"

        links.fan_out(connect)
        return [s.entity_id for s in links.materialized()]

    def _group(self, question: str, note_ids: list[str]) -> str | None:
        if not note_ids:
            return None
        wanted = set(note_ids)
        try:
            widgets = self._surface.list_widgets()
        except RemoteError as e:
            logger.warning("Failed to list widgets for grouping", extra={"error": str(e)})
            return None
        rects = [widget_rect(w) for w in widgets if w.get("id") in wanted]
        box = bounding_box(rects)
        if box is None:
            logger.warning("Created notes not found on canvas", extra={"notes": len(note_ids)})
            return None
        try:
            anchor = self._surface.create_anchor(
                {
                    "anchor_name": question + ANCHOR_SUFFIX,
                    "location": {"x": box.x, "y": box.y},
                    "size": {"width": box.width, "height": box.height},
                    "notes": list(note_ids),
                }
            )
        except RemoteError as e:
            logger.warning("Failed to create result anchor", extra={"error": str(e)})
            return None
        anchor_id = anchor.get("id")
        return anchor_id if isinstance(anchor_id, str) else None

    def _finalize(self, entity_id: str, question: str) -> None:
        try:
            self._surface.update_note(entity_id, {"background_color": ANSWERED_COLOR, "text": question})
        except RemoteError as e:
            logger.warning("Failed to mark question answered", extra={"entity_id": entity_id, "error": str(e)})
        logger.info("Question answered", extra={"entity_id": entity_id})

    def _failure_notice(self, entity_id: str, question_rect: Rect, answered: int) -> None:
        self._helpers.remove(entity_id)
        self._helpers.notice(
            entity_id,
            title=FAILURE_TITLE,
            text=f"Only {answered} persona(s) answered. Please try again later.",
            anchor=question_rect,
            color=FAILURE_COLOR,
        )

    def _set_color(self, entity_id: str, color: str) -> None:
        try:
            self._surface.update_note(entity_id, {"background_color": color})
        except RemoteError as e:
            logger.warning("Failed to recolor note", extra={"entity_id": entity_id, "error": str(e)})

    # ------------------------------------------------------------------
    # Follow-up connectors
    # ------------------------------------------------------------------

    def handle_followup(self, trigger: Trigger) -> str | None:
        """Answer a follow-up question drawn from a persona answer note.

        Returns:
            The follow-up note id, or None when the connector is not a follow-up.
        """

        src_id = _endpoint_id(trigger.raw.get("src"))
        dst_id = _endpoint_id(trigger.raw.get("dst"))
        if not src_id or not dst_id:
            logger.debug("Connector without endpoints", extra={"entity_id": trigger.entity_id})
            return None
        claim = trigger.entity_id or f"{src_id}->{dst_id}"
        if not self._guard.try_claim(claim):
            return None
        try:
            return self._run_followup(src_id, dst_id)
        except Exception:
            logger.exception("Follow-up workflow crashed", extra={"entity_id": trigger.entity_id})
            return None
        finally:
            self._guard.release(claim)

    def _run_followup(self, src_id: str, dst_id: str) -> str | None:
        src = self._surface.get_widget(src_id)
        dst = self._surface.get_widget(dst_id)
        if src.get("widget_type") != NOTE_TYPE or dst.get("widget_type") != NOTE_TYPE:
            return None

        title = src.get("title") if isinstance(src.get("title"), str) else ""
        color = src.get("background_color") if isinstance(src.get("background_color"), str) else ""
        persona_colors = {normalize_color(c) for c in PERSONA_COLORS}
        if not title.endswith(" Answer") or normalize_color(color) not in persona_colors:
            logger.debug("Connector source is not a persona answer", extra={"src_id": src_id})
            return None

        dst_rect = widget_rect(dst)
        text = dst.get("text") if isinstance(dst.get("text"), str) else ""
        question = text.strip()
        # A question workflow running on dst owns its helper note.
        owns_helper = not self._guard.is_claimed(dst_id)
        if not ends_with_question(question):
            if owns_helper:
                # show() replaces any earlier hint, so repeated connectors keep one.
                self._helpers.show(
                    dst_id,
                    title=QUESTION_HELPER_TITLE,
                    text="Please enter a question in the note to enable follow-up.",
                    anchor=dst_rect,
                )
            return None
        if owns_helper:
            self._helpers.remove(dst_id)

        name = persona_name_from_title(title)
        widgets = self._surface.list_widgets()
        context = self._personas.business_context(widgets)
        personas = self._personas.ensure_personas(dst_id, minimum=PERSONA_COUNT, widgets=widgets, context=context)
        persona = next((p for p in personas if p.persona.name == name), None)
        if persona is None:
            logger.warning("Follow-up persona not found", extra={"persona": name})
            return None

        answer = self._ask(self._session(self._new_sessions(), persona, context), question)
        src_rect = widget_rect(src)
        rect = Rect(
            x=dst_rect.x + (src_rect.x - dst_rect.x),
            y=dst_rect.y + (src_rect.y - dst_rect.y),
            width=dst_rect.width,
            height=dst_rect.height,
            scale=dst_rect.scale,
        )
        note = self._surface.create_note(
            note_payload(
                title=f"{name} Followup Answer",
                text=answer,
                rect=rect,
                color=color,
                scale=dst_rect.scale,
            )
        )
        note_id = note.get("id")
        if not isinstance(note_id, str) or not note_id:
            logger.warning("Follow-up note created without an id", extra={"persona": name})
            return None
        try:
            self._surface.create_connector(build_connector(dst_id, note_id))
        except RemoteError as e:
            logger.warning("Failed to connect follow-up note", extra={"note_id": note_id, "error": str(e)})
        logger.info("Follow-up answered", extra={"persona": name, "note_id": note_id})
        return note_id

    # ------------------------------------------------------------------
    # Persona setup
    # ------------------------------------------------------------------

    def handle_persona_setup(self, trigger: Trigger) -> list[PersonaNote]:
        """Create all personas, then delete the ``Create_Personas`` trigger note."""

        entity_id = trigger.entity_id
        if not entity_id or not self._guard.try_claim(entity_id):
            return []
        try:
            widgets = self._surface.list_widgets()
            try:
                context = self._personas.business_context(widgets)
            except MissingBusinessNotesError as e:
                anchor = find_personas_anchor(widgets)
                show_missing_notes(self._surface, e.missing, widget_rect(anchor) if anchor else None)
                logger.warning("Persona setup aborted", extra={"entity_id": entity_id, "missing": e.missing})
                return []
            personas = self._personas.ensure_personas(
                entity_id, minimum=PERSONA_COUNT, widgets=widgets, context=context
            )
            self._surface.delete_note(entity_id)
            logger.info("Persona setup complete", extra={"entity_id": entity_id, "personas": len(personas)})
            return personas
        except Exception:
            logger.exception("Persona setup failed", extra={"entity_id": entity_id})
            return []
        finally:
            self._guard.release(entity_id)


def _endpoint_id(value: object) -> str:
    if isinstance(value, dict):
        endpoint = value.get("id")
        return endpoint if isinstance(endpoint, str) else ""
    return ""
