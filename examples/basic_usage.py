#!/usr/bin/env python3
"""Programmatic focus-group example.

This demonstrates using the workflow components directly:

* load settings from `.env`
* fetch one existing question note from the canvas
* run the persona focus group for it once, without the event stream

The note id is passed as an argument (not read from `.env`).
"""

from __future__ import annotations

import argparse
from typing import Sequence

from canvas_personas.canvas.client import CanvasClient
from canvas_personas.config import PersonaSettings
from canvas_personas.errors import RemoteError
from canvas_personas.llm.openai_provider import OpenAIProvider
from canvas_personas.logging import configure_logging
from canvas_personas.models import Trigger, TriggerKind
from canvas_personas.workflow.orchestrator import QuestionWorkflow, WorkflowOutcome


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Answer one question note (programmatic example).")
    parser.add_argument("--note-id", required=True, help="Id of a question note on the canvas")
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_args(argv)

    settings = PersonaSettings()
    configure_logging(settings.log_level)
    settings.require_canvas()
    settings.require_openai()

    client = CanvasClient(
        base_url=settings.canvas_base_url,
        api_key=settings.canvus_api_key,
        retry=settings.retry_policy(),
        verify_tls=settings.canvus_verify_tls,
    )
    generator = OpenAIProvider(api_key=settings.openai_api_key, model=settings.openai_model)
    workflow = QuestionWorkflow.from_settings(settings, surface=client, generator=generator)

    try:
        note = client.get_widget(args.note_id)
    except RemoteError as exc:
        print(f"Could not load note {args.note_id}: {exc}")
        return 1

    try:
        result = workflow.handle_question(Trigger.from_record(TriggerKind.QUESTION_NOTE_CREATED, note))
        workflow.personas.join_images(timeout=60)
    finally:
        client.close()

    print(f"Outcome: {result.outcome.value}")
    print(f"Question: {result.question}")
    print(f"Notes created: {len(result.note_ids)}")
    if result.anchor_id:
        print(f"Grouped under anchor: {result.anchor_id}")
    return 0 if result.outcome is WorkflowOutcome.COMPLETED else 1


if __name__ == "__main__":
    raise SystemExit(main())
