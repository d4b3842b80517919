"""CLI entrypoint for canvas-personas."""

from __future__ import annotations

import argparse
import logging
import signal
import sys
import threading

from pydantic import ValidationError

from canvas_personas import __version__
from canvas_personas.canvas.client import CanvasClient
from canvas_personas.config import PersonaSettings
from canvas_personas.errors import RemoteError
from canvas_personas.events.debounce import DebounceGate
from canvas_personas.events.monitor import EventMonitor
from canvas_personas.llm.openai_provider import OpenAIProvider
from canvas_personas.logging import configure_logging
from canvas_personas.text import mask_key
from canvas_personas.workflow.dispatcher import TriggerDispatcher
from canvas_personas.workflow.orchestrator import QuestionWorkflow

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="canvas-personas",
        description="Persona focus group for question notes on a collaborative canvas",
    )
    parser.add_argument("--version", action="version", version=f"canvas-personas {__version__}")

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("run", help="Watch the canvas and answer question notes")

    serve = subparsers.add_parser("serve", help="Serve the question-submission API")
    serve.add_argument("--host", default="0.0.0.0", help="Interface to bind (default: 0.0.0.0)")
    serve.add_argument("--port", type=int, default=None, help="Port to bind (default: PORT or 8080)")

    subparsers.add_parser("check", help="Validate credentials and canvas access, then exit")

    return parser


def _canvas_client(settings: PersonaSettings, cancel: threading.Event | None = None) -> CanvasClient:
    retry = settings.retry_policy(sleep=cancel.wait) if cancel is not None else settings.retry_policy()
    return CanvasClient(
        base_url=settings.canvas_base_url,
        api_key=settings.canvus_api_key,
        retry=retry,
        verify_tls=settings.canvus_verify_tls,
    )


def _generator(settings: PersonaSettings) -> OpenAIProvider:
    return OpenAIProvider(
        api_key=settings.openai_api_key,
        model=settings.openai_model,
        image_model=settings.openai_image_model,
        temperature=settings.temperature,
    )


def run_monitor(settings: PersonaSettings) -> int:
    settings.require_canvas()
    settings.require_openai()

    cancel = threading.Event()
    client = _canvas_client(settings, cancel)
    workflow = QuestionWorkflow.from_settings(
        settings, surface=client, generator=_generator(settings), cancel=cancel
    )
    dispatcher = TriggerDispatcher(workflow)
    debounce = DebounceGate(emit=dispatcher, quiet_period=settings.debounce_seconds)
    workflow.attach_debounce(debounce)
    monitor = EventMonitor(dispatch=dispatcher, debounce=debounce)
    stream = monitor.build_stream(
        connect=client.subscribe_widgets,
        cancel=cancel,
        initial_backoff=settings.stream_initial_backoff,
        max_backoff=settings.stream_max_backoff,
        max_reconnect_attempts=settings.stream_max_reconnects,
        stable_after=settings.stream_stable_seconds,
    )

    def _shutdown(signum: int, _frame: object) -> None:
        logger.info("Shutdown requested", extra={"signal": signum})
        stream.stop()

    signal.signal(signal.SIGINT, _shutdown)
    signal.signal(signal.SIGTERM, _shutdown)

    logger.info(
        "Monitoring canvas",
        extra={"canvas_id": settings.canvas_id, "server": settings.canvus_server},
    )
    try:
        stream.run()
        stopped = cancel.is_set()
    finally:
        # Running workflows see the cancel and finish their current stage and cleanup.
        cancel.set()
        dispatcher.join(settings.shutdown_grace_seconds)
        workflow.personas.join_images(settings.shutdown_grace_seconds)
        client.close()
    if stopped:
        return 0
    logger.error("Widget stream gave up", extra={"reconnects": stream.reconnects})
    return 1


def serve_api(settings: PersonaSettings, *, host: str, port: int | None) -> int:
    import uvicorn

    from canvas_personas.server.app import create_app

    settings.require_canvas()
    uvicorn.run(create_app(settings), host=host, port=port or settings.port, log_config=None)
    return 0


def check(settings: PersonaSettings) -> int:
    """Validate configuration and canvas access. Returns a process exit code."""

    settings.require_canvas()
    settings.require_openai()
    print(f"Canvas server:  {settings.canvus_server}")
    print(f"Canvas id:      {settings.canvas_id}")
    print(f"Canvas API key: {mask_key(settings.canvus_api_key)}")
    print(f"OpenAI API key: {mask_key(settings.openai_api_key)}")
    print(f"OpenAI model:   {settings.openai_model}")

    client = _canvas_client(settings)
    try:
        info = client.get_canvas_info()
    except RemoteError as e:
        logger.error("Canvas check failed", extra={"status_code": e.status_code, "error": str(e)})
        print(f"Canvas check failed: {e}", file=sys.stderr)
        return 1
    finally:
        client.close()
    print(f"Canvas reachable: {info.get('name', settings.canvas_id)}")
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = PersonaSettings()
    except ValidationError as e:
        # Logging isn't configured yet; keep it simple and actionable.
        print("Configuration error (check your .env):", file=sys.stderr)
        print(e, file=sys.stderr)
        return 2

    configure_logging(settings.log_level, debug=settings.debug)

    try:
        if args.command == "run":
            return run_monitor(settings)
        if args.command == "serve":
            return serve_api(settings, host=args.host, port=args.port)
        if args.command == "check":
            return check(settings)

        logger.error("Unknown command", extra={"command": args.command})
        return 2

    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    except Exception:
        logger.exception("Command failed")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
