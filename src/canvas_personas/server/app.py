"""FastAPI app factory.

Endpoints are thin wrappers over the canvas client; question notes created here are
answered by the running monitor, not by the server.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from fastapi import FastAPI, HTTPException

from canvas_personas import __version__
from canvas_personas.canvas.client import CanvasClient
from canvas_personas.canvas.surface import CanvasSurface, Rect, Widget, note_payload, widget_rect
from canvas_personas.config import PersonaSettings
from canvas_personas.errors import RemoteError
from canvas_personas.events.classifier import IMAGE_TYPE, NOTE_TYPE, QUESTION_NOTE_TITLE
from canvas_personas.server.models import Health, QuestionCreated, QuestionRequest

logger = logging.getLogger(__name__)

REMOTE_ANCHOR_NAME = "Remote"
GRID_COLUMNS = 5
GRID_ROWS = 4
# Segment 0 is reserved for the access QR code.
RESERVED_SEGMENTS = frozenset({0})
REMOTE_NOTE_SCALE = 1.5 / 3.5
REMOTE_NOTE_COLOR = "#FFFFFFFF"


class AnchorFullError(Exception):
    """Every grid segment of the Remote anchor is occupied."""


@dataclass(frozen=True, slots=True)
class Placement:
    segment: int
    rect: Rect


def find_remote_anchor(widgets: list[Widget]) -> Widget | None:
    for widget in widgets:
        if widget.get("widget_type") != "Anchor":
            continue
        name = widget.get("anchor_name")
        if isinstance(name, str) and name.strip().lower() == REMOTE_ANCHOR_NAME.lower():
            return widget
    return None


def find_free_segment(widgets: list[Widget], anchor: Rect) -> Placement:
    """First unoccupied cell of the anchor's grid, with a note rect centred in it.

    Raises:
        AnchorFullError: If no segment is free.
    """

    seg_w = anchor.width / GRID_COLUMNS
    seg_h = anchor.height / GRID_ROWS
    cells = [
        Rect(x=anchor.x + col * seg_w, y=anchor.y + row * seg_h, width=seg_w, height=seg_h)
        for row in range(GRID_ROWS)
        for col in range(GRID_COLUMNS)
    ]
    occupied = set(RESERVED_SEGMENTS)
    for widget in widgets:
        if widget.get("widget_type") not in (NOTE_TYPE, IMAGE_TYPE):
            continue
        if not isinstance(widget.get("location"), dict) or not isinstance(widget.get("size"), dict):
            continue
        raw = widget_rect(widget)
        # Overlap is judged on the on-screen (scaled) footprint.
        rect = Rect(x=raw.x, y=raw.y, width=raw.width * raw.scale, height=raw.height * raw.scale)
        occupied.update(i for i, cell in enumerate(cells) if rect.overlaps(cell))

    for index, cell in enumerate(cells):
        if index in occupied:
            continue
        width = seg_w * 2.0 / 3.0
        height = seg_h * 2.0 / 3.0
        center_x = cell.x + seg_w / 2
        center_y = cell.y + seg_h / 2
        return Placement(
            segment=index,
            rect=Rect(
                x=center_x - width * REMOTE_NOTE_SCALE / 2,
                y=center_y - height * REMOTE_NOTE_SCALE / 2,
                width=width,
                height=height,
                scale=REMOTE_NOTE_SCALE,
            ),
        )
    raise AnchorFullError("Anchor is full: no free segments available")


def _surface_from_settings(settings: PersonaSettings) -> CanvasSurface:
    settings.require_canvas()
    return CanvasClient(
        base_url=settings.canvas_base_url,
        api_key=settings.canvus_api_key,
        retry=settings.retry_policy(),
        verify_tls=settings.canvus_verify_tls,
    )


def create_app(
    settings: PersonaSettings | None = None,
    surface: CanvasSurface | None = None,
) -> FastAPI:
    settings = settings or PersonaSettings()
    surface = surface or _surface_from_settings(settings)

    app = FastAPI(
        title="Canvas Personas",
        version=__version__,
        description="Submit questions to the persona focus group on the canvas.",
        openapi_url="/api/openapi.json",
        docs_url="/api/docs",
        redoc_url="/api/redoc",
    )

    # Expose settings for request handlers that want to read it.
    app.state.settings = settings
    app.state.surface = surface

    @app.get("/api/health", response_model=Health)
    def health() -> Health:
        return Health(version=__version__)

    @app.post("/api/questions", response_model=QuestionCreated, status_code=201)
    def submit_question(req: QuestionRequest) -> QuestionCreated:
        question = req.question.strip()
        if not question:
            raise HTTPException(status_code=400, detail="Question is required")
        if not question.endswith("?"):
            question += "?"

        try:
            widgets = surface.list_widgets()
        except RemoteError as e:
            logger.warning("Failed to list widgets", extra={"error": str(e)})
            raise HTTPException(status_code=502, detail="Canvas unavailable") from e

        anchor = find_remote_anchor(widgets)
        if anchor is None:
            raise HTTPException(status_code=404, detail="Remote anchor not found")

        try:
            placement = find_free_segment(widgets, widget_rect(anchor))
        except AnchorFullError as e:
            raise HTTPException(status_code=409, detail=str(e)) from e

        try:
            note = surface.create_note(
                note_payload(
                    title=QUESTION_NOTE_TITLE,
                    text=question,
                    rect=placement.rect,
                    color=REMOTE_NOTE_COLOR,
                    scale=placement.rect.scale,
                )
            )
        except RemoteError as e:
            logger.warning("Failed to create question note", extra={"error": str(e)})
            raise HTTPException(status_code=502, detail=f"Failed to create note: {e}") from e

        note_id = note.get("id")
        logger.info(
            "Question submitted",
            extra={"note_id": note_id, "segment": placement.segment, "question": question},
        )
        return QuestionCreated(
            note_id=note_id if isinstance(note_id, str) else "",
            question=question,
            segment=placement.segment,
        )

    return app
