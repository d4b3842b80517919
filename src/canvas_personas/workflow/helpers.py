"""Helper notes shown next to a question note while a workflow waits or fails."""

from __future__ import annotations

import logging
import threading

from canvas_personas.canvas.surface import CanvasSurface, Rect, build_connector, note_payload, widget_rect
from canvas_personas.errors import RemoteError

logger = logging.getLogger(__name__)

HELPER_COLOR = "#e0e0e0"
TIMEOUT_COLOR = "#ff9800ff"
MISSING_NOTES_COLOR = "#f44336ff"
FAILURE_COLOR = "#f44336ff"

QUESTION_HELPER_TITLE = "Helper: Please enter a question for this note"
PERSONA_HELPER_TITLE = "Helper: Generating personas, please wait..."
TIMEOUT_TITLE = "Question Wait Timed Out"
FAILURE_TITLE = "Helper: Answer generation failed"
MISSING_NOTES_TITLE = "Missing Required Notes"


class HelperNotes:
    """Tracks at most one live helper note per question note.

    Showing a new helper replaces (deletes) the previous one for the same owner.
    """

    def __init__(self, surface: CanvasSurface) -> None:
        self._surface = surface
        self._lock = threading.Lock()
        self._helpers: dict[str, str] = {}

    def get(self, owner_id: str) -> str | None:
        with self._lock:
            return self._helpers.get(owner_id)

    def show(
        self,
        owner_id: str,
        *,
        title: str,
        text: str,
        anchor: Rect,
        color: str = HELPER_COLOR,
        above: bool = False,
    ) -> str | None:
        """Create a helper note left of ``anchor`` and connect it to the owner."""

        self.remove(owner_id)
        offset = 1.1 if above else 0.33
        rect = Rect(
            x=anchor.x - 1.2 * anchor.width,
            y=anchor.y - offset * anchor.height,
            width=anchor.width,
            height=anchor.height * 0.7,
        )
        try:
            note = self._surface.create_note(note_payload(title=title, text=text, rect=rect, color=color))
        except RemoteError as e:
            logger.warning("Failed to create helper note", extra={"owner_id": owner_id, "error": str(e)})
            return None
        helper_id = note.get("id")
        if not isinstance(helper_id, str) or not helper_id:
            return None
        try:
            self._surface.create_connector(build_connector(helper_id, owner_id))
        except RemoteError as e:
            logger.warning("Failed to connect helper note", extra={"owner_id": owner_id, "error": str(e)})

        with self._lock:
            self._helpers[owner_id] = helper_id
        logger.info("Helper note shown", extra={"owner_id": owner_id, "helper_id": helper_id, "title": title})
        return helper_id

    def update(self, owner_id: str, text: str) -> None:
        helper_id = self.get(owner_id)
        if helper_id is None:
            return
        try:
            self._surface.update_note(helper_id, {"text": text})
        except RemoteError as e:
            logger.warning("Failed to update helper note", extra={"helper_id": helper_id, "error": str(e)})

    def remove(self, owner_id: str) -> None:
        """Delete the owner's helper note, if any. Safe to call repeatedly."""

        with self._lock:
            helper_id = self._helpers.pop(owner_id, None)
        if helper_id is None:
            return
        try:
            self._surface.delete_note(helper_id)
        except RemoteError as e:
            logger.warning("Failed to delete helper note", extra={"helper_id": helper_id, "error": str(e)})
            return
        logger.info("Helper note removed", extra={"owner_id": owner_id, "helper_id": helper_id})

    def notice(self, owner_id: str, *, title: str, text: str, anchor: Rect, color: str) -> str | None:
        """Create a standalone, untracked notice note connected to the owner."""

        rect = Rect(
            x=anchor.x - 1.2 * anchor.width,
            y=anchor.y - 0.33 * anchor.height,
            width=anchor.width,
            height=anchor.height * 0.7,
        )
        try:
            note = self._surface.create_note(note_payload(title=title, text=text, rect=rect, color=color))
        except RemoteError as e:
            logger.warning("Failed to create notice note", extra={"owner_id": owner_id, "error": str(e)})
            return None
        notice_id = note.get("id")
        if isinstance(notice_id, str) and notice_id:
            try:
                self._surface.create_connector(build_connector(notice_id, owner_id))
            except RemoteError as e:
                logger.warning("Failed to connect notice note", extra={"owner_id": owner_id, "error": str(e)})
            return notice_id
        return None


def owner_rect(surface: CanvasSurface, owner_id: str) -> Rect:
    """Geometry of the owner widget, with a sane default size when unknown."""

    rect = widget_rect(surface.get_widget(owner_id))
    if rect.width <= 0 or rect.height <= 0:
        rect = Rect(x=rect.x, y=rect.y, width=0.1, height=0.1, scale=rect.scale)
    return rect


def missing_notes_text(missing: list[str]) -> str:
    lines = ["The following required Business Model Canvas notes are missing:", ""]
    lines += [f"{i}. {title}" for i, title in enumerate(missing, start=1)]
    lines += ["", "Please add these notes to the canvas with the exact titles listed above, then try again."]
    return "\n".join(lines)


def show_missing_notes(surface: CanvasSurface, missing: list[str], anchor: Rect | None) -> str | None:
    """Create the red note listing absent business notes, left of the Personas anchor."""

    if not missing:
        return None
    if anchor is None:
        rect = Rect(x=0.0, y=0.0, width=400.0, height=300.0)
    else:
        rect = Rect(
            x=anchor.x - 450.0,
            y=anchor.y,
            width=max(anchor.width * 0.5, 300.0),
            height=max(anchor.height * 0.3, 200.0),
        )
    try:
        note = surface.create_note(
            note_payload(
                title=MISSING_NOTES_TITLE,
                text=missing_notes_text(missing),
                rect=rect,
                color=MISSING_NOTES_COLOR,
            )
        )
    except RemoteError as e:
        logger.warning("Failed to create missing-notes helper", extra={"error": str(e)})
        return None
    helper_id = note.get("id")
    logger.info("Missing-notes helper created", extra={"helper_id": helper_id, "missing": missing})
    return helper_id if isinstance(helper_id, str) else None
