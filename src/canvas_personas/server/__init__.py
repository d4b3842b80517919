"""FastAPI server adapter for canvas-personas.

Exposes a small question-submission API that drops new question notes onto the canvas.
The event monitor picks them up like any hand-made question note.
"""

from __future__ import annotations

__all__ = ["create_app"]

from canvas_personas.server.app import create_app
