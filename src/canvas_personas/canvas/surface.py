"""The subset of canvas operations the workflows rely on, plus widget geometry helpers."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol

Widget = dict[str, Any]


class CanvasSurface(Protocol):
    def list_widgets(self) -> list[Widget]: ...

    def get_widget(self, widget_id: str) -> Widget: ...

    def create_note(self, attributes: Widget) -> Widget: ...

    def update_note(self, note_id: str, attributes: Widget) -> Widget: ...

    def delete_note(self, note_id: str) -> None: ...

    def create_connector(self, attributes: Widget) -> Widget: ...

    def create_anchor(self, attributes: Widget) -> Widget: ...

    def create_image(self, image: bytes, attributes: Widget, *, filename: str = ...) -> Widget: ...


@dataclass(frozen=True, slots=True)
class Rect:
    x: float
    y: float
    width: float
    height: float
    scale: float = 1.0

    @property
    def right(self) -> float:
        return self.x + self.width

    @property
    def bottom(self) -> float:
        return self.y + self.height

    def overlaps(self, other: Rect) -> bool:
        return (
            self.x < other.right
            and self.right > other.x
            and self.y < other.bottom
            and self.bottom > other.y
        )


def _number(mapping: object, key: str, default: float = 0.0) -> float:
    if not isinstance(mapping, dict):
        return default
    value = mapping.get(key)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return default
    return float(value)


def widget_rect(widget: Widget) -> Rect:
    """Location/size/scale of a widget; missing fields read as zero (scale as one)."""

    location = widget.get("location")
    size = widget.get("size")
    scale = _number(widget, "scale", 0.0) or _number(size, "scale", 0.0) or 1.0
    return Rect(
        x=_number(location, "x"),
        y=_number(location, "y"),
        width=_number(size, "width"),
        height=_number(size, "height"),
        scale=scale,
    )


def bounding_box(rects: list[Rect]) -> Rect | None:
    if not rects:
        return None
    left = min(r.x for r in rects)
    top = min(r.y for r in rects)
    right = max(r.right for r in rects)
    bottom = max(r.bottom for r in rects)
    return Rect(x=left, y=top, width=right - left, height=bottom - top)


def build_connector(src_id: str, dst_id: str) -> Widget:
    """Connector payload from ``src_id`` to ``dst_id`` with an arrow at the destination."""

    return {
        "src": {"id": src_id, "auto_location": True, "tip": "none"},
        "dst": {"id": dst_id, "auto_location": True, "tip": "solid-equilateral-triangle"},
        "line_color": "#e7e7f2ff",
        "line_width": 5,
        "state": "normal",
        "type": "curve",
        "widget_type": "Connector",
    }


def note_payload(
    *,
    title: str,
    text: str,
    rect: Rect,
    color: str,
    scale: float | None = None,
) -> Widget:
    payload: Widget = {
        "title": title,
        "text": text,
        "location": {"x": rect.x, "y": rect.y},
        "size": {"width": rect.width, "height": rect.height},
        "background_color": color,
    }
    if scale is not None:
        payload["scale"] = scale
    return payload
