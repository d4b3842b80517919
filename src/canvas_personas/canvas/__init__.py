"""Canvas REST client and the surface protocol the workflows depend on."""

from canvas_personas.canvas.client import CanvasClient, WidgetStream
from canvas_personas.canvas.surface import CanvasSurface, Rect, build_connector, widget_rect

__all__ = ["CanvasClient", "CanvasSurface", "Rect", "WidgetStream", "build_connector", "widget_rect"]
