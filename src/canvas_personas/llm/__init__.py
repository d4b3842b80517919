"""Generation providers for persona text and headshots."""

from canvas_personas.llm.provider import ChatSession, GenerationProvider

__all__ = ["ChatSession", "GenerationProvider"]
