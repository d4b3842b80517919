"""Canvas personas.

Watches a collaborative canvas for question notes and runs a persona focus group
against them:
- widget events are streamed, classified and debounced
- each question is answered by up to four generated personas in parallel
- answers, reactions, connectors and a grouping anchor are placed back on the canvas
"""

__version__ = "0.1.0"

from canvas_personas.config import PersonaSettings

__all__ = ["__version__", "PersonaSettings"]
