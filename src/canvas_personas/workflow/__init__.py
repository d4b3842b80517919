"""Workflows driven by canvas triggers."""

from canvas_personas.workflow.dispatcher import TriggerDispatcher
from canvas_personas.workflow.guard import ProcessingGuard
from canvas_personas.workflow.helpers import HelperNotes
from canvas_personas.workflow.orchestrator import QuestionWorkflow, WorkflowOutcome, WorkflowResult
from canvas_personas.workflow.personas import PersonaService
from canvas_personas.workflow.run import Slot, WorkflowRun

__all__ = [
    "HelperNotes",
    "PersonaService",
    "ProcessingGuard",
    "QuestionWorkflow",
    "Slot",
    "TriggerDispatcher",
    "WorkflowOutcome",
    "WorkflowResult",
    "WorkflowRun",
]
