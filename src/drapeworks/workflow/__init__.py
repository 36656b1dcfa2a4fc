"""Per-session workflow state and the generate orchestration."""

from drapeworks.workflow.generation import WorkflowError, execute_generation, generate_design
from drapeworks.workflow.session import WorkflowSession

__all__ = ["WorkflowError", "WorkflowSession", "execute_generation", "generate_design"]
