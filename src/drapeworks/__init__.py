"""Drapeworks - step-gated fabric try-on for ethnic garment photography."""

__version__ = "0.1.0"

from drapeworks.core.config import DrapeworksConfig, config
from drapeworks.core.usage_ledger import UsageLedger
from drapeworks.workflow.generation import generate_design
from drapeworks.workflow.session import WorkflowSession

__all__ = [
    "DrapeworksConfig",
    "config",
    "UsageLedger",
    "WorkflowSession",
    "generate_design",
]
