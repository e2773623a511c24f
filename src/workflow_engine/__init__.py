"""Workflow Engine.

Register workflow definitions (states plus allowed transitions) and drive
independent instances of them through valid state changes:
- definitions validated and stored once, then read-only
- instances advanced by applying actions through ordered gates
- a per-instance history of applied actions
"""

__version__ = "0.1.0"

from workflow_engine.core.config import EngineSettings
from workflow_engine.core.service import WorkflowService

__all__ = ["__version__", "EngineSettings", "WorkflowService"]
