"""Database models for the automation engine.

This module imports all models to ensure they are registered
with SQLAlchemy's declarative base.
"""

from db.models.automation_graph import AutomationEdge, AutomationGraph, AutomationNode
from db.models.automation_run import AutomationRun, RunLogEntry
from db.models.continuation import ScheduledContinuation

__all__ = [
    "AutomationGraph",
    "AutomationNode",
    "AutomationEdge",
    "AutomationRun",
    "RunLogEntry",
    "ScheduledContinuation",
]
