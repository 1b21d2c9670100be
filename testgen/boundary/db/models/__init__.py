"""
Database models package.

Exports:
  - RunModel, RunState, RunDecision: Run ORM model and enums
  - RunLogModel: Append-only run log entries

Dependencies: sqlalchemy, testgen.boundary.db.base
System role: Database model definitions for the run lifecycle
"""

from testgen.boundary.db.models.run_log_model import RunLogModel
from testgen.boundary.db.models.run_model import (
    RUN_STATE_FLOW,
    TERMINAL_RUN_STATES,
    RunDecision,
    RunModel,
    RunState,
)

__all__ = [
    "RunModel",
    "RunState",
    "RunDecision",
    "RunLogModel",
    "RUN_STATE_FLOW",
    "TERMINAL_RUN_STATES",
]
