"""Execution state store: job instances, job executions, and step executions.

Persisted with SQLAlchemy Core so a restarted job resumes each partition
from its last committed chunk.
"""

from rebatch.core.state.database import StateDB
from rebatch.core.state.store import ExecutionStateStore

__all__ = [
    "ExecutionStateStore",
    "StateDB",
]
