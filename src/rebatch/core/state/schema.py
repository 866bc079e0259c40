# src/rebatch/core/state/schema.py
"""SQLAlchemy table definitions for the execution state store.

Uses SQLAlchemy Core (not ORM) for explicit control over queries
and compatibility with multiple database backends.
"""

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    PrimaryKeyConstraint,
    String,
    Table,
    Text,
    UniqueConstraint,
)

# Shared metadata for all tables
metadata = MetaData()

# === Job instances (job name + identifying parameters) ===

job_instances_table = Table(
    "job_instances",
    metadata,
    Column("job_instance_id", String(32), primary_key=True),
    Column("job_name", String(128), nullable=False),
    # sha256 of the canonical identifying parameters
    Column("job_key", String(64), nullable=False),
    Column("created_at", DateTime(timezone=True), nullable=False),
    UniqueConstraint("job_name", "job_key"),
)

# === Job executions (one per launch attempt) ===

job_executions_table = Table(
    "job_executions",
    metadata,
    Column("job_execution_id", String(32), primary_key=True),
    Column("job_instance_id", String(32), ForeignKey("job_instances.job_instance_id"), nullable=False),
    Column("attempt", Integer, nullable=False),
    Column("status", String(16), nullable=False),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("started_at", DateTime(timezone=True)),
    Column("ended_at", DateTime(timezone=True)),
    Column("last_updated", DateTime(timezone=True), nullable=False),
    # Sums of committed step deltas, incremented in the same transaction as each commit
    Column("read_count", Integer, nullable=False, default=0),
    Column("write_count", Integer, nullable=False, default=0),
    Column("skip_count", Integer, nullable=False, default=0),
    Column("exit_message", Text),
    UniqueConstraint("job_instance_id", "attempt"),
)

Index("ix_job_executions_instance", job_executions_table.c.job_instance_id)

job_execution_params_table = Table(
    "job_execution_params",
    metadata,
    Column("job_execution_id", String(32), ForeignKey("job_executions.job_execution_id"), nullable=False),
    Column("position", Integer, nullable=False),
    Column("key", String(256), nullable=False),
    Column("type", String(16), nullable=False),
    Column("value", Text, nullable=False),
    Column("identifying", Boolean, nullable=False),
    PrimaryKeyConstraint("job_execution_id", "key"),
)

# === Step executions ===

step_executions_table = Table(
    "step_executions",
    metadata,
    Column("step_execution_id", String(32), primary_key=True),
    Column("job_execution_id", String(32), ForeignKey("job_executions.job_execution_id"), nullable=False),
    Column("step_name", String(128), nullable=False),
    # Registration order within the job execution
    Column("position", Integer, nullable=False),
    Column("status", String(16), nullable=False),
    Column("read_count", Integer, nullable=False, default=0),
    Column("write_count", Integer, nullable=False, default=0),
    Column("skip_count", Integer, nullable=False, default=0),
    Column("read_skip_count", Integer, nullable=False, default=0),
    Column("process_skip_count", Integer, nullable=False, default=0),
    Column("write_skip_count", Integer, nullable=False, default=0),
    Column("commit_count", Integer, nullable=False, default=0),
    Column("rollback_count", Integer, nullable=False, default=0),
    Column("started_at", DateTime(timezone=True)),
    Column("ended_at", DateTime(timezone=True)),
    Column("last_updated", DateTime(timezone=True), nullable=False),
    Column("exit_message", Text),
    # ExecutionContext as JSON (sorted keys)
    Column("context_json", Text, nullable=False),
    UniqueConstraint("job_execution_id", "step_name"),
)

Index("ix_step_executions_job", step_executions_table.c.job_execution_id)
