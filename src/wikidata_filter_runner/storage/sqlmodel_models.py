"""SQLModel ORM tables for orchestrator and run-book storage."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, DateTime, PrimaryKeyConstraint, Text
from sqlmodel import Field, SQLModel


class TrackingToken(SQLModel, table=True):
    """At most one row per run identifier; the PID-file equivalent."""

    __tablename__ = "tracking_tokens"  # type: ignore[bad-override]

    run_id: str = Field(primary_key=True)
    token_id: str = Field(index=True, unique=True)
    state: str = Field(index=True)
    pid: int | None = None
    process_created_at: float | None = None
    executable: str
    args_json: str = Field(sa_column=Column(Text, nullable=False))
    env_json: str = Field(default="{}", sa_column=Column(Text, nullable=False))
    working_dir: str
    log_path: str | None = None
    reserved_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    started_at: datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True),
    )


class TaskRun(SQLModel, table=True):
    __tablename__ = "task_runs"  # type: ignore[bad-override]

    task_run_id: int | None = Field(default=None, primary_key=True)
    run_id: str = Field(index=True)
    token_id: str = Field(index=True, unique=True)
    status: str = Field(index=True)
    pid: int | None = None
    executable: str
    args_json: str = Field(sa_column=Column(Text, nullable=False))
    working_dir: str
    log_path: str | None = None
    started_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    finished_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    error_summary: str | None = None


class PipelineStepRow(SQLModel, table=True):
    __tablename__ = "pipeline_steps"  # type: ignore[bad-override]
    __table_args__ = (PrimaryKeyConstraint("pipeline_id", "step_name"),)

    pipeline_id: str
    step_name: str
    position: int
    status: str = Field(index=True)
    detail: str | None = None
    error: str | None = None
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
