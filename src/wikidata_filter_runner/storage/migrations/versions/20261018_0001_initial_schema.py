"""Tracking tokens, task run history, and pipeline step state."""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

revision = "20261018_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "tracking_tokens",
        sa.Column("run_id", sa.String(), primary_key=True),
        sa.Column("token_id", sa.String(), nullable=False),
        sa.Column("state", sa.String(), nullable=False),
        sa.Column("pid", sa.Integer(), nullable=True),
        sa.Column("process_created_at", sa.Float(), nullable=True),
        sa.Column("executable", sa.String(), nullable=False),
        sa.Column("args_json", sa.Text(), nullable=False),
        sa.Column("working_dir", sa.String(), nullable=False),
        sa.Column("log_path", sa.String(), nullable=True),
        sa.Column("reserved_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index(
        "ix_tracking_tokens_token_id",
        "tracking_tokens",
        ["token_id"],
        unique=True,
    )
    op.create_index("ix_tracking_tokens_state", "tracking_tokens", ["state"])

    op.create_table(
        "task_runs",
        sa.Column("task_run_id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("run_id", sa.String(), nullable=False),
        sa.Column("token_id", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("pid", sa.Integer(), nullable=True),
        sa.Column("executable", sa.String(), nullable=False),
        sa.Column("args_json", sa.Text(), nullable=False),
        sa.Column("working_dir", sa.String(), nullable=False),
        sa.Column("log_path", sa.String(), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("error_summary", sa.String(), nullable=True),
    )
    op.create_index("ix_task_runs_run_id", "task_runs", ["run_id"])
    op.create_index("ix_task_runs_token_id", "task_runs", ["token_id"], unique=True)
    op.create_index("ix_task_runs_status", "task_runs", ["status"])

    op.create_table(
        "pipeline_steps",
        sa.Column("pipeline_id", sa.String(), nullable=False),
        sa.Column("step_name", sa.String(), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("detail", sa.String(), nullable=True),
        sa.Column("error", sa.String(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("pipeline_id", "step_name"),
    )
    op.create_index("ix_pipeline_steps_status", "pipeline_steps", ["status"])


def downgrade() -> None:
    op.drop_index("ix_pipeline_steps_status", table_name="pipeline_steps")
    op.drop_table("pipeline_steps")
    op.drop_index("ix_task_runs_status", table_name="task_runs")
    op.drop_index("ix_task_runs_token_id", table_name="task_runs")
    op.drop_index("ix_task_runs_run_id", table_name="task_runs")
    op.drop_table("task_runs")
    op.drop_index("ix_tracking_tokens_state", table_name="tracking_tokens")
    op.drop_index("ix_tracking_tokens_token_id", table_name="tracking_tokens")
    op.drop_table("tracking_tokens")
