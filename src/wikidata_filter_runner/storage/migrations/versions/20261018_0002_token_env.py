"""Persist the task environment on tracking tokens."""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

revision = "20261018_0002"
down_revision = "20261018_0001"
branch_labels = None
depends_on = None


def upgrade() -> None:
    with op.batch_alter_table("tracking_tokens") as batch_op:
        batch_op.add_column(
            sa.Column("env_json", sa.Text(), nullable=False, server_default="{}"),
        )


def downgrade() -> None:
    with op.batch_alter_table("tracking_tokens") as batch_op:
        batch_op.drop_column("env_json")
