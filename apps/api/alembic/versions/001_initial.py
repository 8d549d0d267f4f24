"""Initial migration: decisions table

Revision ID: 001_initial
Revises:
Create Date: 2026-02-03

"""

from typing import Sequence, Union

import sqlalchemy as sa

from alembic import op

revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "decisions",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("seq", sa.Integer(), sa.Identity(), nullable=False, unique=True),
        sa.Column("user_id", sa.String(255), nullable=False, index=True),
        sa.Column("question", sa.Text(), nullable=False),
        # JSON-encoded list of option labels
        sa.Column("options", sa.Text(), nullable=False),
        # JSON-encoded [{question, answer}], NULL when none were given
        sa.Column("clarifying_answers", sa.Text()),
        # JSON-encoded [{option, weight}]
        sa.Column("weights", sa.Text(), nullable=False),
        sa.Column("analysis", sa.Text(), nullable=False, server_default=""),
        sa.Column("explanation", sa.Text(), nullable=False, server_default=""),
        sa.Column("initial_choice", sa.String(500)),
        sa.Column("result", sa.String(500), nullable=False),
        sa.Column("final_choice", sa.String(500)),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index(
        "ix_decisions_user_created", "decisions", ["user_id", "created_at"]
    )


def downgrade() -> None:
    op.drop_index("ix_decisions_user_created", table_name="decisions")
    op.drop_table("decisions")
