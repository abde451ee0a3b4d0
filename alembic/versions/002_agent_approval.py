"""Agent approval audit columns

Revision ID: 002
Revises: 001
Create Date: 2026-10-19 12:00:00.000000

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "002"
down_revision: Union[str, None] = "001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Who approved the agent, and when
    op.add_column(
        "agents",
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.add_column(
        "agents",
        sa.Column("approved_by", sa.String(255), nullable=True),
    )


def downgrade() -> None:
    op.drop_column("agents", "approved_by")
    op.drop_column("agents", "approved_at")
