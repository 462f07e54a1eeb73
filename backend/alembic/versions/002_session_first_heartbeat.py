"""Add first_heartbeat_at to user_sessions

Revision ID: 002_first_heartbeat
Revises: 001_telemetry
Create Date: 2026-10-16

A session created by a UTM landing already counts its first page view.
The first heartbeat claims first_heartbeat_at (set-if-null) and adds no
view, so the landing is not counted twice.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "002_first_heartbeat"
down_revision: Union[str, None] = "001_telemetry"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.add_column("user_sessions", sa.Column("first_heartbeat_at", sa.DateTime(), nullable=True))


def downgrade() -> None:
    op.drop_column("user_sessions", "first_heartbeat_at")
