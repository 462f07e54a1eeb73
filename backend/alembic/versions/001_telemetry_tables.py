"""Telemetry tables: campaigns, audience_users, campaign_recipients,
campaign_events, user_sessions, utm_sessions

Revision ID: 001_telemetry
Revises:
Create Date: 2026-10-16

Note: These tables are also created by SQLAlchemy's Base.metadata.create_all()
in app startup. This migration exists for proper schema versioning and
production upgrade paths. On a fresh deploy, create_all handles everything.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001_telemetry"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # ----------------------------------------------------------------
    # Campaigns table
    # ----------------------------------------------------------------
    op.create_table(
        "campaigns",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("status", sa.String(50), server_default="draft"),
        sa.Column("sent_count", sa.Integer(), server_default="0", nullable=False),
        sa.Column("open_count", sa.Integer(), server_default="0", nullable=False),
        sa.Column("click_count", sa.Integer(), server_default="0", nullable=False),
        sa.Column("unsubscribe_count", sa.Integer(), server_default="0", nullable=False),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
    )

    # ----------------------------------------------------------------
    # Audience users table
    # ----------------------------------------------------------------
    op.create_table(
        "audience_users",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("email", sa.String(255), nullable=False, unique=True),
        sa.Column("first_name", sa.String(255), nullable=True),
        sa.Column("last_name", sa.String(255), nullable=True),
        sa.Column("is_marketing_allowed", sa.Boolean(), server_default=sa.true(), nullable=True),
        sa.Column("unsubscribed_at", sa.DateTime(), nullable=True),
        sa.Column("total_opens", sa.Integer(), server_default="0", nullable=False),
        sa.Column("total_clicks", sa.Integer(), server_default="0", nullable=False),
        sa.Column("last_engaged_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index("ix_audience_users_email", "audience_users", ["email"])

    # ----------------------------------------------------------------
    # Campaign recipients table
    # ----------------------------------------------------------------
    op.create_table(
        "campaign_recipients",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("campaign_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("campaigns.id", ondelete="CASCADE"), nullable=False),
        sa.Column("audience_user_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("audience_users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("tracking_id", sa.String(255), nullable=True, unique=True),
        sa.Column("status", sa.String(50), server_default="sent", nullable=False),
        sa.Column("sent_at", sa.DateTime(), nullable=True),
        sa.Column("opened_at", sa.DateTime(), nullable=True),
        sa.Column("clicked_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index("ix_campaign_recipients_campaign_id", "campaign_recipients", ["campaign_id"])
    op.create_index("ix_campaign_recipients_tracking_id", "campaign_recipients", ["tracking_id"])

    # ----------------------------------------------------------------
    # Campaign events table (append-only)
    # ----------------------------------------------------------------
    op.create_table(
        "campaign_events",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("campaign_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("campaigns.id", ondelete="CASCADE"), nullable=False),
        sa.Column("recipient_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("campaign_recipients.id", ondelete="SET NULL"), nullable=True),
        sa.Column("audience_user_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("audience_users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("event_type", sa.String(20), nullable=False),
        sa.Column("link_url", sa.Text(), nullable=True),
        sa.Column("user_agent", sa.Text(), nullable=True),
        sa.Column("ip_address", sa.String(64), nullable=True),
        sa.Column("device_type", sa.String(20), nullable=True),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("idx_campaign_events_campaign_type", "campaign_events", ["campaign_id", "event_type"])

    # ----------------------------------------------------------------
    # User sessions table
    # ----------------------------------------------------------------
    op.create_table(
        "user_sessions",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("session_id", sa.String(255), nullable=False, unique=True),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("user_agent", sa.Text(), nullable=True),
        sa.Column("ip_address", sa.String(64), nullable=True),
        sa.Column("page_views", sa.Integer(), server_default="1", nullable=False),
        sa.Column("total_seconds", sa.Integer(), server_default="0", nullable=False),
        sa.Column("country", sa.String(100), nullable=True),
        sa.Column("city", sa.String(100), nullable=True),
        sa.Column("started_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("last_active_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index("ix_user_sessions_session_id", "user_sessions", ["session_id"])

    # ----------------------------------------------------------------
    # UTM sessions table
    # ----------------------------------------------------------------
    op.create_table(
        "utm_sessions",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("session_id", sa.String(255), sa.ForeignKey("user_sessions.session_id", ondelete="CASCADE"), nullable=False, unique=True),
        sa.Column("utm_source", sa.String(255), server_default="direct", nullable=False),
        sa.Column("utm_medium", sa.String(255), server_default="none", nullable=False),
        sa.Column("utm_campaign", sa.String(255), nullable=True),
        sa.Column("utm_content", sa.String(255), nullable=True),
        sa.Column("utm_term", sa.String(255), nullable=True),
        sa.Column("landing_page", sa.Text(), nullable=True),
        sa.Column("referrer", sa.Text(), nullable=True),
        sa.Column("user_agent", sa.Text(), nullable=True),
        sa.Column("first_seen_at", sa.DateTime(), server_default=sa.func.now()),
        sa.Column("last_seen_at", sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index("ix_utm_sessions_session_id", "utm_sessions", ["session_id"])


def downgrade() -> None:
    op.drop_table("utm_sessions")
    op.drop_table("user_sessions")
    op.drop_table("campaign_events")
    op.drop_table("campaign_recipients")
    op.drop_table("audience_users")
    op.drop_table("campaigns")
