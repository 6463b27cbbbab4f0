"""initial_schema

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-19 00:00:00.000000 UTC

Creates the three tracking tables:
  - audit_sessions     one row per visitor session (reconciled from batched page visits)
  - request_log        flat append-only per-request audit log
  - outreach_contacts  tracked outreach emails resolved by the open pixel
"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision: str = "001_initial_schema"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "audit_sessions",
        sa.Column(
            "session_id",
            sa.String(36),
            nullable=False,
            comment="Client-generated (or rotated) session UUID",
        ),
        sa.Column("ip_address", sa.String(45), nullable=True),
        sa.Column("user_identity", postgresql.JSONB(), nullable=False),
        sa.Column("visit_history", postgresql.JSONB(), nullable=False),
        sa.Column("device_info", postgresql.JSONB(), nullable=False),
        sa.Column("geo_info", postgresql.JSONB(), nullable=False),
        sa.Column("browser_name", sa.String(100), nullable=True),
        sa.Column("operating_system", sa.String(100), nullable=True),
        sa.Column("device_type", sa.String(50), nullable=True),
        sa.Column("country_name", sa.String(100), nullable=True),
        sa.Column("city_name", sa.String(100), nullable=True),
        sa.Column("user_name", sa.String(255), nullable=True),
        sa.Column("user_email", sa.String(255), nullable=True),
        sa.Column("user_phone", sa.String(50), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_active_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("session_id"),
    )
    op.create_index(
        "ix_audit_sessions_last_active_at",
        "audit_sessions",
        ["last_active_at"],
    )

    op.create_table(
        "request_log",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("request_id", sa.String(36), nullable=False),
        sa.Column("http_method", sa.String(10), nullable=False),
        sa.Column("request_uri", sa.Text(), nullable=False),
        sa.Column("user_agent", sa.Text(), nullable=True),
        sa.Column("country_code", sa.String(10), nullable=True),
        sa.Column("country_name", sa.String(100), nullable=True),
        sa.Column("region_name", sa.String(100), nullable=True),
        sa.Column("city_name", sa.String(100), nullable=True),
        sa.Column("timezone", sa.String(64), nullable=True),
        sa.Column("isp_name", sa.String(255), nullable=True),
        sa.Column("browser_name", sa.String(100), nullable=True),
        sa.Column("operating_system", sa.String(100), nullable=True),
        sa.Column("device_type", sa.String(50), nullable=True),
        sa.Column(
            "session_id",
            sa.String(45),
            nullable=True,
            comment="Client IP address (used as the visitor identifier in reports)",
        ),
        sa.Column("user_name", sa.String(255), nullable=True),
        sa.Column("user_email", sa.String(255), nullable=True),
        sa.Column("user_phone", sa.String(50), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_request_log_session_id", "request_log", ["session_id"])
    op.create_index("ix_request_log_created_at", "request_log", ["created_at"])

    op.create_table(
        "outreach_contacts",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("company_name", sa.String(255), nullable=False),
        sa.Column("role", sa.String(255), nullable=True),
        sa.Column("contact_name", sa.String(255), nullable=True),
        sa.Column("contact_email", sa.String(255), nullable=False),
        sa.Column(
            "tracking_token",
            sa.String(36),
            nullable=False,
            comment="Opaque token embedded in the tracking pixel URL",
        ),
        sa.Column("email_opens", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_opened_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_outreach_contacts_tracking_token",
        "outreach_contacts",
        ["tracking_token"],
        unique=True,
    )


def downgrade() -> None:
    op.drop_index("ix_outreach_contacts_tracking_token", table_name="outreach_contacts")
    op.drop_table("outreach_contacts")
    op.drop_index("ix_request_log_created_at", table_name="request_log")
    op.drop_index("ix_request_log_session_id", table_name="request_log")
    op.drop_table("request_log")
    op.drop_index("ix_audit_sessions_last_active_at", table_name="audit_sessions")
    op.drop_table("audit_sessions")
