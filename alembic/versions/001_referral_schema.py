"""Referral schema - agents, partners, properties, bookings, referrals, payouts

Revision ID: 001
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


agent_status = sa.Enum("PENDING", "ACTIVE", "REJECTED", "SUSPENDED", name="agentstatus")
partner_status = sa.Enum("PENDING", "ACTIVE", "REJECTED", "SUSPENDED", name="partnerstatus")
booking_status = sa.Enum("PENDING", "CONFIRMED", "CANCELLED", "COMPLETED", name="bookingstatus")
referral_status = sa.Enum("ACTIVE", "INACTIVE", name="referralstatus")
payout_status = sa.Enum("PENDING", "PROCESSING", "PAID", "REJECTED", name="payoutstatus")


def upgrade() -> None:
    # Agents table
    op.create_table(
        "agents",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("referral_code", sa.String(20), nullable=False),
        sa.Column("display_name", sa.String(100), nullable=False),
        sa.Column("status", agent_status, nullable=False, server_default="PENDING"),
        sa.Column("commission_rate", sa.Numeric(5, 2), nullable=False, server_default="10.00"),
        sa.Column("contact_email", sa.String(255), nullable=True),
        sa.Column("contact_phone", sa.String(50), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("NOW()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("NOW()")),
        sa.UniqueConstraint("user_id", name="uq_agents_user_id"),
        sa.UniqueConstraint("referral_code", name="uq_agents_referral_code"),
    )

    # Partners table
    op.create_table(
        "partners",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("business_name", sa.String(255), nullable=True),
        sa.Column("status", partner_status, nullable=False, server_default="PENDING"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("NOW()")),
        sa.UniqueConstraint("user_id", name="uq_partners_user_id"),
    )

    # Properties table
    op.create_table(
        "properties",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("partner_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("partners.id"), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("NOW()")),
    )
    op.create_index("ix_properties_partner_id", "properties", ["partner_id"])

    # Bookings table
    op.create_table(
        "bookings",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("property_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("properties.id"), nullable=False),
        sa.Column("total_price", sa.Numeric(12, 2), nullable=False),
        sa.Column("status", booking_status, nullable=False, server_default="PENDING"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("NOW()")),
        sa.CheckConstraint("total_price >= 0", name="ck_bookings_total_price_non_negative"),
    )
    op.create_index("ix_bookings_property_id", "bookings", ["property_id"])
    op.create_index("ix_bookings_status", "bookings", ["status"])

    # Referrals: one row per partner, ever
    op.create_table(
        "referrals",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("agent_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("agents.id"), nullable=False),
        sa.Column("partner_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("partners.id"), nullable=False),
        sa.Column("code_used", sa.String(20), nullable=False),
        sa.Column("status", referral_status, nullable=False, server_default="ACTIVE"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("NOW()")),
        sa.UniqueConstraint("partner_id", name="uq_referrals_partner_id"),
    )
    op.create_index("ix_referrals_agent_id", "referrals", ["agent_id"])

    # Payouts
    op.create_table(
        "payouts",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("agent_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("agents.id"), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("payment_method", sa.String(50), nullable=False),
        sa.Column("payment_details", postgresql.JSONB(), nullable=False, server_default="{}"),
        sa.Column("status", payout_status, nullable=False, server_default="PENDING"),
        sa.Column("idempotency_key", sa.String(100), nullable=True),
        sa.Column("transaction_ref", sa.String(100), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("processed_by", sa.String(255), nullable=True),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("NOW()")),
        sa.UniqueConstraint("idempotency_key", name="uq_payouts_idempotency_key"),
        sa.CheckConstraint("amount > 0", name="ck_payouts_amount_positive"),
    )
    op.create_index("ix_payouts_agent_id", "payouts", ["agent_id"])
    op.create_index("ix_payouts_status", "payouts", ["status"])

    # Admin audit log
    op.create_table(
        "admin_audit_log",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("admin_id", sa.String(100), nullable=False),
        sa.Column("action", sa.String(100), nullable=False),
        sa.Column("resource_type", sa.String(50), nullable=False),
        sa.Column("resource_id", sa.String(100), nullable=True),
        sa.Column("details", postgresql.JSONB(), nullable=False, server_default="{}"),
        sa.Column("ip_address", sa.String(50), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("NOW()")),
    )
    op.create_index("ix_admin_audit_log_admin_id", "admin_audit_log", ["admin_id"])


def downgrade() -> None:
    op.drop_table("admin_audit_log")
    op.drop_table("payouts")
    op.drop_table("referrals")
    op.drop_table("bookings")
    op.drop_table("properties")
    op.drop_table("partners")
    op.drop_table("agents")
    for enum in (payout_status, referral_status, booking_status, partner_status, agent_status):
        enum.drop(op.get_bind(), checkfirst=True)
