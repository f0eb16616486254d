"""Referral schema - codes, program configs, referrals and rewards.

Revision ID: 001
Revises:
Create Date: 2026-10-19
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Referral codes - one per (tenant, member)
    op.create_table(
        "referral_codes",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("tenant_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("member_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("code", sa.String(32), nullable=False, unique=True),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("click_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("conversion_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index(
        "ix_referral_codes_tenant_member", "referral_codes", ["tenant_id", "member_id"], unique=True,
    )
    op.create_index("ix_referral_codes_tenant", "referral_codes", ["tenant_id"])

    # Program config - one per tenant
    op.create_table(
        "referral_program_configs",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("tenant_id", postgresql.UUID(as_uuid=True), nullable=False, unique=True),
        sa.Column("is_enabled", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("code_prefix", sa.String(10), nullable=False, server_default="REF"),
        sa.Column("reward_type", sa.String(20)),
        sa.Column("reward_amount", sa.Numeric(10, 2)),
        sa.Column("reward_currency", sa.String(3)),
        sa.Column("free_days", sa.Integer),
        sa.Column("min_subscription_days", sa.Integer, nullable=False, server_default="0"),
        sa.Column("max_referrals_per_member", sa.Integer),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # Referrals
    op.create_table(
        "referrals",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("tenant_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column(
            "referral_code_id", postgresql.UUID(as_uuid=True),
            sa.ForeignKey("referral_codes.id"), nullable=False,
        ),
        sa.Column("referrer_member_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("referee_member_id", postgresql.UUID(as_uuid=True)),
        sa.Column("subscription_id", postgresql.UUID(as_uuid=True)),
        sa.Column("status", sa.String(20), nullable=False, server_default="PENDING"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("signed_up_at", sa.DateTime(timezone=True)),
        sa.Column("converted_at", sa.DateTime(timezone=True)),
    )
    op.create_index(
        "ix_referrals_tenant_referrer_status", "referrals",
        ["tenant_id", "referrer_member_id", "status"],
    )
    op.create_index(
        "ix_referrals_tenant_referee", "referrals", ["tenant_id", "referee_member_id"], unique=True,
    )
    op.create_index("ix_referrals_code", "referrals", ["referral_code_id"])
    op.create_index("ix_referrals_status", "referrals", ["status"])

    # Rewards
    op.create_table(
        "referral_rewards",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("tenant_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column(
            "referral_id", postgresql.UUID(as_uuid=True),
            sa.ForeignKey("referrals.id"), nullable=False,
        ),
        sa.Column("member_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("reward_type", sa.String(20), nullable=False),
        sa.Column("amount", sa.Numeric(10, 2)),
        sa.Column("currency", sa.String(3)),
        sa.Column("free_days", sa.Integer),
        sa.Column("description", sa.String(255)),
        sa.Column("status", sa.String(20), nullable=False, server_default="PENDING"),
        sa.Column("distribution_attempts", sa.Integer, nullable=False, server_default="0"),
        sa.Column("failure_reason", sa.Text),
        sa.Column("wallet_transaction_id", sa.String(100)),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("distributed_at", sa.DateTime(timezone=True)),
        sa.Column("cancelled_at", sa.DateTime(timezone=True)),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index(
        "ix_referral_rewards_status_created", "referral_rewards", ["status", "created_at"],
    )
    op.create_index(
        "ix_referral_rewards_tenant_member", "referral_rewards", ["tenant_id", "member_id"],
    )
    op.create_index("ix_referral_rewards_referral", "referral_rewards", ["referral_id"])


def downgrade() -> None:
    op.drop_table("referral_rewards")
    op.drop_table("referrals")
    op.drop_table("referral_program_configs")
    op.drop_table("referral_codes")
