"""
ReferralReward model - one payout record per converted referral.

Lifecycle: PENDING -> DISTRIBUTED | FAILED | CANCELLED.
FAILED can be put back to PENDING explicitly (reset_for_retry); nothing
requeues it automatically. Amount/currency are a snapshot of the program
config at creation time.
"""
import enum
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import String, Text, Integer, DateTime, Numeric, ForeignKey, Index
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from clubreferral.database import Base


class RewardType(str, enum.Enum):
    WALLET_CREDIT = "WALLET_CREDIT"
    FREE_DAYS = "FREE_DAYS"
    DISCOUNT_PERCENT = "DISCOUNT_PERCENT"
    DISCOUNT_AMOUNT = "DISCOUNT_AMOUNT"


class RewardStatus(str, enum.Enum):
    PENDING = "PENDING"
    DISTRIBUTED = "DISTRIBUTED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


class ReferralReward(Base):
    __tablename__ = "referral_rewards"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    tenant_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    referral_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("referrals.id"), nullable=False
    )
    member_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)

    # Snapshot of the program's reward shape
    reward_type: Mapped[str] = mapped_column(String(20), nullable=False)
    amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2))
    currency: Mapped[Optional[str]] = mapped_column(String(3))
    free_days: Mapped[Optional[int]] = mapped_column(Integer)
    description: Mapped[Optional[str]] = mapped_column(String(255))

    status: Mapped[str] = mapped_column(
        String(20), default=RewardStatus.PENDING.value, nullable=False
    )
    distribution_attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    failure_reason: Mapped[Optional[str]] = mapped_column(Text)
    wallet_transaction_id: Mapped[Optional[str]] = mapped_column(String(100))

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    distributed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        Index("ix_referral_rewards_status_created", "status", "created_at"),
        Index("ix_referral_rewards_tenant_member", "tenant_id", "member_id"),
        Index("ix_referral_rewards_referral", "referral_id"),
    )

    def __repr__(self) -> str:
        return f"<ReferralReward {self.reward_type} ({self.status})>"
