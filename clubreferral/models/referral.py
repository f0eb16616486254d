"""
Referral model - one row per tracked click that was allowed to proceed.

Lifecycle: PENDING -> SIGNED_UP -> CONVERTED. Linear, no way back.
CONVERTED is terminal and the row is never modified afterwards.
"""
import enum
import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import String, DateTime, ForeignKey, Index
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from clubreferral.database import Base


class ReferralStatus(str, enum.Enum):
    PENDING = "PENDING"
    SIGNED_UP = "SIGNED_UP"
    CONVERTED = "CONVERTED"


# States a referral may still advance from
CONVERTIBLE_STATUSES = (ReferralStatus.PENDING.value, ReferralStatus.SIGNED_UP.value)


class Referral(Base):
    __tablename__ = "referrals"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    tenant_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    referral_code_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("referral_codes.id"), nullable=False
    )
    # Denormalized from the code at creation time
    referrer_member_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    referee_member_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True))
    subscription_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True))
    status: Mapped[str] = mapped_column(
        String(20), default=ReferralStatus.PENDING.value, nullable=False
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    signed_up_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    converted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    __table_args__ = (
        Index("ix_referrals_tenant_referrer_status", "tenant_id", "referrer_member_id", "status"),
        Index("ix_referrals_tenant_referee", "tenant_id", "referee_member_id", unique=True),
        Index("ix_referrals_code", "referral_code_id"),
        Index("ix_referrals_status", "status"),
    )

    @property
    def can_convert(self) -> bool:
        return self.status in CONVERTIBLE_STATUSES

    def __repr__(self) -> str:
        return f"<Referral {str(self.id)[:8]} ({self.status})>"
