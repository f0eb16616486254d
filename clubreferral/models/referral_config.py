"""
ReferralProgramConfig model - singleton config row per tenant.
Admin-editable. Created disabled with empty reward fields on first access.
"""
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import String, Integer, Boolean, DateTime, Numeric
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from clubreferral.database import Base

DEFAULT_CODE_PREFIX = "REF"


class ReferralProgramConfig(Base):
    __tablename__ = "referral_program_configs"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    tenant_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), unique=True, nullable=False
    )

    # Master switch
    is_enabled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    code_prefix: Mapped[str] = mapped_column(String(10), default=DEFAULT_CODE_PREFIX, nullable=False)

    # Reward shape (what the referrer earns per conversion)
    reward_type: Mapped[Optional[str]] = mapped_column(String(20))  # see RewardType
    reward_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2))  # money, or percent for DISCOUNT_PERCENT
    reward_currency: Mapped[Optional[str]] = mapped_column(String(3))
    free_days: Mapped[Optional[int]] = mapped_column(Integer)

    # Eligibility
    min_subscription_days: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    max_referrals_per_member: Mapped[Optional[int]] = mapped_column(Integer)  # None = unlimited

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    def __repr__(self) -> str:
        state = "enabled" if self.is_enabled else "disabled"
        return f"<ReferralProgramConfig tenant={str(self.tenant_id)[:8]} ({state})>"
