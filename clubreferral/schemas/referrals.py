"""
Referral API schemas - request bodies and read models for the referral endpoints.
"""
from datetime import datetime
from decimal import Decimal
from typing import Optional
from pydantic import BaseModel, Field


class ReferralStats(BaseModel):
    """Per-referrer aggregate over the member's code and referrals."""
    code: Optional[str] = None
    click_count: int = 0
    total_referrals: int = 0
    conversions: int = 0
    conversion_rate: float = 0.0


class ReferralCodeResponse(BaseModel):
    id: str
    member_id: str
    code: str
    is_active: bool
    click_count: int
    conversion_count: int
    created_at: Optional[datetime] = None

    @classmethod
    def from_model(cls, code) -> "ReferralCodeResponse":
        return cls(
            id=str(code.id),
            member_id=str(code.member_id),
            code=code.code,
            is_active=code.is_active,
            click_count=code.click_count,
            conversion_count=code.conversion_count,
            created_at=code.created_at,
        )


class ReferralResponse(BaseModel):
    id: str
    referral_code_id: str
    referrer_member_id: str
    referee_member_id: Optional[str] = None
    subscription_id: Optional[str] = None
    status: str
    created_at: Optional[datetime] = None
    signed_up_at: Optional[datetime] = None
    converted_at: Optional[datetime] = None

    @classmethod
    def from_model(cls, referral) -> "ReferralResponse":
        return cls(
            id=str(referral.id),
            referral_code_id=str(referral.referral_code_id),
            referrer_member_id=str(referral.referrer_member_id),
            referee_member_id=str(referral.referee_member_id) if referral.referee_member_id else None,
            subscription_id=str(referral.subscription_id) if referral.subscription_id else None,
            status=referral.status,
            created_at=referral.created_at,
            signed_up_at=referral.signed_up_at,
            converted_at=referral.converted_at,
        )


class ReferralRewardResponse(BaseModel):
    id: str
    referral_id: str
    member_id: str
    reward_type: str
    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    free_days: Optional[int] = None
    description: Optional[str] = None
    status: str
    distribution_attempts: int = 0
    failure_reason: Optional[str] = None
    created_at: Optional[datetime] = None
    distributed_at: Optional[datetime] = None

    @classmethod
    def from_model(cls, reward) -> "ReferralRewardResponse":
        return cls(
            id=str(reward.id),
            referral_id=str(reward.referral_id),
            member_id=str(reward.member_id),
            reward_type=reward.reward_type,
            amount=reward.amount,
            currency=reward.currency,
            free_days=reward.free_days,
            description=reward.description,
            status=reward.status,
            distribution_attempts=reward.distribution_attempts or 0,
            failure_reason=reward.failure_reason,
            created_at=reward.created_at,
            distributed_at=reward.distributed_at,
        )


class ReferralConfigResponse(BaseModel):
    is_enabled: bool
    code_prefix: str
    reward_type: Optional[str] = None
    reward_amount: Optional[Decimal] = None
    reward_currency: Optional[str] = None
    free_days: Optional[int] = None
    min_subscription_days: int = 0
    max_referrals_per_member: Optional[int] = None

    @classmethod
    def from_model(cls, config) -> "ReferralConfigResponse":
        return cls(
            is_enabled=config.is_enabled,
            code_prefix=config.code_prefix,
            reward_type=config.reward_type,
            reward_amount=config.reward_amount,
            reward_currency=config.reward_currency,
            free_days=config.free_days,
            min_subscription_days=config.min_subscription_days or 0,
            max_referrals_per_member=config.max_referrals_per_member,
        )


class UpdateReferralConfigRequest(BaseModel):
    code_prefix: Optional[str] = Field(default=None, max_length=10)
    reward_type: Optional[str] = None
    reward_amount: Optional[Decimal] = None
    reward_currency: Optional[str] = Field(default=None, max_length=3)
    free_days: Optional[int] = None
    min_subscription_days: Optional[int] = None
    max_referrals_per_member: Optional[int] = None


class TrackClickRequest(BaseModel):
    code: str


class SignupRequest(BaseModel):
    referee_member_id: str


class ConvertRequest(BaseModel):
    referee_member_id: str
    subscription_id: str
    subscription_days: Optional[int] = None


class ReferralListResponse(BaseModel):
    referrals: list[ReferralResponse]
    total: int
    page: int
    pages: int


class RewardListResponse(BaseModel):
    rewards: list[ReferralRewardResponse]
    total: int
    page: int
    pages: int


class CodeListResponse(BaseModel):
    codes: list[ReferralCodeResponse]
    total: int
    page: int
    pages: int


class ReferralAnalytics(BaseModel):
    """Tenant-wide program overview for the admin dashboard."""
    total_pending: int = 0
    total_signups: int = 0
    total_conversions: int = 0
    overall_conversion_rate: float = 0.0
    total_rewards_distributed: Decimal = Decimal("0")
    pending_rewards: int = 0
    top_referrers: list[ReferralCodeResponse] = Field(default_factory=list)
