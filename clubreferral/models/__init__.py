"""
Database models - import all models here so Alembic can discover them.
"""
from clubreferral.models.referral_code import ReferralCode
from clubreferral.models.referral import Referral, ReferralStatus
from clubreferral.models.referral_config import ReferralProgramConfig
from clubreferral.models.referral_reward import ReferralReward, RewardStatus, RewardType

__all__ = [
    "ReferralCode",
    "Referral",
    "ReferralStatus",
    "ReferralProgramConfig",
    "ReferralReward",
    "RewardStatus",
    "RewardType",
]
