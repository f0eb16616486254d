"""
Reward grants - the closed set of reward shapes a referral can earn.

A grant is built from the tenant's program config (when a reward is
created) or from a stored reward row (when it is distributed). Callers
dispatch with an isinstance chain over RewardGrant; the chain ends in
TypeError so a new shape cannot be silently ignored.
"""
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Union

from clubreferral.models.referral_reward import RewardType

MAX_DISCOUNT_PERCENT = Decimal("100")


@dataclass(frozen=True)
class WalletCredit:
    """Money credited to the member's wallet at distribution time."""
    amount: Decimal
    currency: str


@dataclass(frozen=True)
class FreeDays:
    """Days added to the member's next subscription period."""
    days: int


@dataclass(frozen=True)
class DiscountPercent:
    """Percentage off the member's next purchase."""
    percent: Decimal


@dataclass(frozen=True)
class DiscountAmount:
    """Fixed amount off the member's next purchase."""
    amount: Decimal
    currency: str


RewardGrant = Union[WalletCredit, FreeDays, DiscountPercent, DiscountAmount]


def build_grant(
    reward_type: Optional[str],
    amount: Optional[Decimal],
    currency: Optional[str],
    free_days: Optional[int],
) -> Optional[RewardGrant]:
    """
    Build a grant from raw reward fields.
    Returns None when the fields are structurally incomplete for the type.
    """
    if not reward_type:
        return None
    try:
        kind = RewardType(reward_type)
    except ValueError:
        return None

    if kind in (RewardType.WALLET_CREDIT, RewardType.DISCOUNT_AMOUNT):
        if amount is None or Decimal(amount) <= 0 or not currency:
            return None
        cls = WalletCredit if kind == RewardType.WALLET_CREDIT else DiscountAmount
        return cls(amount=Decimal(amount), currency=currency.upper())

    if kind == RewardType.DISCOUNT_PERCENT:
        if amount is None or not (0 < Decimal(amount) <= MAX_DISCOUNT_PERCENT):
            return None
        return DiscountPercent(percent=Decimal(amount))

    if kind == RewardType.FREE_DAYS:
        if not free_days or free_days <= 0:
            return None
        return FreeDays(days=free_days)

    return None


def grant_from_config(config) -> Optional[RewardGrant]:
    """Grant described by a ReferralProgramConfig, or None if incomplete."""
    return build_grant(
        config.reward_type, config.reward_amount, config.reward_currency, config.free_days,
    )


def grant_from_reward(reward) -> Optional[RewardGrant]:
    """Grant snapshotted on a ReferralReward row."""
    return build_grant(reward.reward_type, reward.amount, reward.currency, reward.free_days)


def grant_reward_type(grant: RewardGrant) -> RewardType:
    if isinstance(grant, WalletCredit):
        return RewardType.WALLET_CREDIT
    if isinstance(grant, FreeDays):
        return RewardType.FREE_DAYS
    if isinstance(grant, DiscountPercent):
        return RewardType.DISCOUNT_PERCENT
    if isinstance(grant, DiscountAmount):
        return RewardType.DISCOUNT_AMOUNT
    raise TypeError(f"Unknown reward grant: {type(grant).__name__}")


def describe_grant(grant: RewardGrant) -> str:
    """Human-readable line used as the wallet/reward description."""
    if isinstance(grant, WalletCredit):
        return f"Referral reward: {grant.amount} {grant.currency} wallet credit"
    if isinstance(grant, FreeDays):
        return f"Referral reward: {grant.days} free days"
    if isinstance(grant, DiscountPercent):
        return f"Referral reward: {grant.percent}% off next purchase"
    if isinstance(grant, DiscountAmount):
        return f"Referral reward: {grant.amount} {grant.currency} off next purchase"
    raise TypeError(f"Unknown reward grant: {type(grant).__name__}")
