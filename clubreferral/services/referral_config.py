"""
Referral program configuration - one row per tenant.

get_config() creates the row on first access (disabled, no reward).
update_config() never validates enablement; enable_program() does.
"""
import logging
import uuid
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from clubreferral.exceptions import InvalidRewardConfigError
from clubreferral.models.referral_config import ReferralProgramConfig
from clubreferral.models.referral_reward import RewardType
from clubreferral.services.reward_grants import grant_from_config

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = {
    "code_prefix",
    "reward_type",
    "reward_amount",
    "reward_currency",
    "free_days",
    "min_subscription_days",
    "max_referrals_per_member",
}


async def get_config(db: AsyncSession, tenant_id: uuid.UUID) -> ReferralProgramConfig:
    """Return the tenant's program config, creating a disabled default if missing."""
    result = await db.execute(
        select(ReferralProgramConfig)
        .where(ReferralProgramConfig.tenant_id == tenant_id)
        .limit(1)
    )
    config = result.scalar_one_or_none()
    if config:
        return config

    config = ReferralProgramConfig(tenant_id=tenant_id, is_enabled=False)
    db.add(config)
    await db.flush()
    logger.info("Created default referral config for tenant %s (disabled)", str(tenant_id)[:8])
    return config


def is_reward_config_valid(config: ReferralProgramConfig) -> bool:
    """Structural check of the reward shape; see reward_grants.build_grant."""
    return grant_from_config(config) is not None


def _clean_field(name: str, value: Any) -> Any:
    if value is None:
        return None
    if name == "reward_type":
        return RewardType(value).value
    if name == "reward_amount":
        return Decimal(str(value))
    if name == "reward_currency":
        return str(value).strip().upper() or None
    if name == "code_prefix":
        prefix = str(value).strip().upper()
        if not prefix.isalnum():
            raise ValueError("code_prefix must be alphanumeric")
        return prefix
    if name in ("free_days", "min_subscription_days", "max_referrals_per_member"):
        number = int(value)
        if number < 0:
            raise ValueError(f"{name} must not be negative")
        return number
    return value


async def update_config(
    db: AsyncSession,
    tenant_id: uuid.UUID,
    **fields: Any,
) -> ReferralProgramConfig:
    """
    Update prefix, reward shape and caps. Only the given fields change.
    Does not touch is_enabled and does not validate the reward shape.

    Raises:
        ValueError: unknown field or malformed value
    """
    unknown = set(fields) - UPDATABLE_FIELDS
    if unknown:
        raise ValueError(f"Unknown referral config fields: {', '.join(sorted(unknown))}")

    config = await get_config(db, tenant_id)
    for name, value in fields.items():
        cleaned = _clean_field(name, value)
        if name == "code_prefix" and cleaned is None:
            continue
        if name == "min_subscription_days" and cleaned is None:
            cleaned = 0
        setattr(config, name, cleaned)

    await db.flush()
    logger.info(
        "Referral config updated for tenant %s: %s",
        str(tenant_id)[:8], ", ".join(sorted(fields)) or "no changes",
    )
    return config


async def enable_program(db: AsyncSession, tenant_id: uuid.UUID) -> ReferralProgramConfig:
    """
    Switch the program on.

    Raises:
        InvalidRewardConfigError: reward shape incomplete for its type
    """
    config = await get_config(db, tenant_id)
    if not is_reward_config_valid(config):
        raise InvalidRewardConfigError(
            f"Reward configuration is incomplete for type {config.reward_type or 'None'}"
        )
    if not config.is_enabled:
        config.is_enabled = True
        await db.flush()
        logger.info("Referral program enabled for tenant %s", str(tenant_id)[:8])
    return config


async def disable_program(db: AsyncSession, tenant_id: uuid.UUID) -> ReferralProgramConfig:
    """Switch the program off. Always allowed, idempotent."""
    config = await get_config(db, tenant_id)
    if config.is_enabled:
        config.is_enabled = False
        await db.flush()
        logger.info("Referral program disabled for tenant %s", str(tenant_id)[:8])
    return config


async def find_config(db: AsyncSession, tenant_id: uuid.UUID) -> Optional[ReferralProgramConfig]:
    """Read-only lookup used by the tracking/reward path (never creates a row)."""
    result = await db.execute(
        select(ReferralProgramConfig)
        .where(ReferralProgramConfig.tenant_id == tenant_id)
        .limit(1)
    )
    return result.scalar_one_or_none()
