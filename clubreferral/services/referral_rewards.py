"""
Reward engine - creates, distributes and cancels referral rewards.

Rewards are created PENDING when a referral converts, with the reward
shape snapshotted from the tenant's program config. Distribution is the
only step with an external side effect (wallet credit) and is guarded by
the PENDING precondition so a reward is never paid twice. A failed
wallet credit leaves the reward FAILED; reset_for_retry() puts it back
in the queue explicitly.

Never mutates Referral or ReferralCode rows.
"""
import logging
import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from clubreferral.exceptions import (
    InvalidTransitionError,
    ReferralNotFoundError,
    RewardDistributionError,
)
from clubreferral.integrations.wallet_base import WalletBase
from clubreferral.models.referral import Referral
from clubreferral.models.referral_reward import ReferralReward, RewardStatus
from clubreferral.services.referral_config import find_config
from clubreferral.services.reward_grants import (
    DiscountAmount,
    DiscountPercent,
    FreeDays,
    WalletCredit,
    describe_grant,
    grant_from_config,
    grant_from_reward,
    grant_reward_type,
)

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 100


async def create_reward(
    db: AsyncSession,
    tenant_id: uuid.UUID,
    referral: Referral,
) -> Optional[ReferralReward]:
    """
    Create a PENDING reward for the referral's referrer.
    Returns None when the program is disabled or its reward shape is incomplete.
    """
    config = await find_config(db, tenant_id)
    if not config or not config.is_enabled:
        logger.info(
            "No reward for referral %s: program disabled for tenant %s",
            str(referral.id)[:8], str(tenant_id)[:8],
        )
        return None

    grant = grant_from_config(config)
    if grant is None:
        logger.warning(
            "No reward for referral %s: reward config incomplete (type=%s)",
            str(referral.id)[:8], config.reward_type,
        )
        return None

    reward = ReferralReward(
        tenant_id=tenant_id,
        referral_id=referral.id,
        member_id=referral.referrer_member_id,
        reward_type=grant_reward_type(grant).value,
        description=describe_grant(grant),
        status=RewardStatus.PENDING.value,
        distribution_attempts=0,
    )
    if isinstance(grant, (WalletCredit, DiscountAmount)):
        reward.amount = grant.amount
        reward.currency = grant.currency
    elif isinstance(grant, DiscountPercent):
        reward.amount = grant.percent
    elif isinstance(grant, FreeDays):
        reward.free_days = grant.days
    else:
        raise TypeError(f"Unknown reward grant: {type(grant).__name__}")

    db.add(reward)
    await db.flush()

    logger.info(
        "Reward %s created for member %s (referral=%s type=%s)",
        str(reward.id)[:8], str(reward.member_id)[:8],
        str(referral.id)[:8], reward.reward_type,
    )
    return reward


async def get_reward(
    db: AsyncSession,
    tenant_id: uuid.UUID,
    reward_id: uuid.UUID,
    for_update: bool = False,
) -> ReferralReward:
    """
    Raises:
        ReferralNotFoundError: no such reward for this tenant
    """
    query = select(ReferralReward).where(
        ReferralReward.id == reward_id,
        ReferralReward.tenant_id == tenant_id,
    )
    if for_update:
        query = query.with_for_update()
    reward = (await db.execute(query)).scalar_one_or_none()
    if not reward:
        raise ReferralNotFoundError("ReferralReward", reward_id)
    return reward


async def _mark_failed(db: AsyncSession, reward: ReferralReward, reason: str) -> None:
    reward.status = RewardStatus.FAILED.value
    reward.failure_reason = reason[:1000]
    await db.flush()
    logger.warning(
        "Reward %s distribution failed (attempt %d): %s",
        str(reward.id)[:8], reward.distribution_attempts, reason[:200],
    )


async def distribute_reward(
    db: AsyncSession,
    tenant_id: uuid.UUID,
    reward_id: uuid.UUID,
    wallet: WalletBase,
) -> ReferralReward:
    """
    Make a PENDING reward available to its member.

    WALLET_CREDIT credits the wallet now. FREE_DAYS and the discounts have
    no side effect here; checkout/subscription logic redeems them later.

    Raises:
        ReferralNotFoundError: unknown reward
        InvalidTransitionError: reward is not PENDING
        RewardDistributionError: wallet credit failed (reward is now FAILED)
    """
    reward = await get_reward(db, tenant_id, reward_id, for_update=True)
    if reward.status != RewardStatus.PENDING.value:
        raise InvalidTransitionError("reward", reward.status, "distribute")

    reward.distribution_attempts = (reward.distribution_attempts or 0) + 1

    grant = grant_from_reward(reward)
    if grant is None:
        reason = f"Incomplete reward snapshot for type {reward.reward_type}"
        await _mark_failed(db, reward, reason)
        raise RewardDistributionError(reward.id, reason)

    if isinstance(grant, WalletCredit):
        try:
            result = await wallet.credit_wallet(
                member_id=reward.member_id,
                amount=grant.amount,
                currency=grant.currency,
                description=reward.description or describe_grant(grant),
            )
        except Exception as e:
            await _mark_failed(db, reward, str(e) or type(e).__name__)
            raise RewardDistributionError(reward.id, str(e)) from e

        if not result or not result.get("success"):
            reason = (result or {}).get("error") or "Wallet credit was not accepted"
            await _mark_failed(db, reward, reason)
            raise RewardDistributionError(reward.id, reason)

        reward.wallet_transaction_id = result.get("transaction_id")
    elif isinstance(grant, (FreeDays, DiscountPercent, DiscountAmount)):
        pass  # redeemed later by subscription/checkout
    else:
        raise TypeError(f"Unknown reward grant: {type(grant).__name__}")

    reward.status = RewardStatus.DISTRIBUTED.value
    reward.distributed_at = datetime.now(timezone.utc)
    reward.failure_reason = None
    await db.flush()

    logger.info(
        "Reward %s distributed to member %s (%s)",
        str(reward.id)[:8], str(reward.member_id)[:8], reward.reward_type,
        extra={"tenant_id": str(tenant_id), "reward_id": str(reward.id), "member_id": str(reward.member_id)},
    )
    return reward


async def _distribute_isolated(
    db: AsyncSession,
    tenant_id: uuid.UUID,
    reward_id: uuid.UUID,
    wallet: WalletBase,
) -> bool:
    """
    Distribute one reward inside its own savepoint. A database error rolls
    back only this reward and leaves the session usable for the next one.

    A rejected wallet credit keeps its FAILED mark. Any other error rolls
    the savepoint back, after which a still-PENDING reward is marked FAILED:
    the wallet may already have been credited, so it must not be picked up
    again without an explicit reset_for_retry().
    """
    try:
        async with db.begin_nested():
            try:
                await distribute_reward(db, tenant_id, reward_id, wallet)
            except (RewardDistributionError, InvalidTransitionError) as e:
                logger.warning(
                    "Skipping reward %s in batch: %s", str(reward_id)[:8], str(e),
                )
                return False
        return True
    except Exception as e:
        reason = f"Distribution outcome not recorded: {e}"
        logger.error(
            "Reward %s distribution could not be recorded: %s",
            str(reward_id)[:8], str(e), exc_info=True,
            extra={"tenant_id": str(tenant_id), "reward_id": str(reward_id)},
        )

    async with db.begin_nested():
        reward = await get_reward(db, tenant_id, reward_id, for_update=True)
        if reward.status == RewardStatus.PENDING.value:
            await _mark_failed(db, reward, reason)
    return False


async def process_pending_rewards(
    db: AsyncSession,
    wallet: WalletBase,
    batch_size: int = DEFAULT_BATCH_SIZE,
    tenant_id: Optional[uuid.UUID] = None,
    commit_each: bool = False,
) -> int:
    """
    Distribute up to batch_size PENDING rewards, oldest first, one at a time.
    A failure on one reward is logged and does not stop the batch.
    With commit_each, every reward's outcome is committed before the next
    one is attempted.
    Returns the number of rewards distributed.
    """
    query = select(ReferralReward).where(
        ReferralReward.status == RewardStatus.PENDING.value
    )
    if tenant_id is not None:
        query = query.where(ReferralReward.tenant_id == tenant_id)
    result = await db.execute(
        query.order_by(ReferralReward.created_at).limit(batch_size)
    )
    pending = [(r.tenant_id, r.id) for r in result.scalars().all()]

    distributed = 0
    for reward_tenant_id, reward_id in pending:
        if await _distribute_isolated(db, reward_tenant_id, reward_id, wallet):
            distributed += 1
        if commit_each:
            await db.commit()

    if pending:
        logger.info(
            "Processed %d pending rewards: %d distributed, %d failed",
            len(pending), distributed, len(pending) - distributed,
        )
    return distributed


async def cancel_reward(
    db: AsyncSession,
    tenant_id: uuid.UUID,
    reward_id: uuid.UUID,
) -> ReferralReward:
    """
    Cancel a reward that has not been distributed yet.

    Raises:
        InvalidTransitionError: reward is not PENDING
    """
    reward = await get_reward(db, tenant_id, reward_id, for_update=True)
    if reward.status != RewardStatus.PENDING.value:
        raise InvalidTransitionError("reward", reward.status, "cancel")

    reward.status = RewardStatus.CANCELLED.value
    reward.cancelled_at = datetime.now(timezone.utc)
    await db.flush()
    logger.info("Reward %s cancelled", str(reward.id)[:8])
    return reward


async def reset_for_retry(
    db: AsyncSession,
    tenant_id: uuid.UUID,
    reward_id: uuid.UUID,
) -> ReferralReward:
    """
    Put a FAILED reward back to PENDING so the next batch retries it.
    Calling it on a reward that is already PENDING is a no-op.

    Raises:
        InvalidTransitionError: reward is DISTRIBUTED or CANCELLED
    """
    reward = await get_reward(db, tenant_id, reward_id, for_update=True)
    if reward.status == RewardStatus.PENDING.value:
        return reward
    if reward.status != RewardStatus.FAILED.value:
        raise InvalidTransitionError("reward", reward.status, "reset")

    reward.status = RewardStatus.PENDING.value
    await db.flush()
    logger.info(
        "Reward %s reset for retry after %d attempt(s)",
        str(reward.id)[:8], reward.distribution_attempts,
    )
    return reward


async def list_rewards(
    db: AsyncSession,
    tenant_id: uuid.UUID,
    member_id: Optional[uuid.UUID] = None,
    referral_id: Optional[uuid.UUID] = None,
    status: Optional[str] = None,
    page: int = 1,
    size: int = 20,
) -> tuple[list[ReferralReward], int]:
    """Paginated rewards, newest first. Returns (rewards, total)."""
    conditions = [ReferralReward.tenant_id == tenant_id]
    if member_id is not None:
        conditions.append(ReferralReward.member_id == member_id)
    if referral_id is not None:
        conditions.append(ReferralReward.referral_id == referral_id)
    if status:
        conditions.append(ReferralReward.status == RewardStatus(status).value)

    page = max(page, 1)
    total = (await db.execute(
        select(func.count(ReferralReward.id)).where(*conditions)
    )).scalar() or 0
    result = await db.execute(
        select(ReferralReward)
        .where(*conditions)
        .order_by(ReferralReward.created_at.desc())
        .offset((page - 1) * size)
        .limit(size)
    )
    return list(result.scalars().all()), total
