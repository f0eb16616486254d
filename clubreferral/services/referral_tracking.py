"""
Referral tracker - drives one referral from click to conversion.

    PENDING -> SIGNED_UP -> CONVERTED

Ineligible clicks and conversions return None rather than raising:
unknown codes, inactive codes, a disabled program and a reached cap are
all normal traffic. Only out-of-protocol calls (signing up a converted
referral, double attribution of a referee) raise InvalidTransitionError.

Conversion is a compare-and-set on status so two concurrent conversions
of the same referral produce exactly one CONVERTED row and one reward.
Reward creation runs in a savepoint after the conversion: if it fails,
the conversion still stands.
"""
import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import select, update, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from clubreferral.exceptions import InvalidTransitionError, ReferralNotFoundError
from clubreferral.models.referral import Referral, ReferralStatus, CONVERTIBLE_STATUSES
from clubreferral.models.referral_code import ReferralCode
from clubreferral.models.referral_config import ReferralProgramConfig
from clubreferral.models.referral_reward import ReferralReward, RewardStatus
from clubreferral.schemas.referrals import ReferralAnalytics, ReferralCodeResponse, ReferralStats
from clubreferral.services import referral_codes
from clubreferral.services.referral_config import find_config
from clubreferral.services.referral_rewards import create_reward

logger = logging.getLogger(__name__)


async def count_converted_referrals(
    db: AsyncSession,
    tenant_id: uuid.UUID,
    referrer_member_id: uuid.UUID,
) -> int:
    result = await db.execute(
        select(func.count(Referral.id)).where(
            Referral.tenant_id == tenant_id,
            Referral.referrer_member_id == referrer_member_id,
            Referral.status == ReferralStatus.CONVERTED.value,
        )
    )
    return result.scalar() or 0


async def _eligible_code(
    db: AsyncSession,
    tenant_id: uuid.UUID,
    code: str,
) -> Optional[ReferralCode]:
    """
    Run the click eligibility checks in order: code exists, code active,
    program enabled, referrer under the conversion cap.
    Returns the code when every check passes, else None.
    """
    referral_code = await referral_codes.get_code_by_code(db, code)
    if not referral_code or referral_code.tenant_id != tenant_id:
        logger.debug("Referral code %s not found for tenant %s", code, str(tenant_id)[:8])
        return None

    if not referral_code.is_active:
        logger.debug("Referral code %s is inactive", referral_code.code)
        return None

    config = await find_config(db, tenant_id)
    if not config or not config.is_enabled:
        logger.debug("Referral program disabled for tenant %s", str(tenant_id)[:8])
        return None

    if await _cap_reached(db, config, referral_code.member_id):
        logger.info(
            "Referrer %s reached max referrals (%d)",
            str(referral_code.member_id)[:8], config.max_referrals_per_member,
        )
        return None

    return referral_code


async def _cap_reached(
    db: AsyncSession,
    config: ReferralProgramConfig,
    referrer_member_id: uuid.UUID,
) -> bool:
    cap = config.max_referrals_per_member
    if cap is None:
        return False
    converted = await count_converted_referrals(db, config.tenant_id, referrer_member_id)
    return converted >= cap


async def track_click(
    db: AsyncSession,
    tenant_id: uuid.UUID,
    code: str,
) -> Optional[Referral]:
    """
    Record a click on a referral code and open a PENDING referral.
    Returns None when the click does not qualify for tracking.
    """
    referral_code = await _eligible_code(db, tenant_id, code)
    if referral_code is None:
        return None

    # Code may have been deactivated since the eligibility read
    if not await referral_codes.record_click(db, referral_code.id):
        return None

    referral = Referral(
        tenant_id=tenant_id,
        referral_code_id=referral_code.id,
        referrer_member_id=referral_code.member_id,
        status=ReferralStatus.PENDING.value,
    )
    db.add(referral)
    await db.flush()

    logger.info(
        "Referral %s tracked for referrer %s (code=%s)",
        str(referral.id)[:8], str(referral.referrer_member_id)[:8], referral_code.code,
    )
    return referral


async def validate_code(db: AsyncSession, tenant_id: uuid.UUID, code: str) -> bool:
    """Same checks as track_click, without touching any counter."""
    return await _eligible_code(db, tenant_id, code) is not None


async def get_referral(
    db: AsyncSession,
    tenant_id: uuid.UUID,
    referral_id: uuid.UUID,
) -> Referral:
    """
    Raises:
        ReferralNotFoundError: no such referral for this tenant
    """
    result = await db.execute(
        select(Referral).where(
            Referral.id == referral_id,
            Referral.tenant_id == tenant_id,
        )
    )
    referral = result.scalar_one_or_none()
    if not referral:
        raise ReferralNotFoundError("Referral", referral_id)
    return referral


async def find_referral_for_referee(
    db: AsyncSession,
    tenant_id: uuid.UUID,
    referee_member_id: uuid.UUID,
) -> Optional[Referral]:
    result = await db.execute(
        select(Referral)
        .where(
            Referral.tenant_id == tenant_id,
            Referral.referee_member_id == referee_member_id,
        )
        .order_by(Referral.created_at)
        .limit(1)
    )
    return result.scalar_one_or_none()


async def mark_signed_up(
    db: AsyncSession,
    tenant_id: uuid.UUID,
    referral_id: uuid.UUID,
    referee_member_id: uuid.UUID,
) -> Referral:
    """
    Attach the registered referee to a referral and move it to SIGNED_UP.

    Raises:
        ReferralNotFoundError: unknown referral
        InvalidTransitionError: referral already converted, or the referee
            is already attributed to another referral
    """
    referral = await get_referral(db, tenant_id, referral_id)
    if not referral.can_convert:
        raise InvalidTransitionError("referral", referral.status, "mark signed up")

    existing = await find_referral_for_referee(db, tenant_id, referee_member_id)
    if existing and existing.id != referral.id:
        raise InvalidTransitionError(
            "referral", referral.status, "mark signed up",
            detail=f"referee already attributed to referral {str(existing.id)[:8]}",
        )

    current_status = referral.status
    try:
        async with db.begin_nested():
            referral.referee_member_id = referee_member_id
            referral.status = ReferralStatus.SIGNED_UP.value
            referral.signed_up_at = datetime.now(timezone.utc)
            await db.flush()
    except IntegrityError as e:
        # Lost a race with a concurrent signup of the same referee
        raise InvalidTransitionError(
            "referral", current_status, "mark signed up",
            detail="referee already attributed to another referral",
        ) from e

    logger.info(
        "Referral %s signed up (referee=%s)",
        str(referral.id)[:8], str(referee_member_id)[:8],
    )
    return referral


async def convert_referral(
    db: AsyncSession,
    tenant_id: uuid.UUID,
    referee_member_id: uuid.UUID,
    subscription_id: uuid.UUID,
    subscription_days: Optional[int] = None,
) -> Optional[Referral]:
    """
    Attribute a paid subscription to the referee's referral.

    Returns the CONVERTED referral, or None when there is nothing to
    convert: the subscriber was not referred, the referral is already
    converted (or lost a concurrent race), or the subscription is shorter
    than the program's min_subscription_days. Never raises for those, so
    the purchase flow that calls it is not interrupted.
    """
    referral = await find_referral_for_referee(db, tenant_id, referee_member_id)
    if not referral:
        return None

    if not referral.can_convert:
        logger.info(
            "Referral %s not converted: already %s",
            str(referral.id)[:8], referral.status,
        )
        return None

    config = await find_config(db, tenant_id)
    min_days = config.min_subscription_days if config else 0
    if min_days and subscription_days is not None and subscription_days < min_days:
        logger.info(
            "Referral %s not converted: subscription %d days < minimum %d",
            str(referral.id)[:8], subscription_days, min_days,
        )
        return None

    result = await db.execute(
        update(Referral)
        .where(Referral.id == referral.id, Referral.status.in_(CONVERTIBLE_STATUSES))
        .values(
            status=ReferralStatus.CONVERTED.value,
            subscription_id=subscription_id,
            converted_at=datetime.now(timezone.utc),
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        logger.info("Referral %s already converted by a concurrent call", str(referral.id)[:8])
        return None
    await db.refresh(referral)

    await referral_codes.record_conversion(db, referral.referral_code_id)
    logger.info(
        "Referral %s converted (subscription=%s)",
        str(referral.id)[:8], str(subscription_id)[:8],
        extra={"tenant_id": str(tenant_id), "referral_id": str(referral.id)},
    )

    try:
        async with db.begin_nested():
            await create_reward(db, tenant_id, referral)
    except Exception as e:
        logger.error(
            "Reward creation failed for converted referral %s: %s",
            str(referral.id)[:8], str(e), exc_info=True,
        )

    return referral


async def get_member_stats(
    db: AsyncSession,
    tenant_id: uuid.UUID,
    member_id: uuid.UUID,
) -> ReferralStats:
    """Click/referral/conversion totals for a referrer. Rate is conversions per click."""
    code = await referral_codes.get_code_by_member(db, tenant_id, member_id)

    total = (await db.execute(
        select(func.count(Referral.id)).where(
            Referral.tenant_id == tenant_id,
            Referral.referrer_member_id == member_id,
        )
    )).scalar() or 0
    conversions = await count_converted_referrals(db, tenant_id, member_id)

    click_count = code.click_count if code else 0
    rate = conversions / click_count if click_count > 0 else 0.0

    return ReferralStats(
        code=code.code if code else None,
        click_count=click_count,
        total_referrals=total,
        conversions=conversions,
        conversion_rate=rate,
    )


async def list_referrals(
    db: AsyncSession,
    tenant_id: uuid.UUID,
    referrer_member_id: Optional[uuid.UUID] = None,
    status: Optional[str] = None,
    page: int = 1,
    size: int = 20,
) -> tuple[list[Referral], int]:
    """Paginated referrals, newest first. Returns (referrals, total)."""
    conditions = [Referral.tenant_id == tenant_id]
    if referrer_member_id is not None:
        conditions.append(Referral.referrer_member_id == referrer_member_id)
    if status:
        conditions.append(Referral.status == ReferralStatus(status).value)

    page = max(page, 1)
    total = (await db.execute(
        select(func.count(Referral.id)).where(*conditions)
    )).scalar() or 0
    result = await db.execute(
        select(Referral)
        .where(*conditions)
        .order_by(Referral.created_at.desc())
        .offset((page - 1) * size)
        .limit(size)
    )
    return list(result.scalars().all()), total


async def get_program_analytics(
    db: AsyncSession,
    tenant_id: uuid.UUID,
    top_limit: int = 10,
) -> ReferralAnalytics:
    """Program-wide funnel counts, reward totals and the leaderboard."""
    rows = (await db.execute(
        select(Referral.status, func.count(Referral.id))
        .where(Referral.tenant_id == tenant_id)
        .group_by(Referral.status)
    )).all()
    by_status = {status: count for status, count in rows}

    pending = by_status.get(ReferralStatus.PENDING.value, 0)
    signups = by_status.get(ReferralStatus.SIGNED_UP.value, 0)
    conversions = by_status.get(ReferralStatus.CONVERTED.value, 0)
    all_referrals = pending + signups + conversions

    distributed_total = (await db.execute(
        select(func.coalesce(func.sum(ReferralReward.amount), 0)).where(
            ReferralReward.tenant_id == tenant_id,
            ReferralReward.status == RewardStatus.DISTRIBUTED.value,
            ReferralReward.currency.is_not(None),
        )
    )).scalar()
    pending_rewards = (await db.execute(
        select(func.count(ReferralReward.id)).where(
            ReferralReward.tenant_id == tenant_id,
            ReferralReward.status == RewardStatus.PENDING.value,
        )
    )).scalar() or 0

    top = await referral_codes.get_top_referrers(db, tenant_id, top_limit)

    return ReferralAnalytics(
        total_pending=pending,
        total_signups=signups,
        total_conversions=conversions,
        overall_conversion_rate=conversions / all_referrals if all_referrals else 0.0,
        total_rewards_distributed=Decimal(str(distributed_total or 0)),
        pending_rewards=pending_rewards,
        top_referrers=[ReferralCodeResponse.from_model(c) for c in top],
    )
