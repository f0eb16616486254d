"""
Referral code registry - per-member codes and their lifetime counters.

Codes are created lazily (lookup before create, so one per member) and
never deleted, only deactivated. Counter updates are single SQL
increments so concurrent clicks never lose a count.
"""
import logging
import secrets
import uuid
from typing import Optional

from sqlalchemy import select, update, func
from sqlalchemy.ext.asyncio import AsyncSession

from clubreferral.config import get_settings
from clubreferral.exceptions import CodeGenerationExhaustedError, ReferralNotFoundError
from clubreferral.models.referral_code import ReferralCode
from clubreferral.models.referral_config import DEFAULT_CODE_PREFIX
from clubreferral.services.referral_config import find_config

logger = logging.getLogger(__name__)

# Uppercase letters and digits without look-alikes (0/O, 1/I/L)
CODE_ALPHABET = "ABCDEFGHJKMNPQRSTUVWXYZ23456789"


def normalize_code(code: Optional[str]) -> str:
    return (code or "").strip().upper()


def generate_code(prefix: str, length: int = 6) -> str:
    """Random code in the form PREFIX-XXXXXX."""
    body = "".join(secrets.choice(CODE_ALPHABET) for _ in range(length))
    return f"{prefix}-{body}" if prefix else body


async def _code_exists(db: AsyncSession, code: str) -> bool:
    result = await db.execute(
        select(ReferralCode.id).where(ReferralCode.code == code).limit(1)
    )
    return result.scalar_one_or_none() is not None


async def get_code_by_code(db: AsyncSession, code: str) -> Optional[ReferralCode]:
    normalized = normalize_code(code)
    if not normalized:
        return None
    result = await db.execute(
        select(ReferralCode).where(ReferralCode.code == normalized).limit(1)
    )
    return result.scalar_one_or_none()


async def get_code_by_member(
    db: AsyncSession,
    tenant_id: uuid.UUID,
    member_id: uuid.UUID,
) -> Optional[ReferralCode]:
    result = await db.execute(
        select(ReferralCode).where(
            ReferralCode.tenant_id == tenant_id,
            ReferralCode.member_id == member_id,
        ).limit(1)
    )
    return result.scalar_one_or_none()


async def get_or_create_code(
    db: AsyncSession,
    tenant_id: uuid.UUID,
    member_id: uuid.UUID,
) -> ReferralCode:
    """
    Return the member's code, generating one on first request.

    Raises:
        CodeGenerationExhaustedError: no free code within the attempt budget
    """
    existing = await get_code_by_member(db, tenant_id, member_id)
    if existing:
        return existing

    settings = get_settings()
    config = await find_config(db, tenant_id)
    prefix = (config.code_prefix if config else None) or DEFAULT_CODE_PREFIX

    code = None
    for _ in range(settings.referral_code_max_attempts):
        candidate = generate_code(prefix, settings.referral_code_length)
        if not await _code_exists(db, candidate):
            code = candidate
            break

    if code is None:
        logger.error(
            "Referral code generation exhausted for member %s (prefix=%s, attempts=%d)",
            str(member_id)[:8], prefix, settings.referral_code_max_attempts,
        )
        raise CodeGenerationExhaustedError(settings.referral_code_max_attempts)

    referral_code = ReferralCode(
        tenant_id=tenant_id,
        member_id=member_id,
        code=code,
        is_active=True,
        click_count=0,
        conversion_count=0,
    )
    db.add(referral_code)
    await db.flush()

    logger.info("Referral code %s created for member %s", code, str(member_id)[:8])
    return referral_code


async def _set_active(
    db: AsyncSession,
    tenant_id: uuid.UUID,
    member_id: uuid.UUID,
    active: bool,
) -> ReferralCode:
    code = await get_code_by_member(db, tenant_id, member_id)
    if not code:
        raise ReferralNotFoundError("ReferralCode", member_id)
    if code.is_active != active:
        code.is_active = active
        await db.flush()
        logger.info(
            "Referral code %s %s", code.code, "activated" if active else "deactivated",
        )
    return code


async def activate_code(db: AsyncSession, tenant_id: uuid.UUID, member_id: uuid.UUID) -> ReferralCode:
    """Make the member's code eligible for new clicks."""
    return await _set_active(db, tenant_id, member_id, True)


async def deactivate_code(db: AsyncSession, tenant_id: uuid.UUID, member_id: uuid.UUID) -> ReferralCode:
    """Stop new clicks on the member's code. Already-tracked referrals are untouched."""
    return await _set_active(db, tenant_id, member_id, False)


async def record_click(db: AsyncSession, code_id: uuid.UUID) -> bool:
    """
    Increment click_count if the code is active.
    Best-effort: an inactive or missing code is a silent no-op.
    Returns True if the click was counted.
    """
    result = await db.execute(
        update(ReferralCode)
        .where(ReferralCode.id == code_id, ReferralCode.is_active == True)  # noqa: E712
        .values(click_count=ReferralCode.click_count + 1)
        .execution_options(synchronize_session=False)
    )
    counted = result.rowcount == 1
    if counted:
        await _refresh_if_loaded(db, code_id)
    return counted


async def record_conversion(db: AsyncSession, code_id: uuid.UUID) -> None:
    """Increment conversion_count unconditionally (conversion already confirmed)."""
    await db.execute(
        update(ReferralCode)
        .where(ReferralCode.id == code_id)
        .values(conversion_count=ReferralCode.conversion_count + 1)
        .execution_options(synchronize_session=False)
    )
    await _refresh_if_loaded(db, code_id)


async def _refresh_if_loaded(db: AsyncSession, code_id: uuid.UUID) -> None:
    """Keep an in-session ReferralCode in step with a bulk counter update."""
    code = await db.get(ReferralCode, code_id)
    if code is not None:
        await db.refresh(code, attribute_names=["click_count", "conversion_count"])


async def list_codes(
    db: AsyncSession,
    tenant_id: uuid.UUID,
    page: int = 1,
    size: int = 20,
) -> tuple[list[ReferralCode], int]:
    """Paginated codes for a tenant, newest first. Returns (codes, total)."""
    page = max(page, 1)
    total = (await db.execute(
        select(func.count(ReferralCode.id)).where(ReferralCode.tenant_id == tenant_id)
    )).scalar() or 0

    result = await db.execute(
        select(ReferralCode)
        .where(ReferralCode.tenant_id == tenant_id)
        .order_by(ReferralCode.created_at.desc())
        .offset((page - 1) * size)
        .limit(size)
    )
    return list(result.scalars().all()), total


async def get_top_referrers(
    db: AsyncSession,
    tenant_id: uuid.UUID,
    limit: int = 10,
) -> list[ReferralCode]:
    """Leaderboard: codes with the most conversions, clicks as tie-break."""
    result = await db.execute(
        select(ReferralCode)
        .where(ReferralCode.tenant_id == tenant_id, ReferralCode.conversion_count > 0)
        .order_by(ReferralCode.conversion_count.desc(), ReferralCode.click_count.desc())
        .limit(limit)
    )
    return list(result.scalars().all())
