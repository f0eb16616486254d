"""
Referral endpoints - program config, codes, referral funnel, rewards and analytics.

Every route is scoped to the tenant in the X-Tenant-ID header.
Service errors map to HTTP as:
    ReferralNotFoundError       -> 404
    InvalidTransitionError      -> 409
    InvalidRewardConfigError    -> 422
    ValueError                  -> 422
    RewardDistributionError     -> 502
"""
import logging
import uuid
from typing import Optional
from fastapi import APIRouter, Depends, Header, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from clubreferral.database import get_db
from clubreferral.exceptions import (
    CodeGenerationExhaustedError,
    InvalidRewardConfigError,
    InvalidTransitionError,
    ReferralNotFoundError,
    RewardDistributionError,
)
from clubreferral.integrations.wallet_base import WalletBase
from clubreferral.schemas.referrals import (
    CodeListResponse,
    ConvertRequest,
    ReferralAnalytics,
    ReferralCodeResponse,
    ReferralConfigResponse,
    ReferralListResponse,
    ReferralResponse,
    ReferralRewardResponse,
    ReferralStats,
    RewardListResponse,
    SignupRequest,
    TrackClickRequest,
    UpdateReferralConfigRequest,
)
from clubreferral.services import referral_codes, referral_config, referral_rewards, referral_tracking

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/referrals", tags=["referrals"])


def _parse_uuid(value: str, label: str) -> uuid.UUID:
    try:
        return uuid.UUID(value)
    except (ValueError, TypeError):
        raise HTTPException(status_code=400, detail=f"Invalid {label}")


async def get_tenant_id(x_tenant_id: str = Header(...)) -> uuid.UUID:
    """Tenant scope for every referral route."""
    return _parse_uuid(x_tenant_id, "tenant ID")


def get_wallet() -> WalletBase:
    from clubreferral.integrations.wallet_http import HttpWalletClient
    return HttpWalletClient.from_settings()


def _pages(total: int, size: int) -> int:
    return max(1, (total + size - 1) // size)


# === PROGRAM CONFIG ===

@router.get("/config", response_model=ReferralConfigResponse)
async def get_program_config(
    db: AsyncSession = Depends(get_db),
    tenant_id: uuid.UUID = Depends(get_tenant_id),
):
    config = await referral_config.get_config(db, tenant_id)
    return ReferralConfigResponse.from_model(config)


@router.put("/config", response_model=ReferralConfigResponse)
async def update_program_config(
    payload: UpdateReferralConfigRequest,
    db: AsyncSession = Depends(get_db),
    tenant_id: uuid.UUID = Depends(get_tenant_id),
):
    """Partial update: only fields present in the body change."""
    fields = payload.model_dump(exclude_unset=True)
    try:
        config = await referral_config.update_config(db, tenant_id, **fields)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return ReferralConfigResponse.from_model(config)


@router.post("/config/enable", response_model=ReferralConfigResponse)
async def enable_program(
    db: AsyncSession = Depends(get_db),
    tenant_id: uuid.UUID = Depends(get_tenant_id),
):
    try:
        config = await referral_config.enable_program(db, tenant_id)
    except InvalidRewardConfigError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return ReferralConfigResponse.from_model(config)


@router.post("/config/disable", response_model=ReferralConfigResponse)
async def disable_program(
    db: AsyncSession = Depends(get_db),
    tenant_id: uuid.UUID = Depends(get_tenant_id),
):
    config = await referral_config.disable_program(db, tenant_id)
    return ReferralConfigResponse.from_model(config)


# === CODES ===

@router.get("/members/{member_id}/code", response_model=ReferralCodeResponse)
async def get_member_code(
    member_id: str,
    db: AsyncSession = Depends(get_db),
    tenant_id: uuid.UUID = Depends(get_tenant_id),
):
    """The member's code, generated on first request."""
    mid = _parse_uuid(member_id, "member ID")
    try:
        code = await referral_codes.get_or_create_code(db, tenant_id, mid)
    except CodeGenerationExhaustedError as e:
        logger.error("Could not issue referral code for member %s: %s", str(mid)[:8], str(e))
        raise HTTPException(status_code=503, detail="Could not generate a referral code, try again")
    return ReferralCodeResponse.from_model(code)


@router.post("/members/{member_id}/code/activate", response_model=ReferralCodeResponse)
async def activate_member_code(
    member_id: str,
    db: AsyncSession = Depends(get_db),
    tenant_id: uuid.UUID = Depends(get_tenant_id),
):
    try:
        code = await referral_codes.activate_code(db, tenant_id, _parse_uuid(member_id, "member ID"))
    except ReferralNotFoundError:
        raise HTTPException(status_code=404, detail="Referral code not found")
    return ReferralCodeResponse.from_model(code)


@router.post("/members/{member_id}/code/deactivate", response_model=ReferralCodeResponse)
async def deactivate_member_code(
    member_id: str,
    db: AsyncSession = Depends(get_db),
    tenant_id: uuid.UUID = Depends(get_tenant_id),
):
    try:
        code = await referral_codes.deactivate_code(db, tenant_id, _parse_uuid(member_id, "member ID"))
    except ReferralNotFoundError:
        raise HTTPException(status_code=404, detail="Referral code not found")
    return ReferralCodeResponse.from_model(code)


@router.get("/codes", response_model=CodeListResponse)
async def list_codes(
    page: int = Query(default=1, ge=1),
    size: int = Query(default=20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    tenant_id: uuid.UUID = Depends(get_tenant_id),
):
    codes, total = await referral_codes.list_codes(db, tenant_id, page=page, size=size)
    return CodeListResponse(
        codes=[ReferralCodeResponse.from_model(c) for c in codes],
        total=total,
        page=page,
        pages=_pages(total, size),
    )


@router.get("/leaderboard", response_model=list[ReferralCodeResponse])
async def get_leaderboard(
    limit: int = Query(default=10, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    tenant_id: uuid.UUID = Depends(get_tenant_id),
):
    codes = await referral_codes.get_top_referrers(db, tenant_id, limit)
    return [ReferralCodeResponse.from_model(c) for c in codes]


# === REFERRAL FUNNEL ===

@router.post("/click")
async def track_click(
    payload: TrackClickRequest,
    db: AsyncSession = Depends(get_db),
    tenant_id: uuid.UUID = Depends(get_tenant_id),
):
    """Record a click. Ineligible clicks are not an error: tracked=false."""
    referral = await referral_tracking.track_click(db, tenant_id, payload.code)
    if referral is None:
        return {"tracked": False, "referral": None}
    return {"tracked": True, "referral": ReferralResponse.from_model(referral)}


@router.get("/validate/{code}")
async def validate_code(
    code: str,
    db: AsyncSession = Depends(get_db),
    tenant_id: uuid.UUID = Depends(get_tenant_id),
):
    valid = await referral_tracking.validate_code(db, tenant_id, code)
    return {"code": code, "valid": valid}


@router.post("/{referral_id}/signup", response_model=ReferralResponse)
async def mark_signed_up(
    referral_id: str,
    payload: SignupRequest,
    db: AsyncSession = Depends(get_db),
    tenant_id: uuid.UUID = Depends(get_tenant_id),
):
    rid = _parse_uuid(referral_id, "referral ID")
    referee_id = _parse_uuid(payload.referee_member_id, "referee member ID")
    try:
        referral = await referral_tracking.mark_signed_up(db, tenant_id, rid, referee_id)
    except ReferralNotFoundError:
        raise HTTPException(status_code=404, detail="Referral not found")
    except InvalidTransitionError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return ReferralResponse.from_model(referral)


@router.post("/convert")
async def convert_referral(
    payload: ConvertRequest,
    db: AsyncSession = Depends(get_db),
    tenant_id: uuid.UUID = Depends(get_tenant_id),
):
    """Attribute a paid subscription. Nothing to convert is converted=false."""
    referral = await referral_tracking.convert_referral(
        db,
        tenant_id,
        referee_member_id=_parse_uuid(payload.referee_member_id, "referee member ID"),
        subscription_id=_parse_uuid(payload.subscription_id, "subscription ID"),
        subscription_days=payload.subscription_days,
    )
    if referral is None:
        return {"converted": False, "referral": None}
    return {"converted": True, "referral": ReferralResponse.from_model(referral)}


@router.get("", response_model=ReferralListResponse)
async def list_referrals(
    page: int = Query(default=1, ge=1),
    size: int = Query(default=20, ge=1, le=100),
    referrer_member_id: Optional[str] = None,
    status: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
    tenant_id: uuid.UUID = Depends(get_tenant_id),
):
    referrer = _parse_uuid(referrer_member_id, "member ID") if referrer_member_id else None
    try:
        referrals, total = await referral_tracking.list_referrals(
            db, tenant_id, referrer_member_id=referrer, status=status, page=page, size=size,
        )
    except ValueError:
        raise HTTPException(status_code=422, detail=f"Unknown referral status: {status}")
    return ReferralListResponse(
        referrals=[ReferralResponse.from_model(r) for r in referrals],
        total=total,
        page=page,
        pages=_pages(total, size),
    )


@router.get("/members/{member_id}/stats", response_model=ReferralStats)
async def get_member_stats(
    member_id: str,
    db: AsyncSession = Depends(get_db),
    tenant_id: uuid.UUID = Depends(get_tenant_id),
):
    return await referral_tracking.get_member_stats(db, tenant_id, _parse_uuid(member_id, "member ID"))


@router.get("/analytics", response_model=ReferralAnalytics)
async def get_analytics(
    db: AsyncSession = Depends(get_db),
    tenant_id: uuid.UUID = Depends(get_tenant_id),
):
    return await referral_tracking.get_program_analytics(db, tenant_id)


# === REWARDS ===

@router.get("/rewards", response_model=RewardListResponse)
async def list_rewards(
    page: int = Query(default=1, ge=1),
    size: int = Query(default=20, ge=1, le=100),
    member_id: Optional[str] = None,
    referral_id: Optional[str] = None,
    status: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
    tenant_id: uuid.UUID = Depends(get_tenant_id),
):
    try:
        rewards, total = await referral_rewards.list_rewards(
            db,
            tenant_id,
            member_id=_parse_uuid(member_id, "member ID") if member_id else None,
            referral_id=_parse_uuid(referral_id, "referral ID") if referral_id else None,
            status=status,
            page=page,
            size=size,
        )
    except ValueError:
        raise HTTPException(status_code=422, detail=f"Unknown reward status: {status}")
    return RewardListResponse(
        rewards=[ReferralRewardResponse.from_model(r) for r in rewards],
        total=total,
        page=page,
        pages=_pages(total, size),
    )


@router.post("/rewards/process-pending")
async def process_pending_rewards(
    batch_size: int = Query(default=100, ge=1, le=1000),
    db: AsyncSession = Depends(get_db),
    tenant_id: uuid.UUID = Depends(get_tenant_id),
    wallet: WalletBase = Depends(get_wallet),
):
    """Run one distribution batch for this tenant now instead of waiting for the worker."""
    distributed = await referral_rewards.process_pending_rewards(
        db, wallet, batch_size=batch_size, tenant_id=tenant_id,
    )
    return {"distributed": distributed}


@router.post("/rewards/{reward_id}/distribute", response_model=ReferralRewardResponse)
async def distribute_reward(
    reward_id: str,
    db: AsyncSession = Depends(get_db),
    tenant_id: uuid.UUID = Depends(get_tenant_id),
    wallet: WalletBase = Depends(get_wallet),
):
    rid = _parse_uuid(reward_id, "reward ID")
    try:
        reward = await referral_rewards.distribute_reward(db, tenant_id, rid, wallet)
    except ReferralNotFoundError:
        raise HTTPException(status_code=404, detail="Reward not found")
    except InvalidTransitionError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except RewardDistributionError as e:
        # Keep the FAILED mark and attempt count
        await db.commit()
        raise HTTPException(status_code=502, detail=f"Wallet credit failed: {e.reason}")
    return ReferralRewardResponse.from_model(reward)


@router.post("/rewards/{reward_id}/cancel", response_model=ReferralRewardResponse)
async def cancel_reward(
    reward_id: str,
    db: AsyncSession = Depends(get_db),
    tenant_id: uuid.UUID = Depends(get_tenant_id),
):
    try:
        reward = await referral_rewards.cancel_reward(db, tenant_id, _parse_uuid(reward_id, "reward ID"))
    except ReferralNotFoundError:
        raise HTTPException(status_code=404, detail="Reward not found")
    except InvalidTransitionError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return ReferralRewardResponse.from_model(reward)


@router.post("/rewards/{reward_id}/reset", response_model=ReferralRewardResponse)
async def reset_reward(
    reward_id: str,
    db: AsyncSession = Depends(get_db),
    tenant_id: uuid.UUID = Depends(get_tenant_id),
):
    """Requeue a FAILED reward for the next batch."""
    try:
        reward = await referral_rewards.reset_for_retry(db, tenant_id, _parse_uuid(reward_id, "reward ID"))
    except ReferralNotFoundError:
        raise HTTPException(status_code=404, detail="Reward not found")
    except InvalidTransitionError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return ReferralRewardResponse.from_model(reward)


# Declared last so the literal paths above win over the {referral_id} match
@router.get("/{referral_id}", response_model=ReferralResponse)
async def get_referral(
    referral_id: str,
    db: AsyncSession = Depends(get_db),
    tenant_id: uuid.UUID = Depends(get_tenant_id),
):
    try:
        referral = await referral_tracking.get_referral(db, tenant_id, _parse_uuid(referral_id, "referral ID"))
    except ReferralNotFoundError:
        raise HTTPException(status_code=404, detail="Referral not found")
    return ReferralResponse.from_model(referral)


@router.get("/{referral_id}/rewards", response_model=list[ReferralRewardResponse])
async def get_referral_rewards(
    referral_id: str,
    db: AsyncSession = Depends(get_db),
    tenant_id: uuid.UUID = Depends(get_tenant_id),
):
    rid = _parse_uuid(referral_id, "referral ID")
    try:
        await referral_tracking.get_referral(db, tenant_id, rid)
    except ReferralNotFoundError:
        raise HTTPException(status_code=404, detail="Referral not found")
    rewards, _ = await referral_rewards.list_rewards(db, tenant_id, referral_id=rid, size=100)
    return [ReferralRewardResponse.from_model(r) for r in rewards]
