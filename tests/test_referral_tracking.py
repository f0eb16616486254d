"""
Tests for clubreferral/services/referral_tracking.py - click, signup, conversion and stats.
"""
import uuid
import pytest
from decimal import Decimal
from unittest.mock import AsyncMock, patch

from sqlalchemy import select, update, func

from clubreferral.exceptions import InvalidTransitionError, ReferralNotFoundError
from clubreferral.models.referral import Referral, ReferralStatus
from clubreferral.models.referral_reward import ReferralReward, RewardStatus
from clubreferral.services.referral_codes import deactivate_code, get_or_create_code
from clubreferral.services.referral_config import disable_program, update_config
from clubreferral.services.referral_tracking import (
    convert_referral,
    get_member_stats,
    get_program_analytics,
    get_referral,
    list_referrals,
    mark_signed_up,
    track_click,
    validate_code,
)


async def _rewards_for(db, referral_id) -> list[ReferralReward]:
    result = await db.execute(
        select(ReferralReward).where(ReferralReward.referral_id == referral_id)
    )
    return list(result.scalars().all())


async def _refer_and_convert(db, tenant_id, code: str) -> Referral:
    referral = await track_click(db, tenant_id, code)
    referee = uuid.uuid4()
    await mark_signed_up(db, tenant_id, referral.id, referee)
    return await convert_referral(db, tenant_id, referee, uuid.uuid4())


class TestTrackClick:
    async def test_creates_pending_referral(self, db, tenant_id, wallet_program):
        referrer = uuid.uuid4()
        code = await get_or_create_code(db, tenant_id, referrer)

        referral = await track_click(db, tenant_id, code.code)

        assert referral is not None
        assert referral.status == ReferralStatus.PENDING.value
        assert referral.referrer_member_id == referrer
        assert referral.referral_code_id == code.id
        assert referral.referee_member_id is None
        assert code.click_count == 1

    async def test_unknown_code_returns_none(self, db, tenant_id, wallet_program):
        assert await track_click(db, tenant_id, "REF-NOPE22") is None

    async def test_code_from_other_tenant_returns_none(self, db, tenant_id, wallet_program):
        code = await get_or_create_code(db, uuid.uuid4(), uuid.uuid4())
        assert await track_click(db, tenant_id, code.code) is None
        assert code.click_count == 0

    async def test_inactive_code_returns_none(self, db, tenant_id, wallet_program):
        member = uuid.uuid4()
        code = await get_or_create_code(db, tenant_id, member)
        await deactivate_code(db, tenant_id, member)

        assert await track_click(db, tenant_id, code.code) is None
        assert code.click_count == 0

    async def test_disabled_program_returns_none(self, db, tenant_id, wallet_program):
        code = await get_or_create_code(db, tenant_id, uuid.uuid4())
        await disable_program(db, tenant_id)

        assert await track_click(db, tenant_id, code.code) is None
        assert code.click_count == 0

    async def test_no_program_config_returns_none(self, db, tenant_id):
        code = await get_or_create_code(db, tenant_id, uuid.uuid4())
        assert await track_click(db, tenant_id, code.code) is None

    async def test_cap_reached_returns_none(self, db, tenant_id, wallet_program):
        await update_config(db, tenant_id, max_referrals_per_member=2)
        code = await get_or_create_code(db, tenant_id, uuid.uuid4())

        await _refer_and_convert(db, tenant_id, code.code)
        await _refer_and_convert(db, tenant_id, code.code)

        assert await track_click(db, tenant_id, code.code) is None
        assert code.click_count == 2

    async def test_cap_counts_only_conversions(self, db, tenant_id, wallet_program):
        await update_config(db, tenant_id, max_referrals_per_member=1)
        code = await get_or_create_code(db, tenant_id, uuid.uuid4())

        for _ in range(3):
            assert await track_click(db, tenant_id, code.code) is not None


class TestValidateCode:
    async def test_valid_code_has_no_side_effects(self, db, tenant_id, wallet_program):
        code = await get_or_create_code(db, tenant_id, uuid.uuid4())

        assert await validate_code(db, tenant_id, code.code) is True
        assert code.click_count == 0
        total = (await db.execute(select(func.count(Referral.id)))).scalar()
        assert total == 0

    async def test_invalid_cases(self, db, tenant_id, wallet_program):
        member = uuid.uuid4()
        code = await get_or_create_code(db, tenant_id, member)

        assert await validate_code(db, tenant_id, "") is False
        assert await validate_code(db, tenant_id, "REF-NOPE22") is False
        assert await validate_code(db, uuid.uuid4(), code.code) is False

        await deactivate_code(db, tenant_id, member)
        assert await validate_code(db, tenant_id, code.code) is False


class TestMarkSignedUp:
    async def test_moves_to_signed_up(self, db, tenant_id, wallet_program):
        code = await get_or_create_code(db, tenant_id, uuid.uuid4())
        referral = await track_click(db, tenant_id, code.code)
        referee = uuid.uuid4()

        updated = await mark_signed_up(db, tenant_id, referral.id, referee)

        assert updated.status == ReferralStatus.SIGNED_UP.value
        assert updated.referee_member_id == referee
        assert updated.signed_up_at is not None

    async def test_repeat_signup_same_referee_allowed(self, db, tenant_id, wallet_program):
        code = await get_or_create_code(db, tenant_id, uuid.uuid4())
        referral = await track_click(db, tenant_id, code.code)
        referee = uuid.uuid4()

        await mark_signed_up(db, tenant_id, referral.id, referee)
        again = await mark_signed_up(db, tenant_id, referral.id, referee)
        assert again.status == ReferralStatus.SIGNED_UP.value

    async def test_unknown_referral_raises(self, db, tenant_id):
        with pytest.raises(ReferralNotFoundError):
            await mark_signed_up(db, tenant_id, uuid.uuid4(), uuid.uuid4())

    async def test_other_tenant_referral_not_found(self, db, tenant_id, wallet_program):
        code = await get_or_create_code(db, tenant_id, uuid.uuid4())
        referral = await track_click(db, tenant_id, code.code)

        with pytest.raises(ReferralNotFoundError):
            await mark_signed_up(db, uuid.uuid4(), referral.id, uuid.uuid4())

    async def test_converted_referral_rejected(self, db, tenant_id, wallet_program):
        code = await get_or_create_code(db, tenant_id, uuid.uuid4())
        referral = await _refer_and_convert(db, tenant_id, code.code)

        with pytest.raises(InvalidTransitionError, match="CONVERTED"):
            await mark_signed_up(db, tenant_id, referral.id, uuid.uuid4())

    async def test_referee_attributed_once(self, db, tenant_id, wallet_program):
        code = await get_or_create_code(db, tenant_id, uuid.uuid4())
        first = await track_click(db, tenant_id, code.code)
        second = await track_click(db, tenant_id, code.code)
        referee = uuid.uuid4()

        await mark_signed_up(db, tenant_id, first.id, referee)
        with pytest.raises(InvalidTransitionError, match="already attributed"):
            await mark_signed_up(db, tenant_id, second.id, referee)
        assert second.status == ReferralStatus.PENDING.value

    async def test_concurrent_attribution_hits_unique_index(self, db, tenant_id, wallet_program):
        code = await get_or_create_code(db, tenant_id, uuid.uuid4())
        first = await track_click(db, tenant_id, code.code)
        second = await track_click(db, tenant_id, code.code)
        referee = uuid.uuid4()
        await mark_signed_up(db, tenant_id, first.id, referee)

        # Both signups passed the attribution check before either flushed
        with patch(
            "clubreferral.services.referral_tracking.find_referral_for_referee",
            new_callable=AsyncMock,
            return_value=None,
        ):
            with pytest.raises(InvalidTransitionError, match="already attributed"):
                await mark_signed_up(db, tenant_id, second.id, referee)

        await db.refresh(second)
        assert second.status == ReferralStatus.PENDING.value
        assert second.referee_member_id is None
        await db.refresh(first)
        assert first.referee_member_id == referee


class TestConvertReferral:
    async def test_end_to_end_wallet_credit(self, db, tenant_id, wallet_program):
        referrer = uuid.uuid4()
        code = await get_or_create_code(db, tenant_id, referrer)
        referral = await track_click(db, tenant_id, code.code)
        referee = uuid.uuid4()
        subscription = uuid.uuid4()
        await mark_signed_up(db, tenant_id, referral.id, referee)

        converted = await convert_referral(db, tenant_id, referee, subscription)

        assert converted.id == referral.id
        assert converted.status == ReferralStatus.CONVERTED.value
        assert converted.subscription_id == subscription
        assert converted.converted_at is not None
        assert code.conversion_count == 1

        rewards = await _rewards_for(db, referral.id)
        assert len(rewards) == 1
        reward = rewards[0]
        assert reward.status == RewardStatus.PENDING.value
        assert reward.member_id == referrer
        assert reward.reward_type == "WALLET_CREDIT"
        assert reward.amount == Decimal("25.00")
        assert reward.currency == "EUR"

    async def test_free_days_reward(self, db, tenant_id, free_days_program):
        code = await get_or_create_code(db, tenant_id, uuid.uuid4())
        referral = await _refer_and_convert(db, tenant_id, code.code)

        rewards = await _rewards_for(db, referral.id)
        assert len(rewards) == 1
        assert rewards[0].reward_type == "FREE_DAYS"
        assert rewards[0].free_days == 14
        assert rewards[0].amount is None

    async def test_second_conversion_is_noop(self, db, tenant_id, wallet_program):
        code = await get_or_create_code(db, tenant_id, uuid.uuid4())
        referral = await track_click(db, tenant_id, code.code)
        referee = uuid.uuid4()
        await mark_signed_up(db, tenant_id, referral.id, referee)

        first = await convert_referral(db, tenant_id, referee, uuid.uuid4())
        second = await convert_referral(db, tenant_id, referee, uuid.uuid4())

        assert first is not None
        assert second is None
        assert code.conversion_count == 1
        assert len(await _rewards_for(db, referral.id)) == 1

    async def test_pending_referral_converts_directly(self, db, tenant_id, wallet_program):
        """PENDING is convertible; signup is not a hard prerequisite once the referee is known."""
        code = await get_or_create_code(db, tenant_id, uuid.uuid4())
        referral = await track_click(db, tenant_id, code.code)
        referee = uuid.uuid4()
        referral.referee_member_id = referee
        await db.flush()

        converted = await convert_referral(db, tenant_id, referee, uuid.uuid4())
        assert converted.status == ReferralStatus.CONVERTED.value

    async def test_not_referred_returns_none(self, db, tenant_id, wallet_program):
        assert await convert_referral(db, tenant_id, uuid.uuid4(), uuid.uuid4()) is None

    async def test_lost_race_returns_none(self, db, tenant_id, wallet_program):
        code = await get_or_create_code(db, tenant_id, uuid.uuid4())
        referral = await track_click(db, tenant_id, code.code)
        referee = uuid.uuid4()
        await mark_signed_up(db, tenant_id, referral.id, referee)

        # Another worker converts between our read and our compare-and-set
        await db.execute(
            update(Referral)
            .where(Referral.id == referral.id)
            .values(status=ReferralStatus.CONVERTED.value)
            .execution_options(synchronize_session=False)
        )

        assert await convert_referral(db, tenant_id, referee, uuid.uuid4()) is None
        assert code.conversion_count == 0
        assert await _rewards_for(db, referral.id) == []

    async def test_short_subscription_not_converted(self, db, tenant_id, wallet_program):
        await update_config(db, tenant_id, min_subscription_days=30)
        code = await get_or_create_code(db, tenant_id, uuid.uuid4())
        referral = await track_click(db, tenant_id, code.code)
        referee = uuid.uuid4()
        await mark_signed_up(db, tenant_id, referral.id, referee)

        assert await convert_referral(db, tenant_id, referee, uuid.uuid4(), subscription_days=7) is None
        assert referral.status == ReferralStatus.SIGNED_UP.value

        converted = await convert_referral(db, tenant_id, referee, uuid.uuid4(), subscription_days=30)
        assert converted.status == ReferralStatus.CONVERTED.value

    async def test_disabled_program_converts_without_reward(self, db, tenant_id, wallet_program):
        code = await get_or_create_code(db, tenant_id, uuid.uuid4())
        referral = await track_click(db, tenant_id, code.code)
        referee = uuid.uuid4()
        await mark_signed_up(db, tenant_id, referral.id, referee)
        await disable_program(db, tenant_id)

        converted = await convert_referral(db, tenant_id, referee, uuid.uuid4())

        assert converted.status == ReferralStatus.CONVERTED.value
        assert await _rewards_for(db, referral.id) == []

    async def test_reward_failure_keeps_conversion(self, db, tenant_id, wallet_program):
        code = await get_or_create_code(db, tenant_id, uuid.uuid4())
        referral = await track_click(db, tenant_id, code.code)
        referee = uuid.uuid4()
        await mark_signed_up(db, tenant_id, referral.id, referee)

        with patch(
            "clubreferral.services.referral_tracking.create_reward",
            new_callable=AsyncMock,
            side_effect=RuntimeError("reward store down"),
        ):
            converted = await convert_referral(db, tenant_id, referee, uuid.uuid4())

        assert converted is not None
        await db.refresh(converted)
        await db.refresh(code)
        assert converted.status == ReferralStatus.CONVERTED.value
        assert code.conversion_count == 1
        assert await _rewards_for(db, referral.id) == []


class TestMemberStats:
    async def test_conversion_rate_is_per_click(self, db, tenant_id, wallet_program):
        referrer = uuid.uuid4()
        code = await get_or_create_code(db, tenant_id, referrer)

        referrals = [await track_click(db, tenant_id, code.code) for _ in range(10)]
        for referral in referrals[:4]:
            await mark_signed_up(db, tenant_id, referral.id, uuid.uuid4())
        for referral in referrals[:3]:
            await convert_referral(db, tenant_id, referral.referee_member_id, uuid.uuid4())

        stats = await get_member_stats(db, tenant_id, referrer)

        assert stats.code == code.code
        assert stats.click_count == 10
        assert stats.total_referrals == 10
        assert stats.conversions == 3
        assert stats.conversion_rate == pytest.approx(0.3)

    async def test_member_without_code(self, db, tenant_id):
        stats = await get_member_stats(db, tenant_id, uuid.uuid4())

        assert stats.code is None
        assert stats.click_count == 0
        assert stats.total_referrals == 0
        assert stats.conversions == 0
        assert stats.conversion_rate == 0.0

    async def test_code_without_clicks(self, db, tenant_id):
        member = uuid.uuid4()
        code = await get_or_create_code(db, tenant_id, member)

        stats = await get_member_stats(db, tenant_id, member)
        assert stats.code == code.code
        assert stats.conversion_rate == 0.0


class TestQueries:
    async def test_get_referral(self, db, tenant_id, wallet_program):
        code = await get_or_create_code(db, tenant_id, uuid.uuid4())
        referral = await track_click(db, tenant_id, code.code)

        assert (await get_referral(db, tenant_id, referral.id)).id == referral.id
        with pytest.raises(ReferralNotFoundError):
            await get_referral(db, tenant_id, uuid.uuid4())

    async def test_list_referrals_filters(self, db, tenant_id, wallet_program):
        alice = uuid.uuid4()
        bob = uuid.uuid4()
        alice_code = await get_or_create_code(db, tenant_id, alice)
        bob_code = await get_or_create_code(db, tenant_id, bob)

        await _refer_and_convert(db, tenant_id, alice_code.code)
        await track_click(db, tenant_id, alice_code.code)
        await track_click(db, tenant_id, bob_code.code)

        referrals, total = await list_referrals(db, tenant_id, referrer_member_id=alice)
        assert total == 2
        assert {r.referrer_member_id for r in referrals} == {alice}

        referrals, total = await list_referrals(db, tenant_id, status="CONVERTED")
        assert total == 1
        assert referrals[0].referrer_member_id == alice

        referrals, total = await list_referrals(db, tenant_id, page=2, size=2)
        assert total == 3
        assert len(referrals) == 1

    async def test_list_referrals_unknown_status(self, db, tenant_id):
        with pytest.raises(ValueError):
            await list_referrals(db, tenant_id, status="EXPIRED")


class TestProgramAnalytics:
    async def test_counts_and_leaderboard(self, db, tenant_id, wallet_program):
        top = await get_or_create_code(db, tenant_id, uuid.uuid4())
        other = await get_or_create_code(db, tenant_id, uuid.uuid4())

        await _refer_and_convert(db, tenant_id, top.code)
        await _refer_and_convert(db, tenant_id, top.code)
        await _refer_and_convert(db, tenant_id, other.code)
        signed = await track_click(db, tenant_id, other.code)
        await mark_signed_up(db, tenant_id, signed.id, uuid.uuid4())
        await track_click(db, tenant_id, other.code)

        analytics = await get_program_analytics(db, tenant_id)

        assert analytics.total_pending == 1
        assert analytics.total_signups == 1
        assert analytics.total_conversions == 3
        assert analytics.overall_conversion_rate == pytest.approx(0.6)
        assert analytics.pending_rewards == 3
        assert analytics.total_rewards_distributed == Decimal("0")
        assert [c.code for c in analytics.top_referrers] == [top.code, other.code]

    async def test_empty_program(self, db, tenant_id):
        analytics = await get_program_analytics(db, tenant_id)

        assert analytics.total_conversions == 0
        assert analytics.overall_conversion_rate == 0.0
        assert analytics.top_referrers == []
