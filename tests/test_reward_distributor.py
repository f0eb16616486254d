"""
Tests for clubreferral/workers/reward_distributor.py - batch pass and polling loop.
"""
import asyncio
import uuid
import pytest
from contextlib import asynccontextmanager
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

from sqlalchemy.ext.asyncio import AsyncSession

from clubreferral.models.referral import Referral, ReferralStatus
from clubreferral.models.referral_code import ReferralCode
from clubreferral.models.referral_reward import ReferralReward, RewardStatus
from clubreferral.utils.redis import heartbeat
from clubreferral.workers.reward_distributor import (
    WORKER_NAME,
    distribute_batch,
    run_reward_distributor,
)


@asynccontextmanager
async def _session_factory_from(db: AsyncSession):
    """Yield the test db session as if it were from async_session_factory."""
    yield db


def _make_pending_reward(db, tenant_id) -> ReferralReward:
    code = ReferralCode(
        id=uuid.uuid4(), tenant_id=tenant_id, member_id=uuid.uuid4(),
        code=f"REF-{uuid.uuid4().hex[:6].upper()}",
    )
    referral = Referral(
        id=uuid.uuid4(), tenant_id=tenant_id, referral_code_id=code.id,
        referrer_member_id=code.member_id, status=ReferralStatus.CONVERTED.value,
    )
    reward = ReferralReward(
        id=uuid.uuid4(), tenant_id=tenant_id, referral_id=referral.id,
        member_id=code.member_id, reward_type="WALLET_CREDIT",
        amount=Decimal("25.00"), currency="EUR", status=RewardStatus.PENDING.value,
    )
    db.add_all([code, referral, reward])
    return reward


class TestDistributeBatch:
    async def test_distributes_and_commits(self, db, tenant_id, mock_wallet):
        reward = _make_pending_reward(db, tenant_id)
        await db.flush()

        with patch(
            "clubreferral.workers.reward_distributor.async_session_factory",
            return_value=_session_factory_from(db),
        ):
            distributed = await distribute_batch(mock_wallet, batch_size=10)

        assert distributed == 1
        await db.refresh(reward)
        assert reward.status == RewardStatus.DISTRIBUTED.value

    async def test_failed_credit_persisted(self, db, tenant_id, mock_wallet):
        reward = _make_pending_reward(db, tenant_id)
        await db.flush()
        mock_wallet.credit_wallet.side_effect = RuntimeError("wallet down")

        with patch(
            "clubreferral.workers.reward_distributor.async_session_factory",
            return_value=_session_factory_from(db),
        ):
            distributed = await distribute_batch(mock_wallet, batch_size=10)

        assert distributed == 0
        await db.refresh(reward)
        assert reward.status == RewardStatus.FAILED.value
        assert reward.distribution_attempts == 1


class TestRunLoop:
    async def test_error_in_cycle_does_not_stop_loop(self, mock_wallet):
        settings = SimpleNamespace(reward_batch_size=5, reward_poll_interval_seconds=300)
        batch = AsyncMock(side_effect=[RuntimeError("db down"), 2])
        sleep = AsyncMock(side_effect=[None, asyncio.CancelledError()])

        with patch("clubreferral.workers.reward_distributor.get_settings", return_value=settings), \
             patch("clubreferral.workers.reward_distributor.distribute_batch", batch), \
             patch("clubreferral.workers.reward_distributor.heartbeat", new_callable=AsyncMock) as beat, \
             patch("clubreferral.workers.reward_distributor.asyncio.sleep", sleep):
            with pytest.raises(asyncio.CancelledError):
                await run_reward_distributor(wallet=mock_wallet)

        assert batch.await_count == 2
        batch.assert_awaited_with(mock_wallet, 5)
        assert beat.await_count == 2
        sleep.assert_awaited_with(300)


class TestHeartbeat:
    async def test_writes_worker_key(self, mock_redis):
        await heartbeat(WORKER_NAME)

        key, value = mock_redis.set.call_args.args
        assert key == "clubreferral:worker_health:reward_distributor"
        assert value
        assert mock_redis.set.call_args.kwargs["ex"] == 900

    async def test_redis_down_is_swallowed(self):
        with patch(
            "clubreferral.utils.redis.get_redis",
            new_callable=AsyncMock,
            side_effect=ConnectionError("refused"),
        ):
            await heartbeat(WORKER_NAME)
