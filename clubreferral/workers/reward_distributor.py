"""
Reward distributor - drains PENDING referral rewards in batches.
Runs every reward_poll_interval_seconds, oldest rewards first.
FAILED rewards stay FAILED until reset_for_retry() is called on them.
"""
import asyncio
import logging
from typing import Optional

from clubreferral.config import get_settings
from clubreferral.database import async_session_factory
from clubreferral.integrations.wallet_base import WalletBase
from clubreferral.services.referral_rewards import process_pending_rewards
from clubreferral.utils.redis import heartbeat

logger = logging.getLogger(__name__)

WORKER_NAME = "reward_distributor"


async def run_reward_distributor(wallet: Optional[WalletBase] = None):
    """Main distributor loop. Runs continuously."""
    settings = get_settings()
    if wallet is None:
        from clubreferral.integrations.wallet_http import HttpWalletClient
        wallet = HttpWalletClient.from_settings(settings)

    logger.info(
        "Reward distributor started (batch=%d interval=%ds)",
        settings.reward_batch_size, settings.reward_poll_interval_seconds,
    )

    while True:
        try:
            distributed = await distribute_batch(wallet, settings.reward_batch_size)
            if distributed > 0:
                logger.info("Reward distributor distributed %d rewards", distributed)
        except Exception as e:
            logger.error("Reward distributor error: %s", str(e), exc_info=True)

        await heartbeat(WORKER_NAME)
        await asyncio.sleep(settings.reward_poll_interval_seconds)


async def distribute_batch(wallet: WalletBase, batch_size: int) -> int:
    """One pass over the pending queue in its own session. Returns count distributed."""
    async with async_session_factory() as db:
        distributed = await process_pending_rewards(
            db, wallet, batch_size=batch_size, commit_each=True,
        )
        await db.commit()
    return distributed
