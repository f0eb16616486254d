"""
Test configuration and fixtures.
Uses SQLite in-memory for fast tests. Mocks the wallet service and Redis.
"""
import pytest
import uuid
from decimal import Decimal
from unittest.mock import AsyncMock, patch
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

from clubreferral.database import Base
import clubreferral.models  # noqa: F401
from clubreferral.integrations.wallet_base import WalletBase
from clubreferral.models.referral_reward import RewardType
from clubreferral.services.referral_config import enable_program, update_config


@pytest.fixture
async def db():
    """In-memory SQLite database for tests."""
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session
    await engine.dispose()


@pytest.fixture
def tenant_id():
    return uuid.uuid4()


@pytest.fixture
def mock_wallet():
    """Wallet collaborator that accepts every credit."""
    wallet = AsyncMock(spec=WalletBase)
    wallet.credit_wallet.return_value = {
        "success": True,
        "transaction_id": "txn_test_123",
        "error": None,
    }
    return wallet


@pytest.fixture
def mock_redis():
    """Mock for async Redis - prevents real Redis calls in tests."""
    with patch("clubreferral.utils.redis.get_redis", new_callable=AsyncMock) as mock:
        redis_mock = AsyncMock()
        redis_mock.set = AsyncMock(return_value=True)
        redis_mock.get = AsyncMock(return_value=None)
        redis_mock.ping = AsyncMock(return_value=True)
        mock.return_value = redis_mock
        yield redis_mock


@pytest.fixture
async def wallet_program(db, tenant_id):
    """Enabled program paying 25.00 EUR wallet credit per conversion."""
    await update_config(
        db,
        tenant_id,
        reward_type=RewardType.WALLET_CREDIT.value,
        reward_amount=Decimal("25.00"),
        reward_currency="EUR",
    )
    return await enable_program(db, tenant_id)


@pytest.fixture
async def free_days_program(db, tenant_id):
    """Enabled program granting 14 free days per conversion."""
    await update_config(
        db,
        tenant_id,
        reward_type=RewardType.FREE_DAYS.value,
        free_days=14,
    )
    return await enable_program(db, tenant_id)
