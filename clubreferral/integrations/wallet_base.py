"""
Abstract wallet interface - the member wallet service implements this.
Reward distribution consumes it; crediting is idempotent per invocation
on the wallet side, so callers must invoke it once per reward.
"""
from abc import ABC, abstractmethod
from decimal import Decimal
import uuid


class WalletBase(ABC):
    """Abstract base class for wallet collaborators."""

    @abstractmethod
    async def credit_wallet(
        self,
        member_id: uuid.UUID,
        amount: Decimal,
        currency: str,
        description: str,
    ) -> dict:
        """
        Credit a member's wallet.
        Returns: {"success": bool, "transaction_id": str|None, "error": str|None}
        """
        ...
