"""
HTTP wallet client - credits member wallets through the club wallet API.

Auth: Bearer token via API key.
All calls use the configured timeout; retries belong to the batch worker,
not to this client.
"""
import logging
import uuid
from decimal import Decimal
from typing import Optional

import httpx

from clubreferral.integrations.wallet_base import WalletBase

logger = logging.getLogger(__name__)


class HttpWalletClient(WalletBase):
    """Wallet API integration over HTTPS."""

    def __init__(self, base_url: str, api_key: str = "", timeout: float = 10.0):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        if api_key:
            self._headers["Authorization"] = f"Bearer {api_key}"

    @classmethod
    def from_settings(cls, settings=None) -> "HttpWalletClient":
        if settings is None:
            from clubreferral.config import get_settings
            settings = get_settings()
        return cls(
            base_url=settings.wallet_api_url,
            api_key=settings.wallet_api_key,
            timeout=settings.wallet_timeout_seconds,
        )

    async def credit_wallet(
        self,
        member_id: uuid.UUID,
        amount: Decimal,
        currency: str,
        description: str,
    ) -> dict:
        """POST a credit to /{member_id}/credits."""
        url = f"{self.base_url}/{member_id}/credits"
        payload = {
            "amount": str(amount),
            "currency": currency,
            "description": description,
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(url, headers=self._headers, json=payload)
                response.raise_for_status()
                data = response.json() if response.content else {}
        except httpx.HTTPStatusError as e:
            error = _error_detail(e.response)
            logger.warning(
                "Wallet credit rejected for member %s: %s",
                str(member_id)[:8], error,
            )
            return {"success": False, "transaction_id": None, "error": error}
        except httpx.HTTPError as e:
            logger.warning(
                "Wallet credit request failed for member %s: %s",
                str(member_id)[:8], str(e),
            )
            return {"success": False, "transaction_id": None, "error": str(e) or type(e).__name__}

        transaction_id = data.get("transaction_id") or data.get("id")
        return {
            "success": True,
            "transaction_id": str(transaction_id) if transaction_id else None,
            "error": None,
        }


def _error_detail(response: httpx.Response) -> str:
    detail: Optional[str] = None
    try:
        body = response.json()
        if isinstance(body, dict):
            detail = body.get("error") or body.get("detail") or body.get("message")
    except ValueError:
        pass
    return f"HTTP {response.status_code}: {detail or response.text[:200]}"
