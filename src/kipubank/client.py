"""HTTP client for a running KipuBank API.

Submits operations on behalf of one caller account and surfaces receipts,
events and vault snapshots.
"""

import asyncio
import logging
from typing import Optional

import httpx

logger = logging.getLogger(__name__)


class TransactionReverted(Exception):
    """Submitted operation was reverted by the ledger."""

    def __init__(self, error: Optional[str], message: Optional[str], receipt: dict):
        self.error = error
        self.receipt = receipt
        super().__init__(f"Transaction reverted: {error} ({message})")


class KipuBankClient:
    """Async client for the KipuBank HTTP API.

    Example:
        async with KipuBankClient("http://localhost:8000", account) as bank:
            receipt = await bank.deposit(parse_ether("0.01"))
            vault = await bank.get_vault()
    """

    def __init__(
        self,
        base_url: str,
        account: str,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize client.

        Args:
            base_url: API root (e.g. http://localhost:8000)
            account: Caller account submitted as X-Account
            timeout: Request timeout in seconds
            transport: Optional httpx transport (tests use ASGITransport)
        """
        self.account = account
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=timeout,
            headers={"X-Account": account},
            transport=transport,
        )

    async def __aenter__(self) -> "KipuBankClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
        return False

    async def close(self) -> None:
        await self._client.aclose()

    async def bank_info(self) -> dict:
        response = await self._client.get("/api/v1/bank")
        response.raise_for_status()
        return response.json()

    async def deposit(self, amount: int) -> dict:
        """Deposit `amount` wei into the caller's vault."""
        return await self._submit("/api/v1/bank/deposit", amount)

    async def withdraw(self, amount: int) -> dict:
        """Withdraw `amount` wei from the caller's vault."""
        return await self._submit("/api/v1/bank/withdraw", amount)

    async def get_vault(self, account: Optional[str] = None) -> dict:
        """Vault of `account` (defaults to the caller)."""
        response = await self._client.get(f"/api/v1/vaults/{account or self.account}")
        response.raise_for_status()
        return response.json()

    async def get_transaction(self, tx_hash: str) -> Optional[dict]:
        """Stored receipt, or None if the API does not know the hash."""
        response = await self._client.get(f"/api/v1/transactions/{tx_hash}")
        if response.status_code == 404:
            return None
        response.raise_for_status()
        return response.json()

    async def wait_for_receipt(
        self, tx_hash: str, timeout: float = 30.0, poll_interval: float = 0.5
    ) -> dict:
        """Poll until the receipt of `tx_hash` is available.

        Raises:
            TimeoutError: if no receipt shows up within `timeout`
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout

        while True:
            receipt = await self.get_transaction(tx_hash)
            if receipt is not None:
                return receipt
            if loop.time() >= deadline:
                raise TimeoutError(f"No receipt for {tx_hash} after {timeout}s")
            await asyncio.sleep(poll_interval)

    async def _submit(self, path: str, amount: int) -> dict:
        response = await self._client.post(path, json={"amount": str(amount)})

        if response.status_code == 400:
            detail = response.json().get("detail", {})
            logger.warning(f"{path} reverted: {detail.get('error')}")
            raise TransactionReverted(
                detail.get("error"), detail.get("message"), detail.get("receipt", {})
            )

        response.raise_for_status()
        return response.json()
