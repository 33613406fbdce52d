"""Base interfaces for outbound value transfers.

Withdrawal flow:
1. Caller requests a withdrawal (amount)
2. Ledger checks zero amount, per-tx cap and vault balance
3. Ledger commits the debit to its own state
4. Handler sends the amount to the caller
5. Ledger rolls the debit back if the handler reports failure
"""

import logging
import secrets
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)


@dataclass
class TransferResult:
    """Result of a transfer attempt."""
    success: bool
    reference: Optional[str] = None  # Handler-specific id (txid, ...)
    error: Optional[str] = None


class TransferHandler(ABC):
    """Abstract base class for moving value out of the pool.

    Implementations may call back into the ledger from `send`; the ledger has
    already committed its bookkeeping when `send` is awaited.
    """

    @abstractmethod
    async def send(self, account: str, amount: int) -> TransferResult:
        """Send `amount` wei to `account`.

        Args:
            account: Checksummed destination account
            amount: Amount in wei

        Returns:
            TransferResult; success=False (or raising) fails the withdrawal
        """
        pass


class SimulatedTransferHandler(TransferHandler):
    """Simulated transfer handler that credits in-memory external balances."""

    def __init__(self):
        self.external_balances: dict[str, int] = {}

    async def send(self, account: str, amount: int) -> TransferResult:
        """Credit the account's external balance."""
        self.external_balances[account] = self.external_balances.get(account, 0) + amount
        reference = f"sim_tx_{secrets.token_hex(16)}"

        logger.info(f"[SIMULATED] Transfer: {amount} wei to {account} ({reference})")

        return TransferResult(success=True, reference=reference)

    def balance_of(self, account: str) -> int:
        """External balance received by an account so far."""
        return self.external_balances.get(account, 0)
