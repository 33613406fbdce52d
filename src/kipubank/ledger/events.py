"""Events emitted by successful ledger operations."""

from dataclasses import dataclass
from typing import ClassVar


@dataclass(frozen=True)
class LedgerEvent:
    """Base event: who, how much, and the vault balance afterwards."""

    name: ClassVar[str] = "LedgerEvent"

    account: str
    amount: int
    new_balance: int

    def to_dict(self) -> dict:
        """Serialize with amounts as decimal strings (uint256-safe for JSON)."""
        return {
            "event": self.name,
            "account": self.account,
            "amount": str(self.amount),
            "new_balance": str(self.new_balance),
        }


@dataclass(frozen=True)
class Deposited(LedgerEvent):
    """Value credited to an account's vault."""

    name: ClassVar[str] = "KipuBank_Deposited"


@dataclass(frozen=True)
class Withdrawn(LedgerEvent):
    """Value released from an account's vault to the account."""

    name: ClassVar[str] = "KipuBank_Withdrawn"
