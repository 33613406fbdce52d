"""Error taxonomy of the ledger.

Every error aborts the whole operation with no observable state change.
`code` is the stable name reported in receipts and HTTP responses.
"""

from typing import Optional


class BankError(Exception):
    """Base class for ledger reverts."""

    code = "BankError"


class ZeroAmount(BankError):
    """Operation invoked with a zero amount."""

    code = "ZeroAmount"

    def __init__(self, operation: str = "operation"):
        self.operation = operation
        super().__init__(f"{operation} amount must be greater than zero")


class CapExceeded(BankError):
    """Deposit would push the pool above the bank cap."""

    code = "CapExceeded"

    def __init__(self, amount: int, total_pooled: int, bank_cap: int):
        self.amount = amount
        self.total_pooled = total_pooled
        self.bank_cap = bank_cap
        super().__init__(
            f"Deposit of {amount} exceeds bank cap: pooled {total_pooled}, cap {bank_cap}"
        )


class ExceedsWithdrawLimit(BankError):
    """Withdrawal above the per-transaction cap."""

    code = "ExceedsWithdrawLimit"

    def __init__(self, amount: int, limit: int):
        self.amount = amount
        self.limit = limit
        super().__init__(f"Withdrawal of {amount} exceeds per-tx limit {limit}")


class InsufficientBalance(BankError):
    """Withdrawal above the caller's own vault balance."""

    code = "InsufficientBalance"

    def __init__(self, amount: int, balance: int):
        self.amount = amount
        self.balance = balance
        super().__init__(f"Insufficient balance: have {balance}, need {amount}")


class TransferFailed(BankError):
    """Outbound value transfer did not succeed."""

    code = "TransferFailed"

    def __init__(self, account: str, amount: int, reason: Optional[str] = None):
        self.account = account
        self.amount = amount
        self.reason = reason
        message = f"Transfer of {amount} to {account} failed"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class LedgerStateError(Exception):
    """Persisted ledger state violates a ledger invariant."""

    pass


BANK_ERRORS: dict[str, type[BankError]] = {
    cls.code: cls
    for cls in (ZeroAmount, CapExceeded, ExceedsWithdrawLimit, InsufficientBalance, TransferFailed)
}
