"""Ledger module: vault state machine, errors, events and persistence."""

from kipubank.ledger.bank import EMPTY_VAULT, Frame, KipuBank, Vault, normalize_account
from kipubank.ledger.errors import (
    BankError,
    CapExceeded,
    ExceedsWithdrawLimit,
    InsufficientBalance,
    LedgerStateError,
    TransferFailed,
    ZeroAmount,
)
from kipubank.ledger.events import Deposited, LedgerEvent, Withdrawn

__all__ = [
    # Core
    "KipuBank",
    "Vault",
    "EMPTY_VAULT",
    "Frame",
    "normalize_account",
    # Errors
    "BankError",
    "ZeroAmount",
    "CapExceeded",
    "ExceedsWithdrawLimit",
    "InsufficientBalance",
    "TransferFailed",
    "LedgerStateError",
    # Events
    "LedgerEvent",
    "Deposited",
    "Withdrawn",
]
