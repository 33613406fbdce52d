"""Utility modules for KipuBank."""

from kipubank.utils.locks import LedgerLock, LockTimeoutError

__all__ = ["LedgerLock", "LockTimeoutError"]
