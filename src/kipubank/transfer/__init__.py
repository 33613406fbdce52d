"""Outbound value transfer handlers."""

from kipubank.transfer.base import SimulatedTransferHandler, TransferHandler, TransferResult

__all__ = ["SimulatedTransferHandler", "TransferHandler", "TransferResult"]
