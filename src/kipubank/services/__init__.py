"""Service layer."""

from kipubank.services.bank_service import BankService, DeploymentNotFound, TxReceipt

__all__ = ["BankService", "DeploymentNotFound", "TxReceipt"]
