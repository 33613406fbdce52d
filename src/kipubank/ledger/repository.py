"""Repository for persisted ledger state."""

import json
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from kipubank.ledger.bank import Vault
from kipubank.ledger.events import LedgerEvent
from kipubank.ledger.models import (
    Deployment,
    LedgerOperation,
    Receipt,
    TxStatus,
    VaultRecord,
)


class LedgerRepository:
    """Repository for all ledger-related database operations."""

    def __init__(self, session: AsyncSession):
        self.session = session

    # Deployment operations
    async def create_deployment(
        self,
        address: str,
        deployer: str,
        bank_cap: int,
        withdraw_cap_per_tx: int,
    ) -> Deployment:
        """Store a new ledger deployment."""
        deployment = Deployment(
            address=address,
            deployer=deployer,
            bank_cap=bank_cap,
            withdraw_cap_per_tx=withdraw_cap_per_tx,
            total_pooled=0,
        )
        self.session.add(deployment)
        await self.session.flush()
        return deployment

    async def get_deployment(self, address: str) -> Optional[Deployment]:
        """Get deployment by address (case-insensitive)."""
        stmt = select(Deployment).where(func.lower(Deployment.address) == address.lower())
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_latest_deployment(self) -> Optional[Deployment]:
        """Get the most recently created deployment."""
        stmt = select(Deployment).order_by(Deployment.id.desc()).limit(1)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def set_total_pooled(self, deployment_id: int, total_pooled: int) -> None:
        """Update the pooled total of a deployment."""
        deployment = await self.session.get(Deployment, deployment_id)
        if deployment is None:
            raise ValueError(f"Deployment {deployment_id} not found")
        deployment.total_pooled = total_pooled
        await self.session.flush()

    # Vault operations
    async def get_vault(self, deployment_id: int, account: str) -> Optional[VaultRecord]:
        """Get the persisted vault of an account."""
        stmt = select(VaultRecord).where(
            VaultRecord.deployment_id == deployment_id, VaultRecord.account == account
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_vaults(self, deployment_id: int) -> list[VaultRecord]:
        """Get all persisted vaults of a deployment."""
        stmt = (
            select(VaultRecord)
            .where(VaultRecord.deployment_id == deployment_id)
            .order_by(VaultRecord.id)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def save_vault(self, deployment_id: int, account: str, vault: Vault) -> VaultRecord:
        """Insert or update the persisted vault of an account."""
        record = await self.get_vault(deployment_id, account)
        if record is None:
            record = VaultRecord(deployment_id=deployment_id, account=account)
            self.session.add(record)
        record.balance = vault.balance
        record.total_deposited = vault.total_deposited
        record.total_withdrawn = vault.total_withdrawn
        await self.session.flush()
        return record

    # Receipt operations
    async def record_receipt(
        self,
        deployment_id: int,
        tx_hash: str,
        operation: LedgerOperation,
        account: str,
        amount: int,
        status: TxStatus,
        error: Optional[str] = None,
        events: tuple[LedgerEvent, ...] = (),
    ) -> Receipt:
        """Store the outcome of a submitted operation (replacing an earlier one for tx_hash)."""
        receipt = await self.get_receipt(tx_hash)
        if receipt is None:
            receipt = Receipt(deployment_id=deployment_id, tx_hash=tx_hash)
            self.session.add(receipt)
        receipt.operation = LedgerOperation(operation).value
        receipt.account = account
        receipt.amount = amount
        receipt.status = TxStatus(status).value
        receipt.error = error
        receipt.events = json.dumps([event.to_dict() for event in events])
        await self.session.flush()
        return receipt

    async def get_receipt(self, tx_hash: str) -> Optional[Receipt]:
        """Get receipt by transaction hash."""
        stmt = select(Receipt).where(Receipt.tx_hash == tx_hash)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_account_receipts(
        self, deployment_id: int, account: str, limit: int = 20, offset: int = 0
    ) -> list[Receipt]:
        """Get submission history for an account, newest first."""
        stmt = (
            select(Receipt)
            .where(Receipt.deployment_id == deployment_id, Receipt.account == account)
            .order_by(Receipt.id.desc())
            .limit(limit)
            .offset(offset)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())
