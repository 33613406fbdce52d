"""Submission layer for a KipuBank deployment.

Binds one in-memory ledger to one persisted deployment. A deposit and its
persistence writes run inside a single ledger frame, so a failed database
write rolls the ledger back as well. A withdrawal commits its debit to the
database before the transfer is awaited; if the transfer then fails, the
restored state is written back. Value never leaves the pool without a
persisted debit.
"""

import hashlib
import json
import logging
import secrets
from dataclasses import dataclass, field
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from kipubank.config import Settings, get_settings
from kipubank.ledger.bank import KipuBank, Vault, normalize_account
from kipubank.ledger.database import get_session_factory, session_scope
from kipubank.ledger.errors import BankError, LedgerStateError
from kipubank.ledger.events import LedgerEvent, Withdrawn
from kipubank.ledger.models import LedgerOperation, Receipt, TxStatus
from kipubank.ledger.repository import LedgerRepository
from kipubank.transfer.base import TransferHandler
from kipubank.units import check_uint256
from kipubank.utils.locks import DEFAULT_LOCK_TIMEOUT

logger = logging.getLogger(__name__)

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


class DeploymentNotFound(Exception):
    """No deployment stored under the requested address."""

    pass


@dataclass
class TxReceipt:
    """Outcome of a submitted operation as reported to callers."""

    tx_hash: str
    operation: LedgerOperation
    account: str
    amount: int
    status: TxStatus
    events: list[dict] = field(default_factory=list)
    error: Optional[str] = None
    message: Optional[str] = None
    vault: Optional[Vault] = None

    @property
    def success(self) -> bool:
        return self.status == TxStatus.SUCCESS

    def to_dict(self) -> dict:
        return {
            "tx_hash": self.tx_hash,
            "operation": LedgerOperation(self.operation).value,
            "account": self.account,
            "amount": str(self.amount),
            "status": TxStatus(self.status).value,
            "error": self.error,
            "message": self.message,
            "events": self.events,
            "vault": self.vault.to_dict() if self.vault else None,
        }

    @classmethod
    def from_record(cls, record: Receipt) -> "TxReceipt":
        return cls(
            tx_hash=record.tx_hash,
            operation=LedgerOperation(record.operation),
            account=record.account,
            amount=record.amount,
            status=TxStatus(record.status),
            events=json.loads(record.events),
            error=record.error,
        )


def derive_deployment_address(deployer: str, salt: str) -> str:
    """Derive a deployment address from the deployer and a salt."""
    digest = hashlib.sha256(f"{deployer}:{salt}".encode()).hexdigest()
    return normalize_account(f"0x{digest[-40:]}")


def new_tx_hash() -> str:
    return f"0x{secrets.token_hex(32)}"


class BankService:
    """Deploys, loads and submits operations to one ledger deployment."""

    def __init__(
        self,
        bank: KipuBank,
        deployment_id: int,
        address: str,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    ):
        self.bank = bank
        self.deployment_id = deployment_id
        self.address = address
        self.session_factory = session_factory or get_session_factory()

    @classmethod
    async def deploy(
        cls,
        bank_cap: int,
        withdraw_cap_per_tx: int,
        deployer: str = ZERO_ADDRESS,
        transfer_handler: Optional[TransferHandler] = None,
        lock_timeout: Optional[float] = DEFAULT_LOCK_TIMEOUT,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    ) -> "BankService":
        """Create a new ledger with fixed caps and store its deployment."""
        deployer = normalize_account(deployer)
        # Constructing the ledger validates both caps before anything is stored
        bank = KipuBank(bank_cap, withdraw_cap_per_tx, transfer_handler, lock_timeout)
        address = derive_deployment_address(deployer, secrets.token_hex(16))

        session_factory = session_factory or get_session_factory()
        async with session_scope(session_factory) as session:
            repo = LedgerRepository(session)
            deployment = await repo.create_deployment(
                address=address,
                deployer=deployer,
                bank_cap=bank_cap,
                withdraw_cap_per_tx=withdraw_cap_per_tx,
            )

        logger.info(
            f"Deployed KipuBank at {address} "
            f"(bank_cap={bank_cap}, withdraw_cap_per_tx={withdraw_cap_per_tx})"
        )
        return cls(bank, deployment.id, deployment.address, session_factory)

    @classmethod
    async def load(
        cls,
        address: str,
        transfer_handler: Optional[TransferHandler] = None,
        lock_timeout: Optional[float] = DEFAULT_LOCK_TIMEOUT,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    ) -> "BankService":
        """Rebuild the ledger of an existing deployment from its vault rows.

        Raises:
            DeploymentNotFound: no deployment under this address
            LedgerStateError: stored state breaks a ledger invariant
        """
        session_factory = session_factory or get_session_factory()
        async with session_scope(session_factory) as session:
            repo = LedgerRepository(session)
            deployment = await repo.get_deployment(address)
            if deployment is None:
                raise DeploymentNotFound(f"No deployment at {address}")
            records = await repo.get_vaults(deployment.id)

        vaults = {
            record.account: Vault(
                balance=record.balance,
                total_deposited=record.total_deposited,
                total_withdrawn=record.total_withdrawn,
            )
            for record in records
        }
        bank = KipuBank.restore(
            deployment.bank_cap,
            deployment.withdraw_cap_per_tx,
            vaults,
            transfer_handler=transfer_handler,
            lock_timeout=lock_timeout,
        )
        if bank.total_pooled != deployment.total_pooled:
            raise LedgerStateError(
                f"Deployment {deployment.address}: stored pool {deployment.total_pooled} "
                f"!= sum of vaults {bank.total_pooled}"
            )

        logger.info(f"Loaded KipuBank at {deployment.address}")
        return cls(bank, deployment.id, deployment.address, session_factory)

    @classmethod
    async def from_settings(
        cls,
        settings: Optional[Settings] = None,
        transfer_handler: Optional[TransferHandler] = None,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    ) -> "BankService":
        """Load CONTRACT_ADDRESS, else the latest deployment, else deploy from the caps."""
        settings = settings or get_settings()
        session_factory = session_factory or get_session_factory()
        lock_timeout = settings.effective_lock_timeout

        address = settings.contract_address
        if not address:
            async with session_scope(session_factory) as session:
                latest = await LedgerRepository(session).get_latest_deployment()
                address = latest.address if latest else None

        if address:
            return await cls.load(address, transfer_handler, lock_timeout, session_factory)

        bank_cap, withdraw_cap = settings.require_caps()
        return await cls.deploy(
            bank_cap,
            withdraw_cap,
            deployer=settings.caller_address or ZERO_ADDRESS,
            transfer_handler=transfer_handler,
            lock_timeout=lock_timeout,
            session_factory=session_factory,
        )

    # Reads
    def info(self) -> dict:
        return {
            "address": self.address,
            "bank_cap": str(self.bank.bank_cap),
            "withdraw_cap_per_tx": str(self.bank.withdraw_cap_per_tx),
            "total_pooled": str(self.bank.total_pooled),
        }

    def get_vault(self, account: str) -> Vault:
        return self.bank.get_vault(account)

    async def get_receipt(self, tx_hash: str) -> Optional[TxReceipt]:
        async with session_scope(self.session_factory) as session:
            record = await LedgerRepository(session).get_receipt(tx_hash)
        return TxReceipt.from_record(record) if record else None

    async def get_history(self, account: str, limit: int = 20, offset: int = 0) -> list[TxReceipt]:
        account = normalize_account(account)
        async with session_scope(self.session_factory) as session:
            records = await LedgerRepository(session).get_account_receipts(
                self.deployment_id, account, limit=limit, offset=offset
            )
        return [TxReceipt.from_record(record) for record in records]

    # Submissions
    async def deposit(self, caller: str, amount: int) -> TxReceipt:
        """Submit a deposit of `amount` wei from `caller` into its own vault."""
        return await self._submit(LedgerOperation.DEPOSIT, caller, amount)

    async def withdraw(self, caller: str, amount: int) -> TxReceipt:
        """Submit a withdrawal of `amount` wei from `caller`'s own vault."""
        return await self._submit(LedgerOperation.WITHDRAW, caller, amount)

    async def _submit(self, operation: LedgerOperation, caller: str, amount: int) -> TxReceipt:
        account = normalize_account(caller)
        check_uint256(amount)
        tx_hash = new_tx_hash()
        # Accounts whose new state is committed, and how many frame events that covers
        persisted: dict[str, None] = {}
        persisted_events = 0

        async def persist(events: tuple[LedgerEvent, ...]) -> None:
            nonlocal persisted_events
            touched = list(dict.fromkeys(event.account for event in events))
            await self._persist(
                tx_hash, operation, account, amount, TxStatus.SUCCESS, touched, events=events
            )
            persisted.update(dict.fromkeys(touched))
            persisted_events = len(events)

        try:
            async with self.bank.atomic(operation.value) as frame:
                if operation == LedgerOperation.DEPOSIT:
                    await self.bank.deposit(account, amount)
                    await persist(frame.events)
                else:
                    # The debit is durable before any value leaves the pool
                    async def persist_debit(event: Withdrawn) -> None:
                        await persist(frame.events)

                    await self.bank.withdraw(account, amount, before_transfer=persist_debit)
        except BankError as e:
            try:
                # Writes back a debit committed ahead of a transfer that failed
                await self._persist(
                    tx_hash, operation, account, amount, TxStatus.REVERTED, list(persisted),
                    error=e.code,
                )
            except Exception:
                logger.error(f"Tx {tx_hash} reverted but its rollback was not persisted")
                raise
            logger.warning(f"Tx {tx_hash} reverted: {operation.value} {amount} by {account}: {e.code}")
            return TxReceipt(
                tx_hash=tx_hash,
                operation=operation,
                account=account,
                amount=amount,
                status=TxStatus.REVERTED,
                error=e.code,
                message=str(e),
                vault=self.bank.get_vault(account),
            )

        if len(frame.events) > persisted_events:
            # Reentrant operations run during the transfer; the value has already left,
            # so a failure here leaves the ledger as is and surfaces to the caller
            try:
                await persist(frame.events)
            except Exception:
                logger.error(f"Tx {tx_hash} settled but reentrant effects were not persisted")
                raise

        logger.info(f"Tx {tx_hash} confirmed: {operation.value} {amount} by {account}")
        return TxReceipt(
            tx_hash=tx_hash,
            operation=operation,
            account=account,
            amount=amount,
            status=TxStatus.SUCCESS,
            events=[event.to_dict() for event in frame.events],
            vault=self.bank.get_vault(account),
        )

    async def _persist(
        self,
        tx_hash: str,
        operation: LedgerOperation,
        account: str,
        amount: int,
        status: TxStatus,
        accounts: list[str],
        events: tuple[LedgerEvent, ...] = (),
        error: Optional[str] = None,
    ) -> None:
        """Write the current state of `accounts` and the pool, plus the receipt, in one commit."""
        async with session_scope(self.session_factory) as session:
            repo = LedgerRepository(session)
            for touched in accounts:
                await repo.save_vault(self.deployment_id, touched, self.bank.get_vault(touched))
            if accounts:
                await repo.set_total_pooled(self.deployment_id, self.bank.total_pooled)
            await repo.record_receipt(
                deployment_id=self.deployment_id,
                tx_hash=tx_hash,
                operation=operation,
                account=account,
                amount=amount,
                status=status,
                error=error,
                events=events,
            )
