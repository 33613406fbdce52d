"""KipuBank ledger: per-account vaults over a capped shared pool.

State transitions (deposit, withdraw) run inside `atomic()` frames. A frame
holds the ledger lock and journals every vault/pool write, so any exception
leaving the frame restores the exact prior state and drops the events emitted
inside it. Withdrawals commit their bookkeeping before the outbound transfer
is awaited; a transfer that re-enters the ledger sees the debited balance.
"""

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Awaitable, Callable, Mapping, Optional

from eth_utils import is_address, to_checksum_address

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
from kipubank.transfer.base import SimulatedTransferHandler, TransferHandler
from kipubank.units import check_uint256
from kipubank.utils.locks import DEFAULT_LOCK_TIMEOUT, LedgerLock

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Vault:
    """Snapshot of one account's sub-ledger."""

    balance: int = 0
    total_deposited: int = 0
    total_withdrawn: int = 0

    def to_dict(self) -> dict:
        return {
            "balance": str(self.balance),
            "total_deposited": str(self.total_deposited),
            "total_withdrawn": str(self.total_withdrawn),
        }


EMPTY_VAULT = Vault()


def normalize_account(account: str) -> str:
    """Return the checksummed form of an account address.

    Raises:
        ValueError: if account is not a 20-byte hex address
    """
    if not isinstance(account, str) or not is_address(account.strip()):
        raise ValueError(f"Invalid account address: {account!r}")
    return to_checksum_address(account.strip())


class Frame:
    """An open (or finished) `atomic()` block."""

    def __init__(self, bank: "KipuBank", operation: str, journal_mark: int, event_mark: int):
        self.operation = operation
        self.journal_mark = journal_mark
        self.event_mark = event_mark
        self._bank = bank
        self._final_events: Optional[tuple[LedgerEvent, ...]] = None

    @property
    def events(self) -> tuple[LedgerEvent, ...]:
        """Events emitted inside this frame (empty once reverted)."""
        if self._final_events is not None:
            return self._final_events
        return tuple(self._bank._pending_events[self.event_mark:])

    def _close(self, events: tuple[LedgerEvent, ...]) -> None:
        self._final_events = events


class KipuBank:
    """Capped custodial ledger.

    Args:
        bank_cap: Ceiling on the sum of all vault balances, in wei
        withdraw_cap_per_tx: Maximum amount a single withdrawal may move, in wei
        transfer_handler: Sends withdrawn value to accounts
        lock_timeout: Seconds to wait for the ledger lock (None or 0 = forever)
    """

    def __init__(
        self,
        bank_cap: int,
        withdraw_cap_per_tx: int,
        transfer_handler: Optional[TransferHandler] = None,
        lock_timeout: Optional[float] = DEFAULT_LOCK_TIMEOUT,
    ):
        self._bank_cap = check_uint256(bank_cap, "bank_cap")
        self._withdraw_cap_per_tx = check_uint256(withdraw_cap_per_tx, "withdraw_cap_per_tx")
        self.transfer_handler = transfer_handler or SimulatedTransferHandler()
        self._lock = LedgerLock("kipubank", timeout=lock_timeout)

        self._vaults: dict[str, Vault] = {}
        self._total_pooled = 0

        # (account, vault before the write or None, total_pooled before the write)
        self._journal: list[tuple[str, Optional[Vault], int]] = []
        self._pending_events: list[LedgerEvent] = []
        self._open_frames = 0

    @classmethod
    def restore(
        cls,
        bank_cap: int,
        withdraw_cap_per_tx: int,
        vaults: Mapping[str, Vault],
        transfer_handler: Optional[TransferHandler] = None,
        lock_timeout: Optional[float] = DEFAULT_LOCK_TIMEOUT,
    ) -> "KipuBank":
        """Rebuild a ledger from persisted vault snapshots.

        Raises:
            LedgerStateError: if the snapshot breaks a vault or pool invariant
        """
        bank = cls(bank_cap, withdraw_cap_per_tx, transfer_handler, lock_timeout)
        total = 0

        for raw_account, vault in vaults.items():
            account = normalize_account(raw_account)
            if account in bank._vaults:
                raise LedgerStateError(f"Duplicate vault for {account}")
            for field in ("balance", "total_deposited", "total_withdrawn"):
                check_uint256(getattr(vault, field), field)
            if vault.balance != vault.total_deposited - vault.total_withdrawn:
                raise LedgerStateError(
                    f"Vault {account}: balance {vault.balance} != "
                    f"{vault.total_deposited} deposited - {vault.total_withdrawn} withdrawn"
                )
            bank._vaults[account] = vault
            total += vault.balance

        if total > bank._bank_cap:
            raise LedgerStateError(f"Pooled total {total} exceeds bank cap {bank._bank_cap}")

        bank._total_pooled = total
        logger.info(f"Restored ledger with {len(bank._vaults)} vaults, {total} wei pooled")
        return bank

    # Read-only state
    @property
    def bank_cap(self) -> int:
        return self._bank_cap

    @property
    def withdraw_cap_per_tx(self) -> int:
        return self._withdraw_cap_per_tx

    @property
    def total_pooled(self) -> int:
        return self._total_pooled

    @property
    def lock(self) -> LedgerLock:
        return self._lock

    def get_vault(self, account: str) -> Vault:
        """Current vault of an account (zero vault if it never deposited)."""
        return self._vaults.get(normalize_account(account), EMPTY_VAULT)

    def accounts(self) -> list[str]:
        """Accounts that have a vault record."""
        return list(self._vaults)

    def __repr__(self) -> str:
        return (
            f"KipuBank(bank_cap={self._bank_cap}, "
            f"withdraw_cap_per_tx={self._withdraw_cap_per_tx}, "
            f"total_pooled={self._total_pooled}, vaults={len(self._vaults)})"
        )

    # Transactions
    @asynccontextmanager
    async def atomic(self, operation: str = "ledger_operation"):
        """Run a block as one all-or-nothing unit against this ledger.

        Yields:
            Frame exposing the events emitted inside the block
        """
        async with self._lock.hold(operation):
            frame = Frame(self, operation, len(self._journal), len(self._pending_events))
            self._open_frames += 1
            try:
                yield frame
            except BaseException:
                self._revert(frame)
                frame._close(())
                raise
            else:
                frame._close(tuple(self._pending_events[frame.event_mark:]))
            finally:
                self._open_frames -= 1

            if self._open_frames == 0:
                self._journal.clear()
                self._pending_events.clear()

    def _write(self, account: str, vault: Vault, total_pooled: int) -> None:
        self._journal.append((account, self._vaults.get(account), self._total_pooled))
        self._vaults[account] = vault
        self._total_pooled = total_pooled

    def _emit(self, event: LedgerEvent) -> LedgerEvent:
        self._pending_events.append(event)
        return event

    def _revert(self, frame: Frame) -> None:
        while len(self._journal) > frame.journal_mark:
            account, previous, total_pooled = self._journal.pop()
            if previous is None:
                del self._vaults[account]
            else:
                self._vaults[account] = previous
            self._total_pooled = total_pooled
        del self._pending_events[frame.event_mark:]

    # Operations
    async def deposit(self, account: str, amount: int) -> Deposited:
        """Credit `amount` wei to the caller's own vault.

        Raises:
            ZeroAmount: amount is 0
            CapExceeded: the pool would exceed bank_cap
        """
        account = normalize_account(account)
        check_uint256(amount)

        try:
            async with self.atomic("deposit"):
                if amount == 0:
                    raise ZeroAmount("deposit")
                if self._total_pooled + amount > self._bank_cap:
                    raise CapExceeded(amount, self._total_pooled, self._bank_cap)

                vault = self._vaults.get(account, EMPTY_VAULT)
                updated = Vault(
                    balance=vault.balance + amount,
                    total_deposited=vault.total_deposited + amount,
                    total_withdrawn=vault.total_withdrawn,
                )
                self._write(account, updated, self._total_pooled + amount)
                event = self._emit(Deposited(account, amount, updated.balance))
        except BankError as e:
            logger.warning(f"Deposit reverted for {account}: {e.code} ({e})")
            raise

        logger.info(f"Deposited {amount} wei for {account}, balance {event.new_balance}")
        return event

    async def withdraw(
        self,
        account: str,
        amount: int,
        before_transfer: Optional[Callable[[Withdrawn], Awaitable[None]]] = None,
    ) -> Withdrawn:
        """Release `amount` wei from the caller's vault to the caller.

        Args:
            account: Caller account
            amount: Amount in wei
            before_transfer: Awaited with the event once the debit is applied
                and before any value leaves; raising aborts the withdrawal

        Raises:
            ZeroAmount: amount is 0
            ExceedsWithdrawLimit: amount above withdraw_cap_per_tx
            InsufficientBalance: amount above the vault balance
            TransferFailed: the transfer handler did not deliver the value
        """
        account = normalize_account(account)
        check_uint256(amount)

        try:
            async with self.atomic("withdraw"):
                if amount == 0:
                    raise ZeroAmount("withdraw")
                if amount > self._withdraw_cap_per_tx:
                    raise ExceedsWithdrawLimit(amount, self._withdraw_cap_per_tx)

                vault = self._vaults.get(account, EMPTY_VAULT)
                if amount > vault.balance:
                    raise InsufficientBalance(amount, vault.balance)

                updated = Vault(
                    balance=vault.balance - amount,
                    total_deposited=vault.total_deposited,
                    total_withdrawn=vault.total_withdrawn + amount,
                )
                self._write(account, updated, self._total_pooled - amount)
                event = self._emit(Withdrawn(account, amount, updated.balance))
                if before_transfer is not None:
                    await before_transfer(event)

                # Effects are committed; only now may value leave the pool
                await self._send(account, amount)
        except BankError as e:
            logger.warning(f"Withdrawal reverted for {account}: {e.code} ({e})")
            raise

        logger.info(f"Withdrew {amount} wei for {account}, balance {event.new_balance}")
        return event

    async def _send(self, account: str, amount: int) -> None:
        try:
            result = await self.transfer_handler.send(account, amount)
        except Exception as e:
            logger.error(f"Transfer of {amount} wei to {account} raised: {e}")
            raise TransferFailed(account, amount, str(e)) from e

        if not result.success:
            logger.error(f"Transfer of {amount} wei to {account} failed: {result.error}")
            raise TransferFailed(account, amount, result.error or "transfer rejected")
