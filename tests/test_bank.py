"""Tests for the ledger core."""

import pytest

from kipubank.config import Settings
from kipubank.ledger.bank import EMPTY_VAULT, KipuBank, Vault, normalize_account
from kipubank.ledger.errors import (
    CapExceeded,
    ExceedsWithdrawLimit,
    InsufficientBalance,
    ZeroAmount,
)
from kipubank.ledger.events import Deposited, Withdrawn
from kipubank.units import parse_ether
from kipubank.utils.locks import DEFAULT_LOCK_TIMEOUT

ALICE = "0x1111111111111111111111111111111111111111"
BOB = "0x2222222222222222222222222222222222222222"

BANK_CAP = parse_ether("100")
WITHDRAW_CAP = parse_ether("1")


class TestConstruction:
    """Tests for ledger construction."""

    def test_caps_are_set(self, bank: KipuBank):
        """Constructor sets both caps."""
        assert bank.bank_cap == BANK_CAP
        assert bank.withdraw_cap_per_tx == WITHDRAW_CAP
        assert bank.total_pooled == 0

    def test_caps_are_read_only(self, bank: KipuBank):
        """Caps have no setter."""
        with pytest.raises(AttributeError):
            bank.bank_cap = 1
        with pytest.raises(AttributeError):
            bank.withdraw_cap_per_tx = 1

    def test_lock_timeout_defaults_to_lock_and_settings_default(self):
        """A directly built ledger does not wait forever for its lock."""
        assert KipuBank(1, 1).lock.timeout == DEFAULT_LOCK_TIMEOUT == 30.0
        assert KipuBank.restore(1, 1, {}).lock.timeout == DEFAULT_LOCK_TIMEOUT
        assert Settings(_env_file=None).lock_timeout == DEFAULT_LOCK_TIMEOUT
        assert KipuBank(1, 1, lock_timeout=None).lock.timeout is None

    def test_invalid_caps_rejected(self):
        """Caps must be unsigned 256-bit integers."""
        with pytest.raises(ValueError):
            KipuBank(-1, 1)
        with pytest.raises(ValueError):
            KipuBank(1, 2**256)
        with pytest.raises(TypeError):
            KipuBank("100", 1)
        with pytest.raises(TypeError):
            KipuBank(100, True)


class TestDeposit:
    """Tests for deposits."""

    @pytest.mark.asyncio
    async def test_deposit_credits_vault_and_emits_event(self, bank: KipuBank):
        """Depositing 0.5 ETH sets the balance and emits (account, amount, new balance)."""
        amount = parse_ether("0.5")

        event = await bank.deposit(ALICE, amount)

        assert event == Deposited(ALICE, amount, amount)
        assert event.name == "KipuBank_Deposited"
        assert bank.get_vault(ALICE).balance == amount
        assert bank.total_pooled == amount

    @pytest.mark.asyncio
    async def test_deposits_accumulate(self, bank: KipuBank):
        """Repeated deposits add to balance and lifetime total."""
        await bank.deposit(ALICE, parse_ether("1"))
        event = await bank.deposit(ALICE, parse_ether("2"))

        assert event.new_balance == parse_ether("3")
        assert bank.get_vault(ALICE) == Vault(
            balance=parse_ether("3"),
            total_deposited=parse_ether("3"),
            total_withdrawn=0,
        )

    @pytest.mark.asyncio
    async def test_zero_deposit_reverts(self, bank: KipuBank):
        """Depositing zero fails with ZeroAmount and changes nothing."""
        with pytest.raises(ZeroAmount):
            await bank.deposit(ALICE, 0)

        assert bank.get_vault(ALICE) == EMPTY_VAULT
        assert bank.total_pooled == 0
        assert bank.accounts() == []

    @pytest.mark.asyncio
    async def test_deposit_above_cap_reverts(self, bank: KipuBank):
        """A deposit pushing the pool over the cap fails and leaves the pool unchanged."""
        await bank.deposit(ALICE, parse_ether("60"))

        with pytest.raises(CapExceeded) as exc_info:
            await bank.deposit(BOB, parse_ether("41"))

        assert exc_info.value.total_pooled == parse_ether("60")
        assert exc_info.value.bank_cap == BANK_CAP
        assert bank.total_pooled == parse_ether("60")
        assert bank.get_vault(BOB) == EMPTY_VAULT

    @pytest.mark.asyncio
    async def test_deposit_up_to_cap_allowed(self, bank: KipuBank):
        """The pool may reach the cap exactly."""
        await bank.deposit(ALICE, parse_ether("60"))
        await bank.deposit(BOB, parse_ether("40"))

        assert bank.total_pooled == BANK_CAP

        with pytest.raises(CapExceeded):
            await bank.deposit(ALICE, 1)

    @pytest.mark.asyncio
    async def test_zero_checked_before_cap(self):
        """ZeroAmount wins over CapExceeded on a full pool."""
        bank = KipuBank(0, 0)

        with pytest.raises(ZeroAmount):
            await bank.deposit(ALICE, 0)
        with pytest.raises(CapExceeded):
            await bank.deposit(ALICE, 1)

    @pytest.mark.asyncio
    async def test_invalid_amounts_rejected(self, bank: KipuBank):
        """Non-integer and negative amounts never reach the ledger checks."""
        with pytest.raises(TypeError):
            await bank.deposit(ALICE, 1.5)
        with pytest.raises(ValueError):
            await bank.deposit(ALICE, -1)
        with pytest.raises(TypeError):
            await bank.withdraw(ALICE, "1")

        assert bank.total_pooled == 0


class TestWithdraw:
    """Tests for withdrawals."""

    @pytest.mark.asyncio
    async def test_deposit_then_withdraw_all(self, bank: KipuBank, transfer_handler):
        """Depositing then withdrawing 1 ETH empties the vault and pays the account."""
        amount = parse_ether("1")
        await bank.deposit(ALICE, amount)

        event = await bank.withdraw(ALICE, amount)

        assert event == Withdrawn(ALICE, amount, 0)
        assert event.name == "KipuBank_Withdrawn"
        assert bank.get_vault(ALICE).balance == 0
        assert bank.total_pooled == 0
        assert transfer_handler.balance_of(ALICE) == amount

    @pytest.mark.asyncio
    async def test_round_trip_restores_balance(self, bank: KipuBank):
        """Deposit x then withdraw x keeps the lifetime totals."""
        x = parse_ether("0.75")
        await bank.deposit(ALICE, x)
        await bank.withdraw(ALICE, x)

        assert bank.get_vault(ALICE) == Vault(balance=0, total_deposited=x, total_withdrawn=x)

    @pytest.mark.asyncio
    async def test_zero_withdraw_reverts(self, bank: KipuBank):
        """Withdrawing zero fails with ZeroAmount."""
        await bank.deposit(ALICE, parse_ether("1"))

        with pytest.raises(ZeroAmount):
            await bank.withdraw(ALICE, 0)

    @pytest.mark.asyncio
    async def test_withdraw_above_limit_reverts_regardless_of_balance(self, bank: KipuBank):
        """Amounts above the per-tx cap fail even with enough balance."""
        await bank.deposit(ALICE, parse_ether("5"))

        with pytest.raises(ExceedsWithdrawLimit) as exc_info:
            await bank.withdraw(ALICE, parse_ether("1.5"))

        assert exc_info.value.limit == WITHDRAW_CAP
        assert bank.get_vault(ALICE).balance == parse_ether("5")
        assert bank.total_pooled == parse_ether("5")

    @pytest.mark.asyncio
    async def test_limit_checked_before_balance(self, bank: KipuBank):
        """On an empty vault an over-limit withdrawal reports the limit."""
        with pytest.raises(ExceedsWithdrawLimit):
            await bank.withdraw(ALICE, parse_ether("2"))

    @pytest.mark.asyncio
    async def test_withdraw_from_empty_vault_reverts(self, bank: KipuBank):
        """Withdrawing 1 ETH from an empty vault fails with InsufficientBalance."""
        with pytest.raises(InsufficientBalance) as exc_info:
            await bank.withdraw(ALICE, parse_ether("1"))

        assert exc_info.value.balance == 0

    @pytest.mark.asyncio
    async def test_withdraw_more_than_balance_reverts(self, bank: KipuBank):
        """Withdrawing above the balance fails and leaves the vault intact."""
        await bank.deposit(ALICE, parse_ether("0.4"))

        with pytest.raises(InsufficientBalance):
            await bank.withdraw(ALICE, parse_ether("0.5"))

        assert bank.get_vault(ALICE) == Vault(
            balance=parse_ether("0.4"), total_deposited=parse_ether("0.4")
        )

    @pytest.mark.asyncio
    async def test_cannot_withdraw_another_accounts_funds(self, bank: KipuBank):
        """Vaults are isolated: Bob cannot draw on Alice's deposit."""
        await bank.deposit(ALICE, parse_ether("1"))

        with pytest.raises(InsufficientBalance):
            await bank.withdraw(BOB, parse_ether("1"))

        assert bank.get_vault(ALICE).balance == parse_ether("1")


class TestGetVault:
    """Tests for vault reads."""

    def test_unknown_account_has_zero_vault(self, bank: KipuBank):
        assert bank.get_vault(BOB) == Vault(0, 0, 0)

    @pytest.mark.asyncio
    async def test_account_spelling_is_normalized(self, bank: KipuBank):
        """Lower- and mixed-case spellings address the same vault."""
        account = "0x52908400098527886e0f7030069857d2e4169ee7"
        await bank.deposit(account, 10)

        checksummed = normalize_account(account)
        assert checksummed == "0x52908400098527886E0F7030069857D2E4169EE7"
        assert bank.get_vault(checksummed).balance == 10
        assert bank.get_vault(account.upper().replace("0X", "0x")).balance == 10
        assert bank.accounts() == [checksummed]

    def test_malformed_account_rejected(self, bank: KipuBank):
        with pytest.raises(ValueError, match="Invalid account"):
            bank.get_vault("not-an-address")
        with pytest.raises(ValueError):
            bank.get_vault("0x1234")

    def test_snapshot_is_immutable(self, bank: KipuBank):
        vault = bank.get_vault(ALICE)
        with pytest.raises(AttributeError):
            vault.balance = 100
