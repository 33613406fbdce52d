"""Invariant checks over random operation sequences, plus ledger restore."""

import random

import pytest

from kipubank.ledger.bank import KipuBank, Vault
from kipubank.ledger.errors import BankError, LedgerStateError
from kipubank.transfer.base import SimulatedTransferHandler, TransferResult
from kipubank.units import parse_ether

ACCOUNTS = [
    "0x1111111111111111111111111111111111111111",
    "0x2222222222222222222222222222222222222222",
    "0x3333333333333333333333333333333333333333",
]

AMOUNTS = [
    0,
    1,
    parse_ether("0.1"),
    parse_ether("0.5"),
    parse_ether("1"),
    parse_ether("1.5"),
    parse_ether("4"),
]


class FlakyHandler(SimulatedTransferHandler):
    """Fails a share of transfers, chosen by a seeded generator."""

    def __init__(self, rng: random.Random, failure_rate: float = 0.2):
        super().__init__()
        self.rng = rng
        self.failure_rate = failure_rate

    async def send(self, account: str, amount: int) -> TransferResult:
        if self.rng.random() < self.failure_rate:
            return TransferResult(success=False, error="flaky")
        return await super().send(account, amount)


def snapshot(bank: KipuBank) -> tuple:
    return bank.total_pooled, {a: bank.get_vault(a) for a in ACCOUNTS}


def assert_invariants(bank: KipuBank) -> None:
    vaults = [bank.get_vault(a) for a in ACCOUNTS]
    assert sum(v.balance for v in vaults) == bank.total_pooled
    assert bank.total_pooled <= bank.bank_cap
    for vault in vaults:
        assert vault.balance == vault.total_deposited - vault.total_withdrawn
        assert vault.balance >= 0


class TestRandomSequences:
    """Random deposit/withdraw sequences keep every ledger invariant."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("seed", [1, 7, 42, 1337])
    async def test_invariants_hold(self, seed):
        rng = random.Random(seed)
        handler = FlakyHandler(rng)
        bank = KipuBank(parse_ether("5"), parse_ether("1"), transfer_handler=handler)
        paid_out = 0

        for _ in range(300):
            account = rng.choice(ACCOUNTS)
            amount = rng.choice(AMOUNTS)
            before = snapshot(bank)

            try:
                if rng.random() < 0.5:
                    await bank.deposit(account, amount)
                else:
                    await bank.withdraw(account, amount)
                    paid_out += amount
            except BankError:
                assert snapshot(bank) == before

            assert_invariants(bank)

        total_withdrawn = sum(bank.get_vault(a).total_withdrawn for a in ACCOUNTS)
        assert total_withdrawn == paid_out
        assert sum(handler.balance_of(a) for a in ACCOUNTS) == paid_out


class TestRestore:
    """Rebuilding a ledger from stored vaults."""

    def test_restore_rebuilds_pool(self):
        vaults = {
            ACCOUNTS[0]: Vault(balance=3, total_deposited=5, total_withdrawn=2),
            ACCOUNTS[1]: Vault(balance=4, total_deposited=4, total_withdrawn=0),
        }

        bank = KipuBank.restore(10, 2, vaults)

        assert bank.total_pooled == 7
        assert bank.get_vault(ACCOUNTS[0]) == vaults[ACCOUNTS[0]]
        assert bank.accounts() == ACCOUNTS[:2]

    def test_restore_rejects_inconsistent_vault(self):
        with pytest.raises(LedgerStateError, match="balance"):
            KipuBank.restore(10, 2, {ACCOUNTS[0]: Vault(balance=3, total_deposited=5)})

    def test_restore_rejects_pool_above_cap(self):
        vaults = {ACCOUNTS[0]: Vault(balance=11, total_deposited=11)}

        with pytest.raises(LedgerStateError, match="exceeds bank cap"):
            KipuBank.restore(10, 2, vaults)

    def test_restore_rejects_duplicate_spellings(self):
        account = "0x52908400098527886e0f7030069857d2e4169ee7"
        vaults = {
            account: Vault(balance=1, total_deposited=1),
            account.upper().replace("0X", "0x"): Vault(balance=1, total_deposited=1),
        }

        with pytest.raises(LedgerStateError, match="Duplicate"):
            KipuBank.restore(10, 2, vaults)

    @pytest.mark.asyncio
    async def test_restored_ledger_keeps_operating(self):
        bank = KipuBank.restore(10, 2, {ACCOUNTS[0]: Vault(balance=8, total_deposited=8)})

        with pytest.raises(BankError):
            await bank.deposit(ACCOUNTS[1], 3)

        await bank.withdraw(ACCOUNTS[0], 2)
        await bank.deposit(ACCOUNTS[1], 3)

        assert bank.total_pooled == 9
        assert_invariants(bank)
