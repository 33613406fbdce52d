#!/usr/bin/env python3
"""Interact with a running KipuBank API.

Deposits 0.01 ETH, prints the caller's vault, then withdraws 0.005 ETH.
The caller address is derived from PRIVATE_KEY unless --account is given.

Usage:
    python scripts/interact.py [--account 0x...] [--api-url http://localhost:8000]
"""

import argparse
import asyncio
import logging
import sys

from dotenv import load_dotenv

load_dotenv()

from kipubank.client import KipuBankClient, TransactionReverted
from kipubank.config import get_settings
from kipubank.main import configure_logging
from kipubank.units import format_ether, parse_ether

logger = logging.getLogger(__name__)


async def interact(api_url: str, account: str, deposit: str, withdraw: str) -> None:
    async with KipuBankClient(api_url, account) as bank:
        info = await bank.bank_info()
        print(f"Account: {account}")
        print(f"Contract: {info['address']}")

        deposit_wei = parse_ether(deposit)
        receipt = await bank.deposit(deposit_wei)
        await bank.wait_for_receipt(receipt["tx_hash"])
        print(f"Deposited {format_ether(deposit_wei)} ETH ({receipt['tx_hash']})")

        vault = await bank.get_vault()
        print("Vault =>", {
            "balance": vault["balance"],
            "deposits": vault["total_deposited"],
            "withdrawals": vault["total_withdrawn"],
        })

        withdraw_wei = parse_ether(withdraw)
        receipt = await bank.withdraw(withdraw_wei)
        await bank.wait_for_receipt(receipt["tx_hash"])
        print(f"Withdrew {format_ether(withdraw_wei)} ETH ({receipt['tx_hash']})")

        for event in receipt["events"]:
            print(f"  {event['event']}: {event['account']} {event['amount']} -> {event['new_balance']}")


def main():
    settings = get_settings()
    configure_logging(settings.debug)

    parser = argparse.ArgumentParser(description="KipuBank interaction")
    parser.add_argument("--account", type=str, help="Caller address (default: from PRIVATE_KEY)")
    parser.add_argument("--api-url", type=str, default=settings.api_url, help="API base URL")
    parser.add_argument("--deposit", type=str, default="0.01", help="Deposit amount in ETH")
    parser.add_argument("--withdraw", type=str, default="0.005", help="Withdraw amount in ETH")
    args = parser.parse_args()

    account = args.account or settings.caller_address
    if not account:
        logger.error("No caller: set PRIVATE_KEY in .env or pass --account")
        sys.exit(1)

    try:
        asyncio.run(interact(args.api_url, account, args.deposit, args.withdraw))
    except TransactionReverted as e:
        logger.error(str(e))
        sys.exit(1)


if __name__ == "__main__":
    main()
