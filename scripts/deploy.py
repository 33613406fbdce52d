#!/usr/bin/env python3
"""Deploy a KipuBank ledger.

Reads BANK_CAP / WITHDRAW_CAP (in wei) from the environment or .env and
stores a new deployment in DATABASE_URL.

Usage:
    python scripts/deploy.py
"""

import asyncio
import logging
import sys

from dotenv import load_dotenv

load_dotenv()

from kipubank.config import get_settings
from kipubank.ledger.database import close_db, init_db
from kipubank.main import configure_logging
from kipubank.services.bank_service import ZERO_ADDRESS, BankService
from kipubank.units import format_ether

logger = logging.getLogger(__name__)


async def deploy() -> str:
    settings = get_settings()
    bank_cap, withdraw_cap = settings.require_caps()
    deployer = settings.caller_address or ZERO_ADDRESS

    await init_db()
    try:
        service = await BankService.deploy(
            bank_cap,
            withdraw_cap,
            deployer=deployer,
            lock_timeout=settings.effective_lock_timeout,
        )
    finally:
        await close_db()

    print(f"Deployer: {deployer}")
    print(f"Bank cap: {format_ether(bank_cap)} ETH")
    print(f"Withdraw cap per tx: {format_ether(withdraw_cap)} ETH")
    print(f"KipuBank deployed to: {service.address}")
    return service.address


def main():
    configure_logging(get_settings().debug)
    try:
        asyncio.run(deploy())
    except ValueError as e:
        logger.error(str(e))
        sys.exit(1)


if __name__ == "__main__":
    main()
