"""Pytest configuration and fixtures."""

import os
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# Set test environment
os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["DEBUG"] = "false"
os.environ.pop("BANK_CAP", None)
os.environ.pop("WITHDRAW_CAP", None)
os.environ.pop("CONTRACT_ADDRESS", None)
os.environ.pop("PRIVATE_KEY", None)

from kipubank.config import get_settings
from kipubank.ledger.bank import KipuBank
from kipubank.ledger.models import Base
from kipubank.ledger.repository import LedgerRepository
from kipubank.services.bank_service import BankService
from kipubank.transfer.base import SimulatedTransferHandler
from kipubank.units import parse_ether

BANK_CAP = parse_ether("100")
WITHDRAW_CAP = parse_ether("1")


@pytest.fixture(autouse=True)
def clear_settings_cache():
    """Settings are re-read from the environment for every test."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest_asyncio.fixture
async def db_engine():
    """Create in-memory database engine for testing."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(db_engine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the in-memory engine."""
    return async_sessionmaker(
        bind=db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create database session for testing."""
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def ledger_repo(db_session: AsyncSession) -> LedgerRepository:
    """Create ledger repository for testing."""
    return LedgerRepository(db_session)


@pytest.fixture
def transfer_handler() -> SimulatedTransferHandler:
    return SimulatedTransferHandler()


@pytest.fixture
def bank(transfer_handler) -> KipuBank:
    """Ledger with 100 ETH bank cap and 1 ETH per-withdrawal cap."""
    return KipuBank(BANK_CAP, WITHDRAW_CAP, transfer_handler=transfer_handler)


@pytest_asyncio.fixture
async def service(session_factory, transfer_handler) -> BankService:
    """Freshly deployed ledger service backed by the in-memory database."""
    return await BankService.deploy(
        BANK_CAP,
        WITHDRAW_CAP,
        transfer_handler=transfer_handler,
        session_factory=session_factory,
    )
