"""SQLAlchemy models for persisted deployments, vaults and receipts."""

from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    DateTime,
    ForeignKey,
    Index,
    String,
    Text,
    TypeDecorator,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class WeiAmount(TypeDecorator):
    """uint256 amount stored as a decimal string.

    Numeric columns lose precision above 2**63 on SQLite; wei values get there
    at ~9.2 ether.
    """

    impl = String(78)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return str(int(value))

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return int(value)


class LedgerOperation(str, Enum):
    """Mutating ledger operation."""

    DEPOSIT = "deposit"
    WITHDRAW = "withdraw"


class TxStatus(str, Enum):
    """Outcome of a submitted operation."""

    SUCCESS = "success"
    REVERTED = "reverted"


class Deployment(Base):
    """A ledger instance with its immutable caps."""

    __tablename__ = "deployments"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    address: Mapped[str] = mapped_column(String(42), unique=True, nullable=False, index=True)
    deployer: Mapped[str] = mapped_column(String(42), nullable=False)
    bank_cap: Mapped[int] = mapped_column(WeiAmount, nullable=False)
    withdraw_cap_per_tx: Mapped[int] = mapped_column(WeiAmount, nullable=False)
    total_pooled: Mapped[int] = mapped_column(WeiAmount, default=0, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    # Relationships
    vaults: Mapped[list["VaultRecord"]] = relationship(
        back_populates="deployment", lazy="selectin"
    )


class VaultRecord(Base):
    """Persisted vault of one account in one deployment."""

    __tablename__ = "vaults"
    __table_args__ = (
        Index("ix_vaults_deployment_account", "deployment_id", "account", unique=True),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    deployment_id: Mapped[int] = mapped_column(ForeignKey("deployments.id"), nullable=False)
    account: Mapped[str] = mapped_column(String(42), nullable=False)
    balance: Mapped[int] = mapped_column(WeiAmount, default=0, nullable=False)
    total_deposited: Mapped[int] = mapped_column(WeiAmount, default=0, nullable=False)
    total_withdrawn: Mapped[int] = mapped_column(WeiAmount, default=0, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    # Relationships
    deployment: Mapped["Deployment"] = relationship(back_populates="vaults")


class Receipt(Base):
    """Outcome of one submitted deposit or withdrawal."""

    __tablename__ = "receipts"
    __table_args__ = (Index("ix_receipts_deployment_account", "deployment_id", "account"),)

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    deployment_id: Mapped[int] = mapped_column(ForeignKey("deployments.id"), nullable=False)
    tx_hash: Mapped[str] = mapped_column(String(66), unique=True, nullable=False, index=True)
    operation: Mapped[LedgerOperation] = mapped_column(String(20), nullable=False)
    account: Mapped[str] = mapped_column(String(42), nullable=False)
    amount: Mapped[int] = mapped_column(WeiAmount, nullable=False)
    status: Mapped[TxStatus] = mapped_column(String(20), nullable=False)
    error: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)  # BankError code
    events: Mapped[str] = mapped_column(Text, default="[]", nullable=False)  # JSON list
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
