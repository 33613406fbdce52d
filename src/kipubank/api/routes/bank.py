"""Ledger endpoints: deposit, withdraw, vault and transaction lookups.

The caller is identified by the X-Account header. Deposits and withdrawals
only ever act on the caller's own vault.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, status
from pydantic import BaseModel, Field, field_validator

from kipubank.ledger.bank import normalize_account
from kipubank.services.bank_service import BankService, TxReceipt
from kipubank.units import UINT256_MAX
from kipubank.utils.locks import LockTimeoutError

router = APIRouter()


class AmountRequest(BaseModel):
    """Amount in wei, as a decimal string (uint256 does not fit a JSON number)."""

    amount: str = Field(..., min_length=1, max_length=78, description="Amount in wei")

    @field_validator("amount")
    @classmethod
    def validate_amount(cls, v: str) -> str:
        """Validate amount is an unsigned integer."""
        v = v.strip()
        if not (v.isascii() and v.isdigit()):
            raise ValueError(f"Invalid amount format: {v}")
        if int(v) > UINT256_MAX:
            raise ValueError("Amount exceeds uint256")
        return v

    @property
    def wei(self) -> int:
        return int(self.amount)


class VaultResponse(BaseModel):
    account: str
    balance: str
    total_deposited: str
    total_withdrawn: str


class BankInfoResponse(BaseModel):
    address: str
    bank_cap: str
    withdraw_cap_per_tx: str
    total_pooled: str


def get_bank_service(request: Request) -> BankService:
    """Service bound to the running application."""
    service: Optional[BankService] = getattr(request.app.state, "bank_service", None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="No ledger deployment loaded",
        )
    return service


def get_caller(x_account: str = Header(..., description="Caller account address")) -> str:
    """Resolve the caller identity from the X-Account header."""
    try:
        return normalize_account(x_account)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))


def _receipt_response(receipt: TxReceipt) -> dict:
    if not receipt.success:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={
                "error": receipt.error,
                "message": receipt.message,
                "receipt": receipt.to_dict(),
            },
        )
    return receipt.to_dict()


@router.get("/bank", response_model=BankInfoResponse)
async def bank_info(service: BankService = Depends(get_bank_service)):
    """Deployment address, caps and pooled total."""
    return service.info()


@router.post("/bank/deposit")
async def deposit(
    request: AmountRequest,
    caller: str = Depends(get_caller),
    service: BankService = Depends(get_bank_service),
):
    """Deposit into the caller's vault."""
    try:
        receipt = await service.deposit(caller, request.wei)
    except LockTimeoutError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))
    return _receipt_response(receipt)


@router.post("/bank/withdraw")
async def withdraw(
    request: AmountRequest,
    caller: str = Depends(get_caller),
    service: BankService = Depends(get_bank_service),
):
    """Withdraw from the caller's vault to the caller."""
    try:
        receipt = await service.withdraw(caller, request.wei)
    except LockTimeoutError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))
    return _receipt_response(receipt)


@router.get("/vaults/{account}", response_model=VaultResponse)
async def get_vault(account: str, service: BankService = Depends(get_bank_service)):
    """Vault snapshot of any account (zero vault if it never deposited)."""
    try:
        account = normalize_account(account)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))

    return {"account": account, **service.get_vault(account).to_dict()}


@router.get("/vaults/{account}/transactions")
async def get_vault_history(
    account: str,
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    service: BankService = Depends(get_bank_service),
):
    """Submission history of an account, newest first."""
    try:
        receipts = await service.get_history(account, limit=limit, offset=offset)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))

    return [receipt.to_dict() for receipt in receipts]


@router.get("/transactions/{tx_hash}")
async def get_transaction(tx_hash: str, service: BankService = Depends(get_bank_service)):
    """Stored receipt of a submitted operation."""
    receipt = await service.get_receipt(tx_hash)
    if receipt is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Transaction {tx_hash} not found",
        )
    return receipt.to_dict()
