"""Health check endpoints."""

from fastapi import APIRouter, Request

from kipubank import __version__
from kipubank.config import get_settings

router = APIRouter()


@router.get("/health")
async def health_check():
    """Liveness probe."""
    return {"status": "healthy", "service": "kipubank"}


@router.get("/health/detailed")
async def detailed_health(request: Request):
    """Liveness plus redacted configuration and the loaded deployment."""
    service = getattr(request.app.state, "bank_service", None)
    ledger = None
    if service is not None:
        ledger = {
            **service.info(),
            "accounts": len(service.bank.accounts()),
            "busy": service.bank.lock.locked(),
        }

    return {
        "status": "healthy" if ledger is not None else "degraded",
        "service": "kipubank",
        "version": __version__,
        "ledger": ledger,
        "config": get_settings().get_safe_dict(),
    }
