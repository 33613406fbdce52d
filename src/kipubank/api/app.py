"""FastAPI application factory."""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from kipubank import __version__
from kipubank.config import get_settings
from kipubank.ledger.database import close_db, init_db
from kipubank.services.bank_service import BankService

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    # Startup
    await init_db()
    if getattr(app.state, "bank_service", None) is None:
        app.state.bank_service = await BankService.from_settings()
    logger.info(f"Serving KipuBank at {app.state.bank_service.address}")
    yield
    # Shutdown
    await close_db()


def create_app(service: Optional[BankService] = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        service: Ledger service to serve; when omitted it is loaded or
            deployed from settings at startup
    """
    settings = get_settings()

    app = FastAPI(
        title="KipuBank API",
        description="Capped custodial vault ledger",
        version=__version__,
        lifespan=lifespan,
        debug=settings.debug,
    )
    app.state.bank_service = service

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.debug else [],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Register routes
    from kipubank.api.routes import bank, health

    app.include_router(health.router, tags=["Health"])
    app.include_router(bank.router, prefix="/api/v1", tags=["Bank"])

    return app
