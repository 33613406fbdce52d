"""Application configuration using pydantic-settings.

Caps are expressed in wei, exactly as they are passed to a deployment.
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from kipubank.utils.locks import DEFAULT_LOCK_TIMEOUT


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # ======================
    # Ledger caps
    # ======================
    bank_cap: Optional[int] = Field(
        default=None, ge=0, description="Global ceiling on pooled value, in wei"
    )
    withdraw_cap: Optional[int] = Field(
        default=None, ge=0, description="Maximum amount per withdrawal, in wei"
    )

    # ======================
    # Deployment / caller
    # ======================
    contract_address: Optional[str] = Field(
        default=None, description="Address of the deployment to load"
    )
    deployer_private_key: Optional[str] = Field(
        default=None,
        alias="private_key",
        description="Private key used by scripts to derive the caller address",
    )

    # ======================
    # Database
    # ======================
    database_url: str = Field(
        default="sqlite+aiosqlite:///./data/kipubank.db",
        description="Database connection URL",
    )

    # ======================
    # API
    # ======================
    api_host: str = Field(default="0.0.0.0", description="API server host")
    api_port: int = Field(default=8000, description="API server port")
    api_url: str = Field(
        default="http://localhost:8000", description="Base URL used by the API client"
    )

    # ======================
    # Environment
    # ======================
    environment: str = Field(default="development", description="Runtime environment")
    debug: bool = Field(default=True, description="Enable debug mode")

    # ======================
    # Concurrency
    # ======================
    lock_timeout: float = Field(
        default=DEFAULT_LOCK_TIMEOUT,
        ge=0,
        description="Seconds to wait for the ledger lock (0 = forever)",
    )

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment.lower() == "production"

    @property
    def has_private_key(self) -> bool:
        """Check if a caller private key is configured."""
        return bool(self.deployer_private_key)

    @property
    def caller_address(self) -> Optional[str]:
        """Address derived from the configured private key, if any."""
        if not self.deployer_private_key:
            return None
        from eth_account import Account

        return Account.from_key(self.deployer_private_key).address

    @property
    def effective_lock_timeout(self) -> Optional[float]:
        """Lock timeout as understood by LedgerLock (None = wait forever)."""
        return self.lock_timeout or None

    def require_caps(self) -> tuple[int, int]:
        """Return (bank_cap, withdraw_cap), failing if either is unset."""
        missing = []
        if self.bank_cap is None:
            missing.append("BANK_CAP")
        if self.withdraw_cap is None:
            missing.append("WITHDRAW_CAP")
        if missing:
            raise ValueError(f"{' / '.join(missing)} not set (values in wei)")
        return self.bank_cap, self.withdraw_cap

    def get_safe_dict(self) -> dict:
        """Return settings dict with secrets redacted."""
        return {
            "environment": self.environment,
            "debug": self.debug,
            "api_host": self.api_host,
            "api_port": self.api_port,
            "database_url": self._redact_url(self.database_url),
            "contract_address": self.contract_address or "(not set)",
            "private_key": "***" if self.has_private_key else "(not set)",
            "caps": {
                "bank_cap": str(self.bank_cap) if self.bank_cap is not None else "(not set)",
                "withdraw_cap": (
                    str(self.withdraw_cap) if self.withdraw_cap is not None else "(not set)"
                ),
            },
            "lock_timeout": self.lock_timeout,
        }

    @staticmethod
    def _redact_url(url: str) -> str:
        """Redact sensitive parts of database URL."""
        if "://" in url and "@" in url:
            proto, rest = url.split("://", 1)
            if "@" in rest:
                creds, host = rest.rsplit("@", 1)
                if ":" in creds:
                    user, _ = creds.split(":", 1)
                    return f"{proto}://{user}:***@{host}"
        return url


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
