"""
Application Configuration - Pydantic Settings for type-safe config.

NO DICTIONARIES - All configuration is strongly typed.
FAIL FAST - Critical config is validated at startup.
"""

import sys
from dataclasses import dataclass

from algosdk import encoding
from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# Worst case for one settlement: receiver check, send-info, router opt-in,
# balance read, funding and the inbox deposit, each bounded by the chain timeout
MAX_CHAIN_CALLS_PER_SETTLEMENT = 6


class ConfigurationError(Exception):
    """Raised when critical configuration is missing or invalid."""

    pass


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database Configuration - NO DEFAULT for production safety
    database_url: str = ""
    database_read_url: str | None = None  # Optional read replica
    database_pool_size: int = 25
    database_max_overflow: int = 10
    database_pool_timeout: int = 30
    database_pool_recycle: int = 3600
    run_migrations_on_startup: bool = False

    # API Configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_title: str = "TokenPay Settlement API"
    api_version: str = "0.1.0"
    api_description: str = "Converts fiat payments into custodial token transfers"

    # Admin endpoints (inventory provisioning, reconciliation)
    admin_api_key: str = ""

    # Browser origins allowed to read payment status
    cors_allowed_origins: list[str] = ["*"]

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"  # json or console

    # Observability - Metrics
    metrics_enabled: bool = True

    # Observability - Tracing
    tracing_enabled: bool = True
    otlp_endpoint: str = "http://otel-collector:4317"
    otlp_insecure: bool = True
    service_name: str = "tokenpay-settlement"

    # Payment Provider - Stripe
    stripe_webhook_secret: str = ""  # whsec_...

    # Payment Provider - Paystack (webhooks are signed with the secret key)
    paystack_secret_key: str = ""

    # Token / chain
    network: str = "algorand"
    token_asset_id: int = 0
    central_wallet_address: str = ""
    inbox_router_app_id: int = 0  # ARC-0059 router application

    # Custodial signing gateway (chain client collaborator)
    chain_gateway_url: str = "http://chain-gateway:8080"
    chain_gateway_token: str = ""
    chain_call_timeout_seconds: float = 20.0

    # Reconciliation sweep
    reconciliation_enabled: bool = True
    reconciliation_interval_seconds: int = 300
    reconciliation_window_seconds: int = 900
    reconciliation_batch_size: int = 100

    # Idempotency fast path
    processed_event_cache_ttl_seconds: int = 3600
    processed_event_cache_max_entries: int = 10000

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    @model_validator(mode="after")
    def validate_critical_config(self) -> "Settings":
        """
        FAIL FAST: Validate critical configuration at startup.

        The app MUST NOT start without a database, webhook secrets and the
        custodial wallet/asset it settles from.
        """
        errors: list[str] = []

        if not self.database_url:
            errors.append("DATABASE_URL is required but empty or missing")
        elif not self.database_url.startswith(("postgresql", "postgres")):
            errors.append(
                f"DATABASE_URL must be a PostgreSQL URL, got: {self.database_url[:20]}..."
            )

        if not self.stripe_webhook_secret and not self.paystack_secret_key:
            errors.append(
                "At least one of STRIPE_WEBHOOK_SECRET or PAYSTACK_SECRET_KEY is required"
            )

        if self.token_asset_id <= 0:
            errors.append("TOKEN_ASSET_ID must be a positive asset id")

        if not self.central_wallet_address:
            errors.append("CENTRAL_WALLET_ADDRESS is required but empty or missing")
        elif not encoding.is_valid_address(self.central_wallet_address):
            errors.append("CENTRAL_WALLET_ADDRESS is not a valid Algorand address")

        if self.inbox_router_app_id <= 0:
            errors.append("INBOX_ROUTER_APP_ID must be a positive application id")

        if self.chain_call_timeout_seconds <= 0:
            errors.append("CHAIN_CALL_TIMEOUT_SECONDS must be positive")
        elif (
            self.reconciliation_window_seconds
            <= MAX_CHAIN_CALLS_PER_SETTLEMENT * self.chain_call_timeout_seconds
        ):
            errors.append(
                "RECONCILIATION_WINDOW_SECONDS must exceed "
                f"{MAX_CHAIN_CALLS_PER_SETTLEMENT} x CHAIN_CALL_TIMEOUT_SECONDS "
                f"({MAX_CHAIN_CALLS_PER_SETTLEMENT * self.chain_call_timeout_seconds:g}s) "
                "so in-flight settlements are never swept"
            )

        if errors:
            error_msg = "\n".join(
                [
                    "",
                    "=" * 60,
                    "CRITICAL CONFIGURATION ERROR - APPLICATION CANNOT START",
                    "=" * 60,
                    *[f"  ✗ {e}" for e in errors],
                    "=" * 60,
                    "",
                ]
            )
            print(error_msg, file=sys.stderr)
            raise ConfigurationError(error_msg)

        return self

    @property
    def read_database_url(self) -> str:
        """Get read database URL (fallback to primary if no replica)."""
        return self.database_read_url or self.database_url


@dataclass(frozen=True)
class SettlementConfig:
    """
    Settlement parameters injected into each business component.

    Components never read the global settings object themselves.
    """

    network: str
    asset_id: int
    central_wallet_address: str
    inbox_router_app_id: int
    chain_call_timeout_seconds: float
    reconciliation_window_seconds: int
    reconciliation_batch_size: int

    def __post_init__(self) -> None:
        """Validate settlement config."""
        if self.asset_id <= 0:
            raise ConfigurationError(f"Invalid asset id: {self.asset_id}")
        if not self.central_wallet_address:
            raise ConfigurationError("central_wallet_address cannot be empty")
        if self.chain_call_timeout_seconds <= 0:
            raise ConfigurationError("chain_call_timeout_seconds must be positive")
        if (
            self.reconciliation_window_seconds
            <= MAX_CHAIN_CALLS_PER_SETTLEMENT * self.chain_call_timeout_seconds
        ):
            raise ConfigurationError(
                "reconciliation_window_seconds must exceed the worst-case settlement time"
            )

    @classmethod
    def from_settings(cls, source: Settings) -> "SettlementConfig":
        """Build settlement config from application settings."""
        return cls(
            network=source.network,
            asset_id=source.token_asset_id,
            central_wallet_address=source.central_wallet_address,
            inbox_router_app_id=source.inbox_router_app_id,
            chain_call_timeout_seconds=source.chain_call_timeout_seconds,
            reconciliation_window_seconds=source.reconciliation_window_seconds,
            reconciliation_batch_size=source.reconciliation_batch_size,
        )


# Global settings instance - validates at import time
settings = Settings()


def get_settlement_config() -> SettlementConfig:
    """Get settlement config derived from the global settings."""
    return SettlementConfig.from_settings(settings)
