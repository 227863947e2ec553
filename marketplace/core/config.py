# marketplace/core/config.py
"""
Process-wide configuration for the marketplace ledger.

Settings are read once from the environment (and a local .env file outside CI)
when this module is imported. Components that need the platform fee rules take
an immutable PlatformFeeConfig rather than reading the environment themselves.
"""

from dataclasses import dataclass
from decimal import Decimal
import logging
import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

_PROJECT_ROOT = Path(__file__).resolve().parents[2]

if not os.getenv("CI"):
    load_dotenv(_PROJECT_ROOT / ".env")


def is_running_tests() -> bool:
    """
    Detect if code is running under pytest.

    PYTEST_CURRENT_TEST is set automatically by pytest during test runs.
    """
    return os.getenv("PYTEST_CURRENT_TEST") is not None


@dataclass(frozen=True)
class PlatformFeeConfig:
    """Immutable platform fee rules shared by previews and real earnings."""

    fee_rate: Decimal
    minimum_fee: Decimal
    currency: str = "NGN"

    @property
    def percentage(self) -> Decimal:
        """Fee rate expressed as a percentage for display."""
        return self.fee_rate * 100


class Settings(BaseSettings):
    environment: str = Field(default="development", description="Deployment environment name")

    database_url: str = Field(
        default=f"sqlite:///{_PROJECT_ROOT / 'marketplace.db'}",
        description="SQLAlchemy database URL",
    )
    redis_url: str = Field(default="redis://localhost:6379", description="Celery broker URL")

    # Platform fees
    platform_fee_percentage: Decimal = Field(
        default=Decimal("15"),
        alias="PLATFORM_FEE_PERCENTAGE",
        description="Platform cut of each booking, in percent",
    )
    minimum_platform_fee: Decimal = Field(
        default=Decimal("100"),
        alias="MINIMUM_PLATFORM_FEE",
        description="Floor applied to the percentage fee, in major currency units",
    )
    platform_currency: str = Field(default="NGN", description="ISO currency code for earnings")

    # Scheduling
    platform_timezone: str = Field(
        default="Africa/Lagos",
        description="Timezone used to read slot dates and times from booking instants",
    )
    earnings_clearance_delay_hours: int = Field(
        default=24,
        ge=0,
        description="Hours an earning stays in PENDING_CLEARANCE before it can be withdrawn",
    )

    # Outbox delivery
    outbox_batch_size: int = Field(default=200, ge=1)
    outbox_max_attempts: int = Field(default=5, ge=1)

    model_config = SettingsConfigDict(
        env_file=".env" if not os.getenv("CI") else None,
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    @field_validator("platform_fee_percentage")
    @classmethod
    def _validate_fee_percentage(cls, value: Decimal) -> Decimal:
        if value < 0 or value >= 100:
            raise ValueError("PLATFORM_FEE_PERCENTAGE must be between 0 and 100")
        return value

    @field_validator("minimum_platform_fee")
    @classmethod
    def _validate_minimum_fee(cls, value: Decimal) -> Decimal:
        if value < 0:
            raise ValueError("MINIMUM_PLATFORM_FEE must not be negative")
        return value

    @field_validator("platform_currency", mode="before")
    @classmethod
    def _normalize_currency(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().upper()
        return value

    def fee_config(self) -> PlatformFeeConfig:
        """Build the immutable fee configuration from the loaded settings."""
        return PlatformFeeConfig(
            fee_rate=self.platform_fee_percentage / Decimal(100),
            minimum_fee=self.minimum_platform_fee,
            currency=self.platform_currency,
        )


settings = Settings()
logger.info(
    "[CONFIG] Platform fee: %s%% (minimum %s %s)",
    settings.platform_fee_percentage,
    settings.minimum_platform_fee,
    settings.platform_currency,
)
