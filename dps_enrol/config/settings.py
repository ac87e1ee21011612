"""Application settings using Pydantic for environment-based configuration."""
from decimal import Decimal
from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Currencies PxPay accepts for CurrencyInput
RECOGNISED_CURRENCIES = frozenset(
    {
        "AUD",
        "CAD",
        "CHF",
        "EUR",
        "FJD",
        "FRF",
        "GBP",
        "HKD",
        "JPY",
        "KWD",
        "MYR",
        "NZD",
        "PNG",
        "SBD",
        "SGD",
        "TOP",
        "USD",
        "VUV",
        "WST",
        "ZAR",
    }
)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # PxPay Configuration
    pxpay_user_id: str = Field(..., min_length=1, description="PxPay user id (PxPayUserId)")
    pxpay_key: str = Field(..., min_length=1, description="PxPay private key (PxPayKey)")
    pxpay_url: str = Field(
        default="https://sec.paymentexpress.com/pxpay/pxaccess.aspx",
        description="PxPay access endpoint",
    )
    pxpay_timeout: float = Field(
        default=30.0, gt=0, description="Gateway request timeout (seconds)"
    )

    # Site Configuration
    site_url: str = Field(default="http://localhost:8000", description="Public site root URL")
    site_shortname: str = Field(default="LMS", description="Site short name for references")
    success_path: str = Field(default="/enrol/dps/confirm", description="Success callback path")
    fail_path: str = Field(default="/enrol/dps/fail", description="Failure callback path")

    # Enrolment instance defaults
    default_cost: Decimal = Field(default=Decimal("0"), ge=0, description="Default course cost")
    default_currency: str = Field(default="NZD", description="Default currency code")
    default_enrol_period: int = Field(
        default=0, ge=0, description="Default enrolment duration (seconds, 0 = unlimited)"
    )

    # Maintenance
    stale_pending_after_hours: int = Field(
        default=24, gt=0, description="Age after which a pending transaction is reported"
    )

    # Database Configuration
    database_url: str = Field(..., description="Database connection URL")
    database_pool_size: int = Field(default=10, description="Database connection pool size")
    database_max_overflow: int = Field(default=20, description="Max database connection overflow")
    database_echo: bool = Field(default=False, description="Echo SQL queries (debug)")

    # Application Configuration
    app_name: str = Field(default="dps-enrol", description="Application name")
    app_env: str = Field(default="development", description="Environment (development/production)")
    log_level: str = Field(default="INFO", description="Logging level")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("default_currency")
    @classmethod
    def validate_default_currency(cls, v: str) -> str:
        """Validate that the default currency is one PxPay recognises."""
        code = v.upper()
        if code not in RECOGNISED_CURRENCIES:
            raise ValueError(
                f"Unrecognised currency {v!r}. Must be one of: {sorted(RECOGNISED_CURRENCIES)}"
            )
        return code

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level. Must be one of: {valid_levels}")
        return v.upper()

    @property
    def success_url(self) -> str:
        """Absolute URL PxPay redirects to after an approved payment."""
        return f"{self.site_url.rstrip('/')}{self.success_path}"

    @property
    def fail_url(self) -> str:
        """Absolute URL PxPay redirects to after a failed or cancelled payment."""
        return f"{self.site_url.rstrip('/')}{self.fail_path}"

    @property
    def is_sqlite(self) -> bool:
        """Check if the configured database is SQLite."""
        return self.database_url.startswith("sqlite")


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    """
    return Settings()
