"""
Pricing engine configuration management with environment variables.

This module provides centralized configuration management using Pydantic
BaseSettings for type-safe environment variable handling with validation
and default values.
"""

from decimal import Decimal
from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Pricing engine settings with environment variable support.

    All settings can be overridden via environment variables with the
    PRICING_ prefix (e.g., PRICING_DEFAULT_TAX_PERCENTAGE, PRICING_LOG_LEVEL).
    """

    model_config = SettingsConfigDict(
        env_prefix="PRICING_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Logging Configuration
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Application logging level",
    )

    # Environment Configuration
    environment: Literal["development", "staging", "production"] = Field(
        default="development",
        description="Application environment",
    )

    # Order Defaults
    default_tax_percentage: Decimal = Field(
        default=Decimal("18"),
        ge=0,
        le=100,
        description="Tax percentage applied to new orders",
    )

    default_delivery_days: int = Field(
        default=30,
        ge=0,
        description="Days between invoice date and default delivery date",
    )

    invoice_number_prefix: str = Field(
        default="INV",
        min_length=1,
        max_length=10,
        description="Prefix for generated invoice numbers",
    )

    # Reconstruction Heuristics
    reconstruction_markup: Decimal = Field(
        default=Decimal("1.15"),
        ge=1,
        description="Markup applied to a selling price when no rate is stored",
    )

    line_total_epsilon: Decimal = Field(
        default=Decimal("0.01"),
        ge=0,
        description="Tolerance for treating a stored final price as a line total",
    )

    # Modification Detection
    global_discount_tolerance: Decimal = Field(
        default=Decimal("0.01"),
        ge=0,
        description="Tolerance when comparing global discount to the snapshot",
    )

    @field_validator("invoice_number_prefix")
    @classmethod
    def validate_invoice_number_prefix(cls, v: str) -> str:
        """
        Normalize invoice number prefix.

        Args:
            v: Prefix value

        Returns:
            Upper-cased prefix

        Raises:
            ValueError: If prefix contains a separator character
        """
        if "-" in v:
            raise ValueError("Invoice number prefix cannot contain '-'")
        return v.upper()

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == "production"

    @property
    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.environment == "development"


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    This function uses lru_cache to ensure settings are loaded only once
    and reused across the application lifecycle.

    Returns:
        Settings: Application settings instance
    """
    return Settings()
