"""Application configuration utilities."""

from __future__ import annotations

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings derived from environment variables."""

    database_url: str = Field(
        default="sqlite:///./gym_billing.db", alias="DATABASE_URL"
    )
    invoice_number_prefix: str = Field(default="INV", alias="INVOICE_NUMBER_PREFIX")
    invoice_number_padding: int = Field(default=6, alias="INVOICE_NUMBER_PADDING")
    strict_discount_types: bool = Field(default=True, alias="STRICT_DISCOUNT_TYPES")
    default_due_days: int | None = Field(default=None, alias="DEFAULT_DUE_DAYS")
    currency: str = Field(default="INR", alias="CURRENCY")

    model_config = SettingsConfigDict(
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
    )

    def format_invoice_number(self, value: int) -> str:
        """Return the display form of a branch sequence value."""

        return f"{self.invoice_number_prefix}-{value:0{self.invoice_number_padding}d}"


@lru_cache()
def get_settings() -> Settings:
    """Return cached settings instance."""

    return Settings()


__all__ = ["Settings", "get_settings"]
