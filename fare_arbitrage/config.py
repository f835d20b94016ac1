from __future__ import annotations

from functools import lru_cache

from dotenv import load_dotenv
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

load_dotenv()


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(populate_by_name=True, extra="ignore")

    amadeus_api_key: str = Field("", alias="AMADEUS_API_KEY")
    amadeus_api_secret: str = Field("", alias="AMADEUS_API_SECRET")
    amadeus_base_url: str = Field(
        "https://test.api.amadeus.com", alias="AMADEUS_BASE_URL"
    )
    request_timeout_s: float = Field(15.0, alias="REQUEST_TIMEOUT_S")
    max_results: int = Field(10, alias="MAX_RESULTS")
    default_currency: str = Field("GBP", alias="DEFAULT_CURRENCY")

    quote_cache_ttl_s: int = Field(30 * 60, alias="QUOTE_CACHE_TTL_S")
    quote_cache_max_entries: int = Field(5000, alias="QUOTE_CACHE_MAX_ENTRIES")

    rate_budget_ceiling: int = Field(1800, alias="RATE_BUDGET_CEILING")
    provider_call_limit: int = Field(2000, alias="PROVIDER_CALL_LIMIT")
    billing_reset_day: int = Field(1, alias="BILLING_RESET_DAY")

    session_ttl_minutes: int = Field(30, alias="SESSION_TTL_MINUTES")
    session_extend_minutes: int = Field(15, alias="SESSION_EXTEND_MINUTES")
    session_sweep_interval_min: int = Field(5, alias="SESSION_SWEEP_INTERVAL_MIN")

    max_workers: int = Field(8, alias="MAX_WORKERS")

    @field_validator("amadeus_base_url")
    @classmethod
    def _strip_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @field_validator("default_currency")
    @classmethod
    def _currency_code(cls, v: str) -> str:
        v = v.strip().upper()
        if len(v) != 3 or not v.isalpha():
            raise ValueError("DEFAULT_CURRENCY must be a 3-letter ISO code")
        return v

    @field_validator("request_timeout_s")
    @classmethod
    def _timeout_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("REQUEST_TIMEOUT_S must be greater than 0")
        return v

    @field_validator("max_results")
    @classmethod
    def _max_results_range(cls, v: int) -> int:
        if not 1 <= v <= 250:
            raise ValueError("MAX_RESULTS must be between 1 and 250")
        return v

    @field_validator(
        "quote_cache_ttl_s",
        "quote_cache_max_entries",
        "rate_budget_ceiling",
        "provider_call_limit",
        "session_ttl_minutes",
        "session_extend_minutes",
        "session_sweep_interval_min",
        "max_workers",
    )
    @classmethod
    def _positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("value must be greater than 0")
        return v

    @field_validator("billing_reset_day")
    @classmethod
    def _reset_day(cls, v: int) -> int:
        if not 1 <= v <= 28:
            raise ValueError("BILLING_RESET_DAY must be between 1 and 28")
        return v

    @model_validator(mode="after")
    def _ceiling_below_limit(self) -> "Settings":
        if self.rate_budget_ceiling > self.provider_call_limit:
            raise ValueError(
                "RATE_BUDGET_CEILING must not exceed PROVIDER_CALL_LIMIT"
            )
        return self


@lru_cache()
def get_settings() -> Settings:
    """Return application settings loaded from the environment."""
    return Settings()  # type: ignore[call-arg]


__all__ = ["Settings", "get_settings"]
