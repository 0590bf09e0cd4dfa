import json
import os
from functools import lru_cache
from typing import Literal

from pydantic import BaseModel, field_validator, model_validator

DEFAULT_EXCHANGE_SUFFIXES = [".L", ".PA", ".AS", ".ST", ".MI", ".DE"]

DEFAULT_SYMBOL_OVERRIDES: dict[str, list[str]] = {
    "CSPX": ["CSPX.L", "CSPX.AS"],
    "EQQQ": ["EQQQ.L", "EQQQ.DE"],
    "MJPY": ["MJPY.L"],
    "NCC": ["NCC-B.ST", "NCC-A.ST"],
    "AAXN": ["AXON"],
}

# 1 unit of currency -> EUR
DEFAULT_FALLBACK_RATES: dict[str, float] = {
    "USD": 0.92,
    "SEK": 0.087,
    "GBP": 1.17,
    "JPY": 0.0062,
    "CHF": 1.05,
    "NOK": 0.085,
    "DKK": 0.134,
    "CAD": 0.68,
    "AUD": 0.61,
}


def _csv(raw: str | None) -> list[str] | None:
    if raw is None:
        return None
    return [s.strip() for s in raw.split(",") if s.strip()]


def _blank_to_none(raw: str | None) -> str | None:
    if raw is None or not raw.strip():
        return None
    return raw


class Settings(BaseModel):
    QUOTE_PROVIDER: Literal["yahoo", "alpha_vantage"] = "yahoo"
    RATE_PROVIDER: Literal["frankfurter", "alpha_vantage"] = "frankfurter"
    ALPHA_VANTAGE_API_KEY: str | None = None

    REPORTING_CURRENCY: str = "EUR"
    DEFAULT_QUOTE_CURRENCY: str = "USD"

    QUOTE_FRESHNESS_SEC: int = 1800
    RATE_FRESHNESS_SEC: int = 1800
    RATE_FALLBACK_RETRY_SEC: int = 60
    MIN_BATCH_INTERVAL_SEC: int = 30
    NEGATIVE_CACHE_TTL_SEC: int = 0
    UPSTREAM_TIMEOUT_SEC: float = 5.0
    FETCH_WORKERS: int = 4

    DATABASE_URL: str = "sqlite:///./pricegate.db"
    LOG_LEVEL: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    EXCHANGE_SUFFIXES: list[str] = list(DEFAULT_EXCHANGE_SUFFIXES)
    SYMBOL_OVERRIDES: dict[str, list[str]] = dict(DEFAULT_SYMBOL_OVERRIDES)
    FALLBACK_RATES: dict[str, float] = dict(DEFAULT_FALLBACK_RATES)
    CORS_ALLOW_ORIGINS: list[str] = ["*"]

    @field_validator("REPORTING_CURRENCY", "DEFAULT_QUOTE_CURRENCY")
    @classmethod
    def normalize_currency(cls, value: str) -> str:
        value = value.strip().upper()
        if len(value) != 3:
            raise ValueError(f"invalid currency code: {value!r}")
        return value

    @field_validator("SYMBOL_OVERRIDES", "FALLBACK_RATES", mode="before")
    @classmethod
    def parse_json_mapping(cls, value):
        if not isinstance(value, str):
            return value
        try:
            return json.loads(value)
        except json.JSONDecodeError as exc:
            raise ValueError(f"expected a JSON object: {exc}") from exc

    @field_validator("SYMBOL_OVERRIDES")
    @classmethod
    def normalize_overrides(cls, value: dict[str, list[str]]) -> dict[str, list[str]]:
        return {k.strip().upper(): [c.strip().upper() for c in v if c.strip()] for k, v in value.items()}

    @field_validator("FALLBACK_RATES")
    @classmethod
    def validate_fallback_rates(cls, value: dict[str, float]) -> dict[str, float]:
        out = {k.strip().upper(): float(v) for k, v in value.items()}
        bad = [k for k, v in out.items() if v <= 0]
        if bad:
            raise ValueError(f"fallback rates must be positive: {','.join(bad)}")
        return out

    @field_validator("UPSTREAM_TIMEOUT_SEC")
    @classmethod
    def validate_timeout(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("UPSTREAM_TIMEOUT_SEC must be positive")
        return value

    @field_validator("FETCH_WORKERS")
    @classmethod
    def validate_workers(cls, value: int) -> int:
        if value < 1:
            raise ValueError("FETCH_WORKERS must be >= 1")
        return value

    @model_validator(mode="after")
    def require_api_key_for_alpha_vantage(self) -> "Settings":
        uses_av = "alpha_vantage" in (self.QUOTE_PROVIDER, self.RATE_PROVIDER)
        if uses_av and not self.ALPHA_VANTAGE_API_KEY:
            raise ValueError("ALPHA_VANTAGE_API_KEY is required for alpha_vantage providers")
        return self

    @classmethod
    def from_env(cls) -> "Settings":
        raw = {
            "QUOTE_PROVIDER": os.getenv("QUOTE_PROVIDER"),
            "RATE_PROVIDER": os.getenv("RATE_PROVIDER"),
            "ALPHA_VANTAGE_API_KEY": os.getenv("ALPHA_VANTAGE_API_KEY"),
            "REPORTING_CURRENCY": os.getenv("REPORTING_CURRENCY"),
            "DEFAULT_QUOTE_CURRENCY": os.getenv("DEFAULT_QUOTE_CURRENCY"),
            "QUOTE_FRESHNESS_SEC": os.getenv("QUOTE_FRESHNESS_SEC"),
            "RATE_FRESHNESS_SEC": os.getenv("RATE_FRESHNESS_SEC"),
            "RATE_FALLBACK_RETRY_SEC": os.getenv("RATE_FALLBACK_RETRY_SEC"),
            "MIN_BATCH_INTERVAL_SEC": os.getenv("MIN_BATCH_INTERVAL_SEC"),
            "NEGATIVE_CACHE_TTL_SEC": os.getenv("NEGATIVE_CACHE_TTL_SEC"),
            "UPSTREAM_TIMEOUT_SEC": os.getenv("UPSTREAM_TIMEOUT_SEC"),
            "FETCH_WORKERS": os.getenv("FETCH_WORKERS"),
            "DATABASE_URL": os.getenv("DATABASE_URL"),
            "LOG_LEVEL": os.getenv("LOG_LEVEL"),
            "EXCHANGE_SUFFIXES": _csv(os.getenv("EXCHANGE_SUFFIXES")),
            "SYMBOL_OVERRIDES": _blank_to_none(os.getenv("SYMBOL_OVERRIDES")),
            "FALLBACK_RATES": _blank_to_none(os.getenv("FALLBACK_RATES")),
            "CORS_ALLOW_ORIGINS": _csv(os.getenv("CORS_ALLOW_ORIGINS")),
        }
        # unset env keeps the field default
        return cls.model_validate({k: v for k, v in raw.items() if v is not None})


@lru_cache
def get_settings() -> Settings:
    return Settings.from_env()
