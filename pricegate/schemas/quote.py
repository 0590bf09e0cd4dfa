from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class PriceRecord(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    symbol: str
    price: float
    change: float
    change_percent: float
    last_updated: datetime


class NativeQuote(BaseModel):
    identifier: str
    native_price: float
    native_change: float
    change_percent: float
    native_currency: str
    currency_assumed: bool = False
    previous_close: float | None = None


class CachedQuote(BaseModel):
    symbol: str
    resolved_symbol: str
    native_price: float
    reporting_price: float
    native_change: float
    reporting_change: float
    change_percent: float
    native_currency: str
    currency_assumed: bool = False
    exchange_rate: float
    last_updated: datetime

    def to_record(self) -> PriceRecord:
        return PriceRecord(
            symbol=self.symbol,
            price=self.reporting_price,
            change=self.reporting_change,
            change_percent=self.change_percent,
            last_updated=self.last_updated,
        )


class BatchMeta(BaseModel):
    requested_count: int = 0
    cache_hit_count: int = 0
    fetched_count: int = 0
    snapshot_count: int = 0
    missing_symbols: list[str] = Field(default_factory=list)
    suppressed: bool = False
    rate_limited: bool = False

    @property
    def missing_count(self) -> int:
        return len(self.missing_symbols)
