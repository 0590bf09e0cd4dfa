from pydantic import BaseModel, Field, field_validator

from pricegate.schemas.quote import PriceRecord


class PriceBatchRequest(BaseModel):
    symbols: list[str] = Field(default_factory=list)

    @field_validator("symbols", mode="before")
    @classmethod
    def split_comma_separated(cls, value):
        if value is None:
            return []
        if isinstance(value, str):
            return [s.strip() for s in value.split(",") if s.strip()]
        return value


class PriceBatchResponse(BaseModel):
    prices: list[PriceRecord]
    currency: str
    missing: list[str]
