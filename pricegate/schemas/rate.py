from datetime import datetime

from pydantic import BaseModel, ConfigDict, field_validator
from pydantic.alias_generators import to_camel


class ExchangeRate(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    from_currency: str
    to_currency: str
    rate: float
    last_updated: datetime
    source: str
    is_active: bool = True

    @field_validator("rate")
    @classmethod
    def rate_must_be_positive(cls, value: float) -> float:
        if not value > 0:
            raise ValueError("rate must be > 0")
        return value
