from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, Float, PrimaryKeyConstraint, String

from pricegate.db.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StockPrice(Base):
    __tablename__ = "stock_prices"

    symbol = Column(String(32), primary_key=True)
    resolved_symbol = Column(String(32), nullable=False)
    price_native = Column(Float, nullable=False)
    price_reporting = Column(Float, nullable=False)
    change_native = Column(Float, nullable=False)
    change_reporting = Column(Float, nullable=False)
    change_percent = Column(Float, nullable=False)
    native_currency = Column(String(3), nullable=False)
    currency_assumed = Column(Boolean, nullable=False, default=False)
    exchange_rate = Column(Float, nullable=False)
    last_updated = Column(DateTime(timezone=True), nullable=False, default=_utcnow)


class ExchangeRateRow(Base):
    __tablename__ = "exchange_rates"
    __table_args__ = (PrimaryKeyConstraint("from_currency", "to_currency"),)

    from_currency = Column(String(3), nullable=False)
    to_currency = Column(String(3), nullable=False)
    rate = Column(Float, nullable=False)
    source = Column(String(32), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    last_updated = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
