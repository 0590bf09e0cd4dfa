from __future__ import annotations

import threading
from datetime import datetime, timezone
from typing import Callable

from sqlalchemy.orm import sessionmaker

from pricegate.db.models import StockPrice
from pricegate.db.upsert import upsert_row
from pricegate.schemas.quote import CachedQuote


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    # sqlite hands back naive datetimes
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class PriceCache:
    """Quote cache keyed by canonical symbol with a freshness window.

    `get` only returns rows younger than `freshness_sec`; `peek` ignores age.
    `put` is a last-write-wins upsert; rows are never evicted.
    """

    def __init__(self, freshness_sec: int = 1800, clock: Callable[[], datetime] | None = None) -> None:
        self.freshness_sec = freshness_sec
        self.clock = clock or utcnow

    def is_fresh(self, row: CachedQuote, now: datetime | None = None) -> bool:
        ref = now or self.clock()
        age = (ref - as_utc(row.last_updated)).total_seconds()
        return age < self.freshness_sec

    def get(self, symbol: str, now: datetime | None = None) -> CachedQuote | None:
        row = self.peek(symbol)
        if row is None or not self.is_fresh(row, now):
            return None
        return row

    def peek(self, symbol: str) -> CachedQuote | None:
        raise NotImplementedError

    def put(self, symbol: str, quote: CachedQuote) -> None:
        raise NotImplementedError


class InMemoryPriceCache(PriceCache):
    def __init__(self, freshness_sec: int = 1800, clock: Callable[[], datetime] | None = None) -> None:
        super().__init__(freshness_sec=freshness_sec, clock=clock)
        self._lock = threading.Lock()
        self._rows: dict[str, CachedQuote] = {}

    def peek(self, symbol: str) -> CachedQuote | None:
        with self._lock:
            return self._rows.get(symbol)

    def put(self, symbol: str, quote: CachedQuote) -> None:
        with self._lock:
            self._rows[symbol] = quote


class SqlPriceCache(PriceCache):
    """`stock_prices` table backed cache."""

    def __init__(
        self,
        session_factory: sessionmaker,
        freshness_sec: int = 1800,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        super().__init__(freshness_sec=freshness_sec, clock=clock)
        self.session_factory = session_factory

    def peek(self, symbol: str) -> CachedQuote | None:
        with self.session_factory() as session:
            row = session.get(StockPrice, symbol)
            if row is None:
                return None
            return CachedQuote(
                symbol=row.symbol,
                resolved_symbol=row.resolved_symbol,
                native_price=row.price_native,
                reporting_price=row.price_reporting,
                native_change=row.change_native,
                reporting_change=row.change_reporting,
                change_percent=row.change_percent,
                native_currency=row.native_currency,
                currency_assumed=bool(row.currency_assumed),
                exchange_rate=row.exchange_rate,
                last_updated=as_utc(row.last_updated),
            )

    def put(self, symbol: str, quote: CachedQuote) -> None:
        values = {
            "symbol": symbol,
            "resolved_symbol": quote.resolved_symbol,
            "price_native": quote.native_price,
            "price_reporting": quote.reporting_price,
            "change_native": quote.native_change,
            "change_reporting": quote.reporting_change,
            "change_percent": quote.change_percent,
            "native_currency": quote.native_currency,
            "currency_assumed": quote.currency_assumed,
            "exchange_rate": quote.exchange_rate,
            "last_updated": quote.last_updated,
        }
        with self.session_factory() as session:
            upsert_row(session, StockPrice, values, key_columns=["symbol"])
            session.commit()
