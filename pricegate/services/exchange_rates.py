from __future__ import annotations

import logging
import math
import threading
from datetime import datetime
from typing import Callable

from sqlalchemy.orm import sessionmaker

from pricegate.db.models import ExchangeRateRow
from pricegate.db.upsert import upsert_row
from pricegate.schemas.rate import ExchangeRate
from pricegate.services.price_cache import as_utc, utcnow

logger = logging.getLogger(__name__)


class InMemoryRateStore:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._rows: dict[tuple[str, str], ExchangeRate] = {}

    def get(self, from_currency: str, to_currency: str) -> ExchangeRate | None:
        with self._lock:
            return self._rows.get((from_currency, to_currency))

    def upsert(self, rate: ExchangeRate) -> None:
        with self._lock:
            self._rows[(rate.from_currency, rate.to_currency)] = rate


class SqlRateStore:
    """`exchange_rates` table keyed by (from_currency, to_currency)."""

    def __init__(self, session_factory: sessionmaker) -> None:
        self.session_factory = session_factory

    def get(self, from_currency: str, to_currency: str) -> ExchangeRate | None:
        with self.session_factory() as session:
            row = session.get(ExchangeRateRow, (from_currency, to_currency))
            if row is None:
                return None
            return ExchangeRate(
                from_currency=row.from_currency,
                to_currency=row.to_currency,
                rate=row.rate,
                last_updated=as_utc(row.last_updated),
                source=row.source,
                is_active=bool(row.is_active),
            )

    def upsert(self, rate: ExchangeRate) -> None:
        with self.session_factory() as session:
            upsert_row(
                session,
                ExchangeRateRow,
                rate.model_dump(),
                key_columns=["from_currency", "to_currency"],
            )
            session.commit()


class ExchangeRateProvider:
    """Resolves `currency -> reporting currency` rates.

    Lookup order: in-memory cache, persisted store, live client, fallback table.
    `rate_to_reporting` never raises.
    """

    def __init__(
        self,
        *,
        client,
        store,
        reporting_currency: str = "EUR",
        fallback_rates: dict[str, float] | None = None,
        freshness_sec: int = 1800,
        fallback_retry_sec: int = 60,
        source: str = "live",
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.client = client
        self.store = store
        self.reporting_currency = reporting_currency.upper()
        self.fallback_rates = {k.upper(): v for k, v in (fallback_rates or {}).items()}
        self.freshness_sec = freshness_sec
        self.fallback_retry_sec = fallback_retry_sec
        self.source = source
        self.clock = clock or utcnow
        self._lock = threading.Lock()
        self._memory: dict[tuple[str, str], ExchangeRate] = {}
        self._pair_locks: dict[tuple[str, str], threading.Lock] = {}

        self.live_calls = 0
        self.live_failures = 0
        self.fallbacks_used = 0

    def _age(self, rate: ExchangeRate, now: datetime) -> float:
        return (now - as_utc(rate.last_updated)).total_seconds()

    def _from_memory(self, pair: tuple[str, str], now: datetime) -> ExchangeRate | None:
        with self._lock:
            cached = self._memory.get(pair)
        if cached is None:
            return None
        ttl = self.freshness_sec if cached.is_active else self.fallback_retry_sec
        if self._age(cached, now) < ttl:
            return cached
        return None

    def _remember(self, rate: ExchangeRate) -> None:
        with self._lock:
            self._memory[(rate.from_currency, rate.to_currency)] = rate

    def _from_store(self, currency: str, now: datetime) -> ExchangeRate | None:
        try:
            row = self.store.get(currency, self.reporting_currency)
        except Exception as exc:
            logger.warning("[FX][store_read_error] currency=%s error=%s", currency, exc)
            return None
        if row is None or not row.is_active:
            return None
        if self._age(row, now) >= self.freshness_sec:
            return None
        return row

    def _pair_lock(self, pair: tuple[str, str]) -> threading.Lock:
        with self._lock:
            lock = self._pair_locks.get(pair)
            if lock is None:
                lock = self._pair_locks[pair] = threading.Lock()
            return lock

    def _count(self, name: str) -> None:
        with self._lock:
            setattr(self, name, getattr(self, name) + 1)

    def _fetch_live(self, currency: str, now: datetime) -> ExchangeRate:
        self._count("live_calls")
        value = float(self.client.get_exchange_rate(currency, self.reporting_currency))
        if not math.isfinite(value) or value <= 0:
            raise ValueError(f"non-positive rate {value!r}")
        return ExchangeRate(
            from_currency=currency,
            to_currency=self.reporting_currency,
            rate=value,
            last_updated=now,
            source=self.source,
            is_active=True,
        )

    def _fallback(self, currency: str, now: datetime) -> ExchangeRate:
        value = self.fallback_rates.get(currency)
        if value is None:
            value = self.fallback_rates.get("USD", 1.0)
            logger.warning("[FX][fallback_unknown_currency] currency=%s using=USD rate=%s", currency, value)
        self._count("fallbacks_used")
        return ExchangeRate(
            from_currency=currency,
            to_currency=self.reporting_currency,
            rate=value,
            last_updated=now,
            source="fallback",
            is_active=False,
        )

    def lookup(self, currency: str) -> ExchangeRate:
        currency = currency.strip().upper()
        now = self.clock()
        if currency == self.reporting_currency:
            return ExchangeRate(
                from_currency=currency,
                to_currency=currency,
                rate=1.0,
                last_updated=now,
                source="identity",
                is_active=True,
            )

        pair = (currency, self.reporting_currency)
        cached = self._from_memory(pair, now)
        if cached is not None:
            return cached

        # single flight per pair: waiters pick up the winner's rate from memory
        with self._pair_lock(pair):
            cached = self._from_memory(pair, now)
            if cached is not None:
                return cached
            return self._load(currency, now)

    def _load(self, currency: str, now: datetime) -> ExchangeRate:
        stored = self._from_store(currency, now)
        if stored is not None:
            self._remember(stored)
            return stored

        try:
            live = self._fetch_live(currency, now)
        except Exception as exc:
            self._count("live_failures")
            fallback = self._fallback(currency, now)
            logger.warning(
                "[FX][live_rate_error] pair=%s/%s error=%s fallback_rate=%s",
                currency,
                self.reporting_currency,
                exc,
                fallback.rate,
            )
            self._remember(fallback)
            return fallback

        try:
            self.store.upsert(live)
        except Exception as exc:
            logger.warning("[FX][store_write_error] pair=%s/%s error=%s", currency, self.reporting_currency, exc)
        self._remember(live)
        logger.info("[FX][rate_updated] pair=%s/%s rate=%s source=%s", currency, self.reporting_currency, live.rate, live.source)
        return live

    def rate_to_reporting(self, currency: str) -> float:
        return self.lookup(currency).rate

    def metrics(self) -> dict[str, int]:
        with self._lock:
            return {
                "fx_live_calls": self.live_calls,
                "fx_live_failures": self.live_failures,
                "fx_fallbacks_used": self.fallbacks_used,
            }
