from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from typing import Callable, Iterable

from pricegate.errors import InvalidBatchError, QuoteUnavailableError, UpstreamRateLimitError
from pricegate.schemas.quote import BatchMeta, CachedQuote, PriceRecord
from pricegate.services.price_cache import PriceCache, utcnow

logger = logging.getLogger(__name__)

_FETCHED = "fetched"
_FAILED = "failed"
_RATE_LIMITED = "rate_limited"
_SKIPPED = "skipped"


def normalize_symbols(symbols: Iterable[str] | None) -> list[str]:
    unique: list[str] = []
    seen: set[str] = set()
    for symbol in symbols or []:
        value = str(symbol).strip().upper()
        if not value or value in seen:
            continue
        seen.add(value)
        unique.append(value)
    return unique


class PriceGatewayService:
    """Cache-first batch price lookup with per-symbol failure isolation."""

    def __init__(
        self,
        *,
        price_cache: PriceCache,
        resolver,
        rate_provider,
        min_batch_interval_sec: float = 30,
        negative_cache_ttl_sec: float = 0,
        max_workers: int = 4,
        clock: Callable[[], datetime] | None = None,
        monotonic: Callable[[], float] | None = None,
    ) -> None:
        self.price_cache = price_cache
        self.resolver = resolver
        self.rate_provider = rate_provider
        self.min_batch_interval_sec = min_batch_interval_sec
        self.negative_cache_ttl_sec = negative_cache_ttl_sec
        self.max_workers = max_workers
        self.clock = clock or utcnow
        self.monotonic = monotonic or time.monotonic

        self._lock = threading.Lock()
        self._last_fetch_started: float | None = None
        self._last_snapshot: dict[str, PriceRecord] = {}
        self._failed_symbol_until: dict[str, float] = {}
        self._currency_assumed: set[str] = set()

        self.batches = 0
        self.cache_hits = 0
        self.upstream_fetches = 0
        self.failed_symbols = 0
        self.suppressed_batches = 0
        self.rate_limited_batches = 0
        self.cache_read_errors = 0
        self.cache_write_errors = 0
        self.last_meta = BatchMeta()

    # negative cache

    def _prune_expired_failures(self, now: float) -> None:
        with self._lock:
            expired = [s for s, until in self._failed_symbol_until.items() if until <= now]
            for s in expired:
                self._failed_symbol_until.pop(s, None)

    def _is_failure_cooldown(self, symbol: str, now: float) -> bool:
        with self._lock:
            return now < self._failed_symbol_until.get(symbol, 0.0)

    def _mark_failure(self, symbol: str) -> None:
        if self.negative_cache_ttl_sec <= 0:
            return
        with self._lock:
            self._failed_symbol_until[symbol] = self.monotonic() + self.negative_cache_ttl_sec

    # cache access

    def _cached(self, symbol: str) -> CachedQuote | None:
        try:
            return self.price_cache.get(symbol)
        except Exception as exc:
            with self._lock:
                self.cache_read_errors += 1
            logger.warning("[QUOTE][cache_read_error] symbol=%s error=%s", symbol, exc)
            return None

    def _last_known(self, symbol: str) -> PriceRecord | None:
        with self._lock:
            record = self._last_snapshot.get(symbol)
        if record is not None:
            return record
        try:
            row = self.price_cache.peek(symbol)
        except Exception as exc:
            logger.warning("[QUOTE][cache_read_error] symbol=%s error=%s", symbol, exc)
            return None
        return None if row is None else row.to_record()

    def _remember(self, records: list[PriceRecord]) -> None:
        with self._lock:
            for record in records:
                self._last_snapshot[record.symbol] = record

    # upstream

    def _build_quote(self, symbol: str) -> CachedQuote:
        resolved = self.resolver.resolve_with_quote(symbol)
        if resolved is None:
            raise QuoteUnavailableError(f"unresolved symbol {symbol}")
        identifier, quote = resolved

        with self._lock:
            self.upstream_fetches += 1
        rate = self.rate_provider.rate_to_reporting(quote.native_currency)

        if quote.currency_assumed:
            with self._lock:
                self._currency_assumed.add(symbol)

        return CachedQuote(
            symbol=symbol,
            resolved_symbol=identifier,
            native_price=quote.native_price,
            reporting_price=quote.native_price * rate,
            native_change=quote.native_change,
            reporting_change=quote.native_change * rate,
            change_percent=quote.change_percent,
            native_currency=quote.native_currency,
            currency_assumed=quote.currency_assumed,
            exchange_rate=rate,
            last_updated=self.clock(),
        )

    def _process_miss(self, symbol: str, stop: threading.Event) -> tuple[str, PriceRecord | None]:
        if stop.is_set():
            return _SKIPPED, None
        try:
            cached = self._build_quote(symbol)
        except UpstreamRateLimitError as exc:
            stop.set()
            logger.warning("[QUOTE][rate_limited] symbol=%s error=%s", symbol, exc)
            return _RATE_LIMITED, None
        except Exception as exc:
            self._mark_failure(symbol)
            logger.warning("[QUOTE][symbol_failed] symbol=%s error=%s", symbol, exc)
            return _FAILED, None

        try:
            self.price_cache.put(symbol, cached)
        except Exception as exc:
            with self._lock:
                self.cache_write_errors += 1
            logger.warning("[QUOTE][cache_write_error] symbol=%s error=%s", symbol, exc)
        return _FETCHED, cached.to_record()

    def _should_suppress(self, now: float) -> bool:
        with self._lock:
            last = self._last_fetch_started
            if last is not None and now - last < self.min_batch_interval_sec:
                return True
            self._last_fetch_started = now
            return False

    # entry points

    def get_price_batch(self, symbols: Iterable[str] | None) -> tuple[list[PriceRecord], BatchMeta]:
        unique_symbols = normalize_symbols(symbols)
        if not unique_symbols:
            raise InvalidBatchError("NO_SYMBOLS_PROVIDED")

        mono_now = self.monotonic()
        self._prune_expired_failures(mono_now)
        meta = BatchMeta(requested_count=len(unique_symbols))

        hits: list[PriceRecord] = []
        misses: list[str] = []
        for symbol in unique_symbols:
            cached = self._cached(symbol)
            if cached is not None:
                hits.append(cached.to_record())
            else:
                misses.append(symbol)
        meta.cache_hit_count = len(hits)

        fetchable: list[str] = []
        for symbol in misses:
            if self._is_failure_cooldown(symbol, mono_now):
                meta.missing_symbols.append(symbol)
            else:
                fetchable.append(symbol)

        fresh: list[PriceRecord] = []
        deferred: list[str] = []
        if fetchable and self._should_suppress(mono_now):
            meta.suppressed = True
            deferred = fetchable
        elif fetchable:
            stop = threading.Event()
            workers = max(1, min(self.max_workers, len(fetchable)))
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="quote-fetch") as pool:
                futures = [pool.submit(self._process_miss, s, stop) for s in fetchable]
                outcomes = [f.result() for f in futures]
            for symbol, (status, record) in zip(fetchable, outcomes):
                if status == _FETCHED:
                    fresh.append(record)
                elif status in (_RATE_LIMITED, _SKIPPED):
                    deferred.append(symbol)
                else:
                    meta.missing_symbols.append(symbol)
            meta.rate_limited = stop.is_set()
        meta.fetched_count = len(fresh)

        snapshot: list[PriceRecord] = []
        for symbol in deferred:
            record = self._last_known(symbol)
            if record is not None:
                snapshot.append(record)
            else:
                meta.missing_symbols.append(symbol)
        meta.snapshot_count = len(snapshot)

        out = hits + fresh + snapshot
        self._remember(hits + fresh)
        missing = set(meta.missing_symbols)
        meta.missing_symbols = [s for s in unique_symbols if s in missing]

        with self._lock:
            self.batches += 1
            self.cache_hits += meta.cache_hit_count
            self.failed_symbols += meta.missing_count
            if meta.suppressed:
                self.suppressed_batches += 1
            if meta.rate_limited:
                self.rate_limited_batches += 1
            self.last_meta = meta

        logger.info(
            "[QUOTE][batch_resolve] target_count=%d cache_hits=%d fetched=%d snapshot=%d "
            "final_count=%d missing=%s suppressed=%d rate_limited=%d",
            meta.requested_count,
            meta.cache_hit_count,
            meta.fetched_count,
            meta.snapshot_count,
            len(out),
            ",".join(meta.missing_symbols),
            int(meta.suppressed),
            int(meta.rate_limited),
        )
        return out, meta

    def get_prices(self, symbols: Iterable[str] | None) -> list[PriceRecord]:
        records, _ = self.get_price_batch(symbols)
        return records

    def metrics(self) -> dict:
        with self._lock:
            out = {
                "batches": self.batches,
                "cache_hits": self.cache_hits,
                "upstream_fetches": self.upstream_fetches,
                "failed_symbols": self.failed_symbols,
                "suppressed_batches": self.suppressed_batches,
                "rate_limited_batches": self.rate_limited_batches,
                "cache_read_errors": self.cache_read_errors,
                "cache_write_errors": self.cache_write_errors,
                "negative_cached_symbols": len(self._failed_symbol_until),
                "currency_assumed_symbols": sorted(self._currency_assumed),
                "last_batch": self.last_meta.model_dump(),
            }
        metrics_fn = getattr(self.rate_provider, "metrics", None)
        if callable(metrics_fn):
            out.update(metrics_fn())
        return out
