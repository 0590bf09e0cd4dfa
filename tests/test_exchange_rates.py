import threading
import time
import unittest
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone

from pricegate.errors import RateUnavailableError
from pricegate.schemas.rate import ExchangeRate
from pricegate.services.exchange_rates import ExchangeRateProvider, InMemoryRateStore

NOW = datetime(2026, 1, 5, 12, 0, 0, tzinfo=timezone.utc)


class StubRateClient:
    def __init__(self, rates: dict[str, float]) -> None:
        self.rates = rates
        self.calls = 0

    def get_exchange_rate(self, from_currency: str, to_currency: str) -> float:
        self.calls += 1
        if from_currency not in self.rates:
            raise RateUnavailableError(f"no rate for {from_currency}")
        return self.rates[from_currency]


class SlowRateClient(StubRateClient):
    def __init__(self, rates: dict[str, float], delay: float = 0.2) -> None:
        super().__init__(rates)
        self.delay = delay
        self._lock = threading.Lock()

    def get_exchange_rate(self, from_currency: str, to_currency: str) -> float:
        with self._lock:
            self.calls += 1
        time.sleep(self.delay)
        return self.rates[from_currency]


class BrokenStore:
    def get(self, from_currency, to_currency):
        raise RuntimeError("db down")

    def upsert(self, rate):
        raise RuntimeError("db down")


FALLBACKS = {"USD": 0.92, "SEK": 0.087, "GBP": 1.17, "JPY": 0.0062}


def _provider(client, store=None, clock=None, **kwargs):
    return ExchangeRateProvider(
        client=client,
        store=store if store is not None else InMemoryRateStore(),
        reporting_currency="EUR",
        fallback_rates=FALLBACKS,
        clock=clock or (lambda: NOW),
        **kwargs,
    )


class ExchangeRateProviderTest(unittest.TestCase):
    def test_reporting_currency_is_identity_without_io(self):
        client = StubRateClient({})
        provider = _provider(client)

        self.assertEqual(provider.rate_to_reporting("EUR"), 1.0)
        self.assertEqual(provider.rate_to_reporting("eur"), 1.0)
        self.assertEqual(client.calls, 0)

    def test_live_rate_is_written_through_to_store(self):
        store = InMemoryRateStore()
        client = StubRateClient({"USD": 0.9})
        provider = _provider(client, store=store, source="frankfurter")

        self.assertEqual(provider.rate_to_reporting("USD"), 0.9)

        row = store.get("USD", "EUR")
        self.assertEqual(row.rate, 0.9)
        self.assertEqual(row.source, "frankfurter")
        self.assertTrue(row.is_active)
        self.assertEqual(row.last_updated, NOW)

    def test_memory_cache_avoids_second_live_call(self):
        client = StubRateClient({"USD": 0.9})
        provider = _provider(client)

        provider.rate_to_reporting("USD")
        provider.rate_to_reporting("USD")

        self.assertEqual(client.calls, 1)

    def test_memory_cache_expires_after_window(self):
        clock = {"now": NOW}
        client = StubRateClient({"USD": 0.9})
        store = InMemoryRateStore()
        provider = _provider(client, store=store, clock=lambda: clock["now"])

        provider.rate_to_reporting("USD")
        clock["now"] = NOW + timedelta(minutes=31)
        provider.rate_to_reporting("USD")

        self.assertEqual(client.calls, 2)

    def test_fresh_persisted_rate_is_used_before_live_call(self):
        store = InMemoryRateStore()
        store.upsert(
            ExchangeRate(
                from_currency="SEK",
                to_currency="EUR",
                rate=0.088,
                last_updated=NOW - timedelta(minutes=10),
                source="frankfurter",
                is_active=True,
            )
        )
        client = StubRateClient({"SEK": 0.5})
        provider = _provider(client, store=store)

        self.assertEqual(provider.rate_to_reporting("SEK"), 0.088)
        self.assertEqual(client.calls, 0)

    def test_inactive_or_stale_persisted_rate_is_ignored(self):
        store = InMemoryRateStore()
        store.upsert(
            ExchangeRate(
                from_currency="SEK",
                to_currency="EUR",
                rate=0.088,
                last_updated=NOW - timedelta(minutes=10),
                source="frankfurter",
                is_active=False,
            )
        )
        store.upsert(
            ExchangeRate(
                from_currency="GBP",
                to_currency="EUR",
                rate=1.1,
                last_updated=NOW - timedelta(hours=2),
                source="frankfurter",
                is_active=True,
            )
        )
        client = StubRateClient({"SEK": 0.09, "GBP": 1.16})
        provider = _provider(client, store=store)

        self.assertEqual(provider.rate_to_reporting("SEK"), 0.09)
        self.assertEqual(provider.rate_to_reporting("GBP"), 1.16)
        self.assertEqual(client.calls, 2)

    def test_live_failure_returns_configured_fallback(self):
        provider = _provider(StubRateClient({}))

        for currency, expected in FALLBACKS.items():
            self.assertEqual(provider.rate_to_reporting(currency), expected)

        rate = provider.lookup("USD")
        self.assertEqual(rate.source, "fallback")
        self.assertFalse(rate.is_active)

    def test_unknown_currency_falls_back_to_usd_rate(self):
        provider = _provider(StubRateClient({}))

        self.assertEqual(provider.rate_to_reporting("XYZ"), 0.92)

    def test_non_positive_live_rate_falls_back(self):
        store = InMemoryRateStore()
        provider = _provider(StubRateClient({"USD": 0.0}), store=store)

        self.assertEqual(provider.rate_to_reporting("USD"), 0.92)
        self.assertIsNone(store.get("USD", "EUR"))

    def test_fallback_is_retried_after_short_window(self):
        clock = {"now": NOW}
        client = StubRateClient({})
        provider = _provider(client, clock=lambda: clock["now"], fallback_retry_sec=60)

        provider.rate_to_reporting("USD")
        provider.rate_to_reporting("USD")
        self.assertEqual(client.calls, 1)

        clock["now"] = NOW + timedelta(seconds=61)
        provider.rate_to_reporting("USD")
        self.assertEqual(client.calls, 2)

    def test_broken_store_degrades_to_live_rate(self):
        client = StubRateClient({"USD": 0.91})
        provider = _provider(client, store=BrokenStore())

        self.assertEqual(provider.rate_to_reporting("USD"), 0.91)
        self.assertEqual(provider.metrics()["fx_live_calls"], 1)

    def test_concurrent_lookups_share_one_live_call_per_pair(self):
        client = SlowRateClient({"USD": 0.9, "SEK": 0.088})
        provider = _provider(client)

        with ThreadPoolExecutor(max_workers=6) as pool:
            rates = list(pool.map(provider.rate_to_reporting, ["USD", "USD", "USD", "SEK", "SEK", "USD"]))

        self.assertEqual(rates, [0.9, 0.9, 0.9, 0.088, 0.088, 0.9])
        self.assertEqual(client.calls, 2)
        self.assertEqual(provider.metrics()["fx_live_calls"], 2)


if __name__ == "__main__":
    unittest.main()
