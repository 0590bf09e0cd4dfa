from __future__ import annotations

from sqlalchemy.orm import sessionmaker

from pricegate.config.settings import Settings
from pricegate.integrations.alpha_vantage import AlphaVantageClient
from pricegate.integrations.frankfurter import FrankfurterClient
from pricegate.integrations.yahoo_chart import YahooChartClient
from pricegate.services.exchange_rates import ExchangeRateProvider, SqlRateStore
from pricegate.services.price_cache import SqlPriceCache
from pricegate.services.price_gateway import PriceGatewayService
from pricegate.services.quote_fetcher import (
    AlphaVantageQuoteFetcher,
    QuoteFetcher,
    YahooChartQuoteFetcher,
)
from pricegate.services.symbol_resolver import SymbolResolver


def build_quote_fetcher(settings: Settings, session=None) -> QuoteFetcher:
    timeout = settings.UPSTREAM_TIMEOUT_SEC
    if settings.QUOTE_PROVIDER == "alpha_vantage":
        client = AlphaVantageClient(settings.ALPHA_VANTAGE_API_KEY, session=session, timeout=timeout)
        return AlphaVantageQuoteFetcher(client, default_currency=settings.DEFAULT_QUOTE_CURRENCY)
    client = YahooChartClient(session=session, timeout=timeout)
    return YahooChartQuoteFetcher(client, default_currency=settings.DEFAULT_QUOTE_CURRENCY)


def build_rate_provider(settings: Settings, session_factory: sessionmaker, session=None) -> ExchangeRateProvider:
    timeout = settings.UPSTREAM_TIMEOUT_SEC
    if settings.RATE_PROVIDER == "alpha_vantage":
        client = AlphaVantageClient(settings.ALPHA_VANTAGE_API_KEY, session=session, timeout=timeout)
    else:
        client = FrankfurterClient(session=session, timeout=timeout)
    return ExchangeRateProvider(
        client=client,
        store=SqlRateStore(session_factory),
        reporting_currency=settings.REPORTING_CURRENCY,
        fallback_rates=settings.FALLBACK_RATES,
        freshness_sec=settings.RATE_FRESHNESS_SEC,
        fallback_retry_sec=settings.RATE_FALLBACK_RETRY_SEC,
        source=settings.RATE_PROVIDER,
    )


def build_price_gateway(settings: Settings, session_factory: sessionmaker, session=None) -> PriceGatewayService:
    fetcher = build_quote_fetcher(settings, session=session)
    return PriceGatewayService(
        price_cache=SqlPriceCache(session_factory, freshness_sec=settings.QUOTE_FRESHNESS_SEC),
        resolver=SymbolResolver(
            fetcher=fetcher,
            overrides=settings.SYMBOL_OVERRIDES,
            exchange_suffixes=settings.EXCHANGE_SUFFIXES,
        ),
        rate_provider=build_rate_provider(settings, session_factory, session=session),
        min_batch_interval_sec=settings.MIN_BATCH_INTERVAL_SEC,
        negative_cache_ttl_sec=settings.NEGATIVE_CACHE_TTL_SEC,
        max_workers=settings.FETCH_WORKERS,
    )
