from __future__ import annotations

import logging
import math
from typing import Any

import requests

from pricegate.errors import QuoteUnavailableError, UpstreamRateLimitError
from pricegate.schemas.quote import NativeQuote

logger = logging.getLogger(__name__)

# minor-unit codes some exchanges quote in -> (major currency, scale)
MINOR_UNIT_CURRENCIES: dict[str, tuple[str, float]] = {
    "GBp": ("GBP", 0.01),
    "GBX": ("GBP", 0.01),
    "ZAc": ("ZAR", 0.01),
    "ZAC": ("ZAR", 0.01),
    "ILA": ("ILS", 0.01),
}


def _status_code_from_error(exc: Exception) -> int | None:
    response = getattr(exc, "response", None)
    code = getattr(response, "status_code", None)
    if isinstance(code, int):
        return code
    return None


def normalize_currency(raw: str | None) -> tuple[str | None, float]:
    if not raw:
        return None, 1.0
    code = str(raw).strip()
    if code in MINOR_UNIT_CURRENCIES:
        return MINOR_UNIT_CURRENCIES[code]
    return code.upper(), 1.0


def build_native_quote(identifier: str, raw: dict[str, Any], default_currency: str) -> NativeQuote:
    """Turn a vendor payload (price, previous_close, currency) into a NativeQuote."""
    price = raw.get("price")
    if price is None or not isinstance(price, (int, float)) or not math.isfinite(price):
        raise QuoteUnavailableError(f"non-finite price for {identifier}: {price!r}")

    currency, scale = normalize_currency(raw.get("currency"))
    currency_assumed = currency is None
    if currency_assumed:
        currency = default_currency

    previous_close = raw.get("previous_close")
    if isinstance(previous_close, (int, float)) and math.isfinite(previous_close) and previous_close != 0:
        change = price - previous_close
        change_percent = change / previous_close * 100
    else:
        previous_close = None
        change = 0.0
        change_percent = 0.0

    return NativeQuote(
        identifier=identifier,
        native_price=price * scale,
        native_change=change * scale,
        change_percent=change_percent,
        native_currency=currency,
        currency_assumed=currency_assumed,
        previous_close=None if previous_close is None else previous_close * scale,
    )


class QuoteFetcher:
    """Vendor-agnostic quote source.

    Subclasses implement `_get_raw`, returning a dict with `price`,
    `previous_close` and optionally `currency`.
    """

    name = "base"

    def __init__(self, client, default_currency: str = "USD") -> None:
        self.client = client
        self.default_currency = default_currency

    def _get_raw(self, identifier: str) -> dict[str, Any]:
        raise NotImplementedError

    def fetch_quote(self, identifier: str) -> NativeQuote:
        try:
            raw = self._get_raw(identifier)
        except (QuoteUnavailableError, UpstreamRateLimitError):
            raise
        except requests.RequestException as exc:
            if _status_code_from_error(exc) == 429:
                raise UpstreamRateLimitError(f"{self.name} throttled {identifier}") from exc
            raise QuoteUnavailableError(f"{self.name} request failed for {identifier}: {exc}") from exc
        except (KeyError, TypeError, ValueError) as exc:
            raise QuoteUnavailableError(f"{self.name} malformed payload for {identifier}: {exc}") from exc

        quote = build_native_quote(identifier, raw, self.default_currency)
        if quote.currency_assumed:
            logger.warning(
                "[QUOTE][currency_assumed] identifier=%s provider=%s currency=%s",
                identifier,
                self.name,
                quote.native_currency,
            )
        return quote

    def probe_quote(self, identifier: str) -> NativeQuote | None:
        """Fetch used as an existence check.

        Rate limits propagate; every other failure is None. The returned quote
        is reused by the caller so a resolved symbol costs one upstream call.
        """
        try:
            return self.fetch_quote(identifier)
        except UpstreamRateLimitError:
            raise
        except Exception as exc:
            logger.debug("[QUOTE][probe_miss] identifier=%s provider=%s error=%s", identifier, self.name, exc)
            return None

    def probe(self, identifier: str) -> bool:
        return self.probe_quote(identifier) is not None


class YahooChartQuoteFetcher(QuoteFetcher):
    name = "yahoo"

    def _get_raw(self, identifier: str) -> dict[str, Any]:
        return self.client.get_quote(identifier)


class AlphaVantageQuoteFetcher(QuoteFetcher):
    name = "alpha_vantage"

    def _get_raw(self, identifier: str) -> dict[str, Any]:
        return self.client.get_global_quote(identifier)
