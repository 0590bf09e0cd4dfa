from __future__ import annotations

from typing import Any, Dict, Optional

import requests

from pricegate.errors import QuoteUnavailableError, RateUnavailableError, UpstreamRateLimitError


class AlphaVantageClient:
    """Alpha Vantage REST client for GLOBAL_QUOTE and CURRENCY_EXCHANGE_RATE."""

    BASE_URL = "https://www.alphavantage.co/query"
    _THROTTLE_KEYS = ("Note", "Information")

    def __init__(
        self,
        api_key: str,
        session: Optional[Any] = None,
        base_url: Optional[str] = None,
        timeout: float = 5.0,
    ) -> None:
        if not api_key:
            raise ValueError("api_key is required")
        self.api_key = api_key
        self.base_url = base_url or self.BASE_URL
        self.session = session or requests
        self.timeout = timeout

    @staticmethod
    def _to_float(value: Any, default: Optional[float] = None) -> Optional[float]:
        try:
            if value is None or value == "":
                return default
            return float(str(value).strip().rstrip("%"))
        except (TypeError, ValueError):
            return default

    def _query(self, params: Dict[str, str]) -> Dict[str, Any]:
        response = self.session.get(
            self.base_url,
            params={**params, "apikey": self.api_key},
            timeout=self.timeout,
        )
        if response.status_code == 429:
            raise UpstreamRateLimitError("alpha_vantage http 429")
        response.raise_for_status()
        payload = response.json()
        if not isinstance(payload, dict):
            raise ValueError("unexpected alpha vantage payload")
        for key in self._THROTTLE_KEYS:
            note = payload.get(key)
            if note:
                raise UpstreamRateLimitError(f"alpha_vantage throttled: {note}")
        return payload

    def get_global_quote(self, symbol: str) -> Dict[str, Any]:
        payload = self._query({"function": "GLOBAL_QUOTE", "symbol": symbol})
        if payload.get("Error Message"):
            raise QuoteUnavailableError(f"alpha_vantage error for {symbol}: {payload['Error Message']}")
        quote = payload.get("Global Quote") or {}
        if not quote.get("05. price"):
            raise QuoteUnavailableError(f"no quote data for {symbol}")

        return {
            "symbol": str(quote.get("01. symbol") or symbol),
            "price": self._to_float(quote.get("05. price")),
            "previous_close": self._to_float(quote.get("08. previous close")),
            "currency": None,
        }

    def get_exchange_rate(self, from_currency: str, to_currency: str) -> float:
        try:
            payload = self._query(
                {
                    "function": "CURRENCY_EXCHANGE_RATE",
                    "from_currency": from_currency,
                    "to_currency": to_currency,
                }
            )
        except UpstreamRateLimitError as exc:
            raise RateUnavailableError(str(exc)) from exc
        block = payload.get("Realtime Currency Exchange Rate") or {}
        rate = self._to_float(block.get("5. Exchange Rate"))
        if rate is None:
            raise RateUnavailableError(f"invalid exchange rate response for {from_currency}/{to_currency}")
        return rate
