from __future__ import annotations

from typing import Any, Dict, Optional

import requests

from pricegate.errors import QuoteUnavailableError, UpstreamRateLimitError


class YahooChartClient:
    """Yahoo Finance chart endpoint client (price, previous close, currency)."""

    BASE_URL = "https://query1.finance.yahoo.com"
    _HEADERS = {"user-agent": "Mozilla/5.0 (compatible; pricegate/0.1)"}

    def __init__(
        self,
        session: Optional[Any] = None,
        base_url: Optional[str] = None,
        timeout: float = 5.0,
    ) -> None:
        self.base_url = base_url or self.BASE_URL
        self.session = session or requests
        self.timeout = timeout

    @staticmethod
    def _to_float(value: Any) -> Optional[float]:
        try:
            if value is None or value == "":
                return None
            return float(value)
        except (TypeError, ValueError):
            return None

    def get_quote(self, symbol: str) -> Dict[str, Any]:
        response = self.session.get(
            f"{self.base_url}/v8/finance/chart/{symbol}",
            headers=self._HEADERS,
            params={"range": "1d", "interval": "1d"},
            timeout=self.timeout,
        )
        if response.status_code == 429:
            raise UpstreamRateLimitError("yahoo http 429")
        response.raise_for_status()
        payload = response.json()

        chart = payload.get("chart") or {}
        results = chart.get("result") or []
        if chart.get("error") or not results:
            raise QuoteUnavailableError(f"no chart result for {symbol}")
        meta = results[0].get("meta") or {}

        previous_close = meta.get("chartPreviousClose")
        if previous_close is None:
            previous_close = meta.get("previousClose")

        return {
            "symbol": str(meta.get("symbol") or symbol),
            "price": self._to_float(meta.get("regularMarketPrice")),
            "previous_close": self._to_float(previous_close),
            "currency": meta.get("currency") or None,
        }
