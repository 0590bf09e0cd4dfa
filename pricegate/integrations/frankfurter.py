from __future__ import annotations

from typing import Any, Optional

import requests

from pricegate.errors import RateUnavailableError


class FrankfurterClient:
    """ECB reference rates via the Frankfurter API."""

    BASE_URL = "https://api.frankfurter.app"

    def __init__(
        self,
        session: Optional[Any] = None,
        base_url: Optional[str] = None,
        timeout: float = 5.0,
    ) -> None:
        self.base_url = base_url or self.BASE_URL
        self.session = session or requests
        self.timeout = timeout

    def get_exchange_rate(self, from_currency: str, to_currency: str) -> float:
        response = self.session.get(
            f"{self.base_url}/latest",
            params={"from": from_currency, "to": to_currency},
            timeout=self.timeout,
        )
        response.raise_for_status()
        payload = response.json()
        rates = payload.get("rates") or {}
        try:
            return float(rates[to_currency])
        except (KeyError, TypeError, ValueError) as exc:
            raise RateUnavailableError(
                f"invalid frankfurter response for {from_currency}/{to_currency}"
            ) from exc
