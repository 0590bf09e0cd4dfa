from __future__ import annotations

import logging

from pricegate.schemas.quote import NativeQuote

logger = logging.getLogger(__name__)


class SymbolResolver:
    """Maps a requested ticker to an identifier the quote source accepts.

    Candidates are probed in order (static overrides, raw symbol, raw symbol
    plus each exchange suffix) and the first one that answers wins.
    """

    def __init__(
        self,
        *,
        fetcher,
        overrides: dict[str, list[str]] | None = None,
        exchange_suffixes: list[str] | None = None,
    ) -> None:
        self.fetcher = fetcher
        self.overrides = {k.upper(): list(v) for k, v in (overrides or {}).items()}
        self.exchange_suffixes = list(exchange_suffixes or [])

    def candidates(self, symbol: str) -> list[str]:
        symbol = symbol.strip().upper()
        out = list(self.overrides.get(symbol, []))
        out.append(symbol)
        out.extend(f"{symbol}{suffix}" for suffix in self.exchange_suffixes)

        seen: set[str] = set()
        unique: list[str] = []
        for c in out:
            if c not in seen:
                seen.add(c)
                unique.append(c)
        return unique

    def resolve_with_quote(self, symbol: str) -> tuple[str, NativeQuote] | None:
        """Returns the winning identifier together with the quote its probe fetched."""
        candidates = self.candidates(symbol)
        for candidate in candidates:
            quote = self.fetcher.probe_quote(candidate)
            if quote is not None:
                if candidate != symbol.strip().upper():
                    logger.info("[QUOTE][symbol_resolved] symbol=%s identifier=%s", symbol, candidate)
                return candidate, quote
        logger.warning("[QUOTE][symbol_unresolved] symbol=%s tried=%d", symbol, len(candidates))
        return None

    def resolve(self, symbol: str) -> str | None:
        resolved = self.resolve_with_quote(symbol)
        return None if resolved is None else resolved[0]
