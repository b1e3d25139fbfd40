"""Quote provider abstract interface"""

from abc import ABC, abstractmethod

import pandas as pd


def instrument_key(exchange: str, symbol: str) -> str:
    """Build the EXCHANGE:SYMBOL key used by the quote APIs"""
    return f"{exchange.upper()}:{symbol.upper()}"


class QuoteProvider(ABC):
    """Live price source"""

    @abstractmethod
    def get_ltp(self, items: list[tuple[str, str]]) -> dict[str, float]:
        """Last traded prices for (exchange, symbol) pairs, keyed EX:SYM"""
        ...

    def get_quote(self, items: list[tuple[str, str]]) -> dict[str, dict]:
        """Full quotes keyed EX:SYM (defaults to LTP only)"""
        return {
            key: {"last_price": price}
            for key, price in self.get_ltp(items).items()
        }

    def get_daily_history(
        self, exchange: str, symbol: str, days: int,
    ) -> pd.DataFrame | None:
        """Daily OHLCV indexed by date, or None when unsupported"""
        return None
