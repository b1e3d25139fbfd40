"""LTP microservice provider (/ltp, /ltp/batch, /ltp/multi)"""

import logging

import requests

from investkaps.config import settings
from investkaps.data.base import QuoteProvider, instrument_key
from investkaps.errors import BadRequestError, UpstreamError

logger = logging.getLogger(__name__)


class LtpServiceProvider(QuoteProvider):
    """Client for the LTP FastAPI service"""

    def __init__(self, base_url: str | None = None, timeout: float | None = None) -> None:
        self._base_url = (base_url or settings.LTP_API_URL).rstrip("/")
        self._timeout = timeout or settings.LTP_TIMEOUT
        self._session = requests.Session()

    def _get(self, path: str, params: dict) -> dict:
        try:
            resp = self._session.get(
                f"{self._base_url}{path}", params=params, timeout=self._timeout,
            )
            resp.raise_for_status()
        except requests.RequestException as e:
            logger.error("LTP request failed %s %s: %s", path, params, e)
            raise UpstreamError(f"Failed to fetch prices: {e}") from e
        return resp.json()

    def fetch_single(self, exchange: str, symbol: str) -> dict:
        """{exchange, symbol, ltp}"""
        data = self._get("/ltp", {"exchange": exchange, "symbol": symbol})
        logger.info("LTP %s:%s = %s", exchange, symbol, data.get("ltp"))
        return data

    def fetch_batch(self, exchange: str, symbols: list[str]) -> dict:
        """{exchange, prices: {SYMBOL: price}} for one exchange"""
        if not symbols:
            raise BadRequestError("Symbols array cannot be empty")
        return self._get(
            "/ltp/batch", {"exchange": exchange, "symbols": ",".join(symbols)},
        )

    def fetch_multi(self, items: list[tuple[str, str]]) -> dict:
        """{prices: {"EX:SYM": price}} across exchanges"""
        if not items:
            raise BadRequestError("Items array cannot be empty")
        joined = ",".join(instrument_key(ex, sym) for ex, sym in items)
        return self._get("/ltp/multi", {"items": joined})

    @staticmethod
    def group_by_exchange(items: list[tuple[str, str]]) -> dict[str, list[str]]:
        grouped: dict[str, list[str]] = {}
        for exchange, symbol in items:
            grouped.setdefault(exchange, []).append(symbol)
        return grouped

    def smart_fetch(self, items: list[tuple[str, str]]) -> dict[str, float]:
        """Pick single / batch / multi endpoint by input shape"""
        if not items:
            raise BadRequestError("Items array cannot be empty")

        if len(items) == 1:
            exchange, symbol = items[0]
            result = self.fetch_single(exchange, symbol)
            return {instrument_key(exchange, symbol): result["ltp"]}

        grouped = self.group_by_exchange(items)
        if len(grouped) == 1:
            exchange, symbols = next(iter(grouped.items()))
            result = self.fetch_batch(exchange, symbols)
            return {
                instrument_key(exchange, symbol): price
                for symbol, price in result.get("prices", {}).items()
            }

        return self.fetch_multi(items).get("prices", {})

    def get_ltp(self, items: list[tuple[str, str]]) -> dict[str, float]:
        return self.smart_fetch(items)

    def fetch_recommendation_prices(self, recommendations: list[dict]) -> dict[str, float]:
        """{SYMBOL: price} for [{stock_symbol, exchange?}]"""
        items = [
            ((rec.get("exchange") or "NSE").upper(), rec["stock_symbol"].upper())
            for rec in recommendations
        ]
        prices = self.smart_fetch(items)
        return {key.split(":", 1)[1]: price for key, price in prices.items()}
