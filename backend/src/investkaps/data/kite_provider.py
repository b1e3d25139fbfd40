"""Zerodha Kite Connect REST provider

- quote / ltp / ohlc: https://api.kite.trade/quote[...]?i=EX:SYM
- instruments: CSV dump, parsed with pandas and cached per exchange
- historical: /instruments/historical/{token}/{interval}
"""

import logging
import threading
import time
from datetime import date, timedelta
from io import StringIO

import pandas as pd
import requests
from sqlmodel import Session

from investkaps.config import settings
from investkaps.data.base import QuoteProvider, instrument_key
from investkaps.errors import BrokerTokenMissingError, UpstreamError
from investkaps.models.broker_token import get_active_token

logger = logging.getLogger(__name__)

SEARCH_LIMIT = 20

_instrument_cache: dict[str, tuple[float, pd.DataFrame]] = {}
_instrument_lock = threading.Lock()


class KiteProvider(QuoteProvider):
    """Kite Connect v3 client"""

    def __init__(
        self,
        api_key: str,
        access_token: str,
        base_url: str | None = None,
        timeout: float = 10.0,
    ) -> None:
        self._base_url = (base_url or settings.KITE_API_URL).rstrip("/")
        self._timeout = timeout
        self._session = requests.Session()
        self._session.headers.update({
            "X-Kite-Version": "3",
            "Authorization": f"token {api_key}:{access_token}",
        })

    def _get(self, path: str, params=None) -> requests.Response:
        """GET with Kite error mapping"""
        url = f"{self._base_url}{path}"
        try:
            resp = self._session.get(url, params=params, timeout=self._timeout)
        except requests.RequestException as e:
            raise UpstreamError(f"Kite request failed: {e}") from e

        if resp.status_code == 403:
            raise BrokerTokenMissingError("Zerodha access token rejected, set a new token")
        if resp.status_code >= 400:
            message = resp.text
            try:
                message = resp.json().get("message", message)
            except ValueError:
                pass
            raise UpstreamError(f"Kite API error ({resp.status_code}): {message}")
        return resp

    def _get_data(self, path: str, params=None) -> dict:
        return self._get(path, params).json().get("data", {})

    # --- quotes ---

    def get_quote(self, items: list[tuple[str, str]]) -> dict[str, dict]:
        """Full market quote keyed EX:SYM"""
        keys = [instrument_key(ex, sym) for ex, sym in items]
        return self._get_data("/quote", params=[("i", k) for k in keys])

    def get_ltp(self, items: list[tuple[str, str]]) -> dict[str, float]:
        """Last traded prices keyed EX:SYM"""
        keys = [instrument_key(ex, sym) for ex, sym in items]
        data = self._get_data("/quote/ltp", params=[("i", k) for k in keys])
        return {key: row["last_price"] for key, row in data.items()}

    def get_ohlc(self, items: list[tuple[str, str]]) -> dict[str, dict]:
        """LTP + day OHLC keyed EX:SYM"""
        keys = [instrument_key(ex, sym) for ex, sym in items]
        return self._get_data("/quote/ohlc", params=[("i", k) for k in keys])

    # --- instruments ---

    def get_instruments(self, exchange: str | None = None) -> pd.DataFrame:
        """Instrument master (cached per exchange)"""
        cache_key = (exchange or "ALL").upper()
        with _instrument_lock:
            cached = _instrument_cache.get(cache_key)
            if cached and time.monotonic() - cached[0] < settings.KITE_INSTRUMENTS_TTL:
                return cached[1]

        path = f"/instruments/{exchange.upper()}" if exchange else "/instruments"
        resp = self._get(path)
        df = pd.read_csv(StringIO(resp.text), dtype={"tradingsymbol": str, "name": str})
        df["name"] = df["name"].fillna("")
        logger.info("Kite instruments loaded: %s (%d rows)", cache_key, len(df))

        with _instrument_lock:
            _instrument_cache[cache_key] = (time.monotonic(), df)
        return df

    def search_instruments(self, query: str, exchange: str = "NSE") -> list[dict]:
        """Instruments whose tradingsymbol or name contains the query"""
        df = self.get_instruments(exchange)
        q = query.upper()
        mask = (
            df["tradingsymbol"].str.upper().str.contains(q, regex=False, na=False)
            | df["name"].str.upper().str.contains(q, regex=False, na=False)
        )
        hits = df[mask].head(SEARCH_LIMIT)
        return [
            {
                "instrument_token": int(row["instrument_token"]),
                "tradingsymbol": row["tradingsymbol"],
                "name": row["name"],
                "exchange": row["exchange"],
                "instrument_type": row.get("instrument_type", ""),
                "segment": row.get("segment", ""),
            }
            for _, row in hits.iterrows()
        ]

    def find_instrument(self, exchange: str, symbol: str) -> dict | None:
        """Exact tradingsymbol lookup"""
        df = self.get_instruments(exchange)
        hits = df[df["tradingsymbol"] == symbol.upper()]
        if hits.empty:
            return None
        row = hits.iloc[0]
        return {
            "instrument_token": int(row["instrument_token"]),
            "tradingsymbol": row["tradingsymbol"],
            "name": row["name"],
            "exchange": row["exchange"],
        }

    # --- history ---

    def get_historical(
        self,
        instrument_token: int,
        interval: str,
        start: date,
        end: date,
    ) -> pd.DataFrame:
        """Historical candles as an OHLCV DataFrame indexed by date"""
        data = self._get_data(
            f"/instruments/historical/{instrument_token}/{interval}",
            params={"from": start.isoformat(), "to": end.isoformat()},
        )
        candles = data.get("candles", [])
        if not candles:
            return pd.DataFrame(columns=["open", "high", "low", "close", "volume"])

        df = pd.DataFrame(
            candles, columns=["date", "open", "high", "low", "close", "volume"],
        )
        df["date"] = pd.to_datetime(df["date"].str[:10])
        return df.set_index("date")

    def get_daily_history(
        self, exchange: str, symbol: str, days: int,
    ) -> pd.DataFrame | None:
        instrument = self.find_instrument(exchange, symbol)
        if instrument is None:
            return None
        end = date.today()
        return self.get_historical(
            instrument["instrument_token"], "day", end - timedelta(days=days), end,
        )


def get_kite_provider(session: Session) -> KiteProvider:
    """KiteProvider with the current active access token"""
    token = get_active_token(session)
    if token is None or token.is_expired:
        raise BrokerTokenMissingError()
    return KiteProvider(settings.KITE_API_KEY, token.access_token)
