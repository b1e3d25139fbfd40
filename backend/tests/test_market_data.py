import json
from datetime import date
from unittest.mock import MagicMock

import pandas as pd
import pytest

from investkaps.api.ltp import get_ltp_provider
from investkaps.data.base import QuoteProvider
from investkaps.data.history import (
    load_candles,
    refresh_stock,
    resample,
    store_candles,
    upsert_stock,
)
from investkaps.data.ltp_provider import LtpServiceProvider
from investkaps.data.symbols import SymbolCatalog
from investkaps.errors import NotFoundError
from investkaps.main import app
from investkaps.models.stock import StockCandle


# --- LTP service routing ---

@pytest.fixture
def ltp():
    provider = LtpServiceProvider(base_url="https://ltp.test")
    provider._get = MagicMock()
    return provider


def test_smart_fetch_single(ltp) -> None:
    ltp._get.return_value = {"exchange": "NSE", "symbol": "TCS", "ltp": 3500.5}

    assert ltp.smart_fetch([("NSE", "TCS")]) == {"NSE:TCS": 3500.5}
    ltp._get.assert_called_once_with("/ltp", {"exchange": "NSE", "symbol": "TCS"})


def test_smart_fetch_batch_same_exchange(ltp) -> None:
    ltp._get.return_value = {"exchange": "NSE", "prices": {"TCS": 3500.5, "INFY": 1500.0}}

    prices = ltp.smart_fetch([("NSE", "TCS"), ("NSE", "INFY")])

    assert prices == {"NSE:TCS": 3500.5, "NSE:INFY": 1500.0}
    ltp._get.assert_called_once_with("/ltp/batch", {"exchange": "NSE", "symbols": "TCS,INFY"})


def test_smart_fetch_multi_exchange(ltp) -> None:
    ltp._get.return_value = {"prices": {"NSE:TCS": 3500.5, "BSE:SBIN": 612.0}}

    prices = ltp.smart_fetch([("NSE", "TCS"), ("BSE", "SBIN")])

    assert prices == {"NSE:TCS": 3500.5, "BSE:SBIN": 612.0}
    ltp._get.assert_called_once_with("/ltp/multi", {"items": "NSE:TCS,BSE:SBIN"})


def test_recommendation_prices_keyed_by_symbol(ltp) -> None:
    ltp._get.return_value = {"exchange": "NSE", "symbol": "TCS", "ltp": 3500.5}

    prices = ltp.fetch_recommendation_prices([{"stock_symbol": "tcs"}])

    assert prices == {"TCS": 3500.5}


# --- LTP API ---

@pytest.fixture
def ltp_api(client, login, user, ltp):
    login(user)
    app.dependency_overrides[get_ltp_provider] = lambda: ltp
    return ltp


def test_ltp_single_requires_params(client, ltp_api) -> None:
    assert client.get("/api/ltp/single", params={"symbol": "TCS"}).status_code == 400


def test_ltp_smart_endpoint(client, ltp_api) -> None:
    ltp_api._get.return_value = {"exchange": "NSE", "symbol": "TCS", "ltp": 3500.5}

    resp = client.post("/api/ltp/smart", json={"items": [{"exchange": "nse", "symbol": "tcs"}]})

    assert resp.status_code == 200
    assert resp.json() == {"success": True, "count": 1, "prices": {"NSE:TCS": 3500.5}}


def test_ltp_empty_items(client, ltp_api) -> None:
    assert client.post("/api/ltp/multi", json={"items": []}).status_code == 400
    assert client.post("/api/ltp/recommendations", json={}).status_code == 400


# --- symbols ---

SYMBOLS = [
    {"symbol": "TATAMOTORS", "name": "TATA MOTORS", "exchange": "NSE"},
    {"symbol": "TCS", "name": "TATA CONSULTANCY SERVICES", "exchange": "NSE"},
    {"symbol": "TATASTEEL", "name": "TATA STEEL", "exchange": "NSE"},
    {"symbol": "NIFTYTATA", "name": "NIFTY TATA GROUP", "exchange": "NSE"},
    {"symbol": "TATA", "name": "TATA INVESTMENT", "exchange": "BSE"},
]


@pytest.fixture
def symbols_file(tmp_path):
    path = tmp_path / "symbols.json"
    path.write_text(json.dumps(SYMBOLS), encoding="utf-8")
    return path


def test_symbol_search_ranking(symbols_file) -> None:
    catalog = SymbolCatalog(symbols_file)

    results = [s["symbol"] for s in catalog.search("tata")]

    # exact, then symbol prefix, then name prefix, then contains
    assert results == ["TATA", "TATAMOTORS", "TATASTEEL", "TCS", "NIFTYTATA"]
    assert len(catalog.search("tata", limit=2)) == 2


def test_symbol_page(symbols_file) -> None:
    page = SymbolCatalog(symbols_file).page(page=2, limit=2)
    assert [s["symbol"] for s in page["data"]] == ["TATASTEEL", "NIFTYTATA"]
    assert page["total"] == 5
    assert page["total_pages"] == 3


def test_symbol_cache_and_clear(symbols_file) -> None:
    catalog = SymbolCatalog(symbols_file)
    assert len(catalog.load()) == 5

    symbols_file.write_text(json.dumps(SYMBOLS[:1]), encoding="utf-8")
    assert len(catalog.load()) == 5
    catalog.clear()
    assert len(catalog.load()) == 1


def test_missing_symbols_file(tmp_path) -> None:
    with pytest.raises(NotFoundError):
        SymbolCatalog(tmp_path / "missing.json").load()


# --- OHLCV resampling ---

@pytest.fixture
def daily():
    index = pd.bdate_range("2024-01-01", "2024-02-09")
    n = len(index)
    return pd.DataFrame(
        {
            "open": [100.0 + i for i in range(n)],
            "high": [110.0 + i for i in range(n)],
            "low": [90.0 + i for i in range(n)],
            "close": [105.0 + i for i in range(n)],
            "volume": [1000] * n,
        },
        index=index,
    )


def test_resample_weekly_labels_monday(daily) -> None:
    weekly = resample(daily, "weekly")

    assert weekly.index[0] == pd.Timestamp("2024-01-01")
    assert all(ts.weekday() == 0 for ts in weekly.index)
    first = weekly.iloc[0]
    assert first["open"] == 100.0
    assert first["close"] == 109.0
    assert first["high"] == 114.0
    assert first["low"] == 90.0
    assert first["volume"] == 5000


def test_resample_monthly(daily) -> None:
    monthly = resample(daily, "monthly")

    assert list(monthly.index) == [pd.Timestamp("2024-01-01"), pd.Timestamp("2024-02-01")]
    # 23 business days in January 2024
    assert monthly.iloc[0]["volume"] == 23000
    assert monthly.iloc[1]["open"] == 123.0


def test_resample_daily_passthrough(daily) -> None:
    assert resample(daily, "daily") is daily


def test_resample_unknown_interval(daily) -> None:
    with pytest.raises(ValueError):
        resample(daily, "hourly")


# --- stocks API ---

def test_stock_history_endpoint(client, login, user, session) -> None:
    login(user)
    stock = upsert_stock(session, "tcs", "nse", name="Tata Consultancy", last_price=3500.0)
    for day, close in ((date(2024, 1, 1), 3400.0), (date(2024, 1, 2), 3450.0)):
        session.add(StockCandle(
            stock_id=stock.id, interval="daily", date=day,
            open=close, high=close, low=close, close=close, volume=10,
        ))
    session.commit()

    resp = client.get("/api/stocks/TCS/history", params={"limit": 1})

    assert resp.status_code == 200
    body = resp.json()
    assert body["symbol"] == "TCS"
    assert body["data"] == [{
        "date": "2024-01-02",
        "open": 3450.0,
        "high": 3450.0,
        "low": 3450.0,
        "close": 3450.0,
        "volume": 10,
    }]

    detail = client.get("/api/stocks/TCS").json()["data"]
    assert detail["name"] == "Tata Consultancy"
    assert detail["metadata"] == {}


def test_stock_not_found(client, login, user) -> None:
    login(user)
    assert client.get("/api/stocks/NOPE").status_code == 404


def test_stock_prices_requires_symbols(client, login, user) -> None:
    login(user)
    assert client.get("/api/stocks/prices").status_code == 400


# --- candle persistence ---

class HistoryProvider(QuoteProvider):
    """Quote + daily history from fixed data"""

    def __init__(self, daily: pd.DataFrame) -> None:
        self.daily = daily

    def get_ltp(self, items):
        return {"NSE:TCS": 3500.0}

    def get_quote(self, items):
        return {"NSE:TCS": {
            "instrument_token": 2953217,
            "last_price": 3500.0,
            "volume": 1200,
            "ohlc": {"open": 3450.0, "high": 3520.0, "low": 3440.0, "close": 3400.0},
        }}

    def get_daily_history(self, exchange, symbol, days):
        return self.daily


def test_store_candles_replaces_same_dates(session, daily) -> None:
    stock = upsert_stock(session, "TCS", "NSE")
    store_candles(session, stock, "daily", daily)

    changed = daily.copy()
    changed["close"] = changed["close"] + 1
    assert store_candles(session, stock, "daily", changed) == len(daily)

    candles = load_candles(session, stock, "daily", limit=1000)
    assert len(candles) == len(daily)
    assert candles[0].date == date(2024, 1, 1)
    assert candles[0].close == 106.0


def test_store_candles_empty(session) -> None:
    stock = upsert_stock(session, "TCS", "NSE")
    empty = pd.DataFrame(columns=["open", "high", "low", "close", "volume"])
    assert store_candles(session, stock, "daily", empty) == 0


def test_refresh_stock_stores_quote_and_candles(session, daily) -> None:
    provider = HistoryProvider(daily)

    stock = refresh_stock(session, provider, "tcs", "nse")

    assert stock.symbol == "TCS"
    assert stock.instrument_token == 2953217
    assert stock.last_price == 3500.0
    assert stock.change == 100.0
    assert stock.percent_change == pytest.approx(100 / 3400 * 100)
    assert len(load_candles(session, stock, "daily", limit=1000)) == 30
    assert len(load_candles(session, stock, "weekly", limit=1000)) == 6
    assert len(load_candles(session, stock, "monthly", limit=1000)) == 2

    # second refresh upserts instead of duplicating
    refresh_stock(session, provider, "TCS", "NSE")
    assert len(load_candles(session, stock, "daily", limit=1000)) == 30
    assert len(load_candles(session, stock, "weekly", limit=1000)) == 6


def test_refresh_stock_without_quote(session, daily) -> None:
    provider = HistoryProvider(daily)
    provider.get_quote = lambda items: {}

    with pytest.raises(NotFoundError):
        refresh_stock(session, provider, "TCS", "NSE")
