from datetime import date
from unittest.mock import MagicMock

import pytest

from investkaps.config import settings
from investkaps.data import kite_provider
from investkaps.data.kite_provider import KiteProvider
from investkaps.errors import BrokerTokenMissingError, UpstreamError

INSTRUMENTS_CSV = """instrument_token,exchange_token,tradingsymbol,name,last_price,expiry,strike,tick_size,lot_size,instrument_type,segment,exchange
2953217,11536,TCS,TATA CONSULTANCY SERV LT,0,,0,0.05,1,EQ,NSE,NSE
408065,1594,INFY,INFOSYS,0,,0,0.05,1,EQ,NSE,NSE
738561,2885,RELIANCE,RELIANCE INDUSTRIES,0,,0,0.05,1,EQ,NSE,NSE
2714625,10604,TATAMOTORS,,0,,0,0.05,1,EQ,NSE,NSE
"""


def _response(status_code=200, text="", payload=None):
    resp = MagicMock()
    resp.status_code = status_code
    resp.text = text
    resp.json.return_value = payload or {}
    return resp


@pytest.fixture
def kite():
    kite_provider._instrument_cache.clear()
    provider = KiteProvider("key", "token", base_url="https://kite.test/")
    provider._session = MagicMock()
    provider._session.get.return_value = _response(text=INSTRUMENTS_CSV)
    yield provider
    kite_provider._instrument_cache.clear()


def test_instruments_cached(kite) -> None:
    first = kite.get_instruments("nse")
    second = kite.get_instruments("NSE")

    assert second is first
    assert len(first) == 4
    kite._session.get.assert_called_once()
    assert kite._session.get.call_args.args[0] == "https://kite.test/instruments/NSE"


def test_instruments_refetched_after_ttl(kite, monkeypatch) -> None:
    kite.get_instruments("NSE")
    monkeypatch.setattr(settings, "KITE_INSTRUMENTS_TTL", 0)

    kite.get_instruments("NSE")

    assert kite._session.get.call_count == 2


def test_search_matches_symbol_and_name(kite) -> None:
    by_symbol = kite.search_instruments("tata")
    assert [r["tradingsymbol"] for r in by_symbol] == ["TCS", "TATAMOTORS"]
    assert by_symbol[0] == {
        "instrument_token": 2953217,
        "tradingsymbol": "TCS",
        "name": "TATA CONSULTANCY SERV LT",
        "exchange": "NSE",
        "instrument_type": "EQ",
        "segment": "NSE",
    }

    by_name = kite.search_instruments("infosys")
    assert [r["tradingsymbol"] for r in by_name] == ["INFY"]

    assert kite.search_instruments("nothing") == []


def test_find_instrument(kite) -> None:
    assert kite.find_instrument("NSE", "reliance") == {
        "instrument_token": 738561,
        "tradingsymbol": "RELIANCE",
        "name": "RELIANCE INDUSTRIES",
        "exchange": "NSE",
    }
    assert kite.find_instrument("NSE", "RELI") is None


def test_daily_history(kite) -> None:
    candles = _response(payload={"data": {"candles": [
        ["2024-01-01T00:00:00+0530", 100, 110, 90, 105, 1000],
        ["2024-01-02T00:00:00+0530", 105, 115, 95, 112, 1500],
    ]}})
    kite._session.get.side_effect = [_response(text=INSTRUMENTS_CSV), candles]

    df = kite.get_daily_history("NSE", "TCS", 30)

    path = kite._session.get.call_args.args[0]
    assert path == "https://kite.test/instruments/historical/2953217/day"
    assert list(df.index.date) == [date(2024, 1, 1), date(2024, 1, 2)]
    assert df.iloc[1]["close"] == 112


def test_daily_history_unknown_symbol(kite) -> None:
    assert kite.get_daily_history("NSE", "NOPE", 30) is None


def test_ltp(kite) -> None:
    kite._session.get.return_value = _response(payload={"data": {
        "NSE:TCS": {"instrument_token": 2953217, "last_price": 3500.5},
    }})

    assert kite.get_ltp([("nse", "tcs")]) == {"NSE:TCS": 3500.5}
    assert kite._session.get.call_args.kwargs["params"] == [("i", "NSE:TCS")]


def test_rejected_token(kite) -> None:
    kite._session.get.return_value = _response(status_code=403)

    with pytest.raises(BrokerTokenMissingError):
        kite.get_ltp([("NSE", "TCS")])


def test_upstream_error_message(kite) -> None:
    kite._session.get.return_value = _response(
        status_code=500, text="oops", payload={"message": "Gateway down"},
    )

    with pytest.raises(UpstreamError, match="Gateway down"):
        kite.get_quote([("NSE", "TCS")])
