"""StockData persistence + OHLCV resampling"""

import logging

import pandas as pd
from sqlalchemy import delete
from sqlmodel import Session, select

from investkaps.clock import utcnow
from investkaps.data.base import QuoteProvider, instrument_key
from investkaps.errors import NotFoundError
from investkaps.models.stock import StockCandle, StockData

logger = logging.getLogger(__name__)

OHLCV_COLUMNS = ["open", "high", "low", "close", "volume"]
HISTORY_DAYS = 400

_RULES = {
    "weekly": "W-MON",
    "monthly": "MS",
}

_AGG = {
    "open": "first",
    "high": "max",
    "low": "min",
    "close": "last",
    "volume": "sum",
}


def resample(daily: pd.DataFrame, interval: str) -> pd.DataFrame:
    """Aggregate daily OHLCV into weekly (Monday-labelled) or monthly bars"""
    if interval == "daily":
        return daily
    if interval not in _RULES:
        raise ValueError(f"Unknown interval: {interval}")
    if daily.empty:
        return daily

    rule = _RULES[interval]
    if interval == "weekly":
        # label each week by its Monday
        out = daily.resample(rule, label="left", closed="left").agg(_AGG)
    else:
        out = daily.resample(rule).agg(_AGG)
    return out.dropna(subset=["open"])


def get_stock(session: Session, symbol: str, exchange: str = "NSE") -> StockData | None:
    stmt = (
        select(StockData)
        .where(StockData.symbol == symbol.upper())
        .where(StockData.exchange == exchange.upper())
    )
    return session.exec(stmt).first()


def upsert_stock(
    session: Session,
    symbol: str,
    exchange: str = "NSE",
    **fields,
) -> StockData:
    """Insert or update by (symbol, exchange)"""
    stock = get_stock(session, symbol, exchange)
    if stock is None:
        stock = StockData(
            symbol=symbol.upper(),
            exchange=exchange.upper(),
            name=fields.pop("name", symbol.upper()),
        )
    for key, value in fields.items():
        setattr(stock, key, value)
    stock.last_updated = utcnow()
    session.add(stock)
    session.commit()
    session.refresh(stock)
    return stock


def store_candles(
    session: Session,
    stock: StockData,
    interval: str,
    df: pd.DataFrame,
) -> int:
    """Replace candles for the dates covered by df"""
    if df.empty:
        return 0

    dates = [ts.date() for ts in df.index]
    session.exec(
        delete(StockCandle)
        .where(StockCandle.stock_id == stock.id)
        .where(StockCandle.interval == interval)
        .where(StockCandle.date.in_(dates))
    )
    for ts, row in df.iterrows():
        session.add(StockCandle(
            stock_id=stock.id,
            interval=interval,
            date=ts.date(),
            open=float(row["open"]),
            high=float(row["high"]),
            low=float(row["low"]),
            close=float(row["close"]),
            volume=int(row["volume"]),
        ))
    session.commit()
    return len(df)


def load_candles(
    session: Session,
    stock: StockData,
    interval: str = "daily",
    limit: int = 120,
) -> list[StockCandle]:
    """Most recent candles in ascending date order"""
    stmt = (
        select(StockCandle)
        .where(StockCandle.stock_id == stock.id)
        .where(StockCandle.interval == interval)
        .order_by(StockCandle.date.desc())
        .limit(limit)
    )
    return list(reversed(session.exec(stmt).all()))


def refresh_stock(
    session: Session,
    provider: QuoteProvider,
    symbol: str,
    exchange: str = "NSE",
) -> StockData:
    """Pull quote (+ history when available) into StockData/StockCandle"""
    symbol, exchange = symbol.upper(), exchange.upper()
    key = instrument_key(exchange, symbol)
    quote = provider.get_quote([(exchange, symbol)]).get(key)
    if not quote:
        raise NotFoundError(f"No quote for {key}")

    ohlc = quote.get("ohlc", {})
    last_price = quote.get("last_price")
    prev_close = ohlc.get("close")
    change = quote.get("net_change")
    if change is None and last_price is not None and prev_close:
        change = last_price - prev_close

    fields = {
        "last_price": last_price,
        "change": change,
        "percent_change": (change / prev_close * 100) if change is not None and prev_close else None,
        "open": ohlc.get("open"),
        "high": ohlc.get("high"),
        "low": ohlc.get("low"),
        "close": prev_close,
        "volume": quote.get("volume"),
    }
    if quote.get("instrument_token"):
        fields["instrument_token"] = int(quote["instrument_token"])
    stock = upsert_stock(session, symbol, exchange, **fields)

    daily = provider.get_daily_history(exchange, symbol, HISTORY_DAYS)
    if daily is not None and not daily.empty:
        daily = daily[OHLCV_COLUMNS]
        for interval in ("daily", "weekly", "monthly"):
            count = store_candles(session, stock, interval, resample(daily, interval))
            logger.info("%s %s candles stored: %d", key, interval, count)

    return stock
