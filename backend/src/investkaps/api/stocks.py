"""Stock data API router"""

from typing import Literal

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlmodel import Session, select

from investkaps.auth.dependencies import get_current_user, require_admin
from investkaps.data.history import get_stock, load_candles, refresh_stock
from investkaps.data.ltp_provider import LtpServiceProvider
from investkaps.data.providers import get_quote_provider
from investkaps.database import get_session
from investkaps.errors import BadRequestError, NotFoundError
from investkaps.models.stock import StockData
from investkaps.recommendation.pricing import current_prices, update_prices_for_symbols

router = APIRouter(dependencies=[Depends(get_current_user)])


class SymbolsRequest(BaseModel):
    symbols: list[str] | None = None


def _serialize(stock: StockData) -> dict:
    data = stock.model_dump(exclude={"meta"})
    data["metadata"] = stock.meta_dict
    return data


def _split_symbols(raw: str) -> list[str]:
    symbols = [s.strip().upper() for s in raw.split(",") if s.strip()]
    if not symbols:
        raise BadRequestError("At least one symbol is required")
    return symbols


@router.get("")
def get_stocks(
    q: str | None = Query(None, description="Symbol or name"),
    exchange: str | None = Query(None, description="NSE/BSE/..."),
    session: Session = Depends(get_session),
) -> dict:
    """Stock list"""
    stmt = select(StockData)
    if exchange:
        stmt = stmt.where(StockData.exchange == exchange.upper())
    if q:
        stmt = stmt.where(
            (StockData.symbol.contains(q.upper())) | (StockData.name.ilike(f"%{q}%")),
        )
    stocks = session.exec(stmt.order_by(StockData.symbol)).all()
    return {
        "success": True,
        "count": len(stocks),
        "data": [
            {
                "symbol": s.symbol,
                "exchange": s.exchange,
                "name": s.name,
                "last_price": s.last_price,
                "percent_change": s.percent_change,
                "last_updated": s.last_updated,
            }
            for s in stocks
        ],
    }


@router.get("/prices")
def get_prices(
    symbols: str = Query(""),
    session: Session = Depends(get_session),
) -> dict:
    """Latest stored recommendation prices"""
    prices = current_prices(session, _split_symbols(symbols))
    return {"success": True, "data": prices}


@router.post("/prices", dependencies=[Depends(require_admin)])
def update_prices(
    body: SymbolsRequest,
    session: Session = Depends(get_session),
) -> dict:
    """Pull live prices for recommendations with these symbols"""
    if not body.symbols:
        raise BadRequestError("Symbols array is required and cannot be empty")
    result = update_prices_for_symbols(session, LtpServiceProvider(), body.symbols)
    return {"success": True, **result}


@router.get("/{symbol}")
def get_stock_detail(
    symbol: str,
    exchange: str = Query("NSE"),
    session: Session = Depends(get_session),
) -> dict:
    stock = get_stock(session, symbol, exchange)
    if stock is None:
        raise NotFoundError(f"Stock not found: {exchange.upper()}:{symbol.upper()}")
    return {"success": True, "data": _serialize(stock)}


@router.get("/{symbol}/history")
def get_history(
    symbol: str,
    exchange: str = Query("NSE"),
    interval: Literal["daily", "weekly", "monthly"] = Query("daily"),
    limit: int = Query(120, ge=1, le=1000, description="Number of candles"),
    session: Session = Depends(get_session),
) -> dict:
    """OHLCV candles, oldest first"""
    stock = get_stock(session, symbol, exchange)
    if stock is None:
        raise NotFoundError(f"Stock not found: {exchange.upper()}:{symbol.upper()}")
    candles = load_candles(session, stock, interval, limit)
    return {
        "success": True,
        "symbol": stock.symbol,
        "exchange": stock.exchange,
        "interval": interval,
        "data": [
            {
                "date": c.date.isoformat(),
                "open": c.open,
                "high": c.high,
                "low": c.low,
                "close": c.close,
                "volume": c.volume,
            }
            for c in candles
        ],
    }


@router.post("/{symbol}/refresh", dependencies=[Depends(require_admin)])
def refresh(
    symbol: str,
    exchange: str = Query("NSE"),
    session: Session = Depends(get_session),
) -> dict:
    """Re-pull quote and history from the configured provider"""
    stock = refresh_stock(session, get_quote_provider(session), symbol, exchange)
    return {"success": True, "data": _serialize(stock)}
