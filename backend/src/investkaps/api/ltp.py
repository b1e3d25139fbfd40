"""LTP service proxy API router"""

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from investkaps.auth.dependencies import get_current_user
from investkaps.data.ltp_provider import LtpServiceProvider
from investkaps.errors import BadRequestError

router = APIRouter(dependencies=[Depends(get_current_user)])


class Instrument(BaseModel):
    exchange: str = "NSE"
    symbol: str


class BatchRequest(BaseModel):
    exchange: str | None = None
    symbols: list[str] | None = None


class ItemsRequest(BaseModel):
    items: list[Instrument] | None = None


class RecommendationItem(BaseModel):
    stock_symbol: str
    exchange: str | None = None


class RecommendationsRequest(BaseModel):
    recommendations: list[RecommendationItem] | None = None


def get_ltp_provider() -> LtpServiceProvider:
    return LtpServiceProvider()


def _items(body: ItemsRequest) -> list[tuple[str, str]]:
    if not body.items:
        raise BadRequestError("Items array is required and cannot be empty")
    items = []
    for item in body.items:
        if not item.symbol.strip():
            raise BadRequestError("Each item needs a symbol")
        items.append((item.exchange.strip().upper(), item.symbol.strip().upper()))
    return items


@router.get("/single")
def single_price(
    exchange: str = Query(""),
    symbol: str = Query(""),
    provider: LtpServiceProvider = Depends(get_ltp_provider),
) -> dict:
    if not exchange.strip() or not symbol.strip():
        raise BadRequestError("Exchange and symbol are required")
    data = provider.fetch_single(exchange.strip().upper(), symbol.strip().upper())
    return {"success": True, "data": data}


@router.post("/batch")
def batch_prices(
    body: BatchRequest,
    provider: LtpServiceProvider = Depends(get_ltp_provider),
) -> dict:
    if not body.exchange or not body.symbols:
        raise BadRequestError("Exchange and a non-empty symbols array are required")
    symbols = [s.strip().upper() for s in body.symbols if s.strip()]
    data = provider.fetch_batch(body.exchange.strip().upper(), symbols)
    return {"success": True, "data": data}


@router.post("/multi")
def multi_prices(
    body: ItemsRequest,
    provider: LtpServiceProvider = Depends(get_ltp_provider),
) -> dict:
    return {"success": True, "data": provider.fetch_multi(_items(body))}


@router.post("/smart")
def smart_prices(
    body: ItemsRequest,
    provider: LtpServiceProvider = Depends(get_ltp_provider),
) -> dict:
    """Single / batch / multi picked by input shape"""
    prices = provider.smart_fetch(_items(body))
    return {"success": True, "count": len(prices), "prices": prices}


@router.post("/recommendations")
def recommendation_prices(
    body: RecommendationsRequest,
    provider: LtpServiceProvider = Depends(get_ltp_provider),
) -> dict:
    if not body.recommendations:
        raise BadRequestError("Recommendations array is required and cannot be empty")
    prices = provider.fetch_recommendation_prices(
        [r.model_dump() for r in body.recommendations],
    )
    return {"success": True, "count": len(prices), "prices": prices}
