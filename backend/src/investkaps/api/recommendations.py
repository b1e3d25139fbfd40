"""Stock recommendation API router"""

import logging
from datetime import datetime
from typing import Literal

from fastapi import APIRouter, Depends, Query, Response
from pydantic import BaseModel, Field, field_validator
from sqlmodel import Session

from investkaps import storage
from investkaps.auth.dependencies import get_current_user, require_admin
from investkaps.clock import as_utc, next_token_expiry, utcnow
from investkaps.data.base import instrument_key
from investkaps.data.kite_provider import get_kite_provider
from investkaps.data.providers import get_quote_provider
from investkaps.database import get_session
from investkaps.errors import BadRequestError, NotFoundError
from investkaps.models.broker_token import KiteToken, get_active_token
from investkaps.models.user import User
from investkaps.recommendation import pricing, service
from investkaps.report.pdf import DEFAULT_DISCLAIMER, ReportData, render_report, report_filename

logger = logging.getLogger(__name__)
router = APIRouter()

Exchange = Literal["NSE", "BSE", "NFO", "BFO", "CDS", "MCX"]
RecommendationType = Literal["buy", "sell", "hold"]
TimeFrame = Literal["short_term", "medium_term", "long_term"]
RiskLevel = Literal["low", "moderate", "high"]
Status = Literal["draft", "published", "archived"]


class RecommendationCreate(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    stock_symbol: str = Field(min_length=1)
    stock_name: str = Field(min_length=1)
    exchange: str = "NSE"
    current_price: float
    target_price: float
    target_price2: float | None = None
    target_price3: float | None = None
    stop_loss: float | None = None
    recommendation_type: RecommendationType
    time_frame: TimeFrame
    description: str = ""
    rationale: str | None = None
    risk_level: RiskLevel = "moderate"
    status: Status = "draft"
    expires_at: datetime | None = None
    target_strategies: list[int] = Field(default_factory=list)

    @field_validator("expires_at")
    @classmethod
    def expiry_as_utc(cls, value: datetime | None) -> datetime | None:
        return as_utc(value)


class RecommendationUpdate(BaseModel):
    """Partial update, unset fields are left untouched"""
    title: str | None = Field(default=None, min_length=1, max_length=200)
    stock_symbol: str | None = None
    stock_name: str | None = None
    exchange: str | None = None
    current_price: float | None = None
    target_price: float | None = None
    target_price2: float | None = None
    target_price3: float | None = None
    stop_loss: float | None = None
    recommendation_type: RecommendationType | None = None
    time_frame: TimeFrame | None = None
    description: str | None = None
    rationale: str | None = None
    risk_level: RiskLevel | None = None
    status: Status | None = None
    expires_at: datetime | None = None
    target_strategies: list[int] | None = None

    @field_validator("expires_at")
    @classmethod
    def expiry_as_utc(cls, value: datetime | None) -> datetime | None:
        return as_utc(value)


class PdfOptions(BaseModel):
    company_about: str | None = None
    technical_reason: str | None = None
    summary: str | None = None
    disclaimer: str | None = None


class TokenUpdate(BaseModel):
    access_token: str = Field(min_length=1)


# --- subscriber + pricing routes (declared before /{rec_id}) ---

@router.get("/user")
def get_user_recommendations(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
) -> dict:
    """Recommendations visible to the current subscriber"""
    return {"success": True, **service.user_feed(session, user, page, limit)}


@router.post("/refresh-prices")
def refresh_prices(
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
) -> dict:
    """Refresh stale prices of active recommendations"""
    if not pricing.stale_recommendations(session):
        return {
            "success": True,
            "message": "All prices are up to date",
            "updated": 0,
            "failed": 0,
            "total": 0,
            "errors": [],
            "data": service.serialize_many(session, pricing.active_recommendations(session)),
        }

    provider = get_quote_provider(session)
    result = pricing.refresh_stale_prices(session, provider)
    result["data"] = service.serialize_many(session, result["data"])
    return {"success": True, **result}


@router.post("/zerodha/set-token")
def set_zerodha_token(
    body: TokenUpdate,
    admin: User = Depends(require_admin),
    session: Session = Depends(get_session),
) -> dict:
    """Store today's Kite access token (valid until 06:00 IST)"""
    token = get_active_token(session) or KiteToken(access_token="", expires_at=utcnow())
    token.access_token = body.access_token.strip()
    token.updated_by = admin.id
    token.updated_at = utcnow()
    token.expires_at = next_token_expiry()
    token.is_active = True
    session.add(token)
    session.commit()
    session.refresh(token)
    logger.info("Kite access token updated by user %s", admin.id)
    return {
        "success": True,
        "message": "Zerodha access token saved",
        "expires_at": token.expires_at,
    }


@router.get("/zerodha/token-status")
def zerodha_token_status(
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
) -> dict:
    token = get_active_token(session)
    if token is not None and token.is_expired:
        token.is_active = False
        session.add(token)
        session.commit()
        token = None
    if token is None:
        return {"success": True, "has_token": False}
    return {
        "success": True,
        "has_token": True,
        "updated_at": token.updated_at,
        "expires_at": token.expires_at,
    }


@router.get("/zerodha/get-price")
def zerodha_get_price(
    symbol: str = Query(..., min_length=1),
    exchange: str = Query("NSE"),
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
) -> dict:
    """Live quote for one instrument"""
    symbol, exchange = service.normalize_symbol(symbol, exchange)
    kite = get_kite_provider(session)
    key = instrument_key(exchange, symbol)
    quote = kite.get_quote([(exchange, symbol)]).get(key)
    if not quote:
        raise NotFoundError(f"No quote available for {key}")

    last_price = quote.get("last_price")
    ohlc = quote.get("ohlc", {})
    close = ohlc.get("close")
    change = quote.get("net_change")
    if change is None and last_price is not None and close:
        change = last_price - close
    change_percent = quote.get("change")
    if change_percent is None and last_price is not None and close:
        change_percent = (last_price - close) / close * 100

    instrument = kite.find_instrument(exchange, symbol)
    return {
        "success": True,
        "data": {
            "symbol": symbol,
            "exchange": exchange,
            "name": instrument["name"] if instrument else symbol,
            "last_price": last_price,
            "change": change,
            "change_percent": change_percent,
            "ohlc": ohlc,
            "volume": quote.get("volume"),
            "timestamp": quote.get("timestamp") or utcnow().isoformat(),
        },
    }


@router.get("/zerodha/search")
def zerodha_search(
    query: str = Query(""),
    exchange: str = Query("NSE"),
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
) -> dict:
    if len(query.strip()) < 2:
        raise BadRequestError("Search query must be at least 2 characters")
    kite = get_kite_provider(session)
    results = kite.search_instruments(query.strip(), exchange.upper())
    return {"success": True, "count": len(results), "data": results}


# --- admin CRUD ---

@router.post("", status_code=201)
def create_recommendation(
    body: RecommendationCreate,
    admin: User = Depends(require_admin),
    session: Session = Depends(get_session),
) -> dict:
    data = body.model_dump(exclude={"target_strategies"})
    rec = service.create_recommendation(session, data, body.target_strategies, admin.id)
    return {
        "success": True,
        "data": service.serialize(rec, service.get_strategy_ids(session, rec.id)),
    }


@router.get("")
def list_recommendations(
    status: Status | None = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    admin: User = Depends(require_admin),
    session: Session = Depends(get_session),
) -> dict:
    return {"success": True, **service.list_recommendations(session, status, page, limit)}


@router.get("/{rec_id}")
def get_recommendation(
    rec_id: int,
    admin: User = Depends(require_admin),
    session: Session = Depends(get_session),
) -> dict:
    rec = service.get_recommendation(session, rec_id)
    return {
        "success": True,
        "data": service.serialize(rec, service.get_strategy_ids(session, rec.id)),
    }


@router.put("/{rec_id}")
def update_recommendation(
    rec_id: int,
    body: RecommendationUpdate,
    admin: User = Depends(require_admin),
    session: Session = Depends(get_session),
) -> dict:
    rec = service.get_recommendation(session, rec_id)
    data = body.model_dump(exclude_unset=True, exclude={"target_strategies"})
    rec = service.update_recommendation(session, rec, data, body.target_strategies)
    return {
        "success": True,
        "data": service.serialize(rec, service.get_strategy_ids(session, rec.id)),
    }


@router.delete("/{rec_id}")
def delete_recommendation(
    rec_id: int,
    admin: User = Depends(require_admin),
    session: Session = Depends(get_session),
) -> dict:
    rec = service.get_recommendation(session, rec_id)
    service.delete_recommendation(session, rec)
    return {"success": True, "message": "Recommendation deleted"}


@router.post("/{rec_id}/send")
def send_recommendation(
    rec_id: int,
    admin: User = Depends(require_admin),
    session: Session = Depends(get_session),
) -> dict:
    """Re-send a recommendation email to its audience"""
    rec = service.get_recommendation(session, rec_id)
    result = service.send_to_users(session, rec)
    return {"success": True, "message": "Recommendation sent", **result}


@router.post("/{rec_id}/generate-pdf")
def generate_pdf(
    rec_id: int,
    body: PdfOptions | None = None,
    admin: User = Depends(require_admin),
    session: Session = Depends(get_session),
) -> Response:
    """Render, store and return the recommendation report"""
    rec = service.get_recommendation(session, rec_id)
    options = body or PdfOptions()

    filename = report_filename(rec.stock_symbol)
    pdf = render_report(ReportData(
        stock_symbol=rec.stock_symbol,
        stock_name=rec.stock_name,
        recommendation_type=rec.recommendation_type,
        ltp=rec.current_price,
        target_price=rec.target_price,
        stop_loss=rec.stop_loss,
        time_frame=rec.time_frame,
        company_about=options.company_about or rec.description,
        technical_reason=options.technical_reason or rec.rationale or "",
        summary=options.summary or rec.description,
        disclaimer=options.disclaimer or DEFAULT_DISCLAIMER,
    ))

    if rec.pdf_public_id:
        storage.delete(rec.pdf_public_id)
    stored = storage.save_bytes("recommendations", f"{filename}.pdf", pdf)
    rec.pdf_url = stored.url
    rec.pdf_public_id = stored.public_id
    rec.pdf_generated_at = utcnow()
    rec.updated_at = utcnow()
    session.add(rec)
    session.commit()
    logger.info("Report generated for recommendation %s: %s", rec.id, stored.public_id)

    return Response(
        content=pdf,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{filename}.pdf"'},
    )
