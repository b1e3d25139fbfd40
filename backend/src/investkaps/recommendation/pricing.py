"""Live price refresh for active recommendations"""

import logging
from datetime import timedelta

from sqlalchemy import or_
from sqlmodel import Session, select

from investkaps.clock import utcnow
from investkaps.config import settings
from investkaps.data.base import QuoteProvider
from investkaps.errors import InvestKapsError
from investkaps.models.recommendation import StockRecommendation

logger = logging.getLogger(__name__)


def active_recommendations(session: Session) -> list[StockRecommendation]:
    """Published and not expired"""
    now = utcnow()
    stmt = (
        select(StockRecommendation)
        .where(StockRecommendation.status == "published")
        .where(or_(
            StockRecommendation.expires_at == None,  # noqa: E711
            StockRecommendation.expires_at > now,
        ))
        .order_by(StockRecommendation.published_at.desc())
    )
    return list(session.exec(stmt).all())


def _fetch_prices(
    provider: QuoteProvider,
    recs: list[StockRecommendation],
) -> dict[str, float]:
    items = sorted({(r.exchange or "NSE", r.stock_symbol) for r in recs})
    return provider.get_ltp(items)


def _fetch_with_fallback(
    provider: QuoteProvider,
    recs: list[StockRecommendation],
) -> tuple[dict[str, float], dict[str, str]]:
    """Batch fetch, retrying one instrument at a time if the batch fails.

    Returns (prices, errors keyed by instrument).
    """
    try:
        return _fetch_prices(provider, recs), {}
    except InvestKapsError as e:
        if len(recs) == 1:
            return {}, {recs[0].instrument_key: e.message}
        logger.warning("Batch price fetch failed (%s), fetching individually", e.message)

    prices: dict[str, float] = {}
    errors: dict[str, str] = {}
    for rec in recs:
        key = rec.instrument_key
        if key in prices or key in errors:
            continue
        try:
            prices.update(provider.get_ltp([(rec.exchange or "NSE", rec.stock_symbol)]))
        except InvestKapsError as e:
            errors[key] = e.message
    return prices, errors


def _apply_prices(
    recs: list[StockRecommendation],
    prices: dict[str, float],
    only_changed: bool,
    fetch_errors: dict[str, str] | None = None,
) -> tuple[int, int, list[dict]]:
    """Write fetched prices onto recs, returns (updated, failed, errors)"""
    now = utcnow()
    fetch_errors = fetch_errors or {}
    updated = failed = 0
    errors: list[dict] = []
    for rec in recs:
        price = prices.get(rec.instrument_key)
        if price is None:
            failed += 1
            message = fetch_errors.get(rec.instrument_key, "Price not available")
            errors.append({"symbol": rec.stock_symbol, "error": message})
            continue
        if only_changed and price == rec.current_price:
            continue
        rec.current_price = float(price)
        rec.last_price_update = now
        updated += 1
    return updated, failed, errors


def stale_recommendations(
    session: Session,
    stale_minutes: int | None = None,
) -> list[StockRecommendation]:
    """Active recommendations not priced within stale_minutes"""
    stale_minutes = stale_minutes or settings.PRICE_STALE_MINUTES
    cutoff = utcnow() - timedelta(minutes=stale_minutes)
    return [
        r for r in active_recommendations(session)
        if r.last_price_update is None or r.last_price_update < cutoff
    ]


def refresh_stale_prices(
    session: Session,
    provider: QuoteProvider,
    stale_minutes: int | None = None,
) -> dict:
    """Refresh active recommendations not priced within stale_minutes"""
    stale = stale_recommendations(session, stale_minutes)

    updated = failed = 0
    errors: list[dict] = []
    if stale:
        prices, fetch_errors = _fetch_with_fallback(provider, stale)
        updated, failed, errors = _apply_prices(
            stale, prices, only_changed=False, fetch_errors=fetch_errors,
        )
        for rec in stale:
            session.add(rec)
        session.commit()

    logger.info("Stale price refresh: %d updated, %d failed of %d", updated, failed, len(stale))
    return {
        "updated": updated,
        "failed": failed,
        "total": len(stale),
        "errors": errors,
        "data": active_recommendations(session),
    }


def update_all_recommendation_prices(session: Session, provider: QuoteProvider) -> dict:
    """Scheduled refresh of every active recommendation (writes only changes)"""
    active = active_recommendations(session)
    if not active:
        return {"updated": 0, "failed": 0, "total": 0}

    prices, _ = _fetch_with_fallback(provider, active)
    updated, failed, _ = _apply_prices(active, prices, only_changed=True)
    for rec in active:
        session.add(rec)
    session.commit()

    logger.info("Recommendation prices: %d updated, %d failed of %d", updated, failed, len(active))
    return {"updated": updated, "failed": failed, "total": len(active)}


def update_prices_for_symbols(
    session: Session,
    provider: QuoteProvider,
    symbols: list[str],
) -> dict:
    """Refresh recommendations with the given symbols"""
    wanted = {s.strip().upper() for s in symbols if s.strip()}
    recs = session.exec(
        select(StockRecommendation).where(StockRecommendation.stock_symbol.in_(wanted))
    ).all()
    if not recs:
        return {"updated": 0, "failed": 0, "total": 0, "errors": [], "prices": {}}

    prices = _fetch_prices(provider, list(recs))
    updated, failed, errors = _apply_prices(list(recs), prices, only_changed=False)
    for rec in recs:
        session.add(rec)
    session.commit()
    return {
        "updated": updated,
        "failed": failed,
        "total": len(recs),
        "errors": errors,
        "prices": {r.stock_symbol: r.current_price for r in recs},
    }


def current_prices(session: Session, symbols: list[str]) -> dict[str, dict]:
    """Latest stored price per symbol from recommendations"""
    wanted = {s.strip().upper() for s in symbols if s.strip()}
    recs = session.exec(
        select(StockRecommendation)
        .where(StockRecommendation.stock_symbol.in_(wanted))
        .order_by(StockRecommendation.updated_at.desc())
    ).all()
    prices: dict[str, dict] = {}
    for rec in recs:
        prices.setdefault(rec.stock_symbol, {
            "price": rec.current_price,
            "exchange": rec.exchange,
            "last_price_update": rec.last_price_update,
        })
    return prices
