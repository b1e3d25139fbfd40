"""Recommendation lifecycle: create, edit, publish, deliver, feed"""

import asyncio
import logging
from math import ceil

from sqlalchemy import delete, func
from sqlmodel import Session, select

from investkaps import storage
from investkaps.clock import utcnow
from investkaps.errors import BadRequestError, NotFoundError
from investkaps.models.recommendation import (
    EXCHANGES,
    RecommendationDelivery,
    RecommendationStrategyLink,
    RecommendationView,
    StockRecommendation,
)
from investkaps.models.strategy import Strategy
from investkaps.models.subscription import (
    PlanStrategyLink,
    SubscriptionPlan,
    UserSubscription,
)
from investkaps.models.user import User
from investkaps.notification.email import send_recommendation_email
from investkaps.notification.telegram import send_recommendation

logger = logging.getLogger(__name__)

# status -> statuses it may move to
ALLOWED_TRANSITIONS = {
    "draft": {"published", "archived"},
    "published": {"archived"},
    "archived": {"draft"},
}


def normalize_symbol(symbol: str, exchange: str | None = None) -> tuple[str, str]:
    """Split a "SYMBOL.EXCHANGE" suffix; the suffix wins only over empty/NSE"""
    symbol = symbol.strip().upper()
    exchange = (exchange or "").strip().upper()
    if "." in symbol:
        base, _, suffix = symbol.rpartition(".")
        if base and suffix in EXCHANGES:
            symbol = base
            if not exchange or exchange == "NSE":
                exchange = suffix
    return symbol, exchange or "NSE"


def check_transition(current: str, new: str) -> None:
    if new == current:
        return
    if new not in ALLOWED_TRANSITIONS.get(current, set()):
        raise BadRequestError(f"Cannot change status from {current} to {new}")


# --- lookups ---

def get_recommendation(session: Session, rec_id: int) -> StockRecommendation:
    rec = session.get(StockRecommendation, rec_id)
    if rec is None:
        raise NotFoundError("Recommendation not found")
    return rec


def get_strategy_ids(session: Session, rec_id: int) -> list[int]:
    stmt = select(RecommendationStrategyLink.strategy_id).where(
        RecommendationStrategyLink.recommendation_id == rec_id,
    )
    return list(session.exec(stmt).all())


def _strategy_map(session: Session, rec_ids: list[int]) -> dict[int, list[int]]:
    result: dict[int, list[int]] = {rec_id: [] for rec_id in rec_ids}
    if not rec_ids:
        return result
    stmt = select(RecommendationStrategyLink).where(
        RecommendationStrategyLink.recommendation_id.in_(rec_ids),
    )
    for link in session.exec(stmt).all():
        result[link.recommendation_id].append(link.strategy_id)
    return result


def serialize(rec: StockRecommendation, strategy_ids: list[int]) -> dict:
    data = rec.model_dump()
    data["target_strategies"] = strategy_ids
    return data


def serialize_many(session: Session, recs: list[StockRecommendation]) -> list[dict]:
    strategies = _strategy_map(session, [r.id for r in recs])
    return [serialize(r, strategies[r.id]) for r in recs]


def _set_strategies(session: Session, rec: StockRecommendation, strategy_ids: list[int]) -> None:
    unique_ids = sorted(set(strategy_ids))
    if unique_ids:
        found = session.exec(select(Strategy.id).where(Strategy.id.in_(unique_ids))).all()
        missing = set(unique_ids) - set(found)
        if missing:
            raise BadRequestError(f"Unknown strategies: {sorted(missing)}")

    session.exec(
        delete(RecommendationStrategyLink)
        .where(RecommendationStrategyLink.recommendation_id == rec.id)
    )
    for strategy_id in unique_ids:
        session.add(RecommendationStrategyLink(
            recommendation_id=rec.id, strategy_id=strategy_id,
        ))


# --- lifecycle ---

def create_recommendation(
    session: Session,
    data: dict,
    strategy_ids: list[int],
    created_by: int | None = None,
) -> StockRecommendation:
    """Create a recommendation, notifying subscribers if created as published"""
    data = dict(data)
    data["stock_symbol"], data["exchange"] = normalize_symbol(
        data["stock_symbol"], data.get("exchange"),
    )
    status = data.get("status") or "draft"
    if status not in ALLOWED_TRANSITIONS:
        raise BadRequestError(f"Invalid status: {status}")
    data["status"] = status

    rec = StockRecommendation(**data, created_by=created_by)
    rec.last_price_update = utcnow()
    if status == "published":
        rec.published_at = utcnow()
    session.add(rec)
    session.flush()
    _set_strategies(session, rec, strategy_ids)
    session.commit()
    session.refresh(rec)
    logger.info("Recommendation created: %s (%s) id=%s", rec.stock_symbol, rec.status, rec.id)

    if rec.status == "published":
        notify_published(session, rec)
    return rec


def update_recommendation(
    session: Session,
    rec: StockRecommendation,
    data: dict,
    strategy_ids: list[int] | None = None,
) -> StockRecommendation:
    """Partial update with status transition rules"""
    data = dict(data)
    previous_status = rec.status

    new_status = data.pop("status", None)
    if new_status is not None:
        check_transition(previous_status, new_status)

    if "stock_symbol" in data or "exchange" in data:
        data["stock_symbol"], data["exchange"] = normalize_symbol(
            data.get("stock_symbol", rec.stock_symbol),
            data.get("exchange", rec.exchange),
        )
    if "current_price" in data and data["current_price"] != rec.current_price:
        rec.last_price_update = utcnow()

    for key, value in data.items():
        setattr(rec, key, value)

    newly_published = new_status == "published" and previous_status != "published"
    if new_status is not None:
        rec.status = new_status
    if newly_published and rec.published_at is None:
        rec.published_at = utcnow()

    if strategy_ids is not None:
        _set_strategies(session, rec, strategy_ids)

    rec.updated_at = utcnow()
    session.add(rec)
    session.commit()
    session.refresh(rec)

    if newly_published:
        logger.info("Recommendation %s published, notifying subscribers", rec.id)
        notify_published(session, rec)
    return rec


def delete_recommendation(session: Session, rec: StockRecommendation) -> None:
    if rec.pdf_public_id:
        storage.delete(rec.pdf_public_id)
    for model in (RecommendationStrategyLink, RecommendationView, RecommendationDelivery):
        session.exec(delete(model).where(model.recommendation_id == rec.id))
    session.delete(rec)
    session.commit()
    logger.info("Recommendation deleted: id=%s", rec.id)


def list_recommendations(
    session: Session,
    status: str | None = None,
    page: int = 1,
    limit: int = 10,
) -> dict:
    """Admin listing, newest first"""
    stmt = select(StockRecommendation)
    count_stmt = select(func.count()).select_from(StockRecommendation)
    if status:
        stmt = stmt.where(StockRecommendation.status == status)
        count_stmt = count_stmt.where(StockRecommendation.status == status)

    total = session.exec(count_stmt).one()
    recs = session.exec(
        stmt.order_by(StockRecommendation.created_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    ).all()

    return {
        "count": len(recs),
        "total": total,
        "total_pages": ceil(total / limit) if limit else 0,
        "current_page": page,
        "data": serialize_many(session, recs),
    }


# --- audience ---

def find_target_users(session: Session, strategy_ids: list[int]) -> list[User]:
    """Users with an active subscription to a plan covering any strategy"""
    if not strategy_ids:
        return []
    stmt = (
        select(User)
        .join(UserSubscription, UserSubscription.user_id == User.id)
        .join(PlanStrategyLink, PlanStrategyLink.plan_id == UserSubscription.plan_id)
        .where(UserSubscription.status == "active")
        .where(PlanStrategyLink.strategy_id.in_(strategy_ids))
        .distinct()
    )
    return list(session.exec(stmt).all())


def telegram_chat_ids(session: Session, strategy_ids: list[int]) -> list[str]:
    """Distinct chat ids of plans linked to the strategies"""
    if not strategy_ids:
        return []
    stmt = (
        select(SubscriptionPlan.telegram_chat_id)
        .join(PlanStrategyLink, PlanStrategyLink.plan_id == SubscriptionPlan.id)
        .where(PlanStrategyLink.strategy_id.in_(strategy_ids))
        .where(SubscriptionPlan.telegram_chat_id != None)  # noqa: E711
        .distinct()
    )
    return [chat_id for chat_id in session.exec(stmt).all() if chat_id and chat_id.strip()]


def send_to_users(session: Session, rec: StockRecommendation) -> dict:
    """Email the recommendation to its audience and record deliveries"""
    users = find_target_users(session, get_strategy_ids(session, rec.id))
    sent = failed = 0

    for user in users:
        try:
            ok = send_recommendation_email(user, rec)
        except Exception:
            logger.exception("Recommendation email failed: user %s", user.id)
            ok = False

        session.add(RecommendationDelivery(
            recommendation_id=rec.id,
            user_id=user.id,
            delivery_status="sent" if ok else "failed",
        ))
        if ok:
            sent += 1
        else:
            failed += 1

    session.commit()
    logger.info(
        "Recommendation %s delivered: %d sent, %d failed of %d",
        rec.id, sent, failed, len(users),
    )
    return {"sent_count": sent, "failed_count": failed, "total_users": len(users)}


def notify_published(session: Session, rec: StockRecommendation) -> None:
    """Email + Telegram fan-out; failures never propagate"""
    try:
        send_to_users(session, rec)
    except Exception:
        logger.exception("Recommendation email fan-out failed: id=%s", rec.id)

    try:
        chat_ids = telegram_chat_ids(session, get_strategy_ids(session, rec.id))
        asyncio.run(send_recommendation(rec, chat_ids))
    except Exception:
        logger.exception("Recommendation Telegram notification failed: id=%s", rec.id)


# --- subscriber feed ---

def user_feed(session: Session, user: User, page: int = 1, limit: int = 10) -> dict:
    """Published recommendations visible to a subscriber"""
    now = utcnow()
    subs = session.exec(
        select(UserSubscription)
        .where(UserSubscription.user_id == user.id)
        .where(UserSubscription.status == "active")
        .where(UserSubscription.end_date > now)
    ).all()

    empty = {"count": 0, "total": 0, "total_pages": 0, "current_page": page, "data": []}
    if not subs:
        return empty

    plan_ids = {s.plan_id for s in subs}
    strategy_ids = session.exec(
        select(PlanStrategyLink.strategy_id)
        .where(PlanStrategyLink.plan_id.in_(plan_ids))
        .distinct()
    ).all()
    if not strategy_ids:
        return empty

    earliest_start = min(s.start_date for s in subs)
    visible = (
        select(StockRecommendation.id)
        .join(
            RecommendationStrategyLink,
            RecommendationStrategyLink.recommendation_id == StockRecommendation.id,
        )
        .where(StockRecommendation.status == "published")
        .where(StockRecommendation.published_at >= earliest_start)
        .where(RecommendationStrategyLink.strategy_id.in_(strategy_ids))
        .distinct()
    )
    rec_ids = list(session.exec(visible).all())
    total = len(rec_ids)

    recs = session.exec(
        select(StockRecommendation)
        .where(StockRecommendation.id.in_(rec_ids))
        .order_by(StockRecommendation.published_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    ).all()

    _mark_viewed(session, user, recs)

    return {
        "count": len(recs),
        "total": total,
        "total_pages": ceil(total / limit) if limit else 0,
        "current_page": page,
        "data": serialize_many(session, recs),
    }


def _mark_viewed(session: Session, user: User, recs: list[StockRecommendation]) -> None:
    if not recs:
        return
    seen = set(session.exec(
        select(RecommendationView.recommendation_id)
        .where(RecommendationView.user_id == user.id)
        .where(RecommendationView.recommendation_id.in_([r.id for r in recs]))
    ).all())
    for rec in recs:
        if rec.id not in seen:
            session.add(RecommendationView(recommendation_id=rec.id, user_id=user.id))
    session.commit()
