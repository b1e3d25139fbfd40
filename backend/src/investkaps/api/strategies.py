"""Strategy admin API router"""

import logging

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy import delete
from sqlmodel import Session, select

from investkaps.auth.dependencies import require_admin
from investkaps.clock import utcnow
from investkaps.database import get_session
from investkaps.errors import BadRequestError, NotFoundError
from investkaps.models.recommendation import RecommendationStrategyLink
from investkaps.models.strategy import Strategy
from investkaps.models.subscription import PlanStrategyLink, SubscriptionPlan

logger = logging.getLogger(__name__)
router = APIRouter(dependencies=[Depends(require_admin)])


class StrategyCreate(BaseModel):
    strategy_code: str = Field(min_length=1, max_length=40)
    name: str = Field(min_length=1, max_length=200)
    description: str = ""
    stock_options: bool = False
    index_options: bool = False
    stock_future: bool = False
    index_future: bool = False
    equity: bool = False
    mcx: bool = False
    is_active: bool = True


class StrategyUpdate(BaseModel):
    strategy_code: str | None = Field(default=None, min_length=1, max_length=40)
    name: str | None = Field(default=None, min_length=1, max_length=200)
    description: str | None = None
    stock_options: bool | None = None
    index_options: bool | None = None
    stock_future: bool | None = None
    index_future: bool | None = None
    equity: bool | None = None
    mcx: bool | None = None
    is_active: bool | None = None


def _get_strategy(session: Session, strategy_id: int) -> Strategy:
    strategy = session.get(Strategy, strategy_id)
    if strategy is None:
        raise NotFoundError("Strategy not found")
    return strategy


def _check_code(session: Session, code: str, exclude_id: int | None = None) -> str:
    code = code.strip().upper()
    existing = session.exec(select(Strategy).where(Strategy.strategy_code == code)).first()
    if existing is not None and existing.id != exclude_id:
        raise BadRequestError("Strategy with this code already exists")
    return code


def _linked_plans(session: Session, strategy_id: int) -> list[SubscriptionPlan]:
    stmt = (
        select(SubscriptionPlan)
        .join(PlanStrategyLink, PlanStrategyLink.plan_id == SubscriptionPlan.id)
        .where(PlanStrategyLink.strategy_id == strategy_id)
        .order_by(SubscriptionPlan.display_order)
    )
    return list(session.exec(stmt).all())


@router.get("")
def list_strategies(session: Session = Depends(get_session)) -> dict:
    strategies = session.exec(select(Strategy).order_by(Strategy.created_at.desc())).all()
    return {"success": True, "count": len(strategies), "data": strategies}


@router.get("/{strategy_id}")
def get_strategy(strategy_id: int, session: Session = Depends(get_session)) -> dict:
    return {"success": True, "data": _get_strategy(session, strategy_id)}


@router.post("", status_code=201)
def create_strategy(body: StrategyCreate, session: Session = Depends(get_session)) -> dict:
    data = body.model_dump()
    data["strategy_code"] = _check_code(session, body.strategy_code)
    strategy = Strategy(**data)
    session.add(strategy)
    session.commit()
    session.refresh(strategy)
    logger.info("Strategy created: %s", strategy.strategy_code)
    return {"success": True, "data": strategy}


@router.put("/{strategy_id}")
def update_strategy(
    strategy_id: int,
    body: StrategyUpdate,
    session: Session = Depends(get_session),
) -> dict:
    strategy = _get_strategy(session, strategy_id)
    data = body.model_dump(exclude_unset=True)
    if data.get("strategy_code"):
        data["strategy_code"] = _check_code(session, data["strategy_code"], strategy.id)
    for key, value in data.items():
        if value is not None:
            setattr(strategy, key, value)
    strategy.updated_at = utcnow()
    session.add(strategy)
    session.commit()
    session.refresh(strategy)
    return {"success": True, "data": strategy}


@router.patch("/{strategy_id}/toggle-status")
def toggle_strategy(strategy_id: int, session: Session = Depends(get_session)) -> dict:
    strategy = _get_strategy(session, strategy_id)
    strategy.is_active = not strategy.is_active
    strategy.updated_at = utcnow()
    session.add(strategy)
    session.commit()
    session.refresh(strategy)
    state = "activated" if strategy.is_active else "deactivated"
    return {"success": True, "message": f"Strategy {state}", "data": strategy}


@router.delete("/{strategy_id}")
def delete_strategy(strategy_id: int, session: Session = Depends(get_session)) -> dict:
    strategy = _get_strategy(session, strategy_id)
    plans = _linked_plans(session, strategy.id)
    if plans:
        raise BadRequestError(
            "Cannot delete strategy that is used by subscription plans",
            plans=[p.name for p in plans],
        )
    session.exec(
        delete(RecommendationStrategyLink)
        .where(RecommendationStrategyLink.strategy_id == strategy.id)
    )
    session.delete(strategy)
    session.commit()
    logger.info("Strategy deleted: %s", strategy.strategy_code)
    return {"success": True, "message": "Strategy deleted"}


@router.get("/{strategy_id}/subscriptions")
def strategy_plans(strategy_id: int, session: Session = Depends(get_session)) -> dict:
    """Plans that include this strategy"""
    _get_strategy(session, strategy_id)
    plans = _linked_plans(session, strategy_id)
    return {
        "success": True,
        "count": len(plans),
        "data": [{"id": p.id, "name": p.name, "package_code": p.package_code} for p in plans],
    }
