"""Subscription plans, payments and user subscriptions API router"""

import logging
import random
from datetime import datetime
from typing import Literal

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy import delete, func
from sqlmodel import Session, select

from investkaps.auth.dependencies import (
    ensure_owner_or_admin,
    get_current_user,
    get_user_by_clerk_id,
    require_admin,
)
from investkaps.clock import utcnow
from investkaps.config import settings
from investkaps.database import get_session
from investkaps.errors import (
    BadRequestError,
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
)
from investkaps.models.strategy import Strategy
from investkaps.models.subscription import (
    DURATIONS,
    PlanStrategyLink,
    SubscriptionPlan,
    UserSubscription,
)
from investkaps.models.user import User
from investkaps.notification.email import send_payment_confirmation
from investkaps.payment import razorpay
from investkaps.subscription import service

logger = logging.getLogger(__name__)
router = APIRouter()

Duration = Literal["monthly", "sixMonth", "yearly"]
Currency = Literal["INR", "USD", "EUR", "GBP"]


class Feature(BaseModel):
    name: str
    included: bool = True
    description: str = ""


class PlanCreate(BaseModel):
    package_code: str = Field(min_length=1, max_length=40)
    name: str = Field(min_length=1, max_length=200)
    description: str = ""
    price_monthly: float = Field(ge=0)
    price_six_month: float = Field(ge=0)
    price_yearly: float = Field(ge=0)
    currency: Currency = "INR"
    stock_options: bool = False
    index_options: bool = False
    stock_future: bool = False
    index_future: bool = False
    equity: bool = False
    mcx: bool = False
    features: list[Feature] = Field(default_factory=list)
    telegram_chat_id: str | None = None
    is_active: bool = True
    display_order: int = 0
    strategies: list[int] = Field(default_factory=list)


class PlanUpdate(BaseModel):
    package_code: str | None = Field(default=None, min_length=1, max_length=40)
    name: str | None = Field(default=None, min_length=1, max_length=200)
    description: str | None = None
    price_monthly: float | None = Field(default=None, ge=0)
    price_six_month: float | None = Field(default=None, ge=0)
    price_yearly: float | None = Field(default=None, ge=0)
    currency: Currency | None = None
    stock_options: bool | None = None
    index_options: bool | None = None
    stock_future: bool | None = None
    index_future: bool | None = None
    equity: bool | None = None
    mcx: bool | None = None
    features: list[Feature] | None = None
    telegram_chat_id: str | None = None
    is_active: bool | None = None
    display_order: int | None = None


class StrategyIds(BaseModel):
    strategy_ids: list[int] | None = None


class OrderRequest(BaseModel):
    plan_id: int
    duration: Duration
    amount: float = Field(gt=0)


class PaymentVerification(BaseModel):
    razorpay_order_id: str
    razorpay_payment_id: str
    razorpay_signature: str
    plan_id: int
    duration: Duration


# --- plans ---

def _check_package_code(session: Session, code: str, exclude_id: int | None = None) -> str:
    code = code.strip().upper()
    existing = session.exec(
        select(SubscriptionPlan).where(SubscriptionPlan.package_code == code)
    ).first()
    if existing is not None and existing.id != exclude_id:
        raise BadRequestError("Plan with this package code already exists")
    return code


def _require_strategy_ids(session: Session, body: StrategyIds) -> list[int]:
    if not body.strategy_ids:
        raise BadRequestError("strategy_ids must be a non-empty list")
    ids = sorted(set(body.strategy_ids))
    found = set(session.exec(select(Strategy.id).where(Strategy.id.in_(ids))).all())
    missing = [i for i in ids if i not in found]
    if missing:
        raise BadRequestError(f"Unknown strategies: {missing}")
    return ids


def _link_strategies(session: Session, plan_id: int, strategy_ids: list[int]) -> None:
    existing = set(service.plan_strategy_ids(session, plan_id))
    for strategy_id in strategy_ids:
        if strategy_id not in existing:
            session.add(PlanStrategyLink(plan_id=plan_id, strategy_id=strategy_id))


@router.get("/plans")
def list_active_plans(session: Session = Depends(get_session)) -> dict:
    """Active plans for the pricing page"""
    plans = session.exec(
        select(SubscriptionPlan)
        .where(SubscriptionPlan.is_active == True)  # noqa: E712
        .order_by(SubscriptionPlan.display_order, SubscriptionPlan.id)
    ).all()
    return {
        "success": True,
        "count": len(plans),
        "data": [service.serialize_plan(session, p) for p in plans],
    }


@router.get("/plans/{plan_id}")
def get_plan(plan_id: int, session: Session = Depends(get_session)) -> dict:
    plan = service.get_plan(session, plan_id)
    return {"success": True, "data": service.serialize_plan(session, plan)}


@router.get("/admin/plans", dependencies=[Depends(require_admin)])
def list_all_plans(session: Session = Depends(get_session)) -> dict:
    plans = session.exec(
        select(SubscriptionPlan).order_by(SubscriptionPlan.display_order, SubscriptionPlan.id)
    ).all()
    return {
        "success": True,
        "count": len(plans),
        "data": [service.serialize_plan(session, p) for p in plans],
    }


@router.post("/plans", status_code=201, dependencies=[Depends(require_admin)])
def create_plan(body: PlanCreate, session: Session = Depends(get_session)) -> dict:
    data = body.model_dump(exclude={"features", "strategies"})
    data["package_code"] = _check_package_code(session, body.package_code)
    plan = SubscriptionPlan(**data)
    plan.features_list = [f.model_dump() for f in body.features]
    session.add(plan)
    session.flush()
    if body.strategies:
        ids = _require_strategy_ids(session, StrategyIds(strategy_ids=body.strategies))
        _link_strategies(session, plan.id, ids)
    session.commit()
    session.refresh(plan)
    logger.info("Plan created: %s", plan.package_code)
    return {"success": True, "data": service.serialize_plan(session, plan)}


@router.put("/plans/{plan_id}", dependencies=[Depends(require_admin)])
def update_plan(
    plan_id: int,
    body: PlanUpdate,
    session: Session = Depends(get_session),
) -> dict:
    plan = service.get_plan(session, plan_id)
    data = body.model_dump(exclude_unset=True, exclude={"features"})
    if data.get("package_code"):
        data["package_code"] = _check_package_code(session, data["package_code"], plan.id)
    for key, value in data.items():
        if value is not None or key == "telegram_chat_id":
            setattr(plan, key, value)
    if body.features is not None:
        plan.features_list = [f.model_dump() for f in body.features]
    plan.updated_at = utcnow()
    session.add(plan)
    session.commit()
    session.refresh(plan)
    return {"success": True, "data": service.serialize_plan(session, plan)}


@router.delete("/plans/{plan_id}", dependencies=[Depends(require_admin)])
def delete_plan(plan_id: int, session: Session = Depends(get_session)) -> dict:
    plan = service.get_plan(session, plan_id)
    in_use = session.exec(
        select(func.count()).select_from(UserSubscription)
        .where(UserSubscription.plan_id == plan.id)
    ).one()
    if in_use:
        raise BadRequestError("Plan has subscriptions, deactivate it instead")
    session.exec(delete(PlanStrategyLink).where(PlanStrategyLink.plan_id == plan.id))
    session.delete(plan)
    session.commit()
    logger.info("Plan deleted: %s", plan.package_code)
    return {"success": True, "message": "Subscription plan deleted"}


@router.patch("/plans/{plan_id}/toggle", dependencies=[Depends(require_admin)])
def toggle_plan(plan_id: int, session: Session = Depends(get_session)) -> dict:
    plan = service.get_plan(session, plan_id)
    plan.is_active = not plan.is_active
    plan.updated_at = utcnow()
    session.add(plan)
    session.commit()
    session.refresh(plan)
    return {"success": True, "data": service.serialize_plan(session, plan)}


@router.post("/plans/{plan_id}/strategies", dependencies=[Depends(require_admin)])
def add_plan_strategies(
    plan_id: int,
    body: StrategyIds,
    session: Session = Depends(get_session),
) -> dict:
    plan = service.get_plan(session, plan_id)
    _link_strategies(session, plan.id, _require_strategy_ids(session, body))
    session.commit()
    return {"success": True, "data": service.serialize_plan(session, plan)}


@router.delete("/plans/{plan_id}/strategies", dependencies=[Depends(require_admin)])
def remove_plan_strategies(
    plan_id: int,
    body: StrategyIds,
    session: Session = Depends(get_session),
) -> dict:
    plan = service.get_plan(session, plan_id)
    if not body.strategy_ids:
        raise BadRequestError("strategy_ids must be a non-empty list")
    session.exec(
        delete(PlanStrategyLink)
        .where(PlanStrategyLink.plan_id == plan.id)
        .where(PlanStrategyLink.strategy_id.in_(body.strategy_ids))
    )
    session.commit()
    return {"success": True, "data": service.serialize_plan(session, plan)}


# --- payments ---

@router.post("/payment/order")
def create_payment_order(
    body: OrderRequest,
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
) -> dict:
    """Razorpay order for a plan + duration"""
    plan = service.get_plan(session, body.plan_id, active_only=True)
    razorpay.check_amount(plan.price_for(body.duration), body.amount)

    client = razorpay.get_client()
    order = client.create_order(
        body.amount,
        plan.currency,
        razorpay.make_receipt(user.id),
        notes={"plan_id": str(plan.id), "duration": body.duration, "user_id": str(user.id)},
    )
    return {
        "success": True,
        "order_id": order["id"],
        "amount": order["amount"],
        "currency": order["currency"],
        "key": client.key_id,
        "name": user.name,
        "email": user.email,
        "plan": {"id": plan.id, "name": plan.name},
    }


@router.post("/payment/verify")
def verify_payment(
    body: PaymentVerification,
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
) -> dict:
    """Check the checkout signature + capture, then activate the subscription"""
    plan = service.get_plan(session, body.plan_id)
    client = razorpay.get_client()
    if not client.verify_signature(
        body.razorpay_order_id, body.razorpay_payment_id, body.razorpay_signature,
    ):
        logger.warning("Payment signature mismatch: order %s", body.razorpay_order_id)
        raise BadRequestError("Invalid payment signature")

    used = session.exec(
        select(UserSubscription).where(UserSubscription.payment_id == body.razorpay_payment_id)
    ).first()
    if used is not None:
        raise ConflictError("Payment already used")

    payment = client.fetch_payment(body.razorpay_payment_id)
    if payment.get("status") != "captured":
        raise BadRequestError(f"Payment not captured (status: {payment.get('status')})")
    razorpay.check_order(
        client.fetch_order(body.razorpay_order_id),
        payment,
        plan_id=plan.id,
        duration=body.duration,
        user_id=user.id,
        amount=plan.price_for(body.duration),
    )

    sub = service.create_user_subscription(
        session,
        user,
        plan,
        body.duration,
        payment_id=body.razorpay_payment_id,
        order_id=body.razorpay_order_id,
        transaction_details={
            "method": payment.get("method"),
            "amount": payment.get("amount"),
            "currency": payment.get("currency"),
            "email": payment.get("email"),
            "contact": payment.get("contact"),
        },
        price=payment["amount"] / 100 if payment.get("amount") else None,
    )
    try:
        send_payment_confirmation(user, sub, plan)
    except Exception:
        logger.exception("Payment confirmation email failed: subscription %s", sub.id)

    return {
        "success": True,
        "message": "Payment verified and subscription activated",
        "data": service.serialize_subscription(sub, plan),
    }


@router.post("/payment/test-bypass")
def payment_test_bypass(
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
) -> dict:
    """Activate a random plan without payment (test environments only)"""
    if not settings.ALLOW_TEST_BYPASS:
        raise PermissionDeniedError("Test bypass is disabled")

    plans = session.exec(
        select(SubscriptionPlan).where(SubscriptionPlan.is_active == True)  # noqa: E712
    ).all()
    if not plans:
        raise NotFoundError("No active subscription plans")
    plan = random.choice(plans)
    duration = random.choice(DURATIONS)

    service.cancel_active_subscriptions(session, user)
    sub = service.create_user_subscription(
        session,
        user,
        plan,
        duration,
        payment_id=f"TEST-{int(utcnow().timestamp())}",
        order_id="TEST-BYPASS",
        transaction_details={"method": "test_bypass"},
    )
    logger.warning("Payment bypass used by user %s", user.id)
    return {"success": True, "data": service.serialize_subscription(sub, plan)}


# --- admin ---

@router.get("/admin/users", dependencies=[Depends(require_admin)])
def admin_user_subscriptions(
    status: Literal["active", "expired", "cancelled", "pending"] | None = Query(None),
    duration: Duration | None = Query(None),
    start_from: datetime | None = Query(None),
    start_to: datetime | None = Query(None),
    end_from: datetime | None = Query(None),
    end_to: datetime | None = Query(None),
    search: str | None = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    session: Session = Depends(get_session),
) -> dict:
    result = service.admin_list(
        session,
        status=status,
        duration=duration,
        start_from=start_from,
        start_to=start_to,
        end_from=end_from,
        end_to=end_to,
        search=search,
        page=page,
        limit=limit,
    )
    return {"success": True, **result}


@router.get("/admin/stats", dependencies=[Depends(require_admin)])
def admin_subscription_stats(session: Session = Depends(get_session)) -> dict:
    return {"success": True, "data": service.subscription_stats(session)}


# --- user ---

def _owner(session: Session, clerk_id: str, current: User) -> User:
    owner = get_user_by_clerk_id(session, clerk_id)
    if owner is None:
        raise NotFoundError("User not found")
    ensure_owner_or_admin(current, owner.id)
    return owner


@router.get("/user/{clerk_id}")
def get_user_subscriptions(
    clerk_id: str,
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
) -> dict:
    owner = _owner(session, clerk_id, user)
    data = service.user_subscriptions(session, owner)
    return {"success": True, "count": len(data), "data": data}


@router.get("/user/{clerk_id}/active")
def get_active_subscriptions(
    clerk_id: str,
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
) -> dict:
    owner = _owner(session, clerk_id, user)
    data = service.user_subscriptions(session, owner, active_only=True)
    return {"success": True, "count": len(data), "data": data}


@router.put("/{subscription_id}/cancel")
def cancel_subscription(
    subscription_id: int,
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
) -> dict:
    sub = session.get(UserSubscription, subscription_id)
    if sub is None:
        raise NotFoundError("Subscription not found")
    ensure_owner_or_admin(user, sub.user_id)
    sub = service.cancel_subscription(session, sub)
    return {
        "success": True,
        "message": "Subscription cancelled",
        "data": service.serialize_subscription(sub),
    }
