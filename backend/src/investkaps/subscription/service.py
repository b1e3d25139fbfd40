"""User subscription lifecycle, admin queries and expiry jobs"""

import logging
from datetime import datetime, timedelta
from math import ceil

from sqlalchemy import func, or_
from sqlmodel import Session, select

from investkaps.clock import add_months, as_utc, utcnow
from investkaps.errors import BadRequestError, NotFoundError
from investkaps.models.subscription import (
    DURATIONS,
    PlanStrategyLink,
    SubscriptionNotification,
    SubscriptionPlan,
    UserSubscription,
)
from investkaps.models.user import User
from investkaps.notification.email import (
    send_expiration_reminder,
    send_expired_notice,
)

logger = logging.getLogger(__name__)

REMINDER_DAYS = 3
EXPIRING_SOON_DAYS = 7
RECENTLY_EXPIRED_DAYS = 30
REVENUE_MONTHS = 6

_DURATION_MONTHS = {
    "monthly": 1,
    "sixMonth": 6,
    "yearly": 12,
}


def calculate_end_date(start: datetime, duration: str) -> datetime:
    """start + 1 / 6 / 12 calendar months"""
    if duration not in _DURATION_MONTHS:
        raise BadRequestError(f"Invalid duration: {duration}")
    return add_months(start, _DURATION_MONTHS[duration])


def get_plan(session: Session, plan_id: int, active_only: bool = False) -> SubscriptionPlan:
    plan = session.get(SubscriptionPlan, plan_id)
    if plan is None or (active_only and not plan.is_active):
        raise NotFoundError("Subscription plan not found")
    return plan


def plan_strategy_ids(session: Session, plan_id: int) -> list[int]:
    stmt = select(PlanStrategyLink.strategy_id).where(PlanStrategyLink.plan_id == plan_id)
    return list(session.exec(stmt).all())


def serialize_plan(session: Session, plan: SubscriptionPlan) -> dict:
    data = plan.model_dump(exclude={"features"})
    data["features"] = plan.features_list
    data["strategies"] = plan_strategy_ids(session, plan.id)
    return data


def serialize_subscription(sub: UserSubscription, plan: SubscriptionPlan | None = None) -> dict:
    data = sub.model_dump(exclude={"transaction_details"})
    data["transaction_details"] = sub.transaction_dict
    if plan is not None:
        data["plan"] = {"id": plan.id, "name": plan.name, "package_code": plan.package_code}
    return data


def create_user_subscription(
    session: Session,
    user: User,
    plan: SubscriptionPlan,
    duration: str,
    *,
    payment_id: str | None = None,
    order_id: str | None = None,
    transaction_details: dict | None = None,
    price: float | None = None,
    status: str = "active",
    commit: bool = True,
) -> UserSubscription:
    """Start a subscription now for the plan + duration

    With commit=False the row is only flushed, the caller commits.
    """
    if duration not in DURATIONS:
        raise BadRequestError(f"Invalid duration: {duration}")
    start = utcnow()
    sub = UserSubscription(
        user_id=user.id,
        plan_id=plan.id,
        status=status,
        start_date=start,
        end_date=calculate_end_date(start, duration),
        payment_id=payment_id,
        order_id=order_id,
        price=plan.price_for(duration) if price is None else price,
        currency=plan.currency,
        duration=duration,
    )
    sub.transaction_dict = transaction_details or {}
    session.add(sub)
    if commit:
        session.commit()
        session.refresh(sub)
    else:
        session.flush()
    logger.info(
        "Subscription %s created: user %s plan %s (%s)",
        sub.id, user.id, plan.package_code, duration,
    )
    return sub


def user_subscriptions(session: Session, user: User, active_only: bool = False) -> list[dict]:
    """A user's subscriptions with their plans, newest first"""
    stmt = (
        select(UserSubscription, SubscriptionPlan)
        .join(SubscriptionPlan, SubscriptionPlan.id == UserSubscription.plan_id)
        .where(UserSubscription.user_id == user.id)
        .order_by(UserSubscription.created_at.desc())
    )
    if active_only:
        stmt = (
            stmt.where(UserSubscription.status == "active")
            .where(UserSubscription.end_date > utcnow())
        )
    return [serialize_subscription(sub, plan) for sub, plan in session.exec(stmt).all()]


def cancel_subscription(session: Session, sub: UserSubscription) -> UserSubscription:
    sub.status = "cancelled"
    sub.auto_renew = False
    sub.updated_at = utcnow()
    session.add(sub)
    session.commit()
    session.refresh(sub)
    logger.info("Subscription %s cancelled", sub.id)
    return sub


def cancel_active_subscriptions(session: Session, user: User) -> int:
    subs = session.exec(
        select(UserSubscription)
        .where(UserSubscription.user_id == user.id)
        .where(UserSubscription.status == "active")
    ).all()
    for sub in subs:
        sub.status = "cancelled"
        sub.auto_renew = False
        sub.updated_at = utcnow()
        session.add(sub)
    session.commit()
    return len(subs)


def has_active_subscription(session: Session, user_id: int) -> bool:
    stmt = (
        select(UserSubscription.id)
        .where(UserSubscription.user_id == user_id)
        .where(UserSubscription.status == "active")
        .where(UserSubscription.end_date > utcnow())
    )
    return session.exec(stmt).first() is not None


# --- admin ---

def admin_list(
    session: Session,
    *,
    status: str | None = None,
    duration: str | None = None,
    start_from: datetime | None = None,
    start_to: datetime | None = None,
    end_from: datetime | None = None,
    end_to: datetime | None = None,
    search: str | None = None,
    page: int = 1,
    limit: int = 10,
) -> dict:
    """Filterable subscription listing joined with user + plan"""
    start_from, start_to = as_utc(start_from), as_utc(start_to)
    end_from, end_to = as_utc(end_from), as_utc(end_to)
    conditions = []
    if status:
        conditions.append(UserSubscription.status == status)
    if duration:
        conditions.append(UserSubscription.duration == duration)
    if start_from:
        conditions.append(UserSubscription.start_date >= start_from)
    if start_to:
        conditions.append(UserSubscription.start_date <= start_to)
    if end_from:
        conditions.append(UserSubscription.end_date >= end_from)
    if end_to:
        conditions.append(UserSubscription.end_date <= end_to)
    if search:
        pattern = f"%{search}%"
        conditions.append(or_(
            User.name.ilike(pattern),
            User.email.ilike(pattern),
            SubscriptionPlan.name.ilike(pattern),
            SubscriptionPlan.description.ilike(pattern),
        ))

    def joined(stmt):
        return (
            stmt.join(User, User.id == UserSubscription.user_id)
            .join(SubscriptionPlan, SubscriptionPlan.id == UserSubscription.plan_id)
            .where(*conditions)
        )

    total = session.exec(
        joined(select(func.count(UserSubscription.id)).select_from(UserSubscription))
    ).one()
    rows = session.exec(
        joined(select(UserSubscription, User, SubscriptionPlan).select_from(UserSubscription))
        .order_by(UserSubscription.created_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    ).all()

    data = []
    for sub, user, plan in rows:
        item = serialize_subscription(sub, plan)
        item["user"] = {"id": user.id, "name": user.name, "email": user.email}
        data.append(item)

    return {
        "count": len(data),
        "total": total,
        "total_pages": ceil(total / limit) if limit else 0,
        "current_page": page,
        "data": data,
    }


def subscription_stats(session: Session) -> dict:
    """Dashboard counters and revenue breakdowns"""
    now = utcnow()
    active = UserSubscription.status == "active"

    def count(*conditions) -> int:
        stmt = select(func.count()).select_from(UserSubscription)
        for condition in conditions:
            stmt = stmt.where(condition)
        return session.exec(stmt).one()

    active_count = count(active, UserSubscription.end_date > now)
    expiring_soon = count(
        active,
        UserSubscription.end_date > now,
        UserSubscription.end_date <= now + timedelta(days=EXPIRING_SOON_DAYS),
    )
    recently_expired = count(
        active,
        UserSubscription.end_date <= now,
        UserSubscription.end_date >= now - timedelta(days=RECENTLY_EXPIRED_DAYS),
    )

    by_plan = [
        {"plan_id": plan_id, "plan_name": name, "count": n, "revenue": revenue or 0}
        for plan_id, name, n, revenue in session.exec(
            select(
                SubscriptionPlan.id,
                SubscriptionPlan.name,
                func.count(UserSubscription.id),
                func.sum(UserSubscription.price),
            )
            .select_from(UserSubscription)
            .join(SubscriptionPlan, SubscriptionPlan.id == UserSubscription.plan_id)
            .group_by(SubscriptionPlan.id, SubscriptionPlan.name)
        ).all()
    ]

    by_duration = [
        {"duration": duration, "count": n, "revenue": revenue or 0}
        for duration, n, revenue in session.exec(
            select(
                UserSubscription.duration,
                func.count(UserSubscription.id),
                func.sum(UserSubscription.price),
            ).group_by(UserSubscription.duration)
        ).all()
    ]

    # calendar months, oldest first, including the current one
    first_month = add_months(now.replace(day=1, hour=0, minute=0, second=0, microsecond=0),
                             -(REVENUE_MONTHS - 1))
    monthly: dict[str, dict] = {}
    for i in range(REVENUE_MONTHS):
        key = add_months(first_month, i).strftime("%Y-%m")
        monthly[key] = {"month": key, "count": 0, "revenue": 0.0}
    for start_date, price in session.exec(
        select(UserSubscription.start_date, UserSubscription.price)
        .where(UserSubscription.start_date >= first_month)
    ).all():
        bucket = monthly.get(start_date.strftime("%Y-%m"))
        if bucket is not None:
            bucket["count"] += 1
            bucket["revenue"] += price or 0

    return {
        "active_subscriptions": active_count,
        "expiring_soon": expiring_soon,
        "recently_expired": recently_expired,
        "by_plan": by_plan,
        "by_duration": by_duration,
        "monthly_revenue": list(monthly.values()),
    }


# --- scheduled jobs ---

def _notified(session: Session, sub_id: int, notice_type: str) -> bool:
    stmt = (
        select(SubscriptionNotification.id)
        .where(SubscriptionNotification.subscription_id == sub_id)
        .where(SubscriptionNotification.type == notice_type)
    )
    return session.exec(stmt).first() is not None


def _record_notice(session: Session, sub_id: int, notice_type: str) -> None:
    if not _notified(session, sub_id, notice_type):
        session.add(SubscriptionNotification(subscription_id=sub_id, type=notice_type))


def check_expired_subscriptions(session: Session) -> int:
    """Mark ended active subscriptions expired and notify their owners"""
    now = utcnow()
    rows = session.exec(
        select(UserSubscription, User, SubscriptionPlan)
        .join(User, User.id == UserSubscription.user_id)
        .join(SubscriptionPlan, SubscriptionPlan.id == UserSubscription.plan_id)
        .where(UserSubscription.status == "active")
        .where(UserSubscription.end_date <= now)
    ).all()

    for sub, user, plan in rows:
        sub.status = "expired"
        sub.updated_at = now
        session.add(sub)
        try:
            notified = send_expired_notice(user, sub, plan)
        except Exception:
            logger.exception("Expired notice failed: subscription %s", sub.id)
            notified = False
        if notified:
            _record_notice(session, sub.id, "expired")
    session.commit()

    logger.info("Expired subscriptions: %d", len(rows))
    return len(rows)


def send_expiration_reminders(session: Session) -> int:
    """Remind owners of subscriptions ending within REMINDER_DAYS (once)"""
    now = utcnow()
    rows = session.exec(
        select(UserSubscription, User, SubscriptionPlan)
        .join(User, User.id == UserSubscription.user_id)
        .join(SubscriptionPlan, SubscriptionPlan.id == UserSubscription.plan_id)
        .where(UserSubscription.status == "active")
        .where(UserSubscription.end_date > now)
        .where(UserSubscription.end_date <= now + timedelta(days=REMINDER_DAYS))
    ).all()

    sent = 0
    for sub, user, plan in rows:
        if _notified(session, sub.id, "expiring_soon"):
            continue
        days_remaining = ceil((sub.end_date - now).total_seconds() / 86400)
        try:
            delivered = send_expiration_reminder(user, sub, plan, days_remaining)
        except Exception:
            logger.exception("Expiration reminder failed: subscription %s", sub.id)
            continue
        if not delivered:
            # retried on the next run
            logger.warning("Expiration reminder not delivered: subscription %s", sub.id)
            continue
        _record_notice(session, sub.id, "expiring_soon")
        sent += 1
    session.commit()

    logger.info("Expiration reminders sent: %d", sent)
    return sent
