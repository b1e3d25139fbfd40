"""Admin dashboard + user management API router"""

import logging
from math import ceil
from typing import Literal

from fastapi import APIRouter, Depends, Header, Query
from pydantic import BaseModel
from sqlalchemy import func, or_
from sqlmodel import Session, select

from investkaps.auth.dependencies import require_admin
from investkaps.clock import utcnow
from investkaps.config import settings
from investkaps.database import get_session
from investkaps.errors import NotFoundError, PermissionDeniedError
from investkaps.kyc.service import history, serialize_verification
from investkaps.models.document import Document
from investkaps.models.kyc import KycVerification
from investkaps.models.payment import PaymentRequest
from investkaps.models.recommendation import StockRecommendation
from investkaps.models.subscription import UserSubscription
from investkaps.models.user import User
from investkaps.subscription.service import has_active_subscription, user_subscriptions

logger = logging.getLogger(__name__)
router = APIRouter()

RECENT_LIMIT = 5


class RoleUpdate(BaseModel):
    role: Literal["customer", "admin"]


class SetAdminRequest(BaseModel):
    email: str


def _count(session: Session, model, *conditions) -> int:
    stmt = select(func.count()).select_from(model)
    for condition in conditions:
        stmt = stmt.where(condition)
    return session.exec(stmt).one()


def _get_user(session: Session, user_id: int) -> User:
    user = session.get(User, user_id)
    if user is None:
        raise NotFoundError("User not found")
    return user


@router.get("/dashboard", dependencies=[Depends(require_admin)])
def dashboard(session: Session = Depends(get_session)) -> dict:
    """Headline counters + latest signups"""
    now = utcnow()
    counts = {
        "users": _count(session, User, User.role == "customer"),
        "admins": _count(session, User, User.role == "admin"),
        "kyc_verified": _count(session, User, User.kyc_verified == True),  # noqa: E712
        "active_subscriptions": _count(
            session, UserSubscription,
            UserSubscription.status == "active", UserSubscription.end_date > now,
        ),
        "pending_payment_requests": _count(
            session, PaymentRequest, PaymentRequest.status == "pending",
        ),
        "published_recommendations": _count(
            session, StockRecommendation, StockRecommendation.status == "published",
        ),
        "documents": _count(session, Document),
    }
    recent_users = session.exec(
        select(User).order_by(User.created_at.desc()).limit(RECENT_LIMIT)
    ).all()
    recent_kyc = session.exec(
        select(KycVerification).order_by(KycVerification.verified_at.desc()).limit(RECENT_LIMIT)
    ).all()
    return {
        "success": True,
        "data": {
            "counts": counts,
            "recent_users": [
                {
                    "id": u.id,
                    "name": u.name,
                    "email": u.email,
                    "created_at": u.created_at,
                    "kyc_verified": u.kyc_verified,
                }
                for u in recent_users
            ],
            "recent_kyc": [serialize_verification(v) for v in recent_kyc],
        },
    }


@router.get("/users", dependencies=[Depends(require_admin)])
def list_users(
    search: str | None = Query(None),
    role: Literal["customer", "admin"] | None = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    session: Session = Depends(get_session),
) -> dict:
    conditions = []
    if role:
        conditions.append(User.role == role)
    if search:
        pattern = f"%{search.strip()}%"
        conditions.append(or_(User.name.ilike(pattern), User.email.ilike(pattern)))

    total = _count(session, User, *conditions)
    users = session.exec(
        select(User)
        .where(*conditions)
        .order_by(User.created_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    ).all()

    data = []
    for user in users:
        item = user.public_dict()
        item["has_active_subscription"] = has_active_subscription(session, user.id)
        data.append(item)
    return {
        "success": True,
        "count": len(data),
        "total": total,
        "total_pages": ceil(total / limit),
        "current_page": page,
        "data": data,
    }


@router.get("/users/{user_id}", dependencies=[Depends(require_admin)])
def get_user(user_id: int, session: Session = Depends(get_session)) -> dict:
    """User with KYC history, documents and subscriptions"""
    user = _get_user(session, user_id)
    documents = session.exec(
        select(Document).where(Document.user_id == user.id).order_by(Document.created_at.desc())
    ).all()
    data = user.public_dict()
    data["kyc_verifications"] = [serialize_verification(v) for v in history(session, user.id)]
    data["documents"] = [d.model_dump() for d in documents]
    data["subscriptions"] = user_subscriptions(session, user)
    return {"success": True, "data": data}


@router.put("/users/{user_id}/role")
def update_role(
    user_id: int,
    body: RoleUpdate,
    admin: User = Depends(require_admin),
    session: Session = Depends(get_session),
) -> dict:
    user = _get_user(session, user_id)
    user.role = body.role
    user.updated_at = utcnow()
    session.add(user)
    session.commit()
    session.refresh(user)
    logger.info("User %s role set to %s by %s", user.id, body.role, admin.id)
    return {
        "success": True,
        "message": f"User role updated to {body.role}",
        "data": user.public_dict(),
    }


@router.get("/kyc", dependencies=[Depends(require_admin)])
def list_kyc(session: Session = Depends(get_session)) -> dict:
    rows = session.exec(
        select(KycVerification, User)
        .join(User, User.id == KycVerification.user_id)
        .order_by(KycVerification.verified_at.desc())
    ).all()
    data = []
    for verification, user in rows:
        item = serialize_verification(verification)
        item["user"] = {"id": user.id, "name": user.name, "email": user.email}
        data.append(item)
    return {"success": True, "count": len(data), "data": data}


@router.post("/set-admin")
def set_admin(
    body: SetAdminRequest,
    x_setup_key: str | None = Header(None),
    session: Session = Depends(get_session),
) -> dict:
    """Promote a user to admin (initial setup, needs ADMIN_SETUP_KEY)"""
    if not settings.ADMIN_SETUP_KEY or x_setup_key != settings.ADMIN_SETUP_KEY:
        raise PermissionDeniedError("Invalid setup key")

    user = session.exec(select(User).where(User.email == body.email.strip().lower())).first()
    if user is None:
        raise NotFoundError("User not found")
    user.role = "admin"
    user.updated_at = utcnow()
    session.add(user)
    session.commit()
    logger.warning("User %s promoted to admin via setup key", user.email)
    return {
        "success": True,
        "message": "User set as admin successfully",
        "user": {"id": user.id, "email": user.email, "name": user.name, "role": user.role},
    }
