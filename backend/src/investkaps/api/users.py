"""User API router (Clerk webhook, lookups, profile)"""

import json
import logging

from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy import delete, or_, update
from sqlmodel import Session, select

from investkaps import storage
from investkaps.auth.clerk import parse_bearer, verify_session_token, verify_webhook
from investkaps.auth.dependencies import (
    ensure_owner_or_admin,
    get_current_user,
    get_user_by_clerk_id,
)
from investkaps.clock import utcnow
from investkaps.database import get_session
from investkaps.errors import BadRequestError, NotFoundError, PermissionDeniedError
from investkaps.models.broker_token import KiteToken
from investkaps.models.document import Document
from investkaps.models.kyc import KycVerification
from investkaps.models.payment import PaymentRequest
from investkaps.models.recommendation import (
    RecommendationDelivery,
    RecommendationView,
    StockRecommendation,
)
from investkaps.models.subscription import SubscriptionNotification, UserSubscription
from investkaps.models.user import User
from investkaps.subscription.service import user_subscriptions

logger = logging.getLogger(__name__)
router = APIRouter()


class UserCreate(BaseModel):
    clerk_id: str | None = None
    email: str = Field(min_length=3)
    name: str | None = None
    is_verified: bool = False


class ProfileUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=200)
    phone: str | None = None
    address: str | None = None
    city: str | None = None
    state: str | None = None
    pincode: str | None = Field(default=None, pattern=r"^\d{6}$")


def _with_subscriptions(session: Session, user: User) -> dict:
    data = user.public_dict()
    data["subscriptions"] = user_subscriptions(session, user)
    return data


def _kyc_status(user: User) -> dict:
    return {
        "kyc_verified": user.kyc_verified,
        "pan_number": user.pan_number,
        "kyc_verified_at": user.kyc_verified_at,
        "full_name": user.kyc_full_name,
        "father_name": user.kyc_father_name,
        "dob": user.kyc_dob,
        "gender": user.kyc_gender,
        "latest_verification_id": user.latest_kyc_verification_id,
    }


def _primary_email(data: dict) -> dict | None:
    primary_id = data.get("primary_email_address_id")
    for entry in data.get("email_addresses") or []:
        if entry.get("id") == primary_id:
            return entry
    return None


def _user_or_404(session: Session, clerk_id: str, current: User) -> User:
    user = get_user_by_clerk_id(session, clerk_id)
    if user is None:
        raise NotFoundError("User not found")
    ensure_owner_or_admin(current, user.id)
    return user



def _delete_user(session: Session, user: User) -> None:
    """Remove a user with every row and stored file that belongs to them"""
    subscription_ids = select(UserSubscription.id).where(UserSubscription.user_id == user.id)
    requests = session.exec(select(PaymentRequest).where(PaymentRequest.user_id == user.id)).all()
    documents = session.exec(select(Document).where(Document.user_id == user.id)).all()
    files = [r.image_public_id for r in requests] + [d.file_path for d in documents]

    session.exec(
        delete(SubscriptionNotification)
        .where(SubscriptionNotification.subscription_id.in_(subscription_ids))
    )
    for model in (
        PaymentRequest,
        UserSubscription,
        Document,
        KycVerification,
        RecommendationView,
        RecommendationDelivery,
    ):
        session.exec(delete(model).where(model.user_id == user.id))

    # keep records the user reviewed or authored
    session.exec(
        update(PaymentRequest).where(PaymentRequest.approved_by == user.id).values(approved_by=None)
    )
    session.exec(
        update(StockRecommendation)
        .where(StockRecommendation.created_by == user.id)
        .values(created_by=None)
    )
    session.exec(update(KiteToken).where(KiteToken.updated_by == user.id).values(updated_by=None))

    session.delete(user)
    session.commit()
    for public_id in files:
        if public_id:
            storage.delete(public_id)


@router.post("/webhook")
async def clerk_webhook(request: Request, session: Session = Depends(get_session)) -> JSONResponse:
    """Clerk user.created / user.updated / user.deleted events"""
    body = await request.body()
    verify_webhook(dict(request.headers), body)
    try:
        event = json.loads(body)
    except ValueError as e:
        raise BadRequestError("Invalid webhook payload") from e

    event_type = event.get("type")
    data = event.get("data") or {}
    clerk_id = data.get("id")
    if not clerk_id:
        raise BadRequestError("Webhook payload has no user id")

    user = get_user_by_clerk_id(session, clerk_id)

    if event_type == "user.deleted":
        if user is not None:
            _delete_user(session, user)
            logger.info("User deleted via webhook: %s", clerk_id)
        return JSONResponse({"success": True, "message": "User deleted"})

    if event_type not in ("user.created", "user.updated"):
        logger.info("Ignoring Clerk event %s", event_type)
        return JSONResponse({"success": True, "message": "Event ignored"})

    primary = _primary_email(data)
    if primary is None:
        raise BadRequestError("No primary email found")
    email = primary["email_address"].lower()
    name = f"{data.get('first_name') or ''} {data.get('last_name') or ''}".strip()
    verified = (primary.get("verification") or {}).get("status") == "verified"

    created = user is None
    if created:
        user = User(clerk_id=clerk_id, email=email, name=name or email.split("@")[0])
    else:
        user.email = email
        user.name = name or user.name
        user.updated_at = utcnow()
    user.is_verified = verified
    session.add(user)
    session.commit()
    session.refresh(user)
    logger.info("User %s via webhook: %s", "created" if created else "updated", clerk_id)
    return JSONResponse(
        status_code=201 if created else 200,
        content={
            "success": True,
            "message": f"User {'created' if created else 'updated'} successfully",
            "user": {"id": user.id, "clerk_id": user.clerk_id, "email": user.email},
        },
    )


@router.post("", status_code=201)
def create_user(
    body: UserCreate,
    authorization: str | None = Header(None),
    session: Session = Depends(get_session),
) -> dict:
    """Create the DB user for a signed-in Clerk account"""
    clerk_id = verify_session_token(parse_bearer(authorization))
    if body.clerk_id and body.clerk_id != clerk_id:
        raise PermissionDeniedError("clerk_id does not match the signed-in account")
    email = body.email.strip().lower()

    existing = session.exec(
        select(User).where(or_(User.clerk_id == clerk_id, User.email == email))
    ).first()
    if existing is not None:
        raise BadRequestError("User already exists")

    user = User(
        clerk_id=clerk_id,
        email=email,
        name=body.name or email.split("@")[0],
        is_verified=body.is_verified,
    )
    session.add(user)
    session.commit()
    session.refresh(user)
    logger.info("User created: %s", clerk_id)
    return {"success": True, "message": "User created successfully", "user": user.public_dict()}


@router.get("/clerk/{clerk_id}")
def get_user_by_clerk(
    clerk_id: str,
    current: User = Depends(get_current_user),
    session: Session = Depends(get_session),
) -> dict:
    user = _user_or_404(session, clerk_id, current)
    return {"success": True, "user": _with_subscriptions(session, user)}


@router.get("/email/{email}")
def get_user_by_email(
    email: str,
    current: User = Depends(get_current_user),
    session: Session = Depends(get_session),
) -> dict:
    user = session.exec(select(User).where(User.email == email.strip().lower())).first()
    if user is None:
        raise NotFoundError("User not found")
    ensure_owner_or_admin(current, user.id)
    return {"success": True, "user": _with_subscriptions(session, user)}


@router.put("/clerk/{clerk_id}/profile")
def update_profile(
    clerk_id: str,
    body: ProfileUpdate,
    current: User = Depends(get_current_user),
    session: Session = Depends(get_session),
) -> dict:
    user = _user_or_404(session, clerk_id, current)
    data = body.model_dump(exclude_unset=True)
    if "phone" in data and data["phone"] != user.phone:
        user.phone_verified = False
    for key, value in data.items():
        setattr(user, key, value)
    user.updated_at = utcnow()
    session.add(user)
    session.commit()
    session.refresh(user)
    return {"success": True, "message": "Profile updated", "user": user.public_dict()}


@router.get("/clerk/{clerk_id}/kyc")
def get_kyc_status(
    clerk_id: str,
    current: User = Depends(get_current_user),
    session: Session = Depends(get_session),
) -> dict:
    user = _user_or_404(session, clerk_id, current)
    return {"success": True, "data": _kyc_status(user)}
