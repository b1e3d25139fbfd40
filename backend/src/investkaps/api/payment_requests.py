"""Manual QR payment request API router"""

import logging
import time
from math import ceil
from pathlib import Path
from typing import Literal

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile
from pydantic import BaseModel
from sqlalchemy import func, update
from sqlmodel import Session, select

from investkaps import storage
from investkaps.auth.dependencies import get_current_user, require_admin
from investkaps.clock import utcnow
from investkaps.database import get_session
from investkaps.errors import BadRequestError, ConflictError, NotFoundError
from investkaps.models.payment import PaymentRequest
from investkaps.models.subscription import DURATIONS
from investkaps.models.user import User
from investkaps.subscription import service

logger = logging.getLogger(__name__)
router = APIRouter()

MAX_IMAGE_SIZE = 5 * 1024 * 1024
DEFAULT_REJECT_NOTE = "Payment verification failed"


class ReviewNote(BaseModel):
    admin_notes: str | None = None


def _pending(session: Session, request_id: int) -> PaymentRequest:
    request = session.get(PaymentRequest, request_id)
    if request is None:
        raise NotFoundError("Payment request not found")
    if request.status != "pending":
        raise BadRequestError(f"Payment request already {request.status}")
    return request


def _claim(session: Session, request: PaymentRequest, **values) -> None:
    """Move a pending request on, uncommitted; a concurrent review leaves no row to update"""
    claimed = session.exec(
        update(PaymentRequest)
        .where(PaymentRequest.id == request.id)
        .where(PaymentRequest.status == "pending")
        .values(updated_at=utcnow(), **values)
    )
    if claimed.rowcount != 1:
        session.rollback()
        raise ConflictError("Payment request was already reviewed")


@router.post("/submit", status_code=201)
async def submit_payment_request(
    plan_id: int = Form(...),
    duration: str = Form(...),
    amount: float = Form(..., gt=0),
    sender_name: str = Form(..., min_length=1),
    transaction_id: str = Form(..., min_length=1),
    image: UploadFile | None = File(None),
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
) -> dict:
    """Upload a payment screenshot for admin review"""
    if image is None or not image.filename:
        raise BadRequestError("Payment screenshot is required")
    if not (image.content_type or "").startswith("image/"):
        raise BadRequestError("Only image files are allowed")
    data = await image.read()
    if len(data) > MAX_IMAGE_SIZE:
        raise BadRequestError("Image must be 5MB or smaller")
    if duration not in DURATIONS:
        raise BadRequestError(f"Invalid duration: {duration}")

    plan = service.get_plan(session, plan_id, active_only=True)

    suffix = Path(image.filename).suffix.lower() or ".png"
    stored = storage.save_bytes(
        "payment-screenshots", f"{user.id}_{int(time.time() * 1000)}{suffix}", data,
    )
    request = PaymentRequest(
        user_id=user.id,
        plan_id=plan.id,
        plan_name=plan.name,
        duration=duration,
        amount=amount,
        sender_name=sender_name.strip(),
        transaction_id=transaction_id.strip(),
        image_url=stored.url,
        image_public_id=stored.public_id,
    )
    session.add(request)
    session.commit()
    session.refresh(request)
    logger.info("Payment request %s submitted by user %s", request.id, user.id)
    return {
        "success": True,
        "message": "Payment request submitted, awaiting verification",
        "data": request,
    }


@router.get("/all", dependencies=[Depends(require_admin)])
def list_payment_requests(
    status: Literal["pending", "approved", "rejected"] | None = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    session: Session = Depends(get_session),
) -> dict:
    stmt = select(PaymentRequest, User).join(User, User.id == PaymentRequest.user_id)
    count_stmt = select(func.count()).select_from(PaymentRequest)
    if status:
        stmt = stmt.where(PaymentRequest.status == status)
        count_stmt = count_stmt.where(PaymentRequest.status == status)

    total = session.exec(count_stmt).one()
    rows = session.exec(
        stmt.order_by(PaymentRequest.created_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    ).all()

    data = []
    for request, owner in rows:
        item = request.model_dump()
        item["user"] = {"id": owner.id, "name": owner.name, "email": owner.email}
        data.append(item)
    return {
        "success": True,
        "count": len(data),
        "total": total,
        "total_pages": ceil(total / limit),
        "current_page": page,
        "data": data,
    }


@router.get("/my-requests")
def my_payment_requests(
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
) -> dict:
    requests = session.exec(
        select(PaymentRequest)
        .where(PaymentRequest.user_id == user.id)
        .order_by(PaymentRequest.created_at.desc())
    ).all()
    return {"success": True, "count": len(requests), "data": requests}


@router.post("/approve/{request_id}")
def approve_payment_request(
    request_id: int,
    body: ReviewNote | None = None,
    admin: User = Depends(require_admin),
    session: Session = Depends(get_session),
) -> dict:
    """Approve and activate the requested subscription"""
    request = _pending(session, request_id)
    owner = session.get(User, request.user_id)
    if owner is None:
        raise NotFoundError("User not found")
    plan = service.get_plan(session, request.plan_id)

    _claim(session, request, status="approved", approved_by=admin.id, approved_at=utcnow())

    sub = service.create_user_subscription(
        session,
        owner,
        plan,
        request.duration,
        payment_id=request.transaction_id,
        order_id=f"QR-{request.id}",
        transaction_details={
            "method": "qr",
            "sender_name": request.sender_name,
            "transaction_id": request.transaction_id,
            "payment_request_id": request.id,
        },
        price=request.amount,
        commit=False,
    )

    request.admin_notes = body.admin_notes if body else None
    request.user_subscription_id = sub.id
    session.add(request)
    session.commit()
    session.refresh(request)
    logger.info("Payment request %s approved by %s", request.id, admin.id)
    return {
        "success": True,
        "message": "Payment approved and subscription activated",
        "data": request,
        "subscription": service.serialize_subscription(sub, plan),
    }


@router.post("/reject/{request_id}")
def reject_payment_request(
    request_id: int,
    body: ReviewNote | None = None,
    admin: User = Depends(require_admin),
    session: Session = Depends(get_session),
) -> dict:
    request = _pending(session, request_id)
    _claim(
        session,
        request,
        status="rejected",
        rejected_at=utcnow(),
        admin_notes=(body.admin_notes if body else None) or DEFAULT_REJECT_NOTE,
    )
    session.commit()
    session.refresh(request)
    logger.info("Payment request %s rejected by %s", request.id, admin.id)
    return {"success": True, "message": "Payment request rejected", "data": request}
