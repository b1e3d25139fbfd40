"""Phone verification API router"""

import logging

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlmodel import Session, select

from investkaps.auth.dependencies import get_current_user
from investkaps.clock import utcnow
from investkaps.database import get_session
from investkaps.errors import ConflictError
from investkaps.models.user import User
from investkaps.phone.otp import normalize_phone, otp_manager

logger = logging.getLogger(__name__)
router = APIRouter()


class SendOtpRequest(BaseModel):
    phone: str | None = None


class VerifyOtpRequest(BaseModel):
    phone: str | None = None
    otp: str | None = None


def _check_not_taken(session: Session, user: User, phone: str) -> None:
    other = session.exec(
        select(User)
        .where(User.phone == phone)
        .where(User.phone_verified == True)  # noqa: E712
        .where(User.id != user.id)
    ).first()
    if other is not None:
        raise ConflictError("This phone number is already registered and verified")


@router.post("/send-otp")
def send_otp(
    body: SendOtpRequest,
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
) -> dict:
    phone = normalize_phone(body.phone)
    _check_not_taken(session, user, phone)
    otp_manager.send(user.id, phone)
    return {"success": True, "message": "OTP sent successfully"}


@router.post("/verify-otp")
def verify_otp(
    body: VerifyOtpRequest,
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
) -> dict:
    phone = normalize_phone(body.phone)
    _check_not_taken(session, user, phone)
    otp_manager.verify(user.id, phone, body.otp or "")

    user.phone = phone
    user.phone_verified = True
    user.updated_at = utcnow()
    session.add(user)
    session.commit()
    return {
        "success": True,
        "message": "Phone number verified successfully",
        "phone": phone,
        "phone_verified": True,
    }


@router.get("/status")
def phone_status(user: User = Depends(get_current_user)) -> dict:
    return {"success": True, "phone": user.phone, "phone_verified": user.phone_verified}
