"""KYC (NSE KRA PAN inquiry) API router"""

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlmodel import Session

from investkaps.auth.dependencies import get_current_user
from investkaps.config import settings
from investkaps.database import get_session
from investkaps.errors import PermissionDeniedError
from investkaps.kyc import service
from investkaps.models.user import User

router = APIRouter()


class VerifyRequest(BaseModel):
    pan_number: str | None = None
    dob: str = ""


@router.post("/verify")
def verify_kyc(
    body: VerifyRequest,
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
) -> dict:
    """PAN inquiry against the KRA"""
    verification, status = service.verify_pan(session, user, body.pan_number or "", body.dob)
    return {
        "success": True,
        "message": f"KYC status: {status['status']}",
        "status": status,
        "verification_id": verification.id,
        "data": verification.raw_dict,
    }


@router.get("/history")
def kyc_history(
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
) -> dict:
    records = service.history(session, user.id)
    return {
        "success": True,
        "count": len(records),
        "data": [service.serialize_verification(v) for v in records],
    }


@router.get("/check-pan/{pan}")
def check_pan(
    pan: str,
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
) -> dict:
    return {"success": True, **service.check_pan(session, pan)}


@router.post("/bypass")
def bypass_kyc(
    body: VerifyRequest,
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
) -> dict:
    """Mark the current user verified (test environments only)"""
    if not settings.ALLOW_TEST_BYPASS:
        raise PermissionDeniedError("Test bypass is disabled")
    verification = service.bypass_verification(session, user, body.pan_number or "")
    return {
        "success": True,
        "message": "KYC verification bypassed",
        "verification_id": verification.id,
        "data": verification.raw_dict,
    }
