"""KYC verification workflow"""

import logging

from sqlmodel import Session, select

from investkaps.clock import utcnow
from investkaps.errors import ConflictError, InvestKapsError
from investkaps.kyc.kra_client import KraClient, validate_pan
from investkaps.kyc.status import map_status
from investkaps.models.kyc import KycVerification
from investkaps.models.user import User

logger = logging.getLogger(__name__)


def pan_owner(session: Session, pan: str) -> User | None:
    """User holding a verified KYC for this PAN"""
    stmt = (
        select(User)
        .where(User.pan_number == pan)
        .where(User.kyc_verified == True)  # noqa: E712
    )
    return session.exec(stmt).first()


def _apply_to_user(user: User, pan: str, data: dict, verification_id: int) -> None:
    user.kyc_verified = True
    user.pan_number = pan
    user.kyc_verified_at = utcnow()
    user.kyc_full_name = _value(data, "Name")
    user.kyc_father_name = _value(data, "FatherName")
    user.kyc_dob = _value(data, "DOB")
    user.kyc_gender = _value(data, "Gender")
    user.latest_kyc_verification_id = verification_id
    user.updated_at = utcnow()


def _value(data: dict, key: str) -> str | None:
    value = data.get(key, {}).get("value")
    return None if value in (None, "N/A") else value


def verify_pan(
    session: Session,
    user: User,
    pan: str,
    dob: str = "",
    client: KraClient | None = None,
) -> tuple[KycVerification, dict]:
    """Run a KRA inquiry, record it, update the user when VERIFIED"""
    pan = validate_pan(pan)
    owner = pan_owner(session, pan)
    if owner is not None and owner.id != user.id:
        raise ConflictError("This PAN is already verified for another account")

    client = client or KraClient()
    try:
        data = client.fetch_kyc(pan, dob)
    except InvestKapsError as e:
        verification = KycVerification(
            user_id=user.id, pan_number=pan, status="failed", error=e.message,
        )
        session.add(verification)
        session.commit()
        logger.warning("KYC failed for user %s: %s", user.id, e.message)
        raise

    status = map_status(data.get("Status", {}).get("value"))
    verification = KycVerification(
        user_id=user.id,
        pan_number=pan,
        status="success",
        kyc_status=status["status"],
    )
    verification.raw_dict = data
    session.add(verification)
    session.flush()

    if status["is_verified"]:
        _apply_to_user(user, pan, data, verification.id)
        session.add(user)

    session.commit()
    session.refresh(verification)
    logger.info("KYC for user %s: %s", user.id, status["status"])
    return verification, status


def bypass_verification(session: Session, user: User, pan: str) -> KycVerification:
    """Mark a user KYC-verified without a KRA call (test environments)"""
    pan = validate_pan(pan)
    owner = pan_owner(session, pan)
    if owner is not None and owner.id != user.id:
        raise ConflictError("This PAN is already verified for another account")

    data = {
        "PAN": {"value": pan, "description": "PAN Number"},
        "Name": {"value": user.name, "description": "Full Name"},
        "Status": {"value": "07", "description": "KYC Status"},
    }
    verification = KycVerification(
        user_id=user.id, pan_number=pan, status="success", kyc_status="VERIFIED",
    )
    verification.raw_dict = data
    session.add(verification)
    session.flush()
    _apply_to_user(user, pan, data, verification.id)
    session.add(user)
    session.commit()
    session.refresh(verification)
    logger.warning("KYC bypass used for user %s", user.id)
    return verification


def history(session: Session, user_id: int) -> list[KycVerification]:
    stmt = (
        select(KycVerification)
        .where(KycVerification.user_id == user_id)
        .order_by(KycVerification.verified_at.desc())
    )
    return list(session.exec(stmt).all())


def serialize_verification(v: KycVerification) -> dict:
    data = v.model_dump(exclude={"raw"})
    data["data"] = v.raw_dict
    return data


def check_pan(session: Session, pan: str) -> dict:
    """Whether a PAN has been verified (or attempted) before"""
    pan = validate_pan(pan)
    owner = pan_owner(session, pan)

    def latest(status: str) -> KycVerification | None:
        return session.exec(
            select(KycVerification)
            .where(KycVerification.pan_number == pan)
            .where(KycVerification.status == status)
            .order_by(KycVerification.verified_at.desc())
        ).first()

    success = latest("success")
    if owner is not None or (success is not None and success.kyc_status == "VERIFIED"):
        return {
            "exists": True,
            "is_verified": True,
            "message": "This PAN number has already been verified",
            "user": {"id": owner.id, "verified_at": owner.kyc_verified_at} if owner else None,
        }
    if latest("failed") is not None:
        return {
            "exists": True,
            "is_verified": False,
            "message": "This PAN number was submitted before but verification failed",
        }
    return {
        "exists": False,
        "is_verified": False,
        "message": "This PAN number has not been verified",
    }
