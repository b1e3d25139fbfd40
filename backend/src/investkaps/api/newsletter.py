"""Newsletter subscription API router"""

import logging
import re

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlmodel import Session, select

from investkaps.auth.dependencies import require_admin
from investkaps.clock import utcnow
from investkaps.database import get_session
from investkaps.errors import BadRequestError, ConflictError, NotFoundError
from investkaps.models.newsletter import NewsletterSubscriber

logger = logging.getLogger(__name__)
router = APIRouter()

_EMAIL_RE = re.compile(r"^\S+@\S+\.\S+$")


class EmailBody(BaseModel):
    email: str | None = None
    source: str | None = None


def _normalize_email(email: str | None) -> str:
    email = (email or "").strip().lower()
    if not email:
        raise BadRequestError("Email is required")
    if not _EMAIL_RE.match(email):
        raise BadRequestError("Please provide a valid email address")
    return email


@router.post("/subscribe")
def subscribe(body: EmailBody, session: Session = Depends(get_session)) -> JSONResponse:
    email = _normalize_email(body.email)
    subscriber = session.exec(
        select(NewsletterSubscriber).where(NewsletterSubscriber.email == email)
    ).first()

    if subscriber is not None:
        if subscriber.status == "active":
            raise ConflictError("This email is already subscribed")
        subscriber.status = "active"
        subscriber.subscribed_at = utcnow()
        subscriber.unsubscribed_at = None
        session.add(subscriber)
        session.commit()
        logger.info("Newsletter resubscribed: %s", email)
        return JSONResponse(
            status_code=200,
            content={"success": True, "message": "Successfully resubscribed to newsletter"},
        )

    session.add(NewsletterSubscriber(email=email, source=body.source or "website"))
    session.commit()
    logger.info("Newsletter subscribed: %s", email)
    return JSONResponse(
        status_code=201,
        content={"success": True, "message": "Successfully subscribed to newsletter"},
    )


@router.post("/unsubscribe")
def unsubscribe(body: EmailBody, session: Session = Depends(get_session)) -> dict:
    email = _normalize_email(body.email)
    subscriber = session.exec(
        select(NewsletterSubscriber).where(NewsletterSubscriber.email == email)
    ).first()
    if subscriber is None:
        raise NotFoundError("Email not found in our newsletter list")

    subscriber.status = "unsubscribed"
    subscriber.unsubscribed_at = utcnow()
    session.add(subscriber)
    session.commit()
    logger.info("Newsletter unsubscribed: %s", email)
    return {"success": True, "message": "Successfully unsubscribed from newsletter"}


@router.get("/subscribers", dependencies=[Depends(require_admin)])
def list_subscribers(session: Session = Depends(get_session)) -> dict:
    subscribers = session.exec(
        select(NewsletterSubscriber).order_by(NewsletterSubscriber.subscribed_at.desc())
    ).all()
    return {"success": True, "count": len(subscribers), "data": subscribers}
