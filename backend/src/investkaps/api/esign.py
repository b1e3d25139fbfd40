"""E-sign (Leegality) API router"""

import json
import logging
from datetime import datetime
from typing import Literal

from fastapi import APIRouter, Depends, File, Form, Request, UploadFile
from pydantic import BaseModel
from sqlmodel import Session, select

from investkaps import storage
from investkaps.auth.dependencies import ensure_owner_or_admin, get_current_user
from investkaps.clock import as_utc, utcnow
from investkaps.config import settings
from investkaps.database import get_session
from investkaps.errors import BadRequestError, NotFoundError, PermissionDeniedError
from investkaps.esign.leegality import LeegalityClient, extract_request, generate_irn
from investkaps.models.document import ESIGN_STATUSES, Document
from investkaps.models.user import User

logger = logging.getLogger(__name__)
router = APIRouter()

MAX_PDF_SIZE = 10 * 1024 * 1024
DEFAULT_DOCUMENT_NAME = "Terms and Conditions"


class StatusUpdate(BaseModel):
    document_id: int
    status: Literal["pending", "completed", "failed", "expired"]


def _parse_time(value) -> datetime | None:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    return as_utc(parsed)


def _set_status(doc: Document, status: str, signed_at: datetime | None = None) -> None:
    doc.esign_status = status
    if status == "completed" and doc.signed_at is None:
        doc.signed_at = signed_at or utcnow()
    doc.updated_at = utcnow()


@router.post("", status_code=201)
async def create_esign_request(
    file: UploadFile = File(...),
    name: str | None = Form(None),
    email: str | None = Form(None),
    file_name: str | None = Form(None),
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
) -> dict:
    """Store a PDF and send it to Leegality for signature"""
    if file.content_type != "application/pdf":
        raise BadRequestError("Only PDF files are allowed")
    pdf = await file.read()
    if not pdf:
        raise BadRequestError("PDF file is empty")
    if len(pdf) > MAX_PDF_SIZE:
        raise BadRequestError("PDF must be 10MB or smaller")

    document_name = file_name or DEFAULT_DOCUMENT_NAME
    irn = generate_irn()
    stored = storage.save_bytes("esign", f"{irn}.pdf", pdf)

    client = LeegalityClient()
    try:
        result = client.create_sign_request(
            name=name or user.name,
            email=email or user.email,
            pdf=pdf,
            file_name=document_name,
            irn=irn,
        )
    except Exception:
        storage.delete(stored.public_id)
        raise
    request_id, sign_url = extract_request(result)

    doc = Document(
        user_id=user.id,
        name=document_name,
        doc_type="agreement",
        file_name=file.filename or f"{irn}.pdf",
        file_path=stored.public_id,
        size=len(pdf),
        mime="application/pdf",
        esign_request_id=request_id or irn,
        sign_url=sign_url,
        irn=irn,
    )
    session.add(doc)
    session.commit()
    session.refresh(doc)
    logger.info("E-sign request %s created for user %s", doc.esign_request_id, user.id)
    return {
        "success": True,
        "document_id": doc.id,
        "request_id": doc.esign_request_id,
        "sign_url": sign_url,
        "irn": irn,
        "data": result.get("data"),
    }


@router.get("/document/{document_id}")
def get_document(
    document_id: int,
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
) -> dict:
    doc = session.get(Document, document_id)
    if doc is None:
        raise NotFoundError("Document not found")
    ensure_owner_or_admin(user, doc.user_id)
    return {"success": True, "data": doc}


@router.post("/update-status")
def update_status(
    body: StatusUpdate,
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
) -> dict:
    doc = session.get(Document, body.document_id)
    if doc is None:
        raise NotFoundError("Document not found")
    ensure_owner_or_admin(user, doc.user_id)
    _set_status(doc, body.status)
    session.add(doc)
    session.commit()
    session.refresh(doc)
    return {"success": True, "data": doc}


@router.post("/bypass")
def bypass_esign(
    user: User = Depends(get_current_user),
    session: Session = Depends(get_session),
) -> dict:
    """Completed test document, reusing an existing one (test environments only)"""
    if not settings.ALLOW_TEST_BYPASS:
        raise PermissionDeniedError("Test bypass is disabled")

    doc = session.exec(
        select(Document)
        .where(Document.user_id == user.id)
        .where(Document.esign_status == "completed")
        .order_by(Document.created_at.desc())
    ).first()
    if doc is not None:
        return {"success": True, "message": "Document already signed", "data": doc}

    irn = generate_irn()
    doc = Document(
        user_id=user.id,
        name=DEFAULT_DOCUMENT_NAME,
        file_name=f"{irn}.pdf",
        file_path="",
        esign_request_id=f"BYPASS-{irn}",
        irn=irn,
    )
    _set_status(doc, "completed")
    session.add(doc)
    session.commit()
    session.refresh(doc)
    logger.warning("E-sign bypass used by user %s", user.id)
    return {"success": True, "message": "E-sign bypassed", "data": doc}


def _apply_webhook(session: Session, payload: dict) -> None:
    request_id = payload.get("documentId") or payload.get("requestId")
    irn = payload.get("irn")
    doc = None
    if request_id:
        doc = session.exec(
            select(Document).where(Document.esign_request_id == request_id)
        ).first()
    if doc is None and irn:
        doc = session.exec(select(Document).where(Document.irn == irn)).first()
    if doc is None:
        logger.warning("E-sign webhook for unknown document: %s / %s", request_id, irn)
        return

    status = str(payload.get("status") or "completed").lower()
    if status not in ESIGN_STATUSES:
        status = "completed" if status in ("signed", "success") else doc.esign_status
    _set_status(doc, status, _parse_time(payload.get("signedAt")))
    session.add(doc)
    session.commit()
    logger.info("E-sign webhook: document %s -> %s", doc.id, status)


@router.post("/webhook")
async def esign_webhook(request: Request, session: Session = Depends(get_session)) -> dict:
    """Leegality callback, always acknowledged"""
    try:
        payload = json.loads(await request.body() or b"{}")
    except ValueError:
        logger.warning("E-sign webhook with invalid JSON")
        return {"success": True, "message": "Webhook received"}

    try:
        _apply_webhook(session, payload if isinstance(payload, dict) else {})
    except Exception:
        logger.exception("E-sign webhook processing failed")
        return {"success": True, "message": "Webhook received with errors"}
    return {"success": True, "message": "Webhook received"}


@router.get("/{request_id}")
def esign_status(
    request_id: str,
    user: User = Depends(get_current_user),
) -> dict:
    """Upstream status of a sign request"""
    return {"success": True, "data": LeegalityClient().check_status(request_id)}
