"""Uploaded document + e-sign state model"""

from datetime import datetime

from sqlalchemy import DateTime
from sqlmodel import Field, SQLModel

from investkaps.clock import utcnow

ESIGN_STATUSES = ("pending", "completed", "failed", "expired")


class Document(SQLModel, table=True):
    """User document sent for e-signature"""

    __tablename__ = "documents"

    id: int | None = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="users.id", index=True)
    name: str = Field(max_length=200)
    doc_type: str = Field(default="agreement", max_length=32)
    file_name: str
    file_path: str
    size: int = 0
    mime: str = Field(default="application/pdf", max_length=100)

    esign_request_id: str | None = Field(default=None, max_length=100, index=True)
    esign_status: str = Field(default="pending", max_length=10)
    signed_at: datetime | None = Field(default=None, sa_type=DateTime)
    sign_url: str | None = None
    irn: str | None = Field(default=None, max_length=40, index=True)

    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)
    updated_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)
