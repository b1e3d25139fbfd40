"""KYC verification history model"""

import json
from datetime import datetime

from sqlalchemy import Column as SAColumn, DateTime, Text
from sqlmodel import Field, SQLModel

from investkaps.clock import utcnow


class KycVerification(SQLModel, table=True):
    """One KRA lookup for a PAN"""

    __tablename__ = "kyc_verifications"

    id: int | None = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="users.id", index=True)
    pan_number: str = Field(max_length=10, index=True)
    status: str = Field(max_length=10, description="success | failed")
    kyc_status: str | None = Field(default=None, max_length=20, description="Mapped KRA status")
    raw: str = Field(
        default="{}",
        sa_column=SAColumn("raw", Text, default="{}"),
        description="Mapped KRA response (JSON)",
    )
    error: str | None = None
    verified_at: datetime = Field(default_factory=utcnow, index=True, sa_type=DateTime)

    @property
    def raw_dict(self) -> dict:
        return json.loads(self.raw or "{}")

    @raw_dict.setter
    def raw_dict(self, value: dict) -> None:
        self.raw = json.dumps(value, ensure_ascii=False)
