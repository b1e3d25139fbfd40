"""Manual (QR) payment request model"""

from datetime import datetime

from sqlalchemy import DateTime
from sqlmodel import Field, SQLModel

from investkaps.clock import utcnow

PAYMENT_REQUEST_STATUSES = ("pending", "approved", "rejected")


class PaymentRequest(SQLModel, table=True):
    """UPI/QR payment proof awaiting admin review"""

    __tablename__ = "payment_requests"

    id: int | None = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="users.id", index=True)
    plan_id: int = Field(foreign_key="subscription_plans.id")
    plan_name: str = Field(max_length=200)
    duration: str = Field(max_length=16)
    amount: float
    sender_name: str = Field(max_length=200)
    transaction_id: str = Field(max_length=100)
    image_url: str
    image_public_id: str
    status: str = Field(default="pending", max_length=10, index=True)
    admin_notes: str | None = None
    approved_by: int | None = Field(default=None, foreign_key="users.id")
    approved_at: datetime | None = Field(default=None, sa_type=DateTime)
    rejected_at: datetime | None = Field(default=None, sa_type=DateTime)
    user_subscription_id: int | None = Field(
        default=None, foreign_key="user_subscriptions.id",
    )
    created_at: datetime = Field(default_factory=utcnow, index=True, sa_type=DateTime)
    updated_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)
