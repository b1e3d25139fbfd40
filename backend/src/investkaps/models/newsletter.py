"""Newsletter subscriber model"""

from datetime import datetime

from sqlalchemy import DateTime
from sqlmodel import Field, SQLModel

from investkaps.clock import utcnow


class NewsletterSubscriber(SQLModel, table=True):
    """Email address on the marketing list"""

    __tablename__ = "newsletter_subscribers"

    id: int | None = Field(default=None, primary_key=True)
    email: str = Field(max_length=254, unique=True, index=True)
    status: str = Field(default="active", max_length=16, description="active | unsubscribed")
    source: str = Field(default="website", max_length=32)
    subscribed_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)
    unsubscribed_at: datetime | None = Field(default=None, sa_type=DateTime)
