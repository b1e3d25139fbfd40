"""Zerodha Kite access token model"""

from datetime import datetime

from sqlalchemy import DateTime
from sqlmodel import Field, Session, SQLModel, select

from investkaps.clock import utcnow


class KiteToken(SQLModel, table=True):
    """Daily Kite access token (expires 06:00 IST)"""

    __tablename__ = "kite_tokens"

    id: int | None = Field(default=None, primary_key=True)
    access_token: str
    updated_by: int | None = Field(default=None, foreign_key="users.id")
    updated_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)
    expires_at: datetime = Field(sa_type=DateTime)
    is_active: bool = Field(default=True, index=True)

    @property
    def is_expired(self) -> bool:
        return self.expires_at <= utcnow()


def get_active_token(session: Session) -> KiteToken | None:
    """Latest active token, or None"""
    stmt = (
        select(KiteToken)
        .where(KiteToken.is_active == True)  # noqa: E712
        .order_by(KiteToken.updated_at.desc())
    )
    return session.exec(stmt).first()


def deactivate_expired_tokens(session: Session) -> int:
    """Deactivate tokens past expires_at, returns count"""
    stmt = (
        select(KiteToken)
        .where(KiteToken.is_active == True)  # noqa: E712
        .where(KiteToken.expires_at <= utcnow())
    )
    tokens = session.exec(stmt).all()
    for token in tokens:
        token.is_active = False
        session.add(token)
    session.commit()
    return len(tokens)
