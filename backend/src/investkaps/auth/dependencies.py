"""FastAPI auth dependencies"""

from fastapi import Depends, Header
from sqlmodel import Session, select

from investkaps.auth.clerk import parse_bearer, verify_session_token
from investkaps.database import get_session
from investkaps.errors import NotFoundError, PermissionDeniedError
from investkaps.models.user import User


def get_user_by_clerk_id(session: Session, clerk_id: str) -> User | None:
    return session.exec(select(User).where(User.clerk_id == clerk_id)).first()


def get_current_user(
    authorization: str | None = Header(None),
    session: Session = Depends(get_session),
) -> User:
    """Authenticated DB user"""
    token = parse_bearer(authorization)
    clerk_id = verify_session_token(token)
    user = get_user_by_clerk_id(session, clerk_id)
    if user is None:
        raise NotFoundError("User not found in database")
    return user


def require_admin(user: User = Depends(get_current_user)) -> User:
    """Authenticated admin user"""
    if not user.is_admin:
        raise PermissionDeniedError(
            f"User role '{user.role}' is not authorized to access this resource",
        )
    return user


def ensure_owner_or_admin(user: User, owner_id: int) -> None:
    if user.id != owner_id and not user.is_admin:
        raise PermissionDeniedError("Not authorized to access this resource")
