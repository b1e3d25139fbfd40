"""User model (Clerk identity + profile + KYC snapshot)"""

from datetime import datetime

from sqlalchemy import DateTime
from sqlmodel import Field, SQLModel

from investkaps.clock import utcnow

USER_ROLES = ("customer", "admin")


class User(SQLModel, table=True):
    """Platform user, keyed by Clerk id"""

    __tablename__ = "users"

    id: int | None = Field(default=None, primary_key=True)
    clerk_id: str = Field(max_length=64, unique=True, index=True)
    email: str = Field(max_length=254, unique=True, index=True)
    name: str = Field(max_length=200)
    is_verified: bool = False
    role: str = Field(default="customer", max_length=16, description="customer | admin")

    # profile
    phone: str | None = Field(default=None, max_length=15)
    phone_verified: bool = False
    address: str | None = None
    city: str | None = Field(default=None, max_length=100)
    state: str | None = Field(default=None, max_length=100)
    pincode: str | None = Field(default=None, max_length=10)

    # KYC snapshot from the latest successful verification
    kyc_verified: bool = False
    pan_number: str | None = Field(default=None, max_length=10, index=True)
    aadhaar_number: str | None = Field(default=None, max_length=12)
    kyc_verified_at: datetime | None = Field(default=None, sa_type=DateTime)
    kyc_full_name: str | None = None
    kyc_father_name: str | None = None
    kyc_dob: str | None = Field(default=None, max_length=20)
    kyc_gender: str | None = Field(default=None, max_length=10)
    latest_kyc_verification_id: int | None = None

    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)
    updated_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    def public_dict(self) -> dict:
        """Serializable view (no Aadhaar)"""
        return self.model_dump(exclude={"aadhaar_number"})
