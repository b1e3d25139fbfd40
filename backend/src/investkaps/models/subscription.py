"""Subscription plan + user subscription models"""

import json
from datetime import datetime

from sqlalchemy import Column as SAColumn, DateTime, Text, UniqueConstraint
from sqlmodel import Field, SQLModel

from investkaps.clock import utcnow

CURRENCIES = ("INR", "USD", "EUR", "GBP")
DURATIONS = ("monthly", "sixMonth", "yearly")
SUBSCRIPTION_STATUSES = ("active", "expired", "cancelled", "pending")


class SubscriptionPlan(SQLModel, table=True):
    """Purchasable package granting access to a set of strategies"""

    __tablename__ = "subscription_plans"

    id: int | None = Field(default=None, primary_key=True)
    package_code: str = Field(max_length=40, unique=True, index=True)
    name: str = Field(max_length=200)
    description: str = ""

    price_monthly: float = Field(default=0, ge=0)
    price_six_month: float = Field(default=0, ge=0)
    price_yearly: float = Field(default=0, ge=0)
    currency: str = Field(default="INR", max_length=3)

    stock_options: bool = False
    index_options: bool = False
    stock_future: bool = False
    index_future: bool = False
    equity: bool = False
    mcx: bool = False

    features: str = Field(
        default="[]",
        sa_column=SAColumn("features", Text, default="[]"),
        description="[{name, included, description}] (JSON)",
    )
    telegram_chat_id: str | None = Field(default=None, max_length=64)
    is_active: bool = True
    display_order: int = 0
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)
    updated_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)

    @property
    def features_list(self) -> list[dict]:
        return json.loads(self.features or "[]")

    @features_list.setter
    def features_list(self, value: list[dict]) -> None:
        self.features = json.dumps(value, ensure_ascii=False)

    def price_for(self, duration: str) -> float:
        """Plan price for a billing duration"""
        prices = {
            "monthly": self.price_monthly,
            "sixMonth": self.price_six_month,
            "yearly": self.price_yearly,
        }
        return prices[duration]


class PlanStrategyLink(SQLModel, table=True):
    """Plan ↔ strategy association"""

    __tablename__ = "plan_strategies"

    plan_id: int = Field(foreign_key="subscription_plans.id", primary_key=True)
    strategy_id: int = Field(foreign_key="strategies.id", primary_key=True)


class UserSubscription(SQLModel, table=True):
    """A user's purchase of a plan for a duration"""

    __tablename__ = "user_subscriptions"

    id: int | None = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="users.id", index=True)
    plan_id: int = Field(foreign_key="subscription_plans.id", index=True)
    status: str = Field(default="pending", max_length=16, index=True)
    start_date: datetime = Field(default_factory=utcnow, sa_type=DateTime)
    end_date: datetime = Field(sa_type=DateTime)
    renewal_date: datetime | None = Field(default=None, sa_type=DateTime)
    payment_id: str | None = Field(default=None, max_length=100)
    order_id: str | None = Field(default=None, max_length=100)
    transaction_details: str = Field(
        default="{}",
        sa_column=SAColumn("transaction_details", Text, default="{}"),
    )
    auto_renew: bool = False
    price: float = Field(default=0, ge=0)
    currency: str = Field(default="INR", max_length=3)
    duration: str = Field(max_length=16, description="monthly | sixMonth | yearly")
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)
    updated_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)

    @property
    def transaction_dict(self) -> dict:
        return json.loads(self.transaction_details or "{}")

    @transaction_dict.setter
    def transaction_dict(self, value: dict) -> None:
        self.transaction_details = json.dumps(value, ensure_ascii=False, default=str)


class SubscriptionNotification(SQLModel, table=True):
    """Lifecycle notification already sent for a subscription"""

    __tablename__ = "subscription_notifications"
    __table_args__ = (
        UniqueConstraint("subscription_id", "type", name="uq_subscription_notice"),
    )

    id: int | None = Field(default=None, primary_key=True)
    subscription_id: int = Field(foreign_key="user_subscriptions.id", index=True)
    type: str = Field(max_length=20, description="expiring_soon | expired | renewed | payment_failed")
    sent_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)
