"""Stock recommendation models"""

from datetime import datetime

from sqlalchemy import DateTime, UniqueConstraint
from sqlmodel import Field, SQLModel

from investkaps.clock import utcnow

EXCHANGES = ("NSE", "BSE", "NFO", "BFO", "CDS", "MCX")
RECOMMENDATION_TYPES = ("buy", "sell", "hold")
TIME_FRAMES = ("short_term", "medium_term", "long_term")
RISK_LEVELS = ("low", "moderate", "high")
RECOMMENDATION_STATUSES = ("draft", "published", "archived")
DELIVERY_STATUSES = ("pending", "sent", "failed")


class StockRecommendation(SQLModel, table=True):
    """Admin-authored call on a stock, published to subscribers"""

    __tablename__ = "stock_recommendations"

    id: int | None = Field(default=None, primary_key=True)
    title: str = Field(max_length=200)
    stock_symbol: str = Field(max_length=40, index=True)
    stock_name: str = Field(max_length=200)
    exchange: str = Field(default="NSE", max_length=10)

    current_price: float
    last_price_update: datetime | None = Field(default=None, sa_type=DateTime)
    target_price: float
    target_price2: float | None = None
    target_price3: float | None = None
    stop_loss: float | None = None

    recommendation_type: str = Field(max_length=8, description="buy | sell | hold")
    time_frame: str = Field(max_length=16, description="short_term | medium_term | long_term")
    description: str = ""
    rationale: str | None = None
    risk_level: str = Field(default="moderate", max_length=10)

    status: str = Field(default="draft", max_length=10, index=True)
    published_at: datetime | None = Field(default=None, sa_type=DateTime)
    expires_at: datetime | None = Field(default=None, sa_type=DateTime)

    pdf_url: str | None = None
    pdf_public_id: str | None = None
    pdf_generated_at: datetime | None = Field(default=None, sa_type=DateTime)

    created_by: int | None = Field(default=None, foreign_key="users.id")
    created_at: datetime = Field(default_factory=utcnow, index=True, sa_type=DateTime)
    updated_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)

    @property
    def instrument_key(self) -> str:
        return f"{self.exchange or 'NSE'}:{self.stock_symbol}"


class RecommendationStrategyLink(SQLModel, table=True):
    """Recommendation ↔ target strategy association"""

    __tablename__ = "recommendation_strategies"

    recommendation_id: int = Field(
        foreign_key="stock_recommendations.id", primary_key=True,
    )
    strategy_id: int = Field(foreign_key="strategies.id", primary_key=True)


class RecommendationView(SQLModel, table=True):
    """First time a user opened a recommendation"""

    __tablename__ = "recommendation_views"
    __table_args__ = (
        UniqueConstraint("recommendation_id", "user_id", name="uq_recommendation_view"),
    )

    id: int | None = Field(default=None, primary_key=True)
    recommendation_id: int = Field(foreign_key="stock_recommendations.id", index=True)
    user_id: int = Field(foreign_key="users.id", index=True)
    viewed_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)


class RecommendationDelivery(SQLModel, table=True):
    """Email delivery attempt of a recommendation to a user"""

    __tablename__ = "recommendation_deliveries"

    id: int | None = Field(default=None, primary_key=True)
    recommendation_id: int = Field(foreign_key="stock_recommendations.id", index=True)
    user_id: int = Field(foreign_key="users.id", index=True)
    sent_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)
    delivery_status: str = Field(default="pending", max_length=10)
