"""Trading strategy model"""

from datetime import datetime

from sqlalchemy import DateTime
from sqlmodel import Field, SQLModel

from investkaps.clock import utcnow

TRADING_FLAGS = (
    "stock_options",
    "index_options",
    "stock_future",
    "index_future",
    "equity",
    "mcx",
)


class Strategy(SQLModel, table=True):
    """Strategy that recommendations and plans are grouped by"""

    __tablename__ = "strategies"

    id: int | None = Field(default=None, primary_key=True)
    strategy_code: str = Field(max_length=40, unique=True, index=True)
    name: str = Field(max_length=200)
    description: str = ""

    stock_options: bool = False
    index_options: bool = False
    stock_future: bool = False
    index_future: bool = False
    equity: bool = False
    mcx: bool = False

    is_active: bool = True
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)
    updated_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)
