"""Stock master + OHLCV candle models"""

import json
from datetime import date as date_type, datetime

from sqlalchemy import Column as SAColumn, Date, DateTime, Text, UniqueConstraint
from sqlmodel import Field, SQLModel

from investkaps.clock import utcnow

CANDLE_INTERVALS = ("daily", "weekly", "monthly")


class StockData(SQLModel, table=True):
    """Quote, fundamentals and metadata for one listed instrument"""

    __tablename__ = "stock_data"
    __table_args__ = (
        UniqueConstraint("symbol", "exchange", name="uq_stock_symbol_exchange"),
    )

    id: int | None = Field(default=None, primary_key=True)
    symbol: str = Field(max_length=40, index=True, description="Trading symbol")
    exchange: str = Field(default="NSE", max_length=10, description="Exchange")
    name: str = Field(max_length=200, description="Company name")
    instrument_token: int | None = Field(
        default=None, unique=True, description="Kite instrument token",
    )

    # quote
    last_price: float | None = None
    change: float | None = None
    percent_change: float | None = None
    open: float | None = None
    high: float | None = None
    low: float | None = None
    close: float | None = None
    volume: int | None = None
    market_cap: float | None = None
    pe: float | None = None
    eps: float | None = None
    dividend_yield: float | None = None
    sector: str | None = Field(default=None, max_length=100)
    industry: str | None = Field(default=None, max_length=100)
    last_updated: datetime = Field(default_factory=utcnow, sa_type=DateTime)

    # fundamentals
    book_value: float | None = None
    face_value: float | None = None
    pb: float | None = None
    roe: float | None = None
    debt_to_equity: float | None = None

    meta: str = Field(
        default="{}",
        sa_column=SAColumn("metadata", Text, default="{}"),
        description="Free-form metadata (JSON)",
    )

    @property
    def meta_dict(self) -> dict:
        """Metadata as dict"""
        return json.loads(self.meta or "{}")

    @meta_dict.setter
    def meta_dict(self, value: dict) -> None:
        self.meta = json.dumps(value, ensure_ascii=False)

    @property
    def instrument_key(self) -> str:
        return f"{self.exchange}:{self.symbol}"


class StockCandle(SQLModel, table=True):
    """Historical OHLCV bar (daily / weekly / monthly)"""

    __tablename__ = "stock_candles"
    __table_args__ = (
        UniqueConstraint("stock_id", "interval", "date", name="uq_candle"),
    )

    id: int | None = Field(default=None, primary_key=True)
    stock_id: int = Field(foreign_key="stock_data.id", index=True)
    interval: str = Field(max_length=10, description="daily | weekly | monthly")
    date: date_type = Field(sa_column=SAColumn("date", Date, nullable=False))
    open: float = 0
    high: float = 0
    low: float = 0
    close: float = 0
    volume: int = 0
