"""Time helpers (UTC storage, IST market calendar)"""

import calendar
from datetime import datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

IST = ZoneInfo("Asia/Kolkata")

MARKET_OPEN = time(9, 15)
MARKET_CLOSE = time(15, 30)
TOKEN_RESET = time(6, 0)


def utcnow() -> datetime:
    """Naive UTC now, the form stored in the DB"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_utc(dt: datetime | None) -> datetime | None:
    """Normalize to the naive UTC form stored in the DB (naive input is taken as UTC)"""
    if dt is None or dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def to_ist(dt: datetime) -> datetime:
    """Convert a naive UTC (or aware) datetime to IST"""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(IST)


def from_ist(dt: datetime) -> datetime:
    """Convert an IST datetime to naive UTC"""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=IST)
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def is_market_open(now: datetime | None = None) -> bool:
    """Weekdays 09:15-15:30 IST"""
    ist = to_ist(now or utcnow())
    if ist.weekday() >= 5:
        return False
    return MARKET_OPEN <= ist.time() <= MARKET_CLOSE


def next_token_expiry(now: datetime | None = None) -> datetime:
    """Next 06:00 IST as naive UTC (Kite access tokens reset daily)"""
    ist = to_ist(now or utcnow())
    expiry = ist.replace(
        hour=TOKEN_RESET.hour, minute=0, second=0, microsecond=0,
    )
    if ist >= expiry:
        expiry += timedelta(days=1)
    return from_ist(expiry)


def add_months(dt: datetime, months: int) -> datetime:
    """Add calendar months, clamping the day to the target month"""
    month_index = dt.month - 1 + months
    year = dt.year + month_index // 12
    month = month_index % 12 + 1
    day = min(dt.day, calendar.monthrange(year, month)[1])
    return dt.replace(year=year, month=month, day=day)
