"""Quote provider selection"""

from sqlmodel import Session

from investkaps.config import settings
from investkaps.data.base import QuoteProvider
from investkaps.data.kite_provider import get_kite_provider
from investkaps.data.ltp_provider import LtpServiceProvider


def get_quote_provider(session: Session) -> QuoteProvider:
    """Provider configured by PRICE_PROVIDER ("kite" | "ltp")"""
    if settings.PRICE_PROVIDER.lower() == "ltp":
        return LtpServiceProvider()
    return get_kite_provider(session)
