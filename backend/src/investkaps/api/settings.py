"""Settings API router"""

import logging

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from investkaps.auth.dependencies import require_admin
from investkaps.config import settings

logger = logging.getLogger(__name__)
router = APIRouter(dependencies=[Depends(require_admin)])


class SettingsResponse(BaseModel):
    """Non-secret settings (secrets masked)"""
    CORS_ORIGINS: list[str]
    PUBLIC_BASE_URL: str
    FRONTEND_URL: str
    LOG_LEVEL: str
    PRICE_PROVIDER: str
    PRICE_STALE_MINUTES: int
    LTP_API_URL: str
    KITE_API_KEY: str
    RAZORPAY_KEY_ID: str
    SMTP_HOST: str
    EMAIL_FROM: str
    TELEGRAM_BOT_TOKEN: str
    TELEGRAM_CHAT_ID: str
    SCHEDULER_ENABLED: bool
    ALLOW_TEST_BYPASS: bool


class SettingsUpdate(BaseModel):
    """Runtime-editable settings (partial update)"""
    TELEGRAM_BOT_TOKEN: str | None = None
    TELEGRAM_CHAT_ID: str | None = None


class TelegramTestResponse(BaseModel):
    success: bool
    message: str


def mask(value: str) -> str:
    """Keep the first 6 and last 4 characters of a secret"""
    if not value:
        return ""
    if len(value) <= 10:
        return "*" * len(value)
    return f"{value[:6]}...{value[-4:]}"


@router.get("")
def get_settings() -> SettingsResponse:
    """Current settings"""
    return SettingsResponse(
        CORS_ORIGINS=settings.CORS_ORIGINS,
        PUBLIC_BASE_URL=settings.PUBLIC_BASE_URL,
        FRONTEND_URL=settings.FRONTEND_URL,
        LOG_LEVEL=settings.LOG_LEVEL,
        PRICE_PROVIDER=settings.PRICE_PROVIDER,
        PRICE_STALE_MINUTES=settings.PRICE_STALE_MINUTES,
        LTP_API_URL=settings.LTP_API_URL,
        KITE_API_KEY=mask(settings.KITE_API_KEY),
        RAZORPAY_KEY_ID=settings.RAZORPAY_KEY_ID,
        SMTP_HOST=settings.SMTP_HOST,
        EMAIL_FROM=settings.EMAIL_FROM,
        TELEGRAM_BOT_TOKEN=mask(settings.TELEGRAM_BOT_TOKEN),
        TELEGRAM_CHAT_ID=settings.TELEGRAM_CHAT_ID,
        SCHEDULER_ENABLED=settings.SCHEDULER_ENABLED,
        ALLOW_TEST_BYPASS=settings.ALLOW_TEST_BYPASS,
    )


@router.put("")
def update_settings(update: SettingsUpdate) -> SettingsResponse:
    """Update settings at runtime"""
    update_data = update.model_dump(exclude_none=True)

    for key, value in update_data.items():
        if hasattr(settings, key):
            object.__setattr__(settings, key, value)

    logger.info("Settings updated: %s", list(update_data.keys()))
    return get_settings()


@router.post("/telegram/test")
async def test_telegram() -> TelegramTestResponse:
    """Send a Telegram test message"""
    if not settings.TELEGRAM_BOT_TOKEN or not settings.TELEGRAM_CHAT_ID:
        return TelegramTestResponse(
            success=False,
            message="Telegram is not configured (BOT_TOKEN, CHAT_ID)",
        )

    try:
        from investkaps.notification.telegram import send_test_message
        await send_test_message()
        return TelegramTestResponse(success=True, message="Test message sent")
    except Exception as e:
        logger.error("Telegram test failed: %s", e)
        return TelegramTestResponse(success=False, message=f"Send failed: {e}")
