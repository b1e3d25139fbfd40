"""APScheduler jobs"""

import logging

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from sqlmodel import Session

from investkaps.clock import is_market_open
from investkaps.config import settings
from investkaps.data.providers import get_quote_provider
from investkaps.database import engine
from investkaps.errors import BrokerTokenMissingError
from investkaps.models.broker_token import deactivate_expired_tokens
from investkaps.recommendation.pricing import update_all_recommendation_prices
from investkaps.subscription.service import (
    check_expired_subscriptions,
    send_expiration_reminders,
)

logger = logging.getLogger(__name__)

scheduler = BackgroundScheduler(timezone=settings.SCHEDULER_TIMEZONE)


def expire_subscriptions_job() -> None:
    """Daily 01:00 IST: expire ended subscriptions"""
    logger.info("=== Subscription expiry job started ===")
    try:
        with Session(engine) as session:
            count = check_expired_subscriptions(session)
        logger.info("Subscription expiry job done: %d expired", count)
    except Exception:
        logger.exception("Subscription expiry job failed")


def expiration_reminders_job() -> None:
    """Daily 09:00 IST: remind subscriptions ending within 3 days"""
    logger.info("=== Expiration reminder job started ===")
    try:
        with Session(engine) as session:
            count = send_expiration_reminders(session)
        logger.info("Expiration reminder job done: %d sent", count)
    except Exception:
        logger.exception("Expiration reminder job failed")


def deactivate_tokens_job() -> None:
    """Daily 06:00 IST: Kite tokens expire"""
    logger.info("=== Kite token cleanup started ===")
    try:
        with Session(engine) as session:
            count = deactivate_expired_tokens(session)
        logger.info("Kite token cleanup done: %d deactivated", count)
    except Exception:
        logger.exception("Kite token cleanup failed")


def update_prices_job() -> None:
    """Every 15 minutes on weekdays: refresh active recommendation prices"""
    if not is_market_open():
        logger.debug("Market closed, skipping price update")
        return

    logger.info("=== Recommendation price update started ===")
    try:
        with Session(engine) as session:
            try:
                provider = get_quote_provider(session)
            except BrokerTokenMissingError:
                logger.warning("No active Zerodha token, skipping price update")
                return
            result = update_all_recommendation_prices(session, provider)
        logger.info(
            "Recommendation price update done: %d/%d updated, %d failed",
            result["updated"], result["total"], result["failed"],
        )
    except Exception:
        logger.exception("Recommendation price update failed")


def start_scheduler() -> None:
    """Start the scheduler"""
    if not settings.SCHEDULER_ENABLED:
        logger.info("Scheduler disabled")
        return

    # 01:00 expire subscriptions
    scheduler.add_job(
        expire_subscriptions_job,
        trigger=CronTrigger(hour=1, minute=0, timezone=settings.SCHEDULER_TIMEZONE),
        id="expire_subscriptions",
        name="Expire subscriptions",
        replace_existing=True,
    )

    # 09:00 expiration reminders
    scheduler.add_job(
        expiration_reminders_job,
        trigger=CronTrigger(hour=9, minute=0, timezone=settings.SCHEDULER_TIMEZONE),
        id="expiration_reminders",
        name="Expiration reminders",
        replace_existing=True,
    )

    # 06:00 Kite token reset
    scheduler.add_job(
        deactivate_tokens_job,
        trigger=CronTrigger(hour=6, minute=0, timezone=settings.SCHEDULER_TIMEZONE),
        id="deactivate_tokens",
        name="Kite token cleanup",
        replace_existing=True,
    )

    # weekdays, every 15 minutes (market-hours check inside)
    scheduler.add_job(
        update_prices_job,
        trigger=CronTrigger(
            day_of_week="mon-fri",
            minute="*/15",
            timezone=settings.SCHEDULER_TIMEZONE,
        ),
        id="update_recommendation_prices",
        name="Recommendation price update",
        replace_existing=True,
    )

    scheduler.start()
    logger.info("Scheduler started")


def stop_scheduler() -> None:
    """Stop the scheduler"""
    if scheduler.running:
        scheduler.shutdown()
        logger.info("Scheduler stopped")
