"""Telegram notification module"""

import logging

from telegram import Bot
from telegram.constants import ParseMode
from telegram.helpers import escape_markdown

from investkaps.config import settings
from investkaps.models.recommendation import StockRecommendation

logger = logging.getLogger(__name__)

MAX_MESSAGE_LENGTH = 4000

_TYPE_EMOJI = {
    "buy": "🟢",
    "sell": "🔴",
    "hold": "🟡",
}


def _get_bot() -> Bot:
    """Telegram Bot instance"""
    return Bot(token=settings.TELEGRAM_BOT_TOKEN)


def _truncate(message: str) -> str:
    if len(message) > MAX_MESSAGE_LENGTH:
        return message[:MAX_MESSAGE_LENGTH] + "\n\n... (truncated)"
    return message


def _escape(text: str) -> str:
    # admin-entered text must not open Markdown entities
    return escape_markdown(text, version=1)


def format_time_frame(time_frame: str) -> str:
    """short_term -> SHORT TERM"""
    return time_frame.replace("_", " ").upper()


def format_recommendation(rec: StockRecommendation) -> str:
    """Recommendation as a Markdown message"""
    emoji = _TYPE_EMOJI.get(rec.recommendation_type, "🟡")

    lines = [
        f"{emoji} *NEW STOCK RECOMMENDATION* {emoji}",
        "",
        f"📊 *{_escape(rec.stock_symbol)}* - {_escape(rec.stock_name)}",
        "",
        "💰 *Price Details:*",
        f"• Current Price: ₹{rec.current_price}",
        f"• Target Price: ₹{rec.target_price}",
    ]
    if rec.target_price2:
        lines.append(f"• Target 2: ₹{rec.target_price2}")
    if rec.target_price3:
        lines.append(f"• Target 3: ₹{rec.target_price3}")
    if rec.stop_loss:
        lines.append(f"• Stop Loss: ₹{rec.stop_loss}")

    lines += [
        "",
        f"📈 *Recommendation:* {rec.recommendation_type.upper()}",
        f"⏰ *Time Frame:* {format_time_frame(rec.time_frame)}",
        "",
        "📝 *Description:*",
        _escape(rec.description),
    ]
    if rec.rationale:
        lines += ["", "💡 *Rationale:*", _escape(rec.rationale)]
    if rec.pdf_url:
        lines += ["", f"📄 *Full Report:* {_escape(rec.pdf_url)}"]
    lines += ["", "---", "_InvestKaps - Your Investment Partner_"]

    return "\n".join(lines)


async def send_recommendation(
    rec: StockRecommendation,
    chat_ids: list[str],
) -> int:
    """Post a recommendation to each chat, returns delivered count"""
    if not settings.TELEGRAM_BOT_TOKEN:
        logger.warning("Telegram bot token missing, skipping notification")
        return 0

    if not chat_ids and settings.TELEGRAM_CHAT_ID:
        chat_ids = [settings.TELEGRAM_CHAT_ID]
    if not chat_ids:
        logger.warning("No Telegram chat configured for %s", rec.stock_symbol)
        return 0

    bot = _get_bot()
    message = _truncate(format_recommendation(rec))
    delivered = 0
    for chat_id in chat_ids:
        try:
            await bot.send_message(
                chat_id=chat_id,
                text=message,
                parse_mode=ParseMode.MARKDOWN,
            )
            delivered += 1
            logger.info("Recommendation %s sent to Telegram chat %s", rec.stock_symbol, chat_id)
        except Exception:
            logger.exception("Telegram send failed: chat %s", chat_id)
    return delivered


async def send_test_message() -> None:
    """Telegram test message"""
    bot = _get_bot()
    await bot.send_message(
        chat_id=settings.TELEGRAM_CHAT_ID,
        text="✅ InvestKaps test message.",
    )
