"""SMTP email notifications"""

import logging
import smtplib
from datetime import datetime
from email.message import EmailMessage
from html import escape

from investkaps.config import settings
from investkaps.models.recommendation import StockRecommendation
from investkaps.models.subscription import SubscriptionPlan, UserSubscription
from investkaps.models.user import User

logger = logging.getLogger(__name__)

_TYPE_COLORS = {"buy": "green", "sell": "red", "hold": "orange"}


def send_email(to: str, subject: str, html: str, text: str = "") -> bool:
    """Send one message, False when SMTP is not configured"""
    if not settings.SMTP_HOST:
        logger.warning("SMTP not configured, email to %s skipped", to)
        return False

    msg = EmailMessage()
    msg["From"] = settings.EMAIL_FROM
    msg["To"] = to
    msg["Subject"] = subject
    msg.set_content(text or subject)
    msg.add_alternative(html, subtype="html")

    with smtplib.SMTP(settings.SMTP_HOST, settings.SMTP_PORT, timeout=20) as smtp:
        smtp.starttls()
        if settings.SMTP_USER:
            smtp.login(settings.SMTP_USER, settings.SMTP_PASSWORD)
        smtp.send_message(msg)

    logger.info("Email sent to %s: %s", to, subject)
    return True


def _layout(title: str, body: str, user: User) -> str:
    year = datetime.now().year
    return f"""
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
  <div style="background-color: #0b73ff; padding: 20px; text-align: center;">
    <h1 style="color: white; margin: 0;">{escape(title)}</h1>
  </div>
  <div style="padding: 20px; border: 1px solid #e0e0e0;">{body}</div>
  <div style="text-align: center; padding: 10px; font-size: 12px; color: #666;">
    <p>&copy; {year} InvestKaps. All rights reserved.</p>
    <p>This email was sent to {escape(user.email)}</p>
  </div>
</div>"""


def _money(value: float | None) -> str:
    return f"₹{value:,.2f}" if value is not None else "-"


def send_recommendation_email(user: User, rec: StockRecommendation) -> bool:
    rec_type = rec.recommendation_type.capitalize()
    time_frame = rec.time_frame.replace("_", " ").title()
    color = _TYPE_COLORS.get(rec.recommendation_type, "orange")

    body = f"""
    <h2 style="color: #333;">{escape(rec.title)}</h2>
    <div style="background-color: #f9f9f9; padding: 15px; border-radius: 5px;">
      <h3 style="margin-top: 0; color: #0b73ff;">{escape(rec.stock_name)} ({escape(rec.stock_symbol)})</h3>
      <p><strong>Recommendation:</strong> <span style="color: {color};">{rec_type}</span></p>
      <p><strong>Current Price:</strong> {_money(rec.current_price)}</p>
      <p><strong>Target Price:</strong> {_money(rec.target_price)}</p>
      {f"<p><strong>Stop Loss:</strong> {_money(rec.stop_loss)}</p>" if rec.stop_loss else ""}
      <p><strong>Time Frame:</strong> {time_frame}</p>
      <p><strong>Risk Level:</strong> {rec.risk_level.capitalize()}</p>
    </div>
    <h3>Description</h3>
    <p>{escape(rec.description)}</p>
    {f"<h3>Rationale</h3><p>{escape(rec.rationale)}</p>" if rec.rationale else ""}
    <p style="font-size: 12px; color: #666;">This recommendation is provided as part of your
    subscription with InvestKaps. All investments carry risk. Past performance is not
    indicative of future results.</p>"""

    return send_email(
        user.email,
        f"Stock Recommendation: {rec.stock_symbol} - {rec_type}",
        _layout("Stock Recommendation", body, user),
        f"{rec.title}\n{rec.stock_symbol}: {rec_type} at {rec.current_price}, target {rec.target_price}",
    )


def send_expiration_reminder(
    user: User,
    subscription: UserSubscription,
    plan: SubscriptionPlan,
    days_remaining: int,
) -> bool:
    end = subscription.end_date.strftime("%d %b %Y")
    body = f"""
    <h2 style="color: #333;">Your Subscription is Expiring Soon</h2>
    <p>Dear {escape(user.name)},</p>
    <p>Your {escape(plan.name)} subscription will expire on {end}
    ({days_remaining} day{"s" if days_remaining != 1 else ""} left).</p>
    <p>Renew before the expiration date to keep receiving stock recommendations.</p>
    <p><a href="{settings.FRONTEND_URL}/subscriptions">Renew now</a></p>"""

    return send_email(
        user.email,
        "Your InvestKaps Subscription is Expiring Soon",
        _layout("Subscription Reminder", body, user),
        f"Your {plan.name} subscription expires on {end}.",
    )


def send_expired_notice(
    user: User,
    subscription: UserSubscription,
    plan: SubscriptionPlan,
) -> bool:
    end = subscription.end_date.strftime("%d %b %Y")
    body = f"""
    <h2 style="color: #333;">Your Subscription Has Expired</h2>
    <p>Dear {escape(user.name)},</p>
    <p>Your {escape(plan.name)} subscription expired on {end}.</p>
    <p><a href="{settings.FRONTEND_URL}/subscriptions">Renew your subscription</a></p>"""

    return send_email(
        user.email,
        "Your InvestKaps Subscription Has Expired",
        _layout("Subscription Expired", body, user),
        f"Your {plan.name} subscription expired on {end}.",
    )


def send_payment_confirmation(
    user: User,
    subscription: UserSubscription,
    plan: SubscriptionPlan,
) -> bool:
    start = subscription.start_date.strftime("%d %b %Y")
    end = subscription.end_date.strftime("%d %b %Y")
    body = f"""
    <h2 style="color: #333;">Payment Successful</h2>
    <p>Dear {escape(user.name)},</p>
    <p>Thank you for subscribing to {escape(plan.name)}.</p>
    <ul>
      <li>Amount: {subscription.currency} {subscription.price:,.2f}</li>
      <li>Valid: {start} to {end}</li>
      <li>Payment ID: {escape(subscription.payment_id or "-")}</li>
    </ul>"""

    return send_email(
        user.email,
        "InvestKaps Subscription Confirmed",
        _layout("Subscription Confirmed", body, user),
        f"{plan.name} active from {start} to {end}.",
    )
