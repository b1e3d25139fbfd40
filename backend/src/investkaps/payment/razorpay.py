"""Razorpay orders + payment signature verification"""

import hashlib
import hmac
import logging
import time

import requests

from investkaps.config import settings
from investkaps.errors import BadRequestError, UpstreamError

logger = logging.getLogger(__name__)


class RazorpayClient:
    """Minimal Razorpay REST client (orders, payments)"""

    def __init__(
        self,
        key_id: str | None = None,
        key_secret: str | None = None,
        base_url: str | None = None,
        timeout: float = 15.0,
    ) -> None:
        self.key_id = key_id or settings.RAZORPAY_KEY_ID
        self._secret = key_secret or settings.RAZORPAY_KEY_SECRET
        self._base_url = (base_url or settings.RAZORPAY_API_URL).rstrip("/")
        self._timeout = timeout
        self._session = requests.Session()
        self._session.auth = (self.key_id, self._secret)

    def _request(self, method: str, path: str, **kwargs) -> dict:
        if not self.key_id or not self._secret:
            raise UpstreamError("Razorpay is not configured")
        try:
            resp = self._session.request(
                method, f"{self._base_url}{path}", timeout=self._timeout, **kwargs,
            )
        except requests.RequestException as e:
            raise UpstreamError(f"Razorpay request failed: {e}") from e
        if resp.status_code >= 400:
            try:
                message = resp.json()["error"]["description"]
            except (ValueError, KeyError, TypeError):
                message = resp.text
            raise UpstreamError(f"Razorpay error ({resp.status_code}): {message}")
        return resp.json()

    def create_order(self, amount: float, currency: str, receipt: str, notes: dict) -> dict:
        """Create an order, amount in rupees (sent as paise)"""
        order = self._request("POST", "/orders", json={
            "amount": to_paise(amount),
            "currency": currency,
            "receipt": receipt,
            "notes": notes,
        })
        logger.info("Razorpay order created: %s (%s %s)", order.get("id"), amount, currency)
        return order

    def fetch_payment(self, payment_id: str) -> dict:
        return self._request("GET", f"/payments/{payment_id}")

    def fetch_order(self, order_id: str) -> dict:
        return self._request("GET", f"/orders/{order_id}")

    def verify_signature(self, order_id: str, payment_id: str, signature: str) -> bool:
        """HMAC-SHA256 of "order_id|payment_id" with the key secret"""
        expected = hmac.new(
            self._secret.encode(),
            f"{order_id}|{payment_id}".encode(),
            hashlib.sha256,
        ).hexdigest()
        return hmac.compare_digest(expected, signature)


def to_paise(amount: float) -> int:
    return int(round(amount * 100))


def check_order(
    order: dict,
    payment: dict,
    *,
    plan_id: int,
    duration: str,
    user_id: int,
    amount: float,
) -> None:
    """The paid order must be the one created for this user, plan, duration and price"""
    notes = order.get("notes") or {}
    if payment.get("order_id") not in (None, order.get("id")):
        raise BadRequestError("Payment does not belong to this order")
    if (
        str(notes.get("plan_id")) != str(plan_id)
        or notes.get("duration") != duration
        or str(notes.get("user_id")) != str(user_id)
    ):
        raise BadRequestError("Order does not match the requested plan")
    if payment.get("amount") != to_paise(amount):
        raise BadRequestError("Paid amount does not match plan price")


def make_receipt(user_id: int | str) -> str:
    """rcpt_{ts}_{last 6 chars of user id} (Razorpay limit: 40 chars)"""
    return f"rcpt_{int(time.time() * 1000)}_{str(user_id)[-6:]}"


def check_amount(expected: float, amount: float) -> None:
    if abs(expected - amount) > 0.001:
        raise BadRequestError("Amount does not match plan price")


def get_client() -> RazorpayClient:
    return RazorpayClient()
