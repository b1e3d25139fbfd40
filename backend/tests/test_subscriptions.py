import hashlib
import hmac
from datetime import datetime, timedelta
from unittest.mock import MagicMock

import pytest
from sqlmodel import select

from investkaps.clock import utcnow
from investkaps.config import settings
from investkaps.errors import BadRequestError
from investkaps.models.subscription import SubscriptionNotification, UserSubscription
from investkaps.payment import razorpay
from investkaps.payment.razorpay import RazorpayClient, check_amount, make_receipt
from investkaps.subscription import service


# --- service ---

@pytest.mark.parametrize(
    "duration, expected",
    [
        ("monthly", datetime(2024, 2, 29, 10, 0)),
        ("sixMonth", datetime(2024, 7, 31, 10, 0)),
        ("yearly", datetime(2025, 1, 31, 10, 0)),
    ],
)
def test_calculate_end_date(duration, expected) -> None:
    assert service.calculate_end_date(datetime(2024, 1, 31, 10, 0), duration) == expected


def test_calculate_end_date_rejects_unknown_duration() -> None:
    with pytest.raises(BadRequestError):
        service.calculate_end_date(datetime(2024, 1, 1), "weekly")


def test_create_subscription_uses_plan_price(session, user, make_plan) -> None:
    plan = make_plan(price_six_month=4500)
    sub = service.create_user_subscription(session, user, plan, "sixMonth")

    assert sub.status == "active"
    assert sub.price == 4500
    assert sub.end_date > sub.start_date
    assert service.has_active_subscription(session, user.id)


def test_cancel_active_subscriptions(session, user, make_plan, make_subscription) -> None:
    plan = make_plan()
    make_subscription(user, plan)
    make_subscription(user, plan)
    make_subscription(user, plan, status="expired", days_left=-1)

    assert service.cancel_active_subscriptions(session, user) == 2
    assert not service.has_active_subscription(session, user.id)


def test_check_expired_subscriptions(
    session, user, make_plan, make_subscription, monkeypatch,
) -> None:
    notice = MagicMock(return_value=True)
    monkeypatch.setattr(service, "send_expired_notice", notice)
    plan = make_plan()
    ended = make_subscription(user, plan, days_left=-1)
    running = make_subscription(user, plan, days_left=10)

    assert service.check_expired_subscriptions(session) == 1

    session.refresh(ended)
    session.refresh(running)
    assert ended.status == "expired"
    assert running.status == "active"
    notice.assert_called_once()
    notices = session.exec(select(SubscriptionNotification)).all()
    assert [(n.subscription_id, n.type) for n in notices] == [(ended.id, "expired")]


def test_expiration_reminder_sent_once(
    session, user, make_plan, make_subscription, monkeypatch,
) -> None:
    reminder = MagicMock(return_value=True)
    monkeypatch.setattr(service, "send_expiration_reminder", reminder)
    plan = make_plan()
    soon = make_subscription(user, plan, end_date=utcnow() + timedelta(days=2, hours=1))
    make_subscription(user, plan, days_left=20)

    assert service.send_expiration_reminders(session) == 1
    assert service.send_expiration_reminders(session) == 0

    reminder.assert_called_once()
    args = reminder.call_args.args
    assert args[1].id == soon.id
    assert args[3] == 3


def test_undelivered_reminder_is_retried(
    session, user, make_plan, make_subscription, monkeypatch,
) -> None:
    monkeypatch.setattr(settings, "SMTP_HOST", "")
    sub = make_subscription(user, make_plan(), end_date=utcnow() + timedelta(days=1))

    # SMTP not configured: send_email returns False
    assert service.send_expiration_reminders(session) == 0
    assert session.exec(select(SubscriptionNotification)).all() == []

    monkeypatch.setattr(service, "send_expiration_reminder", MagicMock(return_value=True))
    assert service.send_expiration_reminders(session) == 1
    notice = session.exec(select(SubscriptionNotification)).one()
    assert (notice.subscription_id, notice.type) == (sub.id, "expiring_soon")


def test_subscription_stats(session, make_user, make_plan, make_subscription) -> None:
    plan = make_plan(name="Gold")
    make_subscription(make_user(), plan, days_left=30, price=1000)
    make_subscription(make_user(), plan, days_left=5, price=1000)
    make_subscription(make_user(), plan, days_left=-3, price=500)

    stats = service.subscription_stats(session)

    assert stats["active_subscriptions"] == 2
    assert stats["expiring_soon"] == 1
    assert stats["recently_expired"] == 1
    assert stats["by_plan"] == [
        {"plan_id": plan.id, "plan_name": "Gold", "count": 3, "revenue": 2500},
    ]
    assert len(stats["monthly_revenue"]) == 6
    assert stats["monthly_revenue"][-1]["month"] == utcnow().strftime("%Y-%m")


def test_admin_list_search(session, make_user, make_plan, make_subscription) -> None:
    plan = make_plan()
    alice = make_user(name="Alice Rao")
    make_subscription(alice, plan)
    make_subscription(make_user(name="Bob"), plan)

    result = service.admin_list(session, search="alice")

    assert result["total"] == 1
    assert result["data"][0]["user"]["id"] == alice.id
    assert result["data"][0]["plan"]["id"] == plan.id


# --- razorpay helpers ---

def test_verify_signature() -> None:
    client = RazorpayClient(key_id="rzp_test", key_secret="secret")
    signature = hmac.new(b"secret", b"order_1|pay_1", hashlib.sha256).hexdigest()

    assert client.verify_signature("order_1", "pay_1", signature)
    assert not client.verify_signature("order_1", "pay_2", signature)


def test_make_receipt_fits_razorpay_limit() -> None:
    receipt = make_receipt("user_2abcdefghijklmnop")
    assert receipt.startswith("rcpt_")
    assert receipt.endswith("klmnop")
    assert len(receipt) <= 40


def test_check_amount() -> None:
    check_amount(999.0, 999.0)
    with pytest.raises(BadRequestError):
        check_amount(999.0, 99.0)


# --- API: plans ---

def test_public_plans_only_active(client, make_plan) -> None:
    make_plan(name="Visible", display_order=2)
    make_plan(name="First", display_order=1)
    make_plan(name="Hidden", is_active=False)

    resp = client.get("/api/subscriptions/plans")

    assert resp.status_code == 200
    assert [p["name"] for p in resp.json()["data"]] == ["First", "Visible"]


def test_create_plan_and_duplicate_code(client, login, admin, make_strategy) -> None:
    login(admin)
    strategy = make_strategy()
    body = {
        "package_code": "GOLD",
        "name": "Gold",
        "price_monthly": 999,
        "price_six_month": 4999,
        "price_yearly": 8999,
        "features": [{"name": "Equity calls"}],
        "strategies": [strategy.id],
    }

    resp = client.post("/api/subscriptions/plans", json=body)
    assert resp.status_code == 201
    data = resp.json()["data"]
    assert data["features"] == [{"name": "Equity calls", "included": True, "description": ""}]
    assert data["strategies"] == [strategy.id]

    assert client.post("/api/subscriptions/plans", json=body).status_code == 400


def test_delete_plan_blocked_by_subscriptions(
    client, login, admin, user, make_plan, make_subscription,
) -> None:
    login(admin)
    plan = make_plan()
    make_subscription(user, plan)

    resp = client.delete(f"/api/subscriptions/plans/{plan.id}")

    assert resp.status_code == 400


def test_plan_strategies_require_ids(client, login, admin, make_plan) -> None:
    login(admin)
    plan = make_plan()
    resp = client.post(f"/api/subscriptions/plans/{plan.id}/strategies", json={"strategy_ids": []})
    assert resp.status_code == 400


# --- API: payments ---

@pytest.fixture
def razorpay_client(monkeypatch):
    client = RazorpayClient(key_id="rzp_test", key_secret="secret")
    client.fetch_payment = MagicMock(return_value={
        "status": "captured",
        "order_id": "order_1",
        "amount": 99900,
        "currency": "INR",
        "method": "upi",
    })
    client.fetch_order = MagicMock()
    client.create_order = MagicMock(return_value={
        "id": "order_1", "amount": 99900, "currency": "INR",
    })
    monkeypatch.setattr(razorpay, "get_client", lambda: client)
    monkeypatch.setattr(
        "investkaps.api.subscriptions.send_payment_confirmation", MagicMock(return_value=True),
    )
    return client


def test_create_order_checks_amount(client, login, user, make_plan, razorpay_client) -> None:
    login(user)
    plan = make_plan(price_monthly=999)

    bad = client.post(
        "/api/subscriptions/payment/order",
        json={"plan_id": plan.id, "duration": "monthly", "amount": 10},
    )
    assert bad.status_code == 400

    resp = client.post(
        "/api/subscriptions/payment/order",
        json={"plan_id": plan.id, "duration": "monthly", "amount": 999},
    )
    assert resp.status_code == 200
    assert resp.json()["order_id"] == "order_1"
    assert resp.json()["key"] == "rzp_test"


def _order(plan, user, duration="monthly") -> dict:
    return {
        "id": "order_1",
        "notes": {"plan_id": str(plan.id), "duration": duration, "user_id": str(user.id)},
    }


def _verification(plan, duration="monthly") -> dict:
    return {
        "razorpay_order_id": "order_1",
        "razorpay_payment_id": "pay_1",
        "razorpay_signature": hmac.new(b"secret", b"order_1|pay_1", hashlib.sha256).hexdigest(),
        "plan_id": plan.id,
        "duration": duration,
    }


def test_verify_payment_activates_subscription(
    client, login, user, session, make_plan, razorpay_client,
) -> None:
    login(user)
    plan = make_plan()
    razorpay_client.fetch_order.return_value = _order(plan, user)

    resp = client.post("/api/subscriptions/payment/verify", json=_verification(plan))

    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["status"] == "active"
    assert data["price"] == 999
    assert data["transaction_details"]["method"] == "upi"
    assert session.exec(select(UserSubscription)).one().payment_id == "pay_1"


def test_verify_payment_replay_rejected(
    client, login, user, session, make_plan, razorpay_client,
) -> None:
    login(user)
    plan = make_plan()
    razorpay_client.fetch_order.return_value = _order(plan, user)

    assert client.post("/api/subscriptions/payment/verify", json=_verification(plan)).status_code == 200
    resp = client.post("/api/subscriptions/payment/verify", json=_verification(plan))

    assert resp.status_code == 409
    assert len(session.exec(select(UserSubscription)).all()) == 1


def test_verify_payment_rejects_other_plan(
    client, login, user, session, make_plan, razorpay_client,
) -> None:
    login(user)
    cheap = make_plan(price_monthly=999)
    premium = make_plan(price_monthly=4999, price_yearly=49999)
    # order was created and paid for the cheap plan
    razorpay_client.fetch_order.return_value = _order(cheap, user)

    resp = client.post("/api/subscriptions/payment/verify", json=_verification(premium))

    assert resp.status_code == 400
    assert session.exec(select(UserSubscription)).all() == []


def test_verify_payment_rejects_short_amount(
    client, login, user, session, make_plan, razorpay_client,
) -> None:
    login(user)
    plan = make_plan()
    razorpay_client.fetch_order.return_value = _order(plan, user, duration="yearly")

    resp = client.post("/api/subscriptions/payment/verify", json=_verification(plan, "yearly"))

    # 999.00 paid against an 8999.00 yearly price
    assert resp.status_code == 400
    assert session.exec(select(UserSubscription)).all() == []


def test_verify_payment_bad_signature(client, login, user, make_plan, razorpay_client) -> None:
    login(user)
    plan = make_plan()

    resp = client.post(
        "/api/subscriptions/payment/verify",
        json={**_verification(plan), "razorpay_signature": "forged"},
    )

    assert resp.status_code == 400
    razorpay_client.fetch_payment.assert_not_called()


def test_test_bypass_disabled(client, login, user, make_plan) -> None:
    login(user)
    make_plan()
    assert client.post("/api/subscriptions/payment/test-bypass").status_code == 403


def test_test_bypass_creates_subscription(
    client, login, user, session, make_plan, make_subscription, monkeypatch,
) -> None:
    monkeypatch.setattr(settings, "ALLOW_TEST_BYPASS", True)
    login(user)
    plan = make_plan()
    old = make_subscription(user, plan)

    resp = client.post("/api/subscriptions/payment/test-bypass")

    assert resp.status_code == 200
    session.refresh(old)
    assert old.status == "cancelled"
    assert service.has_active_subscription(session, user.id)


def test_user_subscriptions_owner_only(client, login, user, make_user, make_plan, make_subscription) -> None:
    other = make_user()
    make_subscription(other, make_plan())
    login(user)

    assert client.get(f"/api/subscriptions/user/{other.clerk_id}").status_code == 403

    login(other)
    resp = client.get(f"/api/subscriptions/user/{other.clerk_id}")
    assert resp.status_code == 200
    assert len(resp.json()["data"]) == 1
