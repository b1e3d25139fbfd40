from datetime import timedelta
from unittest.mock import MagicMock

import pytest
from sqlmodel import select

from investkaps.clock import utcnow
from investkaps.errors import BadRequestError, BrokerTokenMissingError
from investkaps.models.recommendation import (
    RecommendationDelivery,
    RecommendationView,
    StockRecommendation,
)
from investkaps.recommendation import service


@pytest.fixture
def mock_email(monkeypatch):
    """Recommendation emails always succeed"""
    send = MagicMock(return_value=True)
    monkeypatch.setattr(service, "send_recommendation_email", send)
    return send


@pytest.fixture
def mock_telegram(monkeypatch):
    calls = []

    async def fake_send(rec, chat_ids):
        calls.append((rec.id, list(chat_ids)))
        return len(chat_ids)

    monkeypatch.setattr(service, "send_recommendation", fake_send)
    return calls


def _payload(**overrides) -> dict:
    body = {
        "title": "Breakout call",
        "stock_symbol": "tcs",
        "stock_name": "Tata Consultancy Services",
        "current_price": 3500,
        "target_price": 3900,
        "stop_loss": 3300,
        "recommendation_type": "buy",
        "time_frame": "medium_term",
        "description": "Breakout above resistance",
    }
    body.update(overrides)
    return body


# --- pure helpers ---

@pytest.mark.parametrize(
    "symbol, exchange, expected",
    [
        ("reliance", None, ("RELIANCE", "NSE")),
        ("RELIANCE.BSE", None, ("RELIANCE", "BSE")),
        ("RELIANCE.BSE", "NSE", ("RELIANCE", "BSE")),
        ("RELIANCE.BSE", "MCX", ("RELIANCE", "MCX")),
        ("M.M", "NSE", ("M.M", "NSE")),
        (" infy ", "bse", ("INFY", "BSE")),
    ],
)
def test_normalize_symbol(symbol, exchange, expected) -> None:
    assert service.normalize_symbol(symbol, exchange) == expected


def test_status_transitions() -> None:
    service.check_transition("draft", "published")
    service.check_transition("draft", "archived")
    service.check_transition("published", "archived")
    service.check_transition("archived", "draft")
    service.check_transition("published", "published")

    with pytest.raises(BadRequestError):
        service.check_transition("published", "draft")
    with pytest.raises(BadRequestError):
        service.check_transition("archived", "published")


# --- service ---

def test_publish_emails_active_subscribers(
    session, make_user, make_strategy, make_plan, make_subscription,
    mock_email, mock_telegram,
) -> None:
    strategy = make_strategy()
    other = make_strategy()
    plan = make_plan(strategies=[strategy], telegram_chat_id="-100123")
    other_plan = make_plan(strategies=[other])

    subscriber = make_user()
    make_subscription(subscriber, plan)
    make_subscription(make_user(), plan, status="expired", days_left=-5)
    make_subscription(make_user(), other_plan)

    rec = service.create_recommendation(
        session,
        {**_payload(), "status": "published"},
        [strategy.id],
    )

    assert rec.published_at is not None
    mock_email.assert_called_once()
    assert mock_email.call_args.args[0].id == subscriber.id

    deliveries = session.exec(select(RecommendationDelivery)).all()
    assert [(d.user_id, d.delivery_status) for d in deliveries] == [(subscriber.id, "sent")]
    assert mock_telegram == [(rec.id, ["-100123"])]


def test_draft_does_not_notify(session, make_strategy, mock_email, mock_telegram) -> None:
    rec = service.create_recommendation(session, _payload(), [make_strategy().id])

    assert rec.status == "draft"
    assert rec.published_at is None
    mock_email.assert_not_called()
    assert mock_telegram == []


def test_unknown_strategy_rejected(session) -> None:
    with pytest.raises(BadRequestError):
        service.create_recommendation(session, _payload(), [999])


def test_failed_email_recorded(
    session, make_user, make_strategy, make_plan, make_subscription,
    monkeypatch, mock_telegram,
) -> None:
    monkeypatch.setattr(
        service, "send_recommendation_email", MagicMock(side_effect=OSError("smtp down")),
    )
    strategy = make_strategy()
    make_subscription(make_user(), make_plan(strategies=[strategy]))
    rec = service.create_recommendation(session, _payload(), [strategy.id])

    result = service.send_to_users(session, rec)

    assert result == {"sent_count": 0, "failed_count": 1, "total_users": 1}
    delivery = session.exec(select(RecommendationDelivery)).one()
    assert delivery.delivery_status == "failed"


def test_user_feed_filters_and_marks_viewed(
    session, user, make_strategy, make_plan, make_subscription, make_recommendation,
) -> None:
    strategy = make_strategy()
    hidden_strategy = make_strategy()
    sub = make_subscription(user, make_plan(strategies=[strategy]))
    now = utcnow()

    visible = make_recommendation(
        strategies=[strategy], status="published", published_at=now,
    )
    make_recommendation(strategies=[strategy], status="draft")
    make_recommendation(
        strategies=[hidden_strategy], status="published", published_at=now,
    )
    # published before the subscription started
    make_recommendation(
        strategies=[strategy],
        status="published",
        published_at=sub.start_date - timedelta(days=3),
    )

    feed = service.user_feed(session, user)

    assert feed["total"] == 1
    assert [r["id"] for r in feed["data"]] == [visible.id]
    assert feed["data"][0]["target_strategies"] == [strategy.id]

    views = session.exec(select(RecommendationView)).all()
    assert [(v.recommendation_id, v.user_id) for v in views] == [(visible.id, user.id)]

    # second read does not duplicate the view
    service.user_feed(session, user)
    assert len(session.exec(select(RecommendationView)).all()) == 1


def test_user_feed_empty_without_subscription(session, user) -> None:
    feed = service.user_feed(session, user)
    assert feed["data"] == []
    assert feed["total"] == 0


# --- API ---

def test_create_requires_admin(client, login, user) -> None:
    login(user)
    resp = client.post("/api/stock-recommendations", json=_payload())
    assert resp.status_code == 403
    assert resp.json()["success"] is False


def test_create_requires_login(client) -> None:
    resp = client.post("/api/stock-recommendations", json=_payload())
    assert resp.status_code == 401


def test_admin_crud_flow(client, login, admin, make_strategy, mock_email, mock_telegram) -> None:
    login(admin)
    strategy = make_strategy()

    resp = client.post(
        "/api/stock-recommendations",
        json=_payload(stock_symbol="tcs.bse", target_strategies=[strategy.id]),
    )
    assert resp.status_code == 201
    data = resp.json()["data"]
    assert data["stock_symbol"] == "TCS"
    assert data["exchange"] == "BSE"
    assert data["status"] == "draft"
    assert data["target_strategies"] == [strategy.id]
    rec_id = data["id"]

    listing = client.get("/api/stock-recommendations").json()
    assert listing["total"] == 1
    assert listing["data"][0]["id"] == rec_id

    resp = client.put(f"/api/stock-recommendations/{rec_id}", json={"status": "published"})
    assert resp.status_code == 200
    assert resp.json()["data"]["published_at"] is not None

    resp = client.put(f"/api/stock-recommendations/{rec_id}", json={"status": "draft"})
    assert resp.status_code == 400

    resp = client.put(f"/api/stock-recommendations/{rec_id}", json={"status": "archived"})
    assert resp.json()["data"]["status"] == "archived"

    resp = client.delete(f"/api/stock-recommendations/{rec_id}")
    assert resp.status_code == 200
    assert client.get(f"/api/stock-recommendations/{rec_id}").status_code == 404


def test_create_validation_error(client, login, admin) -> None:
    login(admin)
    resp = client.post(
        "/api/stock-recommendations",
        json=_payload(recommendation_type="short"),
    )
    assert resp.status_code == 400
    body = resp.json()
    assert body["error"] == "Validation failed"
    assert any(d["field"] == "recommendation_type" for d in body["details"])


def test_generate_pdf_stores_report(client, login, admin, session, make_recommendation) -> None:
    login(admin)
    rec = make_recommendation()

    resp = client.post(f"/api/stock-recommendations/{rec.id}/generate-pdf")

    assert resp.status_code == 200
    assert resp.headers["content-type"] == "application/pdf"
    assert resp.content.startswith(b"%PDF")
    session.refresh(rec)
    assert rec.pdf_public_id.startswith("recommendations/")
    assert rec.pdf_url.endswith(".pdf")


def test_refresh_prices_uses_provider(
    client, login, user, session, make_recommendation, monkeypatch,
) -> None:
    login(user)
    stale = make_recommendation(
        status="published",
        published_at=utcnow(),
        last_price_update=utcnow() - timedelta(hours=1),
    )
    fresh = make_recommendation(
        stock_symbol="INFY",
        status="published",
        published_at=utcnow(),
        last_price_update=utcnow(),
    )

    provider = MagicMock()
    provider.get_ltp.return_value = {"NSE:RELIANCE": 2610.5}
    monkeypatch.setattr(
        "investkaps.api.recommendations.get_quote_provider", lambda session: provider,
    )

    resp = client.post("/api/stock-recommendations/refresh-prices")

    assert resp.status_code == 200
    body = resp.json()
    assert body["updated"] == 1
    assert body["total"] == 1
    provider.get_ltp.assert_called_once_with([("NSE", "RELIANCE")])
    session.refresh(stale)
    session.refresh(fresh)
    assert stale.current_price == 2610.5
    assert fresh.current_price == 2500.0


def test_token_status_without_token(client, login, user) -> None:
    login(user)
    resp = client.get("/api/stock-recommendations/zerodha/token-status")
    assert resp.json() == {"success": True, "has_token": False}


def test_set_token_then_status(client, login, admin) -> None:
    login(admin)
    resp = client.post(
        "/api/stock-recommendations/zerodha/set-token",
        json={"access_token": "  abc123  "},
    )
    assert resp.status_code == 200

    status = client.get("/api/stock-recommendations/zerodha/token-status").json()
    assert status["has_token"] is True


def test_search_query_too_short(client, login, user) -> None:
    login(user)
    resp = client.get("/api/stock-recommendations/zerodha/search", params={"query": "a"})
    assert resp.status_code == 400


def test_delete_removes_views(session, user, make_recommendation) -> None:
    rec = make_recommendation(status="published", published_at=utcnow())
    session.add(RecommendationView(recommendation_id=rec.id, user_id=user.id))
    session.commit()

    service.delete_recommendation(session, rec)

    assert session.exec(select(StockRecommendation)).all() == []
    assert session.exec(select(RecommendationView)).all() == []


def test_refresh_prices_up_to_date_skips_provider(
    client, login, user, make_recommendation, monkeypatch,
) -> None:
    login(user)
    make_recommendation(status="published", published_at=utcnow(), last_price_update=utcnow())
    lookup = MagicMock(side_effect=BrokerTokenMissingError())
    monkeypatch.setattr("investkaps.api.recommendations.get_quote_provider", lookup)

    resp = client.post("/api/stock-recommendations/refresh-prices")

    assert resp.status_code == 200
    body = resp.json()
    assert body["message"] == "All prices are up to date"
    assert body["total"] == 0
    assert len(body["data"]) == 1
    lookup.assert_not_called()
