import os
import tempfile

# settings are read at import time
_TMP = tempfile.mkdtemp(prefix="investkaps-tests-")
os.environ.setdefault("DB_PATH", os.path.join(_TMP, "test.db"))
os.environ.setdefault("STORAGE_DIR", os.path.join(_TMP, "files"))
os.environ.setdefault("LOG_DIR", os.path.join(_TMP, "logs"))
os.environ.setdefault("SYMBOLS_FILE", os.path.join(_TMP, "symbols.json"))
os.environ["SCHEDULER_ENABLED"] = "false"

from datetime import timedelta  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402
from sqlmodel import Session, SQLModel, create_engine  # noqa: E402

import investkaps.models  # noqa: E402,F401
from investkaps.auth.dependencies import get_current_user  # noqa: E402
from investkaps.clock import utcnow  # noqa: E402
from investkaps.database import get_session  # noqa: E402
from investkaps.errors import AuthenticationError  # noqa: E402
from investkaps.main import app  # noqa: E402
from investkaps.models.recommendation import (  # noqa: E402
    RecommendationStrategyLink,
    StockRecommendation,
)
from investkaps.models.strategy import Strategy  # noqa: E402
from investkaps.models.subscription import (  # noqa: E402
    PlanStrategyLink,
    SubscriptionPlan,
    UserSubscription,
)
from investkaps.models.user import User  # noqa: E402


# --- DB ---
@pytest.fixture
def engine():
    """Fresh in-memory DB per test"""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session(engine):
    with Session(engine) as session:
        yield session


# --- API ---
@pytest.fixture
def auth_state():
    """Holds the user the API sees as logged in"""
    return {"user": None}


@pytest.fixture
def client(session, auth_state):
    def override_session():
        yield session

    def override_user():
        user = auth_state["user"]
        if user is None:
            raise AuthenticationError("Not authorized, no token")
        return user

    app.dependency_overrides[get_session] = override_session
    app.dependency_overrides[get_current_user] = override_user
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def login(auth_state):
    """login(user) makes later requests authenticate as user"""
    def _login(user):
        auth_state["user"] = user
        return user
    return _login


# --- factories ---
@pytest.fixture
def make_user(session):
    counter = {"n": 0}

    def _make(role="customer", **kwargs):
        counter["n"] += 1
        n = counter["n"]
        user = User(
            clerk_id=kwargs.pop("clerk_id", f"user_{n}"),
            email=kwargs.pop("email", f"user{n}@example.com"),
            name=kwargs.pop("name", f"User {n}"),
            role=role,
            **kwargs,
        )
        session.add(user)
        session.commit()
        session.refresh(user)
        return user
    return _make


@pytest.fixture
def user(make_user):
    return make_user()


@pytest.fixture
def admin(make_user):
    return make_user(role="admin", name="Admin")


@pytest.fixture
def make_strategy(session):
    counter = {"n": 0}

    def _make(**kwargs):
        counter["n"] += 1
        strategy = Strategy(
            strategy_code=kwargs.pop("strategy_code", f"STRAT{counter['n']}"),
            name=kwargs.pop("name", f"Strategy {counter['n']}"),
            **kwargs,
        )
        session.add(strategy)
        session.commit()
        session.refresh(strategy)
        return strategy
    return _make


@pytest.fixture
def make_plan(session):
    counter = {"n": 0}

    def _make(strategies=(), **kwargs):
        counter["n"] += 1
        plan = SubscriptionPlan(
            package_code=kwargs.pop("package_code", f"PKG{counter['n']}"),
            name=kwargs.pop("name", f"Plan {counter['n']}"),
            price_monthly=kwargs.pop("price_monthly", 999),
            price_six_month=kwargs.pop("price_six_month", 4999),
            price_yearly=kwargs.pop("price_yearly", 8999),
            **kwargs,
        )
        session.add(plan)
        session.flush()
        for strategy in strategies:
            session.add(PlanStrategyLink(plan_id=plan.id, strategy_id=strategy.id))
        session.commit()
        session.refresh(plan)
        return plan
    return _make


@pytest.fixture
def make_subscription(session):
    def _make(user, plan, status="active", days_left=30, **kwargs):
        now = utcnow()
        sub = UserSubscription(
            user_id=user.id,
            plan_id=plan.id,
            status=status,
            start_date=kwargs.pop("start_date", now - timedelta(days=1)),
            end_date=kwargs.pop("end_date", now + timedelta(days=days_left)),
            duration=kwargs.pop("duration", "monthly"),
            price=kwargs.pop("price", plan.price_monthly),
            **kwargs,
        )
        session.add(sub)
        session.commit()
        session.refresh(sub)
        return sub
    return _make


@pytest.fixture
def make_recommendation(session):
    def _make(strategies=(), **kwargs):
        values = {
            "title": "Breakout call",
            "stock_symbol": "RELIANCE",
            "stock_name": "Reliance Industries",
            "exchange": "NSE",
            "current_price": 2500.0,
            "target_price": 2800.0,
            "recommendation_type": "buy",
            "time_frame": "short_term",
            "description": "Strong breakout above resistance",
        }
        values.update(kwargs)
        rec = StockRecommendation(**values)
        session.add(rec)
        session.flush()
        for strategy in strategies:
            session.add(RecommendationStrategyLink(
                recommendation_id=rec.id, strategy_id=strategy.id,
            ))
        session.commit()
        session.refresh(rec)
        return rec
    return _make
