import os
import tempfile

# Configuration is read at import time, so it has to be in place first
os.environ.setdefault("LOG_DIR", tempfile.mkdtemp(prefix="hall-booking-logs-"))
os.environ["DATABASE_URL"] = "sqlite://"
os.environ.pop("REDIS_URL", None)
os.environ["JWT_SECRET"] = "test-jwt-secret"
os.environ["PAYMENT_GATEWAY"] = "mock"
os.environ["PAYMENT_WEBHOOK_SECRET"] = "test-webhook-secret"
os.environ["WEEKEND_DAYS"] = "4,5"
os.environ["PERSON_PRICE_THRESHOLD"] = "0"
os.environ["COUPON_ENFORCEMENT"] = "false"

from datetime import datetime, time
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import hall_booking.db.base  # noqa: F401
from hall_booking.core import redis as redis_store
from hall_booking.core.jwt import create_access_token
from hall_booking.db.session import Base, get_db
from hall_booking.main import app
from hall_booking.models.addon import Addon
from hall_booking.models.branch import Branch
from hall_booking.models.coupon import Coupon
from hall_booking.models.enums import DiscountType
from hall_booking.models.hall import Hall
from hall_booking.services import hooks
from hall_booking.utils.payment_gateway import MockGateway, get_gateway

WEBHOOK_SECRET = "test-webhook-secret"

# 2030-01-01 is a Tuesday; 2030-01-07 a Monday, 2030-01-11 a Friday
NOW = datetime(2030, 1, 1, 12, 0)
MONDAY_18 = datetime(2030, 1, 7, 18, 0)
FRIDAY_18 = datetime(2030, 1, 11, 18, 0)


class FakeTokenStore:
    """In-memory stand-in for the redis client (get / setex / delete)."""

    def __init__(self):
        self.data = {}
        self.ttls = {}

    def get(self, key):
        return self.data.get(key)

    def setex(self, key, ttl, value):
        self.data[key] = value
        self.ttls[key] = ttl

    def delete(self, key):
        self.data.pop(key, None)
        self.ttls.pop(key, None)


# ---------------------------------------------------------------------
# DATABASE
# ---------------------------------------------------------------------
@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(autouse=True)
def token_store(monkeypatch):
    store = FakeTokenStore()
    monkeypatch.setattr(redis_store, "get_redis_client", lambda: store)
    return store


@pytest.fixture(autouse=True)
def clean_hooks():
    yield
    hooks.flush()
    hooks.reset_hooks()


@pytest.fixture
def gateway():
    return MockGateway(webhook_secret=WEBHOOK_SECRET)


# ---------------------------------------------------------------------
# INVENTORY
# ---------------------------------------------------------------------
@pytest.fixture
def branch(db):
    branch = Branch(name="Riyadh North", address="King Fahd Rd")
    db.add(branch)
    db.commit()
    db.refresh(branch)
    return branch


@pytest.fixture
def other_branch(db):
    branch = Branch(name="Jeddah Corniche")
    db.add(branch)
    db.commit()
    db.refresh(branch)
    return branch


@pytest.fixture
def hall(db, branch):
    hall = Hall(
        branch_id=branch.id,
        name="Grand Hall",
        capacity=50,
        base_price=Decimal("100.00"),
        hourly_price=Decimal("50.00"),
        price_per_person=Decimal("10.00"),
        included_persons=10,
        day_multipliers={"weekday": 1.0, "weekend": 1.5, "holiday": 2.0},
    )
    db.add(hall)
    db.commit()
    db.refresh(hall)
    return hall


@pytest.fixture
def small_hall(db, branch):
    hall = Hall(
        branch_id=branch.id,
        name="Garden Room",
        capacity=10,
        base_price=Decimal("80.00"),
        hourly_price=Decimal("20.00"),
        price_per_person=Decimal("0.00"),
    )
    db.add(hall)
    db.commit()
    db.refresh(hall)
    return hall


@pytest.fixture
def night_hall(db, branch):
    hall = Hall(
        branch_id=branch.id,
        name="Rooftop",
        capacity=30,
        base_price=Decimal("50.00"),
        hourly_price=Decimal("10.00"),
        price_per_person=Decimal("0.00"),
        opening_time=time(16, 0),
        closing_time=time(2, 0),
    )
    db.add(hall)
    db.commit()
    db.refresh(hall)
    return hall


@pytest.fixture
def coupon(db):
    coupon = Coupon(
        code="WELCOME10",
        discount_type=DiscountType.PERCENTAGE,
        discount_value=Decimal("10"),
        min_amount=Decimal("100"),
    )
    db.add(coupon)
    db.commit()
    db.refresh(coupon)
    return coupon


@pytest.fixture
def addon(db, branch):
    addon = Addon(branch_id=branch.id, name="Projector", price=Decimal("25.00"))
    db.add(addon)
    db.commit()
    db.refresh(addon)
    return addon


# ---------------------------------------------------------------------
# API
# ---------------------------------------------------------------------
def auth_headers(user_id: int, role: str = "user", branch_id: int | None = None) -> dict:
    claims = {"sub": str(user_id), "role": role}
    if branch_id is not None:
        claims["branch_id"] = branch_id
    return {"Authorization": f"Bearer {create_access_token(claims)}"}


@pytest.fixture
def client(session_factory, gateway):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_gateway] = lambda: gateway
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
