import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["JWT_SECRET"] = "test-secret-key-for-admin-tokens-0001"

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from storefront.application.schemas import OrderSubmission
from storefront.application.stock import StockLedger
from storefront.domain.models import Base, MenuItem, Order
from storefront.infrastructure.db import get_db
from storefront.main import app


class FakeClock:
    def __init__(self, start=None):
        self.now = start or datetime(2025, 1, 16, 9, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now = self.now + timedelta(seconds=seconds)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def client(session_factory):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def ledger(db):
    return StockLedger(db)


@pytest.fixture
def dog_food(ledger):
    """Tracked catalog item A1 with 10 in stock and a low-stock threshold of 2."""
    return ledger.add_item(
        id="A1",
        name="Dog Food 1kg",
        base_price=Decimal("250.00"),
        track_inventory=True,
        stock_quantity=10,
        low_stock_threshold=2,
    )


@pytest.fixture
def make_submission():
    def _make(**overrides):
        data = {
            "customer_name": "Jane Doe",
            "contact_number": "09171234567",
            "service_type": "pickup",
            "pickup_time": "15-20 min",
            "payment_method": "GCash",
            "items": [
                {"catalog_item_id": "A1", "name": "Dog Food 1kg", "unit_price": "250.00", "quantity": 2},
            ],
            "total": "500.00",
        }
        data.update(overrides)
        return OrderSubmission(**data)
    return _make


def reload_item(db, item_id) -> MenuItem:
    db.expire_all()
    return db.get(MenuItem, item_id)


@pytest.fixture
def reload():
    return reload_item


@pytest.fixture
def prior_order(db, clock):
    """Insert an already placed order, ``seconds_ago`` before the fake clock."""
    def _place(seconds_ago=0, contact_number=None, ip_address=None, order_id=None, total="100.00"):
        order = Order(
            customer_name="Earlier Customer",
            contact_number=contact_number,
            ip_address=ip_address,
            service_type="pickup",
            pickup_time="15-20 min",
            payment_method="Cash",
            total=Decimal(total),
            created_at=clock.now - timedelta(seconds=seconds_ago),
        )
        if order_id:
            order.id = order_id
        db.add(order)
        db.commit()
        return order
    return _place
