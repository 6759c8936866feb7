import threading
from decimal import Decimal

import pytest
from sqlalchemy import create_engine, select, func
from sqlalchemy.orm import sessionmaker

from storefront.application.service import OrderService
from storefront.application.stock import StockLedger
from storefront.domain.errors import OrderError
from storefront.domain.models import Base, MenuItem, Order

WORKERS = 4


@pytest.fixture
def file_sessions(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'orders.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(engine)
    yield sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)
    engine.dispose()


def test_simultaneous_orders_from_one_contact_place_only_one(file_sessions, make_submission):
    with file_sessions() as session:
        StockLedger(session).add_item(
            id="A1",
            name="Dog Food 1kg",
            base_price=Decimal("250.00"),
            track_inventory=True,
            stock_quantity=10,
            low_stock_threshold=2,
        )

    barrier = threading.Barrier(WORKERS)
    placed, rejected = [], []

    def submit(worker):
        with file_sessions() as session:
            service = OrderService(session, cooldown_seconds=60)
            barrier.wait()
            try:
                placed.append(service.submit_order(make_submission(origin_address=f"203.0.113.{worker}")))
            except OrderError as exc:
                rejected.append(exc)

    threads = [threading.Thread(target=submit, args=(n,)) for n in range(WORKERS)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(placed) == 1
    assert len(rejected) == WORKERS - 1
    with file_sessions() as session:
        assert session.scalar(select(func.count()).select_from(Order)) == 1
        assert session.get(MenuItem, "A1").stock_quantity == 8
