from datetime import datetime, timezone
from decimal import Decimal

import pytest
from sqlalchemy import select, func
from sqlalchemy.exc import SQLAlchemyError, OperationalError, IntegrityError

from storefront.application.rate_limit import RateLimiter
from storefront.application.service import OrderService, aggregate_quantities, to_money, bounded_money
from storefront.application.stock import StockLedger
from storefront.domain.errors import (
    OrderValidationError,
    RateLimited,
    MissingIdentifier,
    InsufficientStock,
    PersistenceError,
)
from storefront.domain.models import Order, OrderItem


@pytest.fixture
def service(db, clock):
    return OrderService(db, cooldown_seconds=60, clock=clock)


def order_count(db):
    return db.scalar(select(func.count()).select_from(Order))


def line(item_id="A1", quantity=2, unit_price="250.00", name="Dog Food 1kg", **extra):
    return dict(catalog_item_id=item_id, name=name, unit_price=unit_price, quantity=quantity, **extra)


class TestHappyPath:
    def test_places_order_and_decrements_stock(self, db, service, dog_food, make_submission, reload):
        result = service.submit_order(make_submission())

        assert result.status == "pending"
        assert result.total == Decimal("500.00")
        assert result.stock_warning is None

        order = db.get(Order, result.order_id)
        assert order.customer_name == "Jane Doe"
        assert order.service_type == "pickup"
        assert order.pickup_time == "15-20 min"
        assert order.address is None
        assert order.party_size is None
        assert order.total == Decimal("500.00")
        assert len(order.items) == 1
        assert order.items[0].quantity == 2
        assert order.items[0].subtotal == Decimal("500.00")

        item = reload(db, "A1")
        assert item.stock_quantity == 8
        assert item.available is True

    def test_order_ids_are_unique_text(self, service, dog_food, make_submission, clock):
        first = service.submit_order(make_submission())
        clock.advance(61)
        second = service.submit_order(make_submission())
        assert first.order_id != second.order_id
        assert len(first.order_id) == 36

    def test_origin_address_is_recorded(self, db, service, dog_food, make_submission):
        result = service.submit_order(make_submission(origin_address="203.0.113.7"))
        assert db.get(Order, result.order_id).ip_address == "203.0.113.7"

    def test_untracked_item_leaves_stock_alone(self, db, service, ledger, make_submission, reload):
        ledger.add_item(id="B1", name="Leash", base_price=Decimal("120.00"))
        result = service.submit_order(make_submission(
            items=[line("B1", quantity=5, unit_price="120.00", name="Leash")],
            total="600.00",
        ))
        assert result.stock_warning is None
        item = reload(db, "B1")
        assert item.stock_quantity == 0
        assert item.available is True

    def test_variation_and_add_ons_are_snapshotted(self, db, service, dog_food, make_submission):
        result = service.submit_order(make_submission(
            items=[line(
                quantity=1,
                unit_price="275.50",
                variation={"name": "Large", "price": "20"},
                add_ons=[{"name": "Treat pack", "price": "5.50", "quantity": 1}],
            )],
            total="275.50",
        ))
        stored = db.scalars(select(OrderItem).where(OrderItem.order_id == result.order_id)).one()
        assert stored.variation == {"name": "Large", "price": "20.00"}
        assert stored.add_ons == [{"name": "Treat pack", "price": "5.50", "quantity": 1}]
        assert stored.unit_price == Decimal("275.50")

    def test_total_is_computed_when_not_supplied(self, service, dog_food, make_submission):
        result = service.submit_order(make_submission(total=None))
        assert result.total == Decimal("500.00")


class TestStockChecks:
    def test_insufficient_stock_rejects_order(self, db, service, ledger, dog_food, make_submission, reload):
        ledger.update_item("A1", {"stock_quantity": 1})
        with pytest.raises(InsufficientStock) as exc:
            service.submit_order(make_submission())

        assert exc.value.available == 1
        assert exc.value.requested == 2
        assert exc.value.user_message == "Only 1 left in stock for Dog Food 1kg."
        assert order_count(db) == 0
        assert reload(db, "A1").stock_quantity == 1

    def test_out_of_stock_message(self, service, ledger, dog_food, make_submission):
        ledger.update_item("A1", {"stock_quantity": 0})
        with pytest.raises(InsufficientStock) as exc:
            service.submit_order(make_submission())
        assert exc.value.user_message == "Dog Food 1kg is currently out of stock."

    def test_quantities_are_aggregated_per_catalog_item(self, db, service, ledger, dog_food, make_submission):
        ledger.update_item("A1", {"stock_quantity": 6})
        submission = make_submission(
            items=[
                line(quantity=3, variation={"name": "Small", "price": "0"}),
                line(quantity=4, variation={"name": "Large", "price": "0"}),
            ],
            total=None,
        )
        with pytest.raises(InsufficientStock) as exc:
            service.submit_order(submission)
        assert exc.value.available == 6
        assert exc.value.requested == 7
        assert order_count(db) == 0

    def test_aggregate_quantities(self, make_submission):
        submission = make_submission(items=[line("A1", 3), line("B1", 1), line("A1", 4)])
        assert aggregate_quantities(submission.items) == {"A1": 7, "B1": 1}

    def test_decrement_failure_keeps_order(self, db, service, dog_food, make_submission, monkeypatch, reload):
        def broken_decrement(self, quantities):
            raise SQLAlchemyError("stock table unavailable")

        monkeypatch.setattr(StockLedger, "decrement", broken_decrement)
        result = service.submit_order(make_submission())

        assert result.stock_warning is not None
        assert result.stock_warning.reason.startswith("decrement failed")
        assert result.stock_warning.item_ids == ["A1"]
        assert db.get(Order, result.order_id) is not None
        assert reload(db, "A1").stock_quantity == 10

    def test_concurrent_drain_is_clamped_at_zero(self, db, service, ledger, dog_food, make_submission, monkeypatch, reload):
        ledger.update_item("A1", {"stock_quantity": 1})
        # Another order drained the stock between the pre-check and the decrement
        monkeypatch.setattr(StockLedger, "reserve_and_validate", lambda self, requested: {})

        result = service.submit_order(make_submission())

        assert result.stock_warning.reason == "stock clamped at zero"
        assert result.stock_warning.item_ids == ["A1"]
        item = reload(db, "A1")
        assert item.stock_quantity == 0
        assert item.available is False


class TestRateLimiting:
    def test_second_order_inside_cooldown_is_rejected(self, db, service, dog_food, make_submission, clock, reload):
        service.submit_order(make_submission())
        with pytest.raises(RateLimited):
            service.submit_order(make_submission())
        assert order_count(db) == 1
        assert reload(db, "A1").stock_quantity == 8

        clock.advance(61)
        service.submit_order(make_submission())
        assert order_count(db) == 2
        assert reload(db, "A1").stock_quantity == 6

    def test_same_address_different_contact_is_rejected(self, service, dog_food, make_submission):
        service.submit_order(make_submission(origin_address="203.0.113.7"))
        with pytest.raises(RateLimited):
            service.submit_order(make_submission(origin_address="203.0.113.7", contact_number="09998887777"))

    def test_missing_identifier_stops_before_stock(self, db, service, dog_food, make_submission, monkeypatch):
        def must_not_run(self, requested):
            raise AssertionError("stock checked without an identifier")

        monkeypatch.setattr(StockLedger, "reserve_and_validate", must_not_run)
        with pytest.raises(MissingIdentifier) as exc:
            service.submit_order(make_submission(contact_number=None, origin_address=None))
        assert exc.value.user_message == RateLimited.user_message
        assert order_count(db) == 0

    def test_insert_guard_rejects_when_precheck_is_stale(self, db, service, dog_food, make_submission, prior_order, monkeypatch, reload):
        prior_order(seconds_ago=5, contact_number="09171234567")
        # Simulates a competing order committed after the early check
        monkeypatch.setattr(RateLimiter, "recent_order_count", lambda self, identity, now=None: 0)

        with pytest.raises(RateLimited):
            service.submit_order(make_submission())
        assert order_count(db) == 1
        assert reload(db, "A1").stock_quantity == 10


class TestAtomicity:
    def test_line_item_failure_rolls_back_header(self, db, service, dog_food, make_submission, monkeypatch, reload):
        def broken_insert(self, order_id, lines, now):
            raise SQLAlchemyError("disk I/O error")

        monkeypatch.setattr(OrderService, "_insert_line_items", broken_insert)
        with pytest.raises(PersistenceError):
            service.submit_order(make_submission())

        assert order_count(db) == 0
        assert db.scalar(select(func.count()).select_from(OrderItem)) == 0
        assert reload(db, "A1").stock_quantity == 10

    def test_failed_attempt_does_not_start_cooldown(self, service, dog_food, make_submission, monkeypatch):
        def broken_insert(self, order_id, lines, now):
            raise SQLAlchemyError("disk I/O error")

        with monkeypatch.context() as patch:
            patch.setattr(OrderService, "_insert_line_items", broken_insert)
            with pytest.raises(PersistenceError):
                service.submit_order(make_submission())
        service.submit_order(make_submission())


class TestStorageFailures:
    def test_rate_check_storage_error_is_a_persistence_error(self, db, service, dog_food, make_submission, monkeypatch):
        def locked(self, identity, now=None):
            raise OperationalError("SELECT count(*) FROM orders", {}, Exception("database is locked"))

        monkeypatch.setattr(RateLimiter, "recent_order_count", locked)
        with pytest.raises(PersistenceError) as exc:
            service.submit_order(make_submission())
        assert isinstance(exc.value.__cause__, OperationalError)
        assert order_count(db) == 0

    def test_stock_check_storage_error_is_a_persistence_error(self, db, service, dog_food, make_submission, monkeypatch, reload):
        def unavailable(self, requested):
            raise OperationalError("SELECT menu_items", {}, Exception("server closed the connection"))

        monkeypatch.setattr(StockLedger, "reserve_and_validate", unavailable)
        with pytest.raises(PersistenceError):
            service.submit_order(make_submission())
        assert order_count(db) == 0
        assert reload(db, "A1").stock_quantity == 10


class TestValidation:
    def reject(self, service, submission):
        with pytest.raises(OrderValidationError) as exc:
            service.submit_order(submission)
        return exc.value.problems

    def test_empty_cart(self, db, service, make_submission):
        problems = self.reject(service, make_submission(items=[], total=None))
        assert "cart is empty" in problems
        assert order_count(db) == 0

    def test_delivery_requires_address(self, service, dog_food, make_submission):
        problems = self.reject(service, make_submission(service_type="delivery"))
        assert problems == ["delivery address is required"]

    def test_dine_in_requires_party_of_one(self, service, dog_food, make_submission):
        problems = self.reject(service, make_submission(
            service_type="dine-in",
            party_size=0,
            dine_in_time=datetime(2025, 1, 16, 18, 30, tzinfo=timezone.utc),
        ))
        assert problems == ["party size must be at least 1"]

    def test_custom_pickup_needs_a_time(self, service, dog_food, make_submission):
        problems = self.reject(service, make_submission(pickup_time="custom"))
        assert problems == ["pickup time is required"]

    def test_custom_pickup_time_is_stored(self, db, service, dog_food, make_submission):
        result = service.submit_order(make_submission(pickup_time="custom", custom_pickup_time="5:30 PM"))
        assert db.get(Order, result.order_id).pickup_time == "5:30 PM"

    def test_total_mismatch(self, db, service, dog_food, make_submission, reload):
        problems = self.reject(service, make_submission(total="499.00"))
        assert len(problems) == 1
        assert "does not match" in problems[0]
        assert reload(db, "A1").stock_quantity == 10

    def test_required_header_fields(self, service, dog_food, make_submission):
        problems = self.reject(service, make_submission(customer_name="  ", payment_method="", origin_address="203.0.113.7", contact_number=None))
        assert problems == [
            "customer name is required",
            "contact number is required",
            "payment method is required",
        ]

    def test_line_item_problems(self, service, make_submission):
        problems = self.reject(service, make_submission(items=[line(quantity=0)], total=None))
        assert problems == ["item 1 quantity must be positive"]

    def test_fields_of_other_service_types_are_dropped(self, db, service, dog_food, make_submission):
        result = service.submit_order(make_submission(address="12 Mabini St", party_size=4))
        order = db.get(Order, result.order_id)
        assert order.address is None
        assert order.party_size is None
        assert order.pickup_time == "15-20 min"

    def test_delivery_order(self, db, service, dog_food, make_submission):
        result = service.submit_order(make_submission(service_type="delivery", address="12 Mabini St"))
        order = db.get(Order, result.order_id)
        assert order.address == "12 Mabini St"
        assert order.pickup_time is None


def test_to_money_rounds_half_up():
    assert to_money("2.345") == Decimal("2.35")
    assert to_money(Decimal("10")) == Decimal("10.00")


class TestAmountBounds:
    def reject(self, service, submission):
        with pytest.raises(OrderValidationError) as exc:
            service.submit_order(submission)
        return exc.value.problems

    def test_unit_price_too_large(self, service, dog_food, make_submission):
        problems = self.reject(service, make_submission(items=[line(unit_price="1e30")], total=None))
        assert problems == ["item 1 price is out of range"]

    def test_option_price_too_large(self, service, dog_food, make_submission):
        problems = self.reject(service, make_submission(
            items=[line(variation={"name": "Gold", "price": "1e12"})],
            total=None,
        ))
        assert problems == ["item 1 price is out of range"]

    def test_quantity_cap(self, service, dog_food, make_submission):
        problems = self.reject(service, make_submission(items=[line(quantity=10 ** 9)], total=None))
        assert problems == ["item 1 quantity cannot exceed 10000"]

    def test_subtotal_overflow(self, service, dog_food, make_submission):
        problems = self.reject(service, make_submission(
            items=[line(unit_price="99999999.00", quantity=2)],
            total=None,
        ))
        assert problems == ["item 1 subtotal is too large"]

    def test_order_total_overflow(self, service, dog_food, make_submission):
        problems = self.reject(service, make_submission(
            items=[line(unit_price="60000000.00", quantity=1), line(unit_price="60000000.00", quantity=1)],
            total=None,
        ))
        assert problems == ["order total is too large"]

    def test_supplied_total_out_of_range(self, service, dog_food, make_submission):
        problems = self.reject(service, make_submission(total="1e40"))
        assert problems == ["total is out of range"]

    def test_party_size_cap(self, service, dog_food, make_submission):
        problems = self.reject(service, make_submission(
            service_type="dine-in",
            party_size=2 ** 40,
            dine_in_time=datetime(2025, 1, 16, 18, 30, tzinfo=timezone.utc),
        ))
        assert problems == ["party size cannot exceed 500"]

    def test_bounded_money(self):
        assert bounded_money(Decimal("99999999.99")) == Decimal("99999999.99")
        assert bounded_money(Decimal("99999999.999")) is None
        assert bounded_money(Decimal("NaN")) is None
        assert bounded_money(Decimal("-1.005")) == Decimal("-1.01")


def test_service_type_is_checked_by_the_database(db):
    db.add(Order(
        customer_name="Jane Doe",
        service_type="drive-thru",
        payment_method="Cash",
        total=Decimal("10.00"),
    ))
    with pytest.raises(IntegrityError):
        db.commit()
    db.rollback()
