"""
Order submission: turns a checkout snapshot into a persisted order.

The header and its line items are written in one transaction; the stock
decrement runs afterwards in its own transaction and never undoes a placed
order. See ``OrderService.submit_order`` for the step order.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Callable, Iterable, Optional
import enum
from sqlalchemy import insert, select, literal, cast
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from storefront.core import get_logger
from storefront.core_settings import get_settings
from storefront.domain.models import Order, OrderItem, ServiceType, new_order_id, utcnow
from storefront.domain.errors import (
    OrderError,
    OrderValidationError,
    RateLimited,
    PersistenceError,
    StockDecrementWarning,
)
from .rate_limit import RateLimiter, RateLimitIdentity
from .stock import StockLedger
from .schemas import OrderSubmission, OrderLineItemIn

logger = get_logger(__name__)

CENT = Decimal("0.01")
CUSTOM_PICKUP = "custom"
# Largest value a Numeric(10, 2) column holds
MAX_AMOUNT = Decimal("99999999.99")
MAX_QUANTITY = 10000
MAX_PARTY_SIZE = 500

class SubmissionState(str, enum.Enum):
    RECEIVED = "received"
    RATE_CHECKED = "rate_checked"
    STOCK_CHECKED = "stock_checked"
    ITEMS_PERSISTED = "items_persisted"
    COMPLETED = "completed"

@dataclass
class OrderSubmitted:
    order_id: str
    total: Decimal
    status: str = "pending"
    stock_warning: Optional[StockDecrementWarning] = None

def to_money(value) -> Decimal:
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)

def bounded_money(value: Decimal) -> Optional[Decimal]:
    """Round to cents, or None when the amount is not finite or does not fit a money column."""
    if not value.is_finite() or abs(value) > MAX_AMOUNT:
        return None
    amount = to_money(value)
    if abs(amount) > MAX_AMOUNT:
        return None
    return amount

def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None

def aggregate_quantities(items: Iterable[OrderLineItemIn]) -> dict[str, int]:
    """Sum quantities per catalog item; two variations of one product draw on the same stock."""
    quantities: dict[str, int] = {}
    for item in items:
        quantities[item.catalog_item_id] = quantities.get(item.catalog_item_id, 0) + item.quantity
    return quantities

class OrderService:
    def __init__(
        self,
        db: Session,
        cooldown_seconds: Optional[int] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        if cooldown_seconds is None:
            cooldown_seconds = get_settings().ORDER_COOLDOWN_SECONDS
        self.clock = clock
        self.rate_limiter = RateLimiter(db, cooldown_seconds=cooldown_seconds, clock=clock)
        self.stock = StockLedger(db)

    def submit_order(self, submission: OrderSubmission) -> OrderSubmitted:
        """
        Place an order or raise a typed ``OrderError``.

        1. validate the submission
        2. rate limiter gate (address / contact cooldown)
        3. stock pre-check on quantities aggregated per catalog item
        4-5. guarded header insert + line items, one transaction
        6. stock decrement, separate transaction, failures only warn
        """
        state = SubmissionState.RECEIVED
        try:
            header, lines, total = self._validate(submission)
            identity = self.rate_limiter.check_and_admit(submission.origin_address, submission.contact_number)
            state = SubmissionState.RATE_CHECKED

            quantities = aggregate_quantities(submission.items)
            self.stock.reserve_and_validate(quantities)
            state = SubmissionState.STOCK_CHECKED

            order_id = self._persist(header, lines, identity)
            state = SubmissionState.ITEMS_PERSISTED
        except OrderError as exc:
            self.db.rollback()
            logger.warning(
                f"Order rejected: {type(exc).__name__}",
                extra={'extra_fields': {
                    'state': state.value,
                    'error': type(exc).__name__,
                    'detail': exc.detail,
                }}
            )
            raise
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.error(
                "Order checks failed on storage error",
                exc_info=True,
                extra={'extra_fields': {'state': state.value}}
            )
            raise PersistenceError(str(exc)) from exc

        warning = self._decrement_stock(order_id, quantities)
        state = SubmissionState.COMPLETED

        logger.info(
            "Order placed",
            extra={'extra_fields': {
                'order_id': order_id,
                'service_type': header["service_type"],
                'line_items': len(lines),
                'total': str(total),
                'state': state.value,
                'stock_decremented': warning is None,
                'stock_warning': warning.reason if warning else None,
            }}
        )
        return OrderSubmitted(order_id=order_id, total=total, stock_warning=warning)

    def _validate(self, submission: OrderSubmission):
        problems = []
        contact = _clean(submission.contact_number)
        origin = _clean(submission.origin_address)

        customer_name = _clean(submission.customer_name)
        if not customer_name:
            problems.append("customer name is required")
        # With no identifier at all the rate limiter gate answers instead
        if origin and not contact:
            problems.append("contact number is required")
        payment_method = _clean(submission.payment_method)
        if not payment_method:
            problems.append("payment method is required")

        header = {
            "customer_name": customer_name,
            "contact_number": contact,
            "service_type": submission.service_type.value,
            "address": None,
            "pickup_time": None,
            "party_size": None,
            "dine_in_time": None,
            "payment_method": payment_method,
            "reference_number": _clean(submission.reference_number),
            "receipt_url": _clean(submission.receipt_url),
            "notes": _clean(submission.notes),
            "ip_address": origin,
        }

        if submission.service_type is ServiceType.DELIVERY:
            header["address"] = _clean(submission.address)
            if not header["address"]:
                problems.append("delivery address is required")
        elif submission.service_type is ServiceType.PICKUP:
            pickup_time = _clean(submission.pickup_time)
            if pickup_time and pickup_time.lower() == CUSTOM_PICKUP:
                pickup_time = _clean(submission.custom_pickup_time)
            if not pickup_time:
                problems.append("pickup time is required")
            header["pickup_time"] = pickup_time
        elif submission.service_type is ServiceType.DINE_IN:
            if submission.party_size is None or submission.party_size <= 0:
                problems.append("party size must be at least 1")
            elif submission.party_size > MAX_PARTY_SIZE:
                problems.append(f"party size cannot exceed {MAX_PARTY_SIZE}")
            if submission.dine_in_time is None:
                problems.append("dine-in time is required")
            header["party_size"] = submission.party_size
            header["dine_in_time"] = submission.dine_in_time

        if not submission.items:
            problems.append("cart is empty")

        lines = []
        total = Decimal("0.00")
        for position, item in enumerate(submission.items, start=1):
            if not _clean(item.catalog_item_id):
                problems.append(f"item {position} has no catalog reference")
            if item.quantity <= 0:
                problems.append(f"item {position} quantity must be positive")
                continue
            if item.quantity > MAX_QUANTITY:
                problems.append(f"item {position} quantity cannot exceed {MAX_QUANTITY}")
                continue
            unit_price = bounded_money(item.unit_price)
            option_prices = [bounded_money(a.price) for a in item.add_ons]
            if item.variation:
                option_prices.append(bounded_money(item.variation.price))
            if unit_price is None or None in option_prices:
                problems.append(f"item {position} price is out of range")
                continue
            if unit_price < 0:
                problems.append(f"item {position} price cannot be negative")
            subtotal = to_money(unit_price * item.quantity)
            if subtotal > MAX_AMOUNT:
                problems.append(f"item {position} subtotal is too large")
                continue
            total += subtotal
            lines.append({
                "item_id": item.catalog_item_id,
                "name": item.name,
                # Option prices are kept as exact decimal strings in the snapshot
                "variation": (
                    {"name": item.variation.name, "price": str(to_money(item.variation.price))}
                    if item.variation else None
                ),
                "add_ons": [
                    {"name": a.name, "price": str(to_money(a.price)), "quantity": a.quantity}
                    for a in item.add_ons
                ],
                "unit_price": unit_price,
                "quantity": item.quantity,
                "subtotal": subtotal,
            })

        total = to_money(total)
        if total > MAX_AMOUNT:
            problems.append("order total is too large")
        if submission.total is not None:
            submitted = bounded_money(submission.total)
            if submitted is None:
                problems.append("total is out of range")
            elif submitted != total:
                problems.append(f"total {submitted} does not match the cart ({total})")

        if problems:
            raise OrderValidationError(problems)
        header["total"] = total
        return header, lines, total

    def _persist(self, header: dict, lines: list[dict], identity: RateLimitIdentity) -> str:
        order_id = new_order_id()
        now = self.clock()
        values = dict(header, id=order_id, status="pending", created_at=now)
        try:
            self.rate_limiter.lock_identifiers(identity)
            if not self._insert_header(values, identity, now):
                raise RateLimited("cooldown window filled while the order was being placed")
            self._insert_line_items(order_id, lines, now)
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.error(
                "Order persistence failed",
                exc_info=True,
                extra={'extra_fields': {'order_id': order_id, 'line_items': len(lines)}}
            )
            raise PersistenceError(str(exc)) from exc
        return order_id

    def _insert_header(self, values: dict, identity: RateLimitIdentity, now: datetime) -> bool:
        """INSERT ... SELECT guarded by the cooldown predicate; False when nothing was inserted."""
        table = Order.__table__
        postgres = self.db.get_bind().dialect.name == "postgresql"
        columns = list(values)
        row = []
        for name in columns:
            value = literal(values[name], type_=table.c[name].type)
            # Bare parameters in a SELECT list resolve to text on PostgreSQL
            row.append(cast(value, table.c[name].type) if postgres else value)
        guarded = select(*row).where(self.rate_limiter.admission_guard(identity, now))
        result = self.db.execute(insert(table).from_select(columns, guarded))
        return result.rowcount == 1

    def _insert_line_items(self, order_id: str, lines: list[dict], now: datetime) -> None:
        for line in lines:
            self.db.add(OrderItem(order_id=order_id, created_at=now, **line))
        self.db.flush()

    def _decrement_stock(self, order_id: str, quantities: dict[str, int]) -> Optional[StockDecrementWarning]:
        try:
            clamped = self.stock.decrement(quantities)
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.error(
                "Stock decrement failed; order kept",
                exc_info=True,
                extra={'extra_fields': {'order_id': order_id, 'items': sorted(quantities)}}
            )
            return StockDecrementWarning(order_id=order_id, reason=f"decrement failed: {exc}", item_ids=sorted(quantities))

        if clamped:
            logger.warning(
                "Stock clamped at zero after order",
                extra={'extra_fields': {'order_id': order_id, 'items': clamped}}
            )
            return StockDecrementWarning(order_id=order_id, reason="stock clamped at zero", item_ids=clamped)
        return None
