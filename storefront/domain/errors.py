"""Typed failures raised while submitting an order.

Every error carries a ``user_message`` safe to show to the customer. Both
rate-limit cases share one message so abusive clients cannot tell them apart.
"""
from dataclasses import dataclass, field
from typing import Optional

RATE_LIMIT_MESSAGE = "Please wait a moment before placing another order."

class OrderError(Exception):
    user_message = "We could not place your order."

    def __init__(self, detail: Optional[str] = None):
        super().__init__(detail or self.user_message)
        self.detail = detail or self.user_message

class OrderValidationError(OrderError):
    user_message = "Some order details are missing or invalid."

    def __init__(self, problems: list[str]):
        self.problems = list(problems)
        super().__init__("; ".join(self.problems))

class RateLimited(OrderError):
    user_message = RATE_LIMIT_MESSAGE

class MissingIdentifier(RateLimited):
    """Neither a network address nor a contact number was supplied."""

class InsufficientStock(OrderError):
    def __init__(self, item_id: str, name: str, available: int, requested: int):
        self.item_id = item_id
        self.name = name
        self.available = available
        self.requested = requested
        super().__init__(f"insufficient stock for {item_id}: available {available}, requested {requested}")

    @property
    def user_message(self) -> str:
        if self.available <= 0:
            return f"{self.name} is currently out of stock."
        return f"Only {self.available} left in stock for {self.name}."

class PersistenceError(OrderError):
    user_message = "We could not save your order right now. Please try again."

@dataclass(frozen=True)
class StockDecrementWarning:
    """Non-fatal: the order was saved but stock could not be decremented cleanly."""
    order_id: str
    reason: str
    item_ids: list[str] = field(default_factory=list)
