"""
Stock ledger for catalog items that opt into inventory tracking.

Availability follows one rule on every write path: when tracking is enabled
and the quantity, the threshold or the tracking flag actually changed, it is
recomputed as ``stock_quantity > low_stock_threshold``. Any other write keeps
the current value, so a manual override survives cosmetic edits.
"""

from dataclasses import dataclass
from typing import Iterable, Mapping, Optional
from sqlalchemy import select, update, case, inspect
from sqlalchemy.orm import Session
from storefront.core import get_logger
from storefront.domain.models import MenuItem, utcnow
from storefront.domain.errors import InsufficientStock

logger = get_logger(__name__)

STOCK_FIELDS = ("stock_quantity", "low_stock_threshold", "track_inventory")
EDITABLE_FIELDS = frozenset(("name", "description", "category", "base_price") + STOCK_FIELDS)

@dataclass(frozen=True)
class StockSnapshot:
    item_id: str
    name: str
    stock_quantity: int
    low_stock_threshold: int
    available: bool

    @classmethod
    def from_item(cls, item: MenuItem) -> "StockSnapshot":
        return cls(
            item_id=item.id,
            name=item.name,
            stock_quantity=item.stock_quantity,
            low_stock_threshold=item.low_stock_threshold,
            available=item.available,
        )

def _availability_after(new_quantity):
    """SQL CASE recomputing availability only when the quantity really moves."""
    return case(
        (new_quantity != MenuItem.stock_quantity, new_quantity > MenuItem.low_stock_threshold),
        else_=MenuItem.available,
    )

def sync_availability(item: MenuItem, before: Mapping[str, object]) -> bool:
    """Apply the availability rule to ``item`` given its stock fields prior to the write."""
    if not item.track_inventory:
        return False
    if all(getattr(item, field) == before.get(field) for field in STOCK_FIELDS):
        return False
    item.available = item.stock_quantity > item.low_stock_threshold
    return True

class StockLedger:
    def __init__(self, db: Session):
        self.db = db

    def list_items(self):
        return self.db.scalars(select(MenuItem).order_by(MenuItem.name)).all()

    def get(self, item_id: str) -> Optional[MenuItem]:
        return self.db.get(MenuItem, item_id)

    def _expire_cached(self, item_id: str) -> None:
        key = inspect(MenuItem).identity_key_from_primary_key((item_id,))
        cached = self.db.identity_map.get(key)
        if cached is not None:
            self.db.expire(cached)

    def check_availability(self, item_ids: Iterable[str]) -> dict[str, StockSnapshot]:
        """Snapshot tracked records for ``item_ids``; untracked ids are simply absent."""
        ids = set(item_ids)
        if not ids:
            return {}
        stmt = (
            select(MenuItem)
            .where(MenuItem.id.in_(ids), MenuItem.track_inventory.is_(True))
            .execution_options(populate_existing=True)
        )
        return {item.id: StockSnapshot.from_item(item) for item in self.db.scalars(stmt)}

    def reserve_and_validate(self, requested: Mapping[str, int]) -> dict[str, StockSnapshot]:
        """
        Fail fast when any tracked item cannot cover the requested quantity.

        This is a read-only pre-check for a friendly error message; the
        decrement itself is the statement that keeps stock non-negative.
        """
        snapshots = self.check_availability(requested.keys())
        for item_id, quantity in requested.items():
            snapshot = snapshots.get(item_id)
            if snapshot is not None and snapshot.stock_quantity < quantity:
                raise InsufficientStock(
                    item_id=item_id,
                    name=snapshot.name,
                    available=snapshot.stock_quantity,
                    requested=quantity,
                )
        return snapshots

    def decrement(self, quantities: Mapping[str, int]) -> list[str]:
        """
        Subtract ``quantities`` from tracked items inside the current transaction.

        Each item is one UPDATE whose new quantity is computed in the engine and
        floored at zero, so a decrement is never skipped and never goes negative.
        The row is locked first (``FOR UPDATE`` on PostgreSQL) to report which
        items had less stock than requested and were clamped. The caller commits.
        """
        clamped = []
        for item_id, quantity in quantities.items():
            if quantity <= 0:
                continue
            self._expire_cached(item_id)
            current = self.db.scalar(
                select(MenuItem.stock_quantity)
                .where(MenuItem.id == item_id, MenuItem.track_inventory.is_(True))
                .with_for_update()
            )
            if current is None:
                continue

            new_quantity = case(
                (MenuItem.stock_quantity >= quantity, MenuItem.stock_quantity - quantity),
                else_=0,
            )
            stmt = (
                update(MenuItem)
                .where(MenuItem.id == item_id, MenuItem.track_inventory.is_(True))
                .values(
                    stock_quantity=new_quantity,
                    available=_availability_after(new_quantity),
                    updated_at=utcnow(),
                )
                .execution_options(synchronize_session=False)
            )
            self.db.execute(stmt)
            if current < quantity:
                clamped.append(item_id)
        return clamped

    def add_item(self, **fields) -> MenuItem:
        params = {"available": True, "track_inventory": False, "stock_quantity": 0, "low_stock_threshold": 0}
        params.update(fields)
        item = MenuItem(**params)
        sync_availability(item, {})
        self.db.add(item)
        self.db.commit()
        self.db.refresh(item)
        return item

    def update_item(self, item_id: str, changes: Mapping[str, object]) -> Optional[MenuItem]:
        stmt = (
            select(MenuItem)
            .where(MenuItem.id == item_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        item = self.db.scalars(stmt).first()
        if item is None:
            return None

        before = {field: getattr(item, field) for field in STOCK_FIELDS}
        unknown = set(changes) - EDITABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot edit fields: {', '.join(sorted(unknown))}")
        for key, value in changes.items():
            setattr(item, key, value)
        recomputed = sync_availability(item, before)

        self.db.commit()
        self.db.refresh(item)
        logger.info(
            f"Stock record updated: {item_id}",
            extra={'extra_fields': {
                'item_id': item_id,
                'fields': sorted(changes),
                'availability_recomputed': recomputed,
                'available': item.available,
            }}
        )
        return item

    def set_availability(self, item_id: str, available: bool) -> Optional[MenuItem]:
        """Manual override; stock fields are untouched so nothing is recomputed."""
        item = self.db.get(MenuItem, item_id, with_for_update=True, populate_existing=True)
        if item is None:
            return None
        item.available = available
        self.db.commit()
        self.db.refresh(item)
        logger.info(
            f"Availability overridden: {item_id}",
            extra={'extra_fields': {'item_id': item_id, 'available': available}}
        )
        return item

    def low_stock(self):
        """Tracked items at or below their threshold, emptiest first."""
        stmt = (
            select(MenuItem)
            .where(
                MenuItem.track_inventory.is_(True),
                MenuItem.stock_quantity <= MenuItem.low_stock_threshold,
            )
            .order_by(MenuItem.stock_quantity, MenuItem.name)
        )
        return self.db.scalars(stmt).all()
