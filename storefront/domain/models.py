from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship, validates
from sqlalchemy import String, ForeignKey, Numeric, DateTime, Integer, Boolean, Text, JSON, Index, CheckConstraint
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional
import enum
import uuid

def utcnow() -> datetime:
    return datetime.now(timezone.utc)

def new_order_id() -> str:
    # Stored as text so fragment search needs no cast on any backend
    return str(uuid.uuid4())

class Base(DeclarativeBase):
    pass

class ServiceType(str, enum.Enum):
    DINE_IN = "dine-in"
    PICKUP = "pickup"
    DELIVERY = "delivery"

class StockStatus(str, enum.Enum):
    IN_STOCK = "in_stock"
    LOW_STOCK = "low_stock"
    OUT_OF_STOCK = "out_of_stock"
    UNTRACKED = "untracked"

class MenuItem(Base):
    """Catalog item; carries the stock record when inventory tracking is enabled."""
    __tablename__ = "menu_items"
    __table_args__ = (
        CheckConstraint("stock_quantity >= 0", name="ck_menu_items_stock_non_negative"),
        CheckConstraint("low_stock_threshold >= 0", name="ck_menu_items_threshold_non_negative"),
    )
    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(200))
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    category: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    base_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0.00"))
    available: Mapped[bool] = mapped_column(Boolean, default=True)
    track_inventory: Mapped[bool] = mapped_column(Boolean, default=False)
    stock_quantity: Mapped[int] = mapped_column(Integer, default=0)
    low_stock_threshold: Mapped[int] = mapped_column(Integer, default=0)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    @validates("stock_quantity", "low_stock_threshold")
    def _clamp_non_negative(self, key, value):
        return max(int(value or 0), 0)

    @property
    def stock_status(self) -> StockStatus:
        if not self.track_inventory:
            return StockStatus.UNTRACKED
        if self.stock_quantity > self.low_stock_threshold:
            return StockStatus.IN_STOCK
        if self.stock_quantity > 0:
            return StockStatus.LOW_STOCK
        return StockStatus.OUT_OF_STOCK

class Order(Base):
    __tablename__ = "orders"
    __table_args__ = (
        CheckConstraint("service_type IN ('dine-in', 'pickup', 'delivery')", name="ck_orders_service_type"),
        Index("ix_orders_contact_created", "contact_number", "created_at"),
        Index("ix_orders_ip_created", "ip_address", "created_at"),
    )
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_order_id)
    customer_name: Mapped[str] = mapped_column(String(200))
    contact_number: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    service_type: Mapped[str] = mapped_column(String(20))
    # Service-specific details; only the fields of the chosen service type are set
    address: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    pickup_time: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    party_size: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    dine_in_time: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    payment_method: Mapped[str] = mapped_column(String(50))
    reference_number: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    receipt_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    total: Mapped[Decimal] = mapped_column(Numeric(10, 2))
    status: Mapped[str] = mapped_column(String(30), default="pending")
    ip_address: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, index=True)
    items: Mapped[list["OrderItem"]] = relationship(
        "OrderItem", back_populates="order", cascade="all, delete-orphan", passive_deletes=True
    )

class OrderItem(Base):
    __tablename__ = "order_items"
    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_order_items_quantity_positive"),
    )
    id: Mapped[int] = mapped_column(primary_key=True)
    order_id: Mapped[str] = mapped_column(ForeignKey("orders.id", ondelete="CASCADE"), index=True)
    # Catalog id kept by value (no FK) so orders outlive catalog edits
    item_id: Mapped[str] = mapped_column(String(64))
    name: Mapped[str] = mapped_column(String(200))
    variation: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    add_ons: Mapped[list] = mapped_column(JSON, default=list)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(10, 2))
    quantity: Mapped[int] = mapped_column(Integer)
    subtotal: Mapped[Decimal] = mapped_column(Numeric(10, 2))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    order: Mapped[Order] = relationship("Order", back_populates="items")
