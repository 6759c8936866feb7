"""
Per-identifier order throttling.

An identifier is the client's network address and/or the contact number on
the order. A submission is admitted only when no order matching either
identifier was created inside the trailing cooldown window.

``check_and_admit`` gives an early answer, but the authoritative check is
``admission_guard``: a NOT EXISTS predicate the order service embeds in the
INSERT statement itself, so two near-simultaneous submissions cannot both see
an empty window.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional
from sqlalchemy import select, func, or_, literal, text
from sqlalchemy.orm import Session, aliased
from storefront.core import get_logger
from storefront.domain.models import Order, utcnow
from storefront.domain.errors import RateLimited, MissingIdentifier

logger = get_logger(__name__)

DEFAULT_COOLDOWN_SECONDS = 60

def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None

@dataclass(frozen=True)
class RateLimitIdentity:
    origin_address: Optional[str] = None
    contact_number: Optional[str] = None

    @property
    def lock_keys(self) -> list[str]:
        keys = []
        if self.origin_address:
            keys.append(f"order-ip:{self.origin_address}")
        if self.contact_number:
            keys.append(f"order-contact:{self.contact_number}")
        return sorted(keys)

class RateLimiter:
    def __init__(
        self,
        db: Session,
        cooldown_seconds: int = DEFAULT_COOLDOWN_SECONDS,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.cooldown_seconds = cooldown_seconds
        self.clock = clock

    def identify(self, origin_address: Optional[str], contact_number: Optional[str]) -> RateLimitIdentity:
        identity = RateLimitIdentity(_clean(origin_address), _clean(contact_number))
        if identity.origin_address is None and identity.contact_number is None:
            raise MissingIdentifier("no network address or contact number supplied")
        return identity

    def window_start(self, now: Optional[datetime] = None) -> datetime:
        return (now or self.clock()) - timedelta(seconds=self.cooldown_seconds)

    def _matching(self, orders, identity: RateLimitIdentity, now: datetime):
        clauses = []
        if identity.origin_address:
            clauses.append(orders.ip_address == identity.origin_address)
        if identity.contact_number:
            clauses.append(orders.contact_number == identity.contact_number)
        return (orders.created_at >= self.window_start(now), or_(*clauses))

    def recent_order_count(self, identity: RateLimitIdentity, now: Optional[datetime] = None) -> int:
        now = now or self.clock()
        stmt = select(func.count()).select_from(Order).where(*self._matching(Order, identity, now))
        return self.db.scalar(stmt) or 0

    def check_and_admit(
        self,
        origin_address: Optional[str],
        contact_number: Optional[str],
    ) -> RateLimitIdentity:
        identity = self.identify(origin_address, contact_number)
        recent = self.recent_order_count(identity)
        if recent > 0:
            logger.warning(
                "Order submission throttled",
                extra={'extra_fields': {
                    'has_origin_address': identity.origin_address is not None,
                    'has_contact_number': identity.contact_number is not None,
                    'recent_orders': recent,
                    'cooldown_seconds': self.cooldown_seconds,
                }}
            )
            raise RateLimited(f"{recent} order(s) inside the {self.cooldown_seconds}s cooldown")
        return identity

    def admission_guard(self, identity: RateLimitIdentity, now: datetime):
        """Predicate that is true only while the cooldown window is empty."""
        prior = aliased(Order, name="prior_orders")
        recent = select(literal(1)).select_from(prior).where(*self._matching(prior, identity, now))
        return ~recent.exists()

    def lock_identifiers(self, identity: RateLimitIdentity) -> None:
        """
        Serialize concurrent inserts for the same identifiers on PostgreSQL.

        The locks are transaction scoped and released on commit or rollback.
        SQLite already admits a single writer at a time.
        """
        if self.db.get_bind().dialect.name != "postgresql":
            return
        for key in identity.lock_keys:
            self.db.execute(text("SELECT pg_advisory_xact_lock(hashtext(:key))"), {"key": key})
