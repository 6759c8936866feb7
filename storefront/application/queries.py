from typing import Optional
from sqlalchemy import select, func
from sqlalchemy.orm import Session, selectinload
from storefront.domain.models import Order

class OrderQueryService:
    """Read-only order lookups used by customer order tracking."""

    def __init__(self, db: Session):
        self.db = db

    def _latest(self, *criteria) -> Optional[Order]:
        stmt = (
            select(Order)
            .options(selectinload(Order.items))
            .where(*criteria)
            .order_by(Order.created_at.desc())
            .limit(1)
        )
        return self.db.scalars(stmt).first()

    def get(self, order_id: str) -> Optional[Order]:
        return self._latest(Order.id == order_id)

    def find_by_identifier_fragment(self, fragment: str) -> Optional[Order]:
        """
        Most recent order whose identifier contains ``fragment``, ignoring case.

        Identifiers are stored as text so the match runs in the database
        against every order, not a recent window.
        """
        fragment = (fragment or "").strip().lower()
        if not fragment:
            return None
        return self._latest(func.lower(Order.id).contains(fragment, autoescape=True))

    def find_most_recent_by_contact(self, contact_number: str) -> Optional[Order]:
        contact_number = (contact_number or "").strip()
        if not contact_number:
            return None
        return self._latest(Order.contact_number == contact_number)
