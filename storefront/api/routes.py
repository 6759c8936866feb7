from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.orm import Session
from typing import Optional
from storefront.infrastructure.db import get_db
from storefront.application.service import OrderService
from storefront.application.queries import OrderQueryService
from storefront.application.schemas import OrderCreate, OrderSubmission, OrderRead, OrderSubmittedRead
from storefront.domain.errors import (
    OrderValidationError,
    RateLimited,
    InsufficientStock,
    PersistenceError,
)
from .client_ip import client_ip

router = APIRouter(prefix="/orders", tags=["orders"])

@router.post("/", response_model=OrderSubmittedRead, status_code=201)
def create_order(payload: OrderCreate, request: Request, db: Session = Depends(get_db)):
    """Place an order from a checkout snapshot (no authentication)."""
    submission = OrderSubmission(**payload.model_dump(), origin_address=client_ip(request))
    try:
        placed = OrderService(db).submit_order(submission)
    except OrderValidationError as exc:
        raise HTTPException(status_code=422, detail={"message": exc.user_message, "problems": exc.problems})
    except RateLimited as exc:
        # MissingIdentifier lands here too, with the same message
        raise HTTPException(status_code=429, detail=exc.user_message)
    except InsufficientStock as exc:
        raise HTTPException(status_code=409, detail={
            "message": exc.user_message,
            "item_id": exc.item_id,
            "available": exc.available,
            "requested": exc.requested,
        })
    except PersistenceError as exc:
        raise HTTPException(status_code=503, detail=exc.user_message)
    return OrderSubmittedRead(id=placed.order_id, total=placed.total, status=placed.status)

@router.get("/lookup", response_model=OrderRead)
def lookup_order(
    db: Session = Depends(get_db),
    reference: Optional[str] = Query(None, max_length=64, description="Full or partial order id"),
    contact: Optional[str] = Query(None, max_length=50, description="Contact number used on the order"),
):
    """Order tracking: by (partial) order id, or the latest order for a contact number."""
    queries = OrderQueryService(db)
    if reference and reference.strip():
        order = queries.find_by_identifier_fragment(reference)
    elif contact and contact.strip():
        order = queries.find_most_recent_by_contact(contact)
    else:
        raise HTTPException(status_code=422, detail="Provide an order reference or a contact number")
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    return order

@router.get("/{order_id}", response_model=OrderRead)
def get_order(order_id: str, db: Session = Depends(get_db)):
    order = OrderQueryService(db).get(order_id)
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    return order
