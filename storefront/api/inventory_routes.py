from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from storefront.auth_local import require_admin
from storefront.infrastructure.db import get_db
from storefront.application.stock import StockLedger
from storefront.application.schemas import (
    StockItemCreate,
    StockItemUpdate,
    AvailabilityUpdate,
    StockRecordRead,
)

router = APIRouter(prefix="/inventory", tags=["inventory"], dependencies=[Depends(require_admin)])

@router.get("/", response_model=list[StockRecordRead])
def list_inventory(db: Session = Depends(get_db)):
    return StockLedger(db).list_items()

@router.get("/low-stock", response_model=list[StockRecordRead])
def list_low_stock(db: Session = Depends(get_db)):
    """Tracked items at or below their low-stock threshold."""
    return StockLedger(db).low_stock()

@router.post("/", response_model=StockRecordRead, status_code=201)
def create_inventory_item(payload: StockItemCreate, db: Session = Depends(get_db)):
    ledger = StockLedger(db)
    if ledger.get(payload.id):
        raise HTTPException(status_code=409, detail="Item already exists")
    return ledger.add_item(**payload.model_dump())

@router.put("/{item_id}", response_model=StockRecordRead)
def update_inventory_item(item_id: str, payload: StockItemUpdate, db: Session = Depends(get_db)):
    item = StockLedger(db).update_item(item_id, payload.model_dump(exclude_none=True))
    if not item:
        raise HTTPException(status_code=404, detail="Item not found")
    return item

@router.put("/{item_id}/availability", response_model=StockRecordRead)
def set_item_availability(item_id: str, payload: AvailabilityUpdate, db: Session = Depends(get_db)):
    """Manual override; kept until the stock quantity or threshold next changes."""
    item = StockLedger(db).set_availability(item_id, payload.available)
    if not item:
        raise HTTPException(status_code=404, detail="Item not found")
    return item
