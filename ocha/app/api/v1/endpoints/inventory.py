from __future__ import annotations

from decimal import Decimal

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from ocha.app.api.deps import get_db, get_notifier
from ocha.app.schemas.inventory import InventoryItemRead, LowStockRead, MoveResult
from ocha.services import inventory
from ocha.services.notifications import Notifier

router = APIRouter(prefix="/inventory")


class MoveIn(BaseModel):
    product_id: int
    from_location_id: int
    to_location_id: int
    quantity: Decimal
    actor: str | None = None


@router.get("", response_model=list[InventoryItemRead])
def list_inventory(
    product_id: int | None = None,
    location_id: int | None = None,
    include_empty: bool = False,
    db: Session = Depends(get_db),
):
    # lecture seule : la quantité ne bouge que via réception / transformation / transfert
    return inventory.list_inventory(
        db,
        product_id=product_id,
        location_id=location_id,
        include_empty=include_empty,
    )


@router.get("/low-stock", response_model=list[LowStockRead])
def low_stock(db: Session = Depends(get_db)):
    return inventory.low_stock_products(db)


@router.post("/move", response_model=MoveResult)
def move(payload: MoveIn, db: Session = Depends(get_db), notifier: Notifier = Depends(get_notifier)):
    return inventory.move(
        db,
        notifier,
        from_location_id=payload.from_location_id,
        to_location_id=payload.to_location_id,
        product_id=payload.product_id,
        quantity=payload.quantity,
        actor=payload.actor,
    )
