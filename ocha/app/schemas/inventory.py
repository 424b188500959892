from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict


class InventoryItemRead(BaseModel):
    id: int
    product_id: int
    location_id: int

    quantity: Decimal  # READ ONLY : modifié par réception / transformation / transfert
    unit_price: Decimal
    expiry_date: date | None = None
    batch_number: str | None = None
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class InventoryDelta(BaseModel):
    product_id: int
    location_id: int
    new_quantity: Decimal


class MoveResult(BaseModel):
    product_id: int
    from_location_id: int
    to_location_id: int
    quantity: Decimal
    from_quantity: Decimal
    to_quantity: Decimal


class LowStockRead(BaseModel):
    product_id: int
    on_hand: Decimal
    minimum_stock: Decimal
