from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict

from ocha.app.db.models.core_types import POStatus, Priority, ReceiptStatus, RequestStatus
from ocha.app.schemas.inventory import InventoryDelta


class PurchaseRequestLineRead(BaseModel):
    position: int
    product_id: int
    quantity: Decimal
    unit_price: Decimal | None = None

    model_config = ConfigDict(from_attributes=True)


class PurchaseRequestRead(BaseModel):
    id: int
    pr_number: str
    requester: str
    supplier_id: int | None = None
    priority: Priority
    expected_date: date | None = None
    notes: str | None = None
    status: RequestStatus
    approved_by: str | None = None
    approved_at: datetime | None = None
    rejection_reason: str | None = None
    rejected_at: datetime | None = None
    created_at: datetime
    lines: list[PurchaseRequestLineRead] = []

    model_config = ConfigDict(from_attributes=True)


class PurchaseOrderItemRead(BaseModel):
    id: int
    product_id: int
    quantity: Decimal
    unit_price: Decimal
    received_quantity: Decimal

    model_config = ConfigDict(from_attributes=True)


class PurchaseOrderRead(BaseModel):
    id: int
    po_number: str
    request_id: int | None = None
    supplier_id: int
    order_date: datetime
    expected_date: date | None = None
    status: POStatus
    total_amount: Decimal  # dérivé, jamais écrit par l'API
    notes: str | None = None
    created_by: str | None = None
    confirmed_at: datetime | None = None
    created_at: datetime
    items: list[PurchaseOrderItemRead] = []

    model_config = ConfigDict(from_attributes=True)


class GoodsReceiptLineRead(BaseModel):
    id: int
    product_id: int
    location_id: int
    quantity: Decimal
    expiry_date: date | None = None
    batch_number: str | None = None

    model_config = ConfigDict(from_attributes=True)


class GoodsReceiptRead(BaseModel):
    id: int
    gr_number: str
    order_id: int
    received_by: str
    verified_by: str | None = None
    notes: str | None = None
    status: ReceiptStatus
    received_at: datetime
    verified_at: datetime | None = None
    confirmed_at: datetime | None = None
    lines: list[GoodsReceiptLineRead] = []

    model_config = ConfigDict(from_attributes=True)


class VerifyResult(BaseModel):
    receipt: GoodsReceiptRead
    order: PurchaseOrderRead
    inventory_deltas: list[InventoryDelta]
