from __future__ import annotations

from datetime import date
from decimal import Decimal

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from ocha.app.api.deps import get_db, get_notifier
from ocha.app.db.models.models_v1 import GoodsReceipt, PurchaseOrder
from ocha.app.db.models.core_types import POStatus
from ocha.app.schemas.inventory import InventoryDelta
from ocha.app.schemas.procurement import GoodsReceiptRead, PurchaseOrderRead, VerifyResult
from ocha.services import procurement
from ocha.services.errors import NotFound
from ocha.services.notifications import Notifier
from ocha.services.workflow import load

router = APIRouter(prefix="/purchase-orders")


class POLineCreate(BaseModel):
    product_id: int
    quantity: Decimal
    unit_price: Decimal = Field(default=Decimal(0), ge=0)


class POCreate(BaseModel):
    supplier_id: int
    expected_date: date | None = None
    notes: str | None = None
    created_by: str | None = None
    lines: list[POLineCreate] = Field(default_factory=list)


class FromRequestIn(BaseModel):
    supplier_id: int | None = None
    created_by: str | None = None


class ActorIn(BaseModel):
    actor: str | None = None


class ItemPatch(BaseModel):
    quantity: Decimal | None = None
    unit_price: Decimal | None = Field(default=None, ge=0)


class ReceiptLineIn(BaseModel):
    product_id: int
    location_id: int
    quantity: Decimal
    expiry_date: date | None = None
    batch_number: str | None = Field(default=None, max_length=100)


class ReceiveIn(BaseModel):
    received_by: str = Field(min_length=1, max_length=128)
    items: list[ReceiptLineIn] = Field(default_factory=list)
    notes: str | None = None


class VerifyIn(BaseModel):
    verifier: str = Field(min_length=1, max_length=128)
    accepted: bool = True


def _receipt_of(db: Session, order_id: int, receipt_id: int) -> GoodsReceipt:
    receipt = db.get(GoodsReceipt, receipt_id)
    if receipt is None or receipt.order_id != order_id:
        raise NotFound("GoodsReceipt", receipt_id)
    return receipt


@router.get("", response_model=list[PurchaseOrderRead])
def list_pos(
    status: POStatus | None = None,
    supplier_id: int | None = None,
    db: Session = Depends(get_db),
):
    return procurement.list_orders(db, status=status, supplier_id=supplier_id)


@router.get("/{order_id}", response_model=PurchaseOrderRead)
def get_po(order_id: int, db: Session = Depends(get_db)):
    return load(db, PurchaseOrder, order_id)


@router.post("", response_model=PurchaseOrderRead)
def create_po(payload: POCreate, db: Session = Depends(get_db), notifier: Notifier = Depends(get_notifier)):
    return procurement.create_order(
        db,
        notifier,
        supplier_id=payload.supplier_id,
        lines=[ln.model_dump() for ln in payload.lines],
        expected_date=payload.expected_date,
        notes=payload.notes,
        created_by=payload.created_by,
    )


@router.post("/from-request/{request_id}", response_model=PurchaseOrderRead)
def create_po_from_request(
    request_id: int,
    payload: FromRequestIn | None = None,
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    payload = payload or FromRequestIn()
    return procurement.create_order_from_request(
        db,
        notifier,
        request_id,
        supplier_id=payload.supplier_id,
        created_by=payload.created_by,
    )


@router.post("/{order_id}/send", response_model=PurchaseOrderRead)
def send_po(order_id: int, payload: ActorIn | None = None, db: Session = Depends(get_db)):
    return procurement.send_order(db, order_id, actor=payload.actor if payload else None)


@router.post("/{order_id}/confirm", response_model=PurchaseOrderRead)
def confirm_po(order_id: int, payload: ActorIn | None = None, db: Session = Depends(get_db)):
    return procurement.confirm_order(db, order_id, actor=payload.actor if payload else None)


@router.post("/{order_id}/cancel", response_model=PurchaseOrderRead)
def cancel_po(order_id: int, payload: ActorIn | None = None, db: Session = Depends(get_db)):
    return procurement.cancel_order(db, order_id, actor=payload.actor if payload else None)


# ---------- items (total_amount recalculé dans la même transaction) ----------
@router.post("/{order_id}/items", response_model=PurchaseOrderRead)
def add_item(order_id: int, payload: POLineCreate, db: Session = Depends(get_db)):
    return procurement.add_item(
        db,
        order_id,
        product_id=payload.product_id,
        quantity=payload.quantity,
        unit_price=payload.unit_price,
    )


@router.patch("/{order_id}/items/{item_id}", response_model=PurchaseOrderRead)
def update_item(order_id: int, item_id: int, payload: ItemPatch, db: Session = Depends(get_db)):
    return procurement.update_item(
        db,
        order_id,
        item_id,
        quantity=payload.quantity,
        unit_price=payload.unit_price,
    )


@router.delete("/{order_id}/items/{item_id}", response_model=PurchaseOrderRead)
def remove_item(order_id: int, item_id: int, db: Session = Depends(get_db)):
    return procurement.remove_item(db, order_id, item_id)


# ---------- réceptions ----------
@router.post("/{order_id}/receive", response_model=GoodsReceiptRead)
def receive(
    order_id: int,
    payload: ReceiveIn,
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    return procurement.receive_goods(
        db,
        notifier,
        order_id,
        received_by=payload.received_by,
        items=[ln.model_dump() for ln in payload.items],
        notes=payload.notes,
    )


@router.get("/{order_id}/receipts", response_model=list[GoodsReceiptRead])
def list_receipts(order_id: int, db: Session = Depends(get_db)):
    load(db, PurchaseOrder, order_id)
    return procurement.list_receipts(db, order_id)


@router.post("/{order_id}/receipts/{receipt_id}/verify", response_model=VerifyResult)
def verify_receipt(
    order_id: int,
    receipt_id: int,
    payload: VerifyIn,
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    _receipt_of(db, order_id, receipt_id)
    result = procurement.verify_receipt(
        db,
        notifier,
        receipt_id,
        verifier=payload.verifier,
        accepted=payload.accepted,
    )
    return VerifyResult(
        receipt=GoodsReceiptRead.model_validate(result["receipt"]),
        order=PurchaseOrderRead.model_validate(result["order"]),
        inventory_deltas=[InventoryDelta(**d) for d in result["inventory_deltas"]],
    )


@router.post("/{order_id}/receipts/{receipt_id}/confirm", response_model=GoodsReceiptRead)
def confirm_receipt(
    order_id: int,
    receipt_id: int,
    payload: ActorIn | None = None,
    db: Session = Depends(get_db),
):
    _receipt_of(db, order_id, receipt_id)
    return procurement.confirm_receipt(db, receipt_id, actor=payload.actor if payload else None)
