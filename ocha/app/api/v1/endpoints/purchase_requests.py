from __future__ import annotations

from datetime import date
from decimal import Decimal

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from ocha.app.api.deps import get_db, get_notifier
from ocha.app.db.models.models_v1 import PurchaseRequest
from ocha.app.db.models.core_types import Priority, RequestStatus
from ocha.app.schemas.procurement import PurchaseRequestRead
from ocha.services import procurement
from ocha.services.notifications import Notifier
from ocha.services.workflow import load

router = APIRouter(prefix="/purchase-requests")


class RequestLineIn(BaseModel):
    product_id: int
    quantity: Decimal
    unit_price: Decimal | None = Field(default=None, ge=0)


class RequestCreate(BaseModel):
    requester: str = Field(min_length=1, max_length=128)
    # liste vide refusée par le service (validation_error)
    items: list[RequestLineIn] = Field(default_factory=list)
    priority: Priority = Priority.normal
    expected_date: date | None = None
    notes: str | None = None
    supplier_id: int | None = None


class ApproveIn(BaseModel):
    approver: str = Field(min_length=1, max_length=128)


class RejectIn(BaseModel):
    reason: str = Field(min_length=1)
    rejected_by: str | None = None


class CancelIn(BaseModel):
    actor: str | None = None


@router.get("", response_model=list[PurchaseRequestRead])
def list_requests(
    status: RequestStatus | None = None,
    requester: str | None = None,
    db: Session = Depends(get_db),
):
    return procurement.list_requests(db, status=status, requester=requester)


@router.get("/{request_id}", response_model=PurchaseRequestRead)
def get_request(request_id: int, db: Session = Depends(get_db)):
    return load(db, PurchaseRequest, request_id)


@router.post("", response_model=PurchaseRequestRead)
def submit_request(
    payload: RequestCreate,
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    return procurement.submit_request(
        db,
        notifier,
        requester=payload.requester,
        items=[line.model_dump() for line in payload.items],
        priority=payload.priority.value,
        expected_date=payload.expected_date,
        notes=payload.notes,
        supplier_id=payload.supplier_id,
    )


@router.post("/{request_id}/approve", response_model=PurchaseRequestRead)
def approve_request(
    request_id: int,
    payload: ApproveIn,
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    return procurement.approve_request(db, notifier, request_id, approver=payload.approver)


@router.post("/{request_id}/reject", response_model=PurchaseRequestRead)
def reject_request(
    request_id: int,
    payload: RejectIn,
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    return procurement.reject_request(
        db,
        notifier,
        request_id,
        reason=payload.reason,
        rejected_by=payload.rejected_by,
    )


@router.post("/{request_id}/cancel", response_model=PurchaseRequestRead)
def cancel_request(request_id: int, payload: CancelIn | None = None, db: Session = Depends(get_db)):
    return procurement.cancel_request(db, request_id, actor=payload.actor if payload else None)
