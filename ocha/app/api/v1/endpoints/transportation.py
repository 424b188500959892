from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from ocha.app.api.deps import get_db, get_notifier
from ocha.app.db.models.models_v1 import TransportationOrder
from ocha.app.db.models.core_types import TransportStatus
from ocha.app.schemas.operations import TransportationOrderRead
from ocha.services import transportation
from ocha.services.notifications import Notifier
from ocha.services.workflow import load

router = APIRouter(prefix="/transportation")


class TransportLineIn(BaseModel):
    product_id: int
    quantity: Decimal


class TransportCreate(BaseModel):
    from_location_id: int
    to_location_id: int
    items: list[TransportLineIn] = Field(default_factory=list)
    driver: str | None = Field(default=None, max_length=128)
    vehicle: str | None = Field(default=None, max_length=64)
    expected_departure: datetime | None = None
    expected_arrival: datetime | None = None
    notes: str | None = None
    created_by: str | None = None


class ActorIn(BaseModel):
    actor: str | None = None


@router.get("", response_model=list[TransportationOrderRead])
def list_orders(status: TransportStatus | None = None, db: Session = Depends(get_db)):
    return transportation.list_orders(db, status=status)


@router.get("/{order_id}", response_model=TransportationOrderRead)
def get_order(order_id: int, db: Session = Depends(get_db)):
    return load(db, TransportationOrder, order_id)


@router.post("", response_model=TransportationOrderRead)
def schedule(
    payload: TransportCreate,
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    data = payload.model_dump(exclude={"items"})
    return transportation.schedule(
        db,
        notifier,
        items=[line.model_dump() for line in payload.items],
        **data,
    )


@router.post("/{order_id}/start", response_model=TransportationOrderRead)
def start(order_id: int, payload: ActorIn | None = None, db: Session = Depends(get_db)):
    return transportation.start(db, order_id, actor=payload.actor if payload else None)


@router.post("/{order_id}/complete", response_model=TransportationOrderRead)
def complete(
    order_id: int,
    payload: ActorIn | None = None,
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    return transportation.complete(db, notifier, order_id, actor=payload.actor if payload else None)


@router.post("/{order_id}/cancel", response_model=TransportationOrderRead)
def cancel(order_id: int, payload: ActorIn | None = None, db: Session = Depends(get_db)):
    return transportation.cancel(db, order_id, actor=payload.actor if payload else None)
