from __future__ import annotations

from decimal import Decimal

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from ocha.app.api.deps import get_db, get_notifier
from ocha.app.db.models.models_v1 import ProcessingRecord
from ocha.app.db.models.core_types import ProcessingStatus, ProcessType
from ocha.app.schemas.operations import ProcessingRecordRead
from ocha.services import processing
from ocha.services.notifications import Notifier
from ocha.services.workflow import load

router = APIRouter(prefix="/processing")


class ProcessingCreate(BaseModel):
    product_id: int
    input_quantity: Decimal
    input_location_id: int
    process_type: ProcessType
    output_product_id: int
    output_location_id: int
    processed_by: str | None = Field(default=None, max_length=128)
    notes: str | None = None
    batch_number: str | None = Field(default=None, max_length=64)


class CompleteIn(BaseModel):
    output_quantity: Decimal
    actor: str | None = None


class ActorIn(BaseModel):
    actor: str | None = None


@router.get("", response_model=list[ProcessingRecordRead])
def list_records(status: ProcessingStatus | None = None, db: Session = Depends(get_db)):
    return processing.list_records(db, status=status)


@router.get("/{record_id}", response_model=ProcessingRecordRead)
def get_record(record_id: int, db: Session = Depends(get_db)):
    return load(db, ProcessingRecord, record_id)


@router.post("", response_model=ProcessingRecordRead)
def plan(payload: ProcessingCreate, db: Session = Depends(get_db)):
    data = payload.model_dump()
    data["process_type"] = payload.process_type.value
    return processing.plan(db, **data)


@router.post("/{record_id}/start", response_model=ProcessingRecordRead)
def start(record_id: int, payload: ActorIn | None = None, db: Session = Depends(get_db)):
    return processing.start(db, record_id, actor=payload.actor if payload else None)


@router.post("/{record_id}/complete", response_model=ProcessingRecordRead)
def complete(
    record_id: int,
    payload: CompleteIn,
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    return processing.complete(db, notifier, record_id, output_quantity=payload.output_quantity, actor=payload.actor)


@router.post("/{record_id}/cancel", response_model=ProcessingRecordRead)
def cancel(record_id: int, payload: ActorIn | None = None, db: Session = Depends(get_db)):
    return processing.cancel(db, record_id, actor=payload.actor if payload else None)
