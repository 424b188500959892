from __future__ import annotations

from decimal import Decimal

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.orm import Session

from ocha.app.api.deps import get_db
from ocha.app.db.models.models_v1 import StorageLocation
from ocha.app.db.models.core_types import LocationType
from ocha.services.errors import Conflict

router = APIRouter(prefix="/locations")


class LocationCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    code: str | None = Field(default=None, max_length=32)
    type: LocationType = LocationType.refrigerator
    temperature: Decimal | None = None
    capacity: Decimal = Field(default=Decimal(0), ge=0)
    notes: str | None = None
    active: bool = True


@router.get("")
def list_locations(
    type: LocationType | None = None,
    db: Session = Depends(get_db),
):
    stmt = select(StorageLocation).order_by(StorageLocation.id)
    if type is not None:
        stmt = stmt.where(StorageLocation.type == type)

    rows = db.execute(stmt).scalars().all()
    return [
        {
            "id": l.id,
            "name": l.name,
            "code": l.code,
            "type": l.type,
            "temperature": l.temperature,
            "capacity": l.capacity,
            "current_usage": l.current_usage,  # dérivé
            "active": l.active,
        }
        for l in rows
    ]


@router.post("")
def create_location(payload: LocationCreate, db: Session = Depends(get_db)):
    if payload.code:
        exists = db.execute(select(StorageLocation.id).where(StorageLocation.code == payload.code)).scalar_one_or_none()
        if exists:
            raise Conflict("Location code already exists", code=payload.code)
    l = StorageLocation(**payload.model_dump())
    db.add(l)
    db.commit()
    db.refresh(l)
    return {"id": l.id, "name": l.name, "code": l.code, "type": l.type}
