from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.orm import Session

from ocha.app.api.deps import get_db
from ocha.app.db.models.models_v1 import Supplier
from ocha.app.db.models.core_types import SupplierRank

router = APIRouter(prefix="/suppliers")


class SupplierCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    email: str | None = Field(default=None, max_length=255)
    phone: str | None = Field(default=None, max_length=64)
    address: str | None = None
    city: str | None = Field(default=None, max_length=128)
    country: str | None = Field(default=None, max_length=64)
    rank: SupplierRank = SupplierRank.C
    payment_terms: str | None = Field(default=None, max_length=128)
    active: bool = True


@router.get("")
def list_suppliers(rank: SupplierRank | None = None, db: Session = Depends(get_db)):
    stmt = select(Supplier).order_by(Supplier.name, Supplier.id)
    if rank is not None:
        stmt = stmt.where(Supplier.rank == rank)
    rows = db.execute(stmt).scalars().all()
    return [
        {
            "id": s.id,
            "name": s.name,
            "email": s.email,
            "phone": s.phone,
            "city": s.city,
            "country": s.country,
            "rank": s.rank,
            "active": s.active,
            "external_id": s.external_id,
        }
        for s in rows
    ]


@router.post("")
def create_supplier(payload: SupplierCreate, db: Session = Depends(get_db)):
    s = Supplier(**payload.model_dump())
    db.add(s)
    db.commit()
    db.refresh(s)
    return {"id": s.id, "name": s.name, "rank": s.rank}
