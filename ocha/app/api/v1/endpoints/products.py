from __future__ import annotations

from decimal import Decimal

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.orm import Session

from ocha.app.api.deps import get_db
from ocha.app.db.models.models_v1 import Category, Product
from ocha.app.db.models.core_types import ProductType
from ocha.services.errors import Conflict, NotFound

router = APIRouter(prefix="/products")


class ProductCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    code: str | None = Field(default=None, max_length=64)
    description: str | None = None
    category_id: int | None = None
    list_price: Decimal = Field(default=Decimal(0), ge=0)
    cost_price: Decimal = Field(default=Decimal(0), ge=0)
    type: ProductType = ProductType.raw_material
    unit_of_measure: str = Field(default="unit", min_length=1, max_length=32)
    minimum_stock: Decimal = Field(default=Decimal(0), ge=0)
    active: bool = True


def _out(p: Product) -> dict:
    return {
        "id": p.id,
        "name": p.name,
        "code": p.code,
        "category_id": p.category_id,
        "list_price": p.list_price,
        "cost_price": p.cost_price,
        "type": p.type,
        "unit_of_measure": p.unit_of_measure,
        "minimum_stock": p.minimum_stock,
        "active": p.active,
        "external_id": p.external_id,
        "created_at": p.created_at,
    }


@router.get("")
def list_products(
    active: bool | None = None,
    category_id: int | None = None,
    db: Session = Depends(get_db),
):
    stmt = select(Product).order_by(Product.name, Product.id)
    if active is not None:
        stmt = stmt.where(Product.active.is_(active))
    if category_id is not None:
        stmt = stmt.where(Product.category_id == category_id)
    return [_out(p) for p in db.execute(stmt).scalars().all()]


@router.post("")
def create_product(payload: ProductCreate, db: Session = Depends(get_db)):
    if payload.code:
        exists = db.execute(select(Product.id).where(Product.code == payload.code)).scalar_one_or_none()
        if exists:
            raise Conflict("Product code already exists", code=payload.code)
    if payload.category_id is not None and not db.get(Category, payload.category_id):
        raise NotFound("Category", payload.category_id)

    p = Product(**payload.model_dump())
    db.add(p)
    db.commit()
    db.refresh(p)
    return _out(p)
