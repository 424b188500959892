from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.orm import Session

from ocha.app.api.deps import get_db
from ocha.app.db.models.models_v1 import Category
from ocha.services.errors import NotFound

router = APIRouter(prefix="/categories")


class CategoryCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    parent_id: int | None = None


@router.get("")
def list_categories(parent_id: int | None = None, db: Session = Depends(get_db)):
    stmt = select(Category).order_by(Category.name, Category.id)
    if parent_id is not None:
        stmt = stmt.where(Category.parent_id == parent_id)
    return [
        {"id": c.id, "name": c.name, "parent_id": c.parent_id, "created_at": c.created_at}
        for c in db.execute(stmt).scalars().all()
    ]


@router.post("")
def create_category(payload: CategoryCreate, db: Session = Depends(get_db)):
    if payload.parent_id is not None and not db.get(Category, payload.parent_id):
        raise NotFound("Category", payload.parent_id)
    c = Category(name=payload.name, parent_id=payload.parent_id)
    db.add(c)
    db.commit()
    db.refresh(c)
    return {"id": c.id, "name": c.name, "parent_id": c.parent_id}
