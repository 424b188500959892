"""
Record store : contrat CRUD minimal par collection.

    select(filters, fields, limit) -> list[dict]
    insert(record)                 -> dict (avec id)
    update(id, partial)            -> dict  (NotFound si absent)
    delete(id)                     -> bool  (idempotent : absent = False, pas d'erreur)

Chaque appel = sa propre transaction courte + retry borné sur erreur
transitoire. Utilisé par le reconciler, l'analytics et la sync ERP ; le moteur
workflow, lui, travaille directement dans la Session (transaction multi-étapes).
"""
from __future__ import annotations

from typing import Any, Callable, Iterable

from sqlalchemy import delete as sa_delete, inspect, select
from sqlalchemy.orm import Session

from ocha.app.db.models.models_v1 import (
    AuditLog,
    Category,
    GoodsReceipt,
    InventoryItem,
    Notification,
    ProcessingRecord,
    Product,
    PurchaseOrder,
    PurchaseRequest,
    StorageLocation,
    Supplier,
    TransportationOrder,
)
from ocha.app.db.transaction import with_store_retry
from ocha.services.errors import NotFound, ValidationError

COLLECTIONS = {
    "products": Product,
    "suppliers": Supplier,
    "categories": Category,
    "storage_locations": StorageLocation,
    "inventory_items": InventoryItem,
    "purchase_requests": PurchaseRequest,
    "purchase_orders": PurchaseOrder,
    "goods_receipts": GoodsReceipt,
    "processing_records": ProcessingRecord,
    "transportation_orders": TransportationOrder,
    "notifications": Notification,
    "audit_log": AuditLog,
}

_OPERATORS = {
    "eq": lambda col, v: col == v,
    "ne": lambda col, v: col != v,
    "gt": lambda col, v: col > v,
    "gte": lambda col, v: col >= v,
    "lt": lambda col, v: col < v,
    "lte": lambda col, v: col <= v,
    "in": lambda col, v: col.in_(list(v)),
}


def row_to_dict(obj: Any, fields: Iterable[str] | None = None) -> dict:
    names = list(fields) if fields else [c.key for c in inspect(obj).mapper.column_attrs]
    return {name: getattr(obj, name) for name in names}


class RecordStore:
    """CRUD sur une collection (un modèle SQLAlchemy)."""

    def __init__(self, session_factory: Callable[[], Session], collection: str):
        if collection not in COLLECTIONS:
            raise ValidationError(f"Unknown collection '{collection}'", collection=collection)
        self.collection = collection
        self.model = COLLECTIONS[collection]
        self._session_factory = session_factory
        self._columns = {c.key for c in inspect(self.model).mapper.column_attrs}

    def _column(self, name: str):
        if name not in self._columns:
            raise ValidationError(f"Unknown field '{name}' on {self.collection}", field=name)
        return getattr(self.model, name)

    def _where(self, filters: dict[str, Any]):
        clauses = []
        for key, value in filters.items():
            name, _, op = key.partition("__")
            op = op or "eq"
            if op not in _OPERATORS:
                raise ValidationError(f"Unsupported filter operator '{op}'", filter=key)
            col = self._column(name)
            if op == "eq" and value is None:
                clauses.append(col.is_(None))
            else:
                clauses.append(_OPERATORS[op](col, value))
        return clauses

    @with_store_retry
    def select(
        self,
        filters: dict[str, Any] | None = None,
        fields: Iterable[str] | None = None,
        limit: int | None = None,
    ) -> list[dict]:
        fields = list(fields) if fields else None
        if fields:
            for name in fields:
                self._column(name)
        stmt = select(self.model).where(*self._where(filters or {})).order_by(self.model.id)
        if limit is not None:
            stmt = stmt.limit(limit)
        with self._session_factory() as db:
            rows = db.execute(stmt).scalars().all()
            return [row_to_dict(r, fields) for r in rows]

    @with_store_retry
    def insert(self, record: dict[str, Any]) -> dict:
        for name in record:
            self._column(name)
        with self._session_factory() as db:
            obj = self.model(**record)
            db.add(obj)
            db.commit()
            db.refresh(obj)
            return row_to_dict(obj)

    @with_store_retry
    def update(self, record_id: int, partial: dict[str, Any]) -> dict:
        for name in partial:
            if name == "id":
                raise ValidationError("id is immutable")
            self._column(name)
        with self._session_factory() as db:
            obj = db.get(self.model, record_id)
            if obj is None:
                raise NotFound(self.collection, record_id)
            for name, value in partial.items():
                setattr(obj, name, value)
            db.commit()
            db.refresh(obj)
            return row_to_dict(obj)

    @with_store_retry
    def delete(self, record_id: int) -> bool:
        with self._session_factory() as db:
            res = db.execute(sa_delete(self.model).where(self.model.id == record_id))
            db.commit()
            return res.rowcount > 0
