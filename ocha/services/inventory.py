"""
Inventory service.

Toute la logique stock est centralisée ici. Deux primitives atomiques :

    merge_inventory     : INSERT ... ON CONFLICT (product_id, location_id)
                          DO UPDATE SET quantity = quantity + excluded.quantity
    decrement_inventory : UPDATE ... SET quantity = quantity - :q
                          WHERE ... AND quantity >= :q

Aucune lecture-puis-écriture en Python : pas d'incrément perdu, jamais de
quantité négative. Les primitives ne commit pas ; l'opération appelante
(réception, transformation, transfert) porte la transaction.
"""

from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Iterable

from sqlalchemy import func, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from ocha.app.db.models.models_v1 import InventoryItem, Product, StorageLocation, utcnow
from ocha.app.db.models.core_types import NotificationType
from ocha.app.db.transaction import unit_of_work
from ocha.services.errors import InsufficientStock, NotFound, PreconditionFailed, ValidationError
from ocha.services.notifications import Notifier, emit_safely
from ocha.services.workflow import record_audit

logger = logging.getLogger(__name__)

_UPSERT_DIALECTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def as_quantity(value, *, field: str = "quantity") -> Decimal:
    """Quantité strictement positive, sinon ValidationError."""
    try:
        qty = Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError(f"{field} must be a number", field=field, value=str(value)) from None
    if not qty.is_finite() or qty <= 0:
        raise ValidationError(f"{field} must be > 0", field=field, value=str(value))
    return qty


def as_id(item, name: str, idx: int) -> int:
    """Identifiant d'une ligne `items[idx]` : requis et entier, sinon ValidationError."""
    field = f"items[{idx}].{name}"
    value = item.get(name)
    if value is None or isinstance(value, bool):
        raise ValidationError(f"{field} is required", field=field, index=idx)
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be an integer", field=field, index=idx, value=str(value)) from None


def require(db: Session, model, entity_id: int):
    obj = db.get(model, entity_id)
    if obj is None:
        raise NotFound(model.__name__, entity_id)
    return obj


def current_quantity(db: Session, product_id: int, location_id: int) -> Decimal:
    qty = db.execute(
        select(InventoryItem.quantity)
        .where(InventoryItem.product_id == product_id)
        .where(InventoryItem.location_id == location_id)
    ).scalar_one_or_none()
    return Decimal(qty) if qty is not None else Decimal(0)


def merge_inventory(
    db: Session,
    *,
    product_id: int,
    location_id: int,
    quantity,
    unit_price=None,
    expiry_date: date | None = None,
    batch_number: str | None = None,
) -> Decimal:
    """
    Ajoute `quantity` au stock (product, location) et retourne la nouvelle quantité.

    Ligne absente -> créée. Ligne présente -> quantity += quantity ;
    unit_price / expiry_date / batch_number déjà présents sont conservés.
    Commutatif : merge(a) puis merge(b) == merge(b) puis merge(a).
    """
    qty = as_quantity(quantity)
    require(db, Product, product_id)
    require(db, StorageLocation, location_id)

    dialect = db.get_bind().dialect.name
    insert = _UPSERT_DIALECTS.get(dialect)
    if insert is None:
        raise PreconditionFailed(f"inventory upsert not supported on {dialect}", dialect=dialect)

    now = utcnow()
    stmt = insert(InventoryItem).values(
        product_id=product_id,
        location_id=location_id,
        quantity=qty,
        unit_price=Decimal(str(unit_price)) if unit_price is not None else Decimal(0),
        expiry_date=expiry_date,
        batch_number=batch_number,
        created_at=now,
        updated_at=now,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=[InventoryItem.product_id, InventoryItem.location_id],
        set_={
            "quantity": InventoryItem.quantity + stmt.excluded.quantity,
            "expiry_date": func.coalesce(InventoryItem.expiry_date, stmt.excluded.expiry_date),
            "batch_number": func.coalesce(InventoryItem.batch_number, stmt.excluded.batch_number),
            "updated_at": now,
        },
    )
    db.execute(stmt)

    new_qty = current_quantity(db, product_id, location_id)
    logger.debug("inventory +%s product=%s location=%s -> %s", qty, product_id, location_id, new_qty)
    return new_qty


def decrement_inventory(db: Session, *, product_id: int, location_id: int, quantity) -> Decimal:
    """Retire `quantity` si disponible, sinon InsufficientStock (rien n'est modifié)."""
    qty = as_quantity(quantity)
    res = db.execute(
        update(InventoryItem)
        .where(InventoryItem.product_id == product_id)
        .where(InventoryItem.location_id == location_id)
        .where(InventoryItem.quantity >= qty)
        .values(quantity=InventoryItem.quantity - qty, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    if res.rowcount != 1:
        available = current_quantity(db, product_id, location_id)
        raise InsufficientStock(product_id, location_id, qty, available)

    new_qty = current_quantity(db, product_id, location_id)
    logger.debug("inventory -%s product=%s location=%s -> %s", qty, product_id, location_id, new_qty)
    return new_qty


def apply_move(db: Session, *, from_location_id: int, to_location_id: int, product_id: int, quantity) -> dict:
    if from_location_id == to_location_id:
        raise ValidationError(
            "from_location_id and to_location_id must differ",
            from_location_id=from_location_id,
            to_location_id=to_location_id,
        )
    qty = as_quantity(quantity)
    require(db, StorageLocation, from_location_id)
    require(db, StorageLocation, to_location_id)
    src_qty = decrement_inventory(db, product_id=product_id, location_id=from_location_id, quantity=qty)
    dst_qty = merge_inventory(db, product_id=product_id, location_id=to_location_id, quantity=qty)
    return {
        "product_id": product_id,
        "from_location_id": from_location_id,
        "to_location_id": to_location_id,
        "quantity": qty,
        "from_quantity": src_qty,
        "to_quantity": dst_qty,
    }


def on_hand_totals(db: Session, product_ids: Iterable[int] | None = None) -> dict[int, Decimal]:
    stmt = select(InventoryItem.product_id, func.coalesce(func.sum(InventoryItem.quantity), 0)).group_by(
        InventoryItem.product_id
    )
    if product_ids is not None:
        stmt = stmt.where(InventoryItem.product_id.in_(list(product_ids)))
    return {int(pid): Decimal(qty) for pid, qty in db.execute(stmt).all()}


def low_stock_products(db: Session, product_ids: Iterable[int] | None = None) -> list[dict]:
    """Produits dont le stock total (toutes locations) est < minimum_stock."""
    stmt = select(Product).where(Product.minimum_stock > 0).order_by(Product.id)
    if product_ids is not None:
        ids = sorted({int(pid) for pid in product_ids})
        if not ids:
            return []
        stmt = stmt.where(Product.id.in_(ids))
    products = db.execute(stmt).scalars().all()
    totals = on_hand_totals(db, [p.id for p in products])

    low = []
    for p in products:
        on_hand = totals.get(p.id, Decimal(0))
        if on_hand < Decimal(p.minimum_stock):
            low.append({"product_id": p.id, "on_hand": on_hand, "minimum_stock": Decimal(p.minimum_stock)})
    return low


def notify_low_stock(notifier: Notifier | None, low: list[dict]) -> None:
    for row in low:
        logger.warning(
            "low stock product=%s on_hand=%s minimum=%s",
            row["product_id"],
            row["on_hand"],
            row["minimum_stock"],
        )
        emit_safely(notifier, NotificationType.inventory_low, row["product_id"])


def rebuild_location_usage(db: Session, location_ids: Iterable[int]) -> None:
    """
    current_usage = SUM(quantity) des lignes d'inventaire de la location.

    Déterministe et idempotent. Capacité = contrainte souple : dépassement loggé.
    """
    ids = sorted({int(lid) for lid in location_ids if lid is not None})
    if not ids:
        return

    totals = dict(
        db.execute(
            select(InventoryItem.location_id, func.coalesce(func.sum(InventoryItem.quantity), 0))
            .where(InventoryItem.location_id.in_(ids))
            .group_by(InventoryItem.location_id)
        ).all()
    )
    for lid in ids:
        usage = Decimal(totals.get(lid, 0))
        db.execute(
            update(StorageLocation)
            .where(StorageLocation.id == lid)
            .values(current_usage=usage)
            .execution_options(synchronize_session=False)
        )
        capacity = db.execute(select(StorageLocation.capacity).where(StorageLocation.id == lid)).scalar_one_or_none()
        if capacity and usage > Decimal(capacity):
            logger.warning("storage location %s over capacity: usage=%s capacity=%s", lid, usage, capacity)


def move(
    db: Session,
    notifier: Notifier | None,
    *,
    from_location_id: int,
    to_location_id: int,
    product_id: int,
    quantity,
    actor: str | None = None,
) -> dict:
    """Transfert direct entre deux locations (une transaction)."""
    with unit_of_work(db):
        result = apply_move(
            db,
            from_location_id=from_location_id,
            to_location_id=to_location_id,
            product_id=product_id,
            quantity=quantity,
        )
        rebuild_location_usage(db, [from_location_id, to_location_id])
        record_audit(
            db,
            action="inventory:move",
            entity_type="InventoryItem",
            entity_id=product_id,
            actor=actor,
            meta={"from": from_location_id, "to": to_location_id, "quantity": result["quantity"]},
        )
        low = low_stock_products(db, [product_id])

    notify_low_stock(notifier, low)
    return result


def list_inventory(
    db: Session,
    *,
    product_id: int | None = None,
    location_id: int | None = None,
    include_empty: bool = False,
) -> list[InventoryItem]:
    stmt = (
        select(InventoryItem)
        .order_by(InventoryItem.location_id, InventoryItem.product_id)
        .execution_options(populate_existing=True)
    )
    if product_id is not None:
        stmt = stmt.where(InventoryItem.product_id == product_id)
    if location_id is not None:
        stmt = stmt.where(InventoryItem.location_id == location_id)
    if not include_empty:
        stmt = stmt.where(InventoryItem.quantity > 0)
    return list(db.execute(stmt).scalars().all())
