"""
Transportation service : transferts planifiés entre locations.

    scheduled -> in_transit -> delivered
    scheduled / in_transit -> cancelled

Le stock ne bouge qu'à la livraison (complete) ; start() vérifie seulement
la disponibilité à la source.
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Iterable, Mapping

from sqlalchemy import select
from sqlalchemy.orm import Session

from ocha.app.db.models.models_v1 import (
    Product,
    StorageLocation,
    TransportationLine,
    TransportationOrder,
    utcnow,
)
from ocha.app.db.models.core_types import NotificationType, TransportStatus
from ocha.app.db.transaction import unit_of_work
from ocha.services.errors import InsufficientStock, ValidationError
from ocha.services.inventory import (
    apply_move,
    as_id,
    as_quantity,
    current_quantity,
    low_stock_products,
    notify_low_stock,
    rebuild_location_usage,
    require,
)
from ocha.services.notifications import Notifier, emit_safely
from ocha.services.numbering import allocate_and_insert
from ocha.services.workflow import TRANSPORT_FLOW, load, record_audit, transition

logger = logging.getLogger(__name__)


def schedule(
    db: Session,
    notifier: Notifier | None,
    *,
    from_location_id: int,
    to_location_id: int,
    items: Iterable[Mapping[str, Any]],
    driver: str | None = None,
    vehicle: str | None = None,
    expected_departure: datetime | None = None,
    expected_arrival: datetime | None = None,
    notes: str | None = None,
    created_by: str | None = None,
) -> TransportationOrder:
    if from_location_id == to_location_id:
        raise ValidationError(
            "from_location_id and to_location_id must differ",
            from_location_id=from_location_id,
            to_location_id=to_location_id,
        )
    raw = list(items or [])
    if not raw:
        raise ValidationError("At least one item is required")

    with unit_of_work(db):
        require(db, StorageLocation, from_location_id)
        require(db, StorageLocation, to_location_id)
        lines = []
        for idx, item in enumerate(raw):
            product_id = as_id(item, "product_id", idx)
            require(db, Product, product_id)
            lines.append((product_id, as_quantity(item.get("quantity"), field=f"items[{idx}].quantity")))

        order = allocate_and_insert(
            db,
            TransportationOrder.transport_number,
            "TR",
            date.today(),
            lambda number: TransportationOrder(
                transport_number=number,
                from_location_id=from_location_id,
                to_location_id=to_location_id,
                driver=driver,
                vehicle=vehicle,
                expected_departure=expected_departure,
                expected_arrival=expected_arrival,
                status=TransportStatus.scheduled,
                notes=notes,
                created_by=created_by,
            ),
        )
        for product_id, qty in lines:
            db.add(TransportationLine(order_id=order.id, product_id=product_id, quantity=qty))
        record_audit(db, action="created", entity_type="TransportationOrder", entity_id=order.id, actor=created_by)
        order_id = order.id

    emit_safely(notifier, NotificationType.transportation_scheduled, order_id, driver)
    return load(db, TransportationOrder, order_id, refresh=True)


def _required_by_product(order: TransportationOrder) -> dict[int, Decimal]:
    # plusieurs lignes du même produit -> cumul
    needed: dict[int, Decimal] = {}
    for line in order.lines:
        needed[line.product_id] = needed.get(line.product_id, Decimal(0)) + Decimal(line.quantity)
    return needed


def start(db: Session, order_id: int, *, actor: str | None = None) -> TransportationOrder:
    with unit_of_work(db):
        order = load(db, TransportationOrder, order_id)
        for product_id, qty in _required_by_product(order).items():
            available = current_quantity(db, product_id, order.from_location_id)
            if available < qty:
                raise InsufficientStock(product_id, order.from_location_id, qty, available)
        transition(
            db,
            TransportationOrder,
            order_id,
            TRANSPORT_FLOW,
            TransportStatus.in_transit,
            actor=actor,
            values={"actual_departure": utcnow()},
        )
    return load(db, TransportationOrder, order_id, refresh=True)


def complete(
    db: Session,
    notifier: Notifier | None,
    order_id: int,
    *,
    actor: str | None = None,
) -> TransportationOrder:
    """in_transit -> delivered : un transfert par ligne, tout ou rien."""
    with unit_of_work(db):
        transition(
            db,
            TransportationOrder,
            order_id,
            TRANSPORT_FLOW,
            TransportStatus.delivered,
            actor=actor,
            values={"actual_arrival": utcnow()},
        )
        order = load(db, TransportationOrder, order_id, refresh=True)
        for line in order.lines:
            apply_move(
                db,
                from_location_id=order.from_location_id,
                to_location_id=order.to_location_id,
                product_id=line.product_id,
                quantity=line.quantity,
            )
        rebuild_location_usage(db, [order.from_location_id, order.to_location_id])
        low = low_stock_products(db, [line.product_id for line in order.lines])

    notify_low_stock(notifier, low)
    order = load(db, TransportationOrder, order_id, refresh=True)
    logger.info("transportation %s delivered (%s line(s))", order.transport_number, len(order.lines))
    return order


def cancel(db: Session, order_id: int, *, actor: str | None = None) -> TransportationOrder:
    with unit_of_work(db):
        transition(db, TransportationOrder, order_id, TRANSPORT_FLOW, TransportStatus.cancelled, actor=actor)
    return load(db, TransportationOrder, order_id, refresh=True)


def list_orders(db: Session, *, status: TransportStatus | None = None) -> list[TransportationOrder]:
    stmt = select(TransportationOrder).order_by(TransportationOrder.id.desc())
    if status is not None:
        stmt = stmt.where(TransportationOrder.status == status)
    return list(db.execute(stmt).scalars().all())
