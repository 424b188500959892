"""
Processing service (préparation / cuisson / conditionnement / contrôle qualité).

    planned -> in_progress -> completed
    planned / in_progress -> cancelled

complete() consomme le stock d'entrée (décrément conditionnel) et produit le
stock de sortie (merge), dans la même transaction que le changement de statut.
"""

from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal, InvalidOperation

from sqlalchemy import select
from sqlalchemy.orm import Session

from ocha.app.db.models.models_v1 import Product, ProcessingRecord, StorageLocation, utcnow
from ocha.app.db.models.core_types import NotificationType, ProcessingStatus, ProcessType
from ocha.app.db.transaction import unit_of_work
from ocha.services.errors import ValidationError
from ocha.services.inventory import (
    as_quantity,
    decrement_inventory,
    low_stock_products,
    merge_inventory,
    notify_low_stock,
    rebuild_location_usage,
    require,
)
from ocha.services.notifications import Notifier, emit_safely
from ocha.services.numbering import allocate_and_insert
from ocha.services.workflow import PROCESSING_FLOW, load, record_audit, transition

logger = logging.getLogger(__name__)


def plan(
    db: Session,
    *,
    product_id: int,
    input_quantity,
    input_location_id: int,
    process_type: str,
    output_product_id: int,
    output_location_id: int,
    processed_by: str | None = None,
    notes: str | None = None,
    batch_number: str | None = None,
) -> ProcessingRecord:
    qty = as_quantity(input_quantity, field="input_quantity")
    try:
        ptype = ProcessType(process_type)
    except ValueError:
        raise ValidationError(
            f"Unknown process_type '{process_type}'",
            field="process_type",
            allowed=[p.value for p in ProcessType],
        ) from None

    with unit_of_work(db):
        require(db, Product, product_id)
        require(db, Product, output_product_id)
        require(db, StorageLocation, input_location_id)
        require(db, StorageLocation, output_location_id)

        def build(number: str) -> ProcessingRecord:
            return ProcessingRecord(
                batch_number=number,
                product_id=product_id,
                input_quantity=qty,
                input_location_id=input_location_id,
                process_type=ptype,
                output_product_id=output_product_id,
                output_location_id=output_location_id,
                processed_by=processed_by,
                notes=notes,
                status=ProcessingStatus.planned,
            )

        if batch_number:
            exists = db.execute(
                select(ProcessingRecord.id).where(ProcessingRecord.batch_number == batch_number)
            ).scalar_one_or_none()
            if exists is not None:
                raise ValidationError(f"batch_number {batch_number} already used", field="batch_number")
            record = build(batch_number)
            db.add(record)
            db.flush()
        else:
            record = allocate_and_insert(db, ProcessingRecord.batch_number, "PB", date.today(), build)

        record_audit(db, action="created", entity_type="ProcessingRecord", entity_id=record.id, actor=processed_by)

    return load(db, ProcessingRecord, record.id, refresh=True)


def start(db: Session, record_id: int, *, actor: str | None = None) -> ProcessingRecord:
    with unit_of_work(db):
        transition(
            db,
            ProcessingRecord,
            record_id,
            PROCESSING_FLOW,
            ProcessingStatus.in_progress,
            actor=actor,
            values={"started_at": utcnow()},
        )
    return load(db, ProcessingRecord, record_id, refresh=True)


def complete(
    db: Session,
    notifier: Notifier | None,
    record_id: int,
    *,
    output_quantity,
    actor: str | None = None,
) -> ProcessingRecord:
    """
    in_progress -> completed.

    output_quantity < input_quantity = perte de rendement (autorisée).
    output_quantity == 0 : rien n'est produit (lot rejeté au contrôle).
    """
    try:
        out_qty = Decimal(str(output_quantity))
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError("output_quantity must be a number", field="output_quantity") from None
    if not out_qty.is_finite() or out_qty < 0:
        raise ValidationError("output_quantity must be >= 0", field="output_quantity")

    with unit_of_work(db):
        transition(
            db,
            ProcessingRecord,
            record_id,
            PROCESSING_FLOW,
            ProcessingStatus.completed,
            actor=actor,
            values={"output_quantity": out_qty, "completed_at": utcnow()},
        )
        rec = load(db, ProcessingRecord, record_id, refresh=True)

        decrement_inventory(
            db,
            product_id=rec.product_id,
            location_id=rec.input_location_id,
            quantity=rec.input_quantity,
        )
        if out_qty > 0:
            merge_inventory(
                db,
                product_id=rec.output_product_id,
                location_id=rec.output_location_id,
                quantity=out_qty,
            )
        rebuild_location_usage(db, [rec.input_location_id, rec.output_location_id])
        low = low_stock_products(db, [rec.product_id])
        batch, in_qty, processed_by = rec.batch_number, Decimal(rec.input_quantity), rec.processed_by

    emit_safely(notifier, NotificationType.processing_completed, record_id, processed_by)
    notify_low_stock(notifier, low)
    loss = in_qty - out_qty
    logger.info("processing %s completed: in=%s out=%s loss=%s", batch, in_qty, out_qty, loss if loss > 0 else 0)
    return load(db, ProcessingRecord, record_id, refresh=True)


def cancel(db: Session, record_id: int, *, actor: str | None = None) -> ProcessingRecord:
    with unit_of_work(db):
        transition(db, ProcessingRecord, record_id, PROCESSING_FLOW, ProcessingStatus.cancelled, actor=actor)
    return load(db, ProcessingRecord, record_id, refresh=True)


def list_records(db: Session, *, status: ProcessingStatus | None = None) -> list[ProcessingRecord]:
    stmt = select(ProcessingRecord).order_by(ProcessingRecord.id.desc())
    if status is not None:
        stmt = stmt.where(ProcessingRecord.status == status)
    return list(db.execute(stmt).scalars().all())
