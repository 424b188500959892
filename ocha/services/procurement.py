"""
Procurement service.

Ce module orchestre les flux d'achat :

    PurchaseRequest (pending -> approved) -> PurchaseOrder -> GoodsReceipt
        -> verify -> inventaire

Toute la logique stock est centralisée dans :
    ocha.services.inventory

Chaque opération publique = une transaction (unit_of_work), puis
notifications après commit.
"""

from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal
from typing import Any, Iterable, Mapping

from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session

from ocha.app.db.models.models_v1 import (
    GoodsReceipt,
    GoodsReceiptLine,
    Product,
    PurchaseOrder,
    PurchaseOrderItem,
    PurchaseRequest,
    PurchaseRequestLine,
    StorageLocation,
    Supplier,
    utcnow,
)
from ocha.app.db.models.core_types import (
    NotificationType,
    POStatus,
    Priority,
    ReceiptStatus,
    RequestStatus,
)
from ocha.app.db.transaction import unit_of_work
from ocha.services.errors import NotFound, PreconditionFailed, ValidationError
from ocha.services.inventory import as_id, as_quantity, merge_inventory, rebuild_location_usage, require
from ocha.services.notifications import Notifier, emit_safely
from ocha.services.numbering import allocate_and_insert
from ocha.services.workflow import (
    ORDER_FLOW,
    RECEIPT_FLOW,
    REQUEST_FLOW,
    load,
    record_audit,
    transition,
)

logger = logging.getLogger(__name__)

# items modifiables uniquement avant confirmation fournisseur
EDITABLE_PO_STATUSES = {POStatus.draft, POStatus.sent}

# une réception n'a de sens que sur une commande partie chez le fournisseur
RECEIVABLE_PO_STATUSES = {POStatus.sent, POStatus.confirmed, POStatus.partially_received}


def _as_price(value, *, field: str = "unit_price") -> Decimal:
    try:
        price = Decimal(str(value))
    except Exception:
        raise ValidationError(f"{field} must be a number", field=field, value=str(value)) from None
    if not price.is_finite() or price < 0:
        raise ValidationError(f"{field} must be >= 0", field=field, value=str(value))
    return price


def _parse_lines(db: Session, items: Iterable[Mapping[str, Any]] | None) -> list[dict]:
    """Valide les lignes (non vide, quantité > 0, produit existant)."""
    lines = list(items or [])
    if not lines:
        raise ValidationError("At least one item is required")

    parsed = []
    for idx, item in enumerate(lines):
        product_id = as_id(item, "product_id", idx)
        quantity = as_quantity(item.get("quantity"), field=f"items[{idx}].quantity")
        unit_price = item.get("unit_price")
        require(db, Product, product_id)
        parsed.append(
            {
                "product_id": product_id,
                "quantity": quantity,
                "unit_price": _as_price(unit_price, field=f"items[{idx}].unit_price") if unit_price is not None else None,
            }
        )
    return parsed


def _parse_priority(priority) -> Priority:
    try:
        return Priority(priority)
    except ValueError:
        raise ValidationError(
            f"Unknown priority '{priority}'",
            field="priority",
            allowed=[p.value for p in Priority],
        ) from None


def recompute_order_total(db: Session, order_id: int) -> None:
    """total_amount = SUM(quantity * unit_price), en UN statement (pas de lecture Python)."""
    total = (
        select(func.coalesce(func.sum(PurchaseOrderItem.quantity * PurchaseOrderItem.unit_price), 0))
        .where(PurchaseOrderItem.order_id == order_id)
        .scalar_subquery()
    )
    db.execute(
        update(PurchaseOrder)
        .where(PurchaseOrder.id == order_id)
        .values(total_amount=total)
        .execution_options(synchronize_session=False)
    )


# ---------- PURCHASE REQUEST ----------
def submit_request(
    db: Session,
    notifier: Notifier | None,
    *,
    requester: str,
    items: Iterable[Mapping[str, Any]],
    priority: str = "normal",
    expected_date: date | None = None,
    notes: str | None = None,
    supplier_id: int | None = None,
) -> PurchaseRequest:
    if not requester or not str(requester).strip():
        raise ValidationError("requester is required", field="requester")
    prio = _parse_priority(priority)

    with unit_of_work(db):
        lines = _parse_lines(db, items)
        if supplier_id is not None:
            require(db, Supplier, supplier_id)

        today = date.today()
        pr = allocate_and_insert(
            db,
            PurchaseRequest.pr_number,
            "PR",
            today,
            lambda number: PurchaseRequest(
                pr_number=number,
                requester=requester,
                supplier_id=supplier_id,
                priority=prio,
                expected_date=expected_date,
                notes=notes,
                status=RequestStatus.pending,
            ),
        )
        for position, line in enumerate(lines, start=1):
            db.add(PurchaseRequestLine(request_id=pr.id, position=position, **line))
        record_audit(db, action="created", entity_type="PurchaseRequest", entity_id=pr.id, actor=requester)
        pr_id, pr_number = pr.id, pr.pr_number

    emit_safely(notifier, NotificationType.purchase_request_created, pr_id)
    logger.info("purchase request %s submitted by %s", pr_number, requester)
    return load(db, PurchaseRequest, pr_id)


def _requester_of(db: Session, request_id: int) -> str:
    return db.execute(select(PurchaseRequest.requester).where(PurchaseRequest.id == request_id)).scalar_one()


def approve_request(db: Session, notifier: Notifier | None, request_id: int, *, approver: str) -> PurchaseRequest:
    if not approver or not str(approver).strip():
        raise ValidationError("approver is required", field="approver")

    with unit_of_work(db):
        transition(
            db,
            PurchaseRequest,
            request_id,
            REQUEST_FLOW,
            RequestStatus.approved,
            actor=approver,
            values={"approved_by": approver, "approved_at": utcnow()},
        )
        requester = _requester_of(db, request_id)

    emit_safely(notifier, NotificationType.purchase_request_approved, request_id, requester)
    return load(db, PurchaseRequest, request_id, refresh=True)


def reject_request(
    db: Session,
    notifier: Notifier | None,
    request_id: int,
    *,
    reason: str,
    rejected_by: str | None = None,
) -> PurchaseRequest:
    if not reason or not str(reason).strip():
        raise ValidationError("reason is required", field="reason")

    with unit_of_work(db):
        transition(
            db,
            PurchaseRequest,
            request_id,
            REQUEST_FLOW,
            RequestStatus.rejected,
            actor=rejected_by,
            values={"rejection_reason": reason, "rejected_at": utcnow()},
        )
        requester = _requester_of(db, request_id)

    emit_safely(notifier, NotificationType.purchase_request_rejected, request_id, requester)
    return load(db, PurchaseRequest, request_id, refresh=True)


def cancel_request(db: Session, request_id: int, *, actor: str | None = None) -> PurchaseRequest:
    with unit_of_work(db):
        transition(db, PurchaseRequest, request_id, REQUEST_FLOW, RequestStatus.cancelled, actor=actor)
    return load(db, PurchaseRequest, request_id, refresh=True)


def list_requests(db: Session, *, status: RequestStatus | None = None, requester: str | None = None):
    stmt = select(PurchaseRequest).order_by(PurchaseRequest.id.desc())
    if status is not None:
        stmt = stmt.where(PurchaseRequest.status == status)
    if requester is not None:
        stmt = stmt.where(PurchaseRequest.requester == requester)
    return list(db.execute(stmt).scalars().all())


# ---------- PURCHASE ORDER ----------
def _existing_order_for(db: Session, request_id: int) -> PurchaseOrder | None:
    return db.execute(select(PurchaseOrder).where(PurchaseOrder.request_id == request_id)).scalar_one_or_none()


def create_order_from_request(
    db: Session,
    notifier: Notifier | None,
    request_id: int,
    *,
    supplier_id: int | None = None,
    created_by: str | None = None,
) -> PurchaseOrder:
    def ensure_no_order():
        existing = _existing_order_for(db, request_id)
        if existing is not None:
            raise PreconditionFailed(
                f"Purchase request {request_id} already has order {existing.po_number}",
                request_id=request_id,
                order_id=existing.id,
            )

    with unit_of_work(db):
        pr = load(db, PurchaseRequest, request_id)
        if pr.status != RequestStatus.approved:
            raise PreconditionFailed(
                f"Purchase request {request_id} is {pr.status.value}, expected approved",
                request_id=request_id,
                status=pr.status.value,
            )
        ensure_no_order()

        supplier = supplier_id if supplier_id is not None else pr.supplier_id
        if supplier is None:
            raise ValidationError("supplier_id is required (none on the request)", field="supplier_id")
        require(db, Supplier, supplier)

        lines = [(l.product_id, Decimal(l.quantity), l.unit_price) for l in pr.lines]
        expected, notes = pr.expected_date, pr.notes

        po = allocate_and_insert(
            db,
            PurchaseOrder.po_number,
            "PO",
            date.today(),
            lambda number: PurchaseOrder(
                po_number=number,
                request_id=request_id,
                supplier_id=supplier,
                expected_date=expected,
                status=POStatus.draft,
                notes=notes,
                created_by=created_by,
            ),
            on_conflict=ensure_no_order,
        )
        for product_id, quantity, unit_price in lines:
            if unit_price is None:
                # pas de prix sur la demande -> prix d'achat catalogue
                unit_price = db.get(Product, product_id).cost_price or 0
            db.add(
                PurchaseOrderItem(
                    order_id=po.id,
                    product_id=product_id,
                    quantity=quantity,
                    unit_price=unit_price,
                )
            )
        db.flush()
        recompute_order_total(db, po.id)
        record_audit(
            db,
            action="created",
            entity_type="PurchaseOrder",
            entity_id=po.id,
            actor=created_by,
            meta={"request_id": request_id},
        )
        po_id, po_number = po.id, po.po_number

    emit_safely(notifier, NotificationType.purchase_order_created, po_id)
    logger.info("purchase order %s created from request %s", po_number, request_id)
    return load(db, PurchaseOrder, po_id, refresh=True)


def create_order(
    db: Session,
    notifier: Notifier | None,
    *,
    supplier_id: int,
    lines: Iterable[Mapping[str, Any]],
    expected_date: date | None = None,
    notes: str | None = None,
    created_by: str | None = None,
) -> PurchaseOrder:
    with unit_of_work(db):
        require(db, Supplier, supplier_id)
        parsed = _parse_lines(db, lines)
        po = allocate_and_insert(
            db,
            PurchaseOrder.po_number,
            "PO",
            date.today(),
            lambda number: PurchaseOrder(
                po_number=number,
                supplier_id=supplier_id,
                expected_date=expected_date,
                status=POStatus.draft,
                notes=notes,
                created_by=created_by,
            ),
        )
        for line in parsed:
            db.add(
                PurchaseOrderItem(
                    order_id=po.id,
                    product_id=line["product_id"],
                    quantity=line["quantity"],
                    unit_price=line["unit_price"] if line["unit_price"] is not None else 0,
                )
            )
        db.flush()
        recompute_order_total(db, po.id)
        record_audit(db, action="created", entity_type="PurchaseOrder", entity_id=po.id, actor=created_by)
        po_id = po.id

    emit_safely(notifier, NotificationType.purchase_order_created, po_id)
    return load(db, PurchaseOrder, po_id, refresh=True)


def send_order(db: Session, order_id: int, *, actor: str | None = None) -> PurchaseOrder:
    with unit_of_work(db):
        transition(db, PurchaseOrder, order_id, ORDER_FLOW, POStatus.sent, actor=actor)
    return load(db, PurchaseOrder, order_id, refresh=True)


def confirm_order(db: Session, order_id: int, *, actor: str | None = None) -> PurchaseOrder:
    with unit_of_work(db):
        transition(
            db,
            PurchaseOrder,
            order_id,
            ORDER_FLOW,
            POStatus.confirmed,
            actor=actor,
            values={"confirmed_at": utcnow()},
        )
    return load(db, PurchaseOrder, order_id, refresh=True)


def cancel_order(db: Session, order_id: int, *, actor: str | None = None) -> PurchaseOrder:
    with unit_of_work(db):
        transition(db, PurchaseOrder, order_id, ORDER_FLOW, POStatus.cancelled, actor=actor)
    return load(db, PurchaseOrder, order_id, refresh=True)


def _lock_editable_order(db: Session, order_id: int) -> PurchaseOrder:
    po = (
        db.execute(select(PurchaseOrder).where(PurchaseOrder.id == order_id).with_for_update())
        .scalar_one_or_none()
    )
    if po is None:
        raise NotFound("PurchaseOrder", order_id)
    if po.status not in EDITABLE_PO_STATUSES:
        raise PreconditionFailed(
            f"PurchaseOrder {order_id} is {po.status.value}, items can only change while draft or sent",
            order_id=order_id,
            status=po.status.value,
        )
    return po


def _get_item(db: Session, order_id: int, item_id: int) -> PurchaseOrderItem:
    item = db.get(PurchaseOrderItem, item_id)
    if item is None or item.order_id != order_id:
        raise NotFound("PurchaseOrderItem", item_id)
    return item


def add_item(
    db: Session,
    order_id: int,
    *,
    product_id: int,
    quantity,
    unit_price=0,
    actor: str | None = None,
) -> PurchaseOrder:
    qty = as_quantity(quantity)
    price = _as_price(unit_price)
    with unit_of_work(db):
        _lock_editable_order(db, order_id)
        require(db, Product, product_id)
        item = PurchaseOrderItem(order_id=order_id, product_id=product_id, quantity=qty, unit_price=price)
        db.add(item)
        db.flush()
        recompute_order_total(db, order_id)
        record_audit(
            db,
            action="item:add",
            entity_type="PurchaseOrder",
            entity_id=order_id,
            actor=actor,
            meta={"item_id": item.id, "product_id": product_id, "quantity": qty, "unit_price": price},
        )
    return load(db, PurchaseOrder, order_id, refresh=True)


def update_item(
    db: Session,
    order_id: int,
    item_id: int,
    *,
    quantity=None,
    unit_price=None,
    actor: str | None = None,
) -> PurchaseOrder:
    if quantity is None and unit_price is None:
        raise ValidationError("Nothing to update (quantity or unit_price expected)")
    values: dict[str, Any] = {}
    if quantity is not None:
        values["quantity"] = as_quantity(quantity)
    if unit_price is not None:
        values["unit_price"] = _as_price(unit_price)

    with unit_of_work(db):
        _lock_editable_order(db, order_id)
        item = _get_item(db, order_id, item_id)
        if "quantity" in values and values["quantity"] < Decimal(item.received_quantity):
            raise ValidationError(
                "quantity cannot be lower than the already received quantity",
                item_id=item_id,
                received_quantity=str(item.received_quantity),
            )
        db.execute(
            update(PurchaseOrderItem)
            .where(PurchaseOrderItem.id == item_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        recompute_order_total(db, order_id)
        record_audit(
            db,
            action="item:update",
            entity_type="PurchaseOrder",
            entity_id=order_id,
            actor=actor,
            meta={"item_id": item_id, **values},
        )
    return load(db, PurchaseOrder, order_id, refresh=True)


def remove_item(db: Session, order_id: int, item_id: int, *, actor: str | None = None) -> PurchaseOrder:
    with unit_of_work(db):
        _lock_editable_order(db, order_id)
        _get_item(db, order_id, item_id)
        db.execute(
            delete(PurchaseOrderItem)
            .where(PurchaseOrderItem.id == item_id)
            .execution_options(synchronize_session=False)
        )
        recompute_order_total(db, order_id)
        record_audit(
            db,
            action="item:remove",
            entity_type="PurchaseOrder",
            entity_id=order_id,
            actor=actor,
            meta={"item_id": item_id},
        )
    return load(db, PurchaseOrder, order_id, refresh=True)


def list_orders(db: Session, *, status: POStatus | None = None, supplier_id: int | None = None):
    stmt = select(PurchaseOrder).order_by(PurchaseOrder.id.desc())
    if status is not None:
        stmt = stmt.where(PurchaseOrder.status == status)
    if supplier_id is not None:
        stmt = stmt.where(PurchaseOrder.supplier_id == supplier_id)
    return list(db.execute(stmt).scalars().all())


def order_items(db: Session, order_id: int) -> list[PurchaseOrderItem]:
    return list(
        db.execute(
            select(PurchaseOrderItem)
            .where(PurchaseOrderItem.order_id == order_id)
            .order_by(PurchaseOrderItem.id)
            .execution_options(populate_existing=True)
        )
        .scalars()
        .all()
    )


# ---------- GOODS RECEIPT ----------
def receive_goods(
    db: Session,
    notifier: Notifier | None,
    order_id: int,
    *,
    received_by: str,
    items: Iterable[Mapping[str, Any]],
    notes: str | None = None,
) -> GoodsReceipt:
    """
    Enregistre une réception (pending_verification).

    L'inventaire n'est PAS touché ici : seul verify() l'applique.
    """
    if not received_by or not str(received_by).strip():
        raise ValidationError("received_by is required", field="received_by")

    with unit_of_work(db):
        po = load(db, PurchaseOrder, order_id)
        if po.status not in RECEIVABLE_PO_STATUSES:
            raise PreconditionFailed(
                f"PurchaseOrder {order_id} is {po.status.value}, goods cannot be received",
                order_id=order_id,
                status=po.status.value,
            )
        ordered_products = {it.product_id for it in po.items}

        raw = list(items or [])
        if not raw:
            raise ValidationError("At least one item is required")
        lines = []
        for idx, item in enumerate(raw):
            product_id = as_id(item, "product_id", idx)
            if product_id not in ordered_products:
                raise ValidationError(
                    f"Product {product_id} is not on purchase order {po.po_number}",
                    index=idx,
                    product_id=product_id,
                )
            location_id = as_id(item, "location_id", idx)
            require(db, StorageLocation, location_id)
            lines.append(
                {
                    "product_id": product_id,
                    "location_id": location_id,
                    "quantity": as_quantity(item.get("quantity"), field=f"items[{idx}].quantity"),
                    "expiry_date": item.get("expiry_date"),
                    "batch_number": item.get("batch_number"),
                }
            )

        receipt = allocate_and_insert(
            db,
            GoodsReceipt.gr_number,
            "GR",
            date.today(),
            lambda number: GoodsReceipt(
                gr_number=number,
                order_id=order_id,
                received_by=received_by,
                notes=notes,
                status=ReceiptStatus.pending_verification,
            ),
        )
        for line in lines:
            db.add(GoodsReceiptLine(receipt_id=receipt.id, **line))
        record_audit(
            db,
            action="created",
            entity_type="GoodsReceipt",
            entity_id=receipt.id,
            actor=received_by,
            meta={"order_id": order_id},
        )
        receipt_id = receipt.id

    emit_safely(notifier, NotificationType.goods_receipt_created, receipt_id)
    return load(db, GoodsReceipt, receipt_id, refresh=True)


def _apply_received_quantity(db: Session, order_id: int, product_id: int, quantity: Decimal) -> None:
    """
    received_quantity += quantity sur les items du produit (ordre des ids).

    UPDATE conditionnel : refuse de dépasser la quantité commandée.
    """
    remaining = quantity
    items = (
        db.execute(
            select(PurchaseOrderItem.id, PurchaseOrderItem.quantity, PurchaseOrderItem.received_quantity)
            .where(PurchaseOrderItem.order_id == order_id)
            .where(PurchaseOrderItem.product_id == product_id)
            .order_by(PurchaseOrderItem.id)
        ).all()
    )
    for item_id, ordered, received in items:
        if remaining <= 0:
            break
        open_qty = Decimal(ordered) - Decimal(received)
        take = min(remaining, open_qty)
        if take <= 0:
            continue
        res = db.execute(
            update(PurchaseOrderItem)
            .where(PurchaseOrderItem.id == item_id)
            .where(PurchaseOrderItem.received_quantity + take <= PurchaseOrderItem.quantity)
            .values(received_quantity=PurchaseOrderItem.received_quantity + take)
            .execution_options(synchronize_session=False)
        )
        if res.rowcount != 1:
            break
        remaining -= take

    if remaining > 0:
        raise ValidationError(
            f"Received quantity exceeds ordered quantity for product {product_id}",
            order_id=order_id,
            product_id=product_id,
            excess=str(remaining),
        )


def verify_receipt(
    db: Session,
    notifier: Notifier | None,
    receipt_id: int,
    *,
    verifier: str,
    accepted: bool = True,
) -> dict:
    """
    pending_verification -> verified (ou rejected).

    Accepté : merge inventaire par ligne, received_quantity des items,
    puis commande -> partially_received / received. Tout ou rien.
    Le CAS sur le statut garantit une seule application par réception.
    """
    if not verifier or not str(verifier).strip():
        raise ValidationError("verifier is required", field="verifier")

    target = ReceiptStatus.verified if accepted else ReceiptStatus.rejected
    deltas: list[dict] = []

    with unit_of_work(db):
        transition(
            db,
            GoodsReceipt,
            receipt_id,
            RECEIPT_FLOW,
            target,
            actor=verifier,
            values={"verified_by": verifier, "verified_at": utcnow()},
        )
        receipt = load(db, GoodsReceipt, receipt_id, refresh=True)
        order_id = receipt.order_id

        if accepted:
            touched_locations = set()
            for line in receipt.lines:
                new_qty = merge_inventory(
                    db,
                    product_id=line.product_id,
                    location_id=line.location_id,
                    quantity=line.quantity,
                    expiry_date=line.expiry_date,
                    batch_number=line.batch_number,
                    unit_price=_unit_price_on_order(db, order_id, line.product_id),
                )
                deltas.append(
                    {"product_id": line.product_id, "location_id": line.location_id, "new_quantity": new_qty}
                )
                touched_locations.add(line.location_id)
                _apply_received_quantity(db, order_id, line.product_id, Decimal(line.quantity))

            open_items = db.execute(
                select(func.count(PurchaseOrderItem.id))
                .where(PurchaseOrderItem.order_id == order_id)
                .where(PurchaseOrderItem.received_quantity < PurchaseOrderItem.quantity)
            ).scalar_one()
            order_target = POStatus.received if open_items == 0 else POStatus.partially_received
            current = db.execute(select(PurchaseOrder.status).where(PurchaseOrder.id == order_id)).scalar_one()
            if current != order_target:
                transition(db, PurchaseOrder, order_id, ORDER_FLOW, order_target, actor=verifier)

            rebuild_location_usage(db, touched_locations)
        gr_number, received_by = receipt.gr_number, receipt.received_by

    if accepted:
        emit_safely(notifier, NotificationType.goods_received, receipt_id, received_by)
        logger.info("goods receipt %s verified, %s inventory line(s) merged", gr_number, len(deltas))
    else:
        logger.info("goods receipt %s rejected by %s", gr_number, verifier)

    receipt = load(db, GoodsReceipt, receipt_id, refresh=True)
    order = load(db, PurchaseOrder, order_id, refresh=True)
    return {"receipt": receipt, "order": order, "inventory_deltas": deltas}


def _unit_price_on_order(db: Session, order_id: int, product_id: int):
    return db.execute(
        select(PurchaseOrderItem.unit_price)
        .where(PurchaseOrderItem.order_id == order_id)
        .where(PurchaseOrderItem.product_id == product_id)
        .order_by(PurchaseOrderItem.id)
        .limit(1)
    ).scalar_one_or_none()


def confirm_receipt(db: Session, receipt_id: int, *, actor: str | None = None) -> GoodsReceipt:
    with unit_of_work(db):
        transition(
            db,
            GoodsReceipt,
            receipt_id,
            RECEIPT_FLOW,
            ReceiptStatus.confirmed,
            actor=actor,
            values={"confirmed_at": utcnow()},
        )
    return load(db, GoodsReceipt, receipt_id, refresh=True)


def list_receipts(db: Session, order_id: int) -> list[GoodsReceipt]:
    return list(
        db.execute(select(GoodsReceipt).where(GoodsReceipt.order_id == order_id).order_by(GoodsReceipt.id))
        .scalars()
        .all()
    )
