import threading
from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import select

from ocha.app.db.models.models_v1 import (
    AuditLog,
    GoodsReceipt,
    InventoryItem,
    PurchaseOrder,
    PurchaseOrderItem,
    PurchaseRequest,
)
from ocha.app.db.models.core_types import NotificationType, POStatus, ReceiptStatus, RequestStatus
from ocha.services import procurement
from ocha.services.errors import InvalidStateTransition, NotFound, PreconditionFailed, ValidationError
from ocha.services.inventory import current_quantity
from ocha.services.workflow import load


def _approved_request(db, notifier, kitchen, items=None):
    items = items or [
        {"product_id": kitchen["salmon"], "quantity": 5, "unit_price": 10},
        {"product_id": kitchen["sushi"], "quantity": 3, "unit_price": 20},
    ]
    pr = procurement.submit_request(db, notifier, requester="chef.kai", items=items, supplier_id=kitchen["supplier"])
    return procurement.approve_request(db, notifier, pr.id, approver="manager.lea")


def _sent_order(db, notifier, kitchen, quantity=10):
    po = procurement.create_order(
        db,
        notifier,
        supplier_id=kitchen["supplier"],
        lines=[{"product_id": kitchen["salmon"], "quantity": quantity, "unit_price": "12.50"}],
    )
    return procurement.send_order(db, po.id)


def test_order_from_request_total_is_sum_of_lines(db_session, notifier, kitchen):
    """
    GIVEN
    - une demande de 2 lignes (5 @ 10, 3 @ 20), approuvée

    THEN
    - la commande créée depuis la demande a total_amount == 110
    - la demande approuvée notifie le demandeur
    """
    # ---------- ARRANGE ----------
    pr = _approved_request(db_session, notifier, kitchen)
    assert pr.status == RequestStatus.approved
    assert pr.approved_by == "manager.lea"

    # ---------- ACT ----------
    po = procurement.create_order_from_request(db_session, notifier, pr.id, created_by="manager.lea")

    # ---------- ASSERT ----------
    assert po.status == POStatus.draft
    assert po.request_id == pr.id
    assert po.po_number.startswith(f"PO-{date.today():%Y%m%d}-")
    assert Decimal(po.total_amount) == Decimal("110")
    assert len(po.items) == 2

    assert notifier.of(NotificationType.purchase_request_approved) == [
        (NotificationType.purchase_request_approved, pr.id, "chef.kai")
    ]
    assert NotificationType.purchase_order_created in notifier.types()


def test_request_numbers_are_sequential_per_day(db_session, notifier, kitchen):
    items = [{"product_id": kitchen["salmon"], "quantity": 1}]
    first = procurement.submit_request(db_session, notifier, requester="chef.kai", items=items)
    second = procurement.submit_request(db_session, notifier, requester="chef.kai", items=items)

    stem = f"PR-{date.today():%Y%m%d}-"
    assert first.pr_number == f"{stem}001"
    assert second.pr_number == f"{stem}002"


@pytest.mark.parametrize(
    "items",
    [
        [],
        [{"product_id": 1, "quantity": 0}],
        [{"product_id": 1, "quantity": -2}],
        [{"product_id": 1, "quantity": "abc"}],
    ],
)
def test_submit_rejects_invalid_lines(db_session, notifier, kitchen, items):
    with pytest.raises(ValidationError):
        procurement.submit_request(db_session, notifier, requester="chef.kai", items=items)
    assert notifier.events == []


def test_submit_unknown_product_is_not_found(db_session, notifier, kitchen):
    with pytest.raises(NotFound):
        procurement.submit_request(
            db_session, notifier, requester="chef.kai", items=[{"product_id": 999, "quantity": 1}]
        )


def test_approval_is_gated_on_pending(db_session, notifier, kitchen):
    """
    GIVEN
    - une demande rejetée

    THEN
    - approve() lève InvalidStateTransition, le statut reste rejected
    - reject() sans motif est refusé
    """
    pr = procurement.submit_request(
        db_session, notifier, requester="chef.kai", items=[{"product_id": kitchen["salmon"], "quantity": 2}]
    )
    with pytest.raises(ValidationError):
        procurement.reject_request(db_session, notifier, pr.id, reason="  ")

    rejected = procurement.reject_request(db_session, notifier, pr.id, reason="budget", rejected_by="manager.lea")
    assert rejected.status == RequestStatus.rejected
    assert rejected.rejection_reason == "budget"

    with pytest.raises(InvalidStateTransition) as exc:
        procurement.approve_request(db_session, notifier, pr.id, approver="manager.lea")
    assert exc.value.details["current_status"] == "rejected"
    assert load(db_session, PurchaseRequest, pr.id, refresh=True).status == RequestStatus.rejected


def test_second_approval_loses(db_session, notifier, kitchen):
    pr = _approved_request(db_session, notifier, kitchen)
    with pytest.raises(InvalidStateTransition):
        procurement.approve_request(db_session, notifier, pr.id, approver="someone.else")
    assert len(notifier.of(NotificationType.purchase_request_approved)) == 1


def test_transition_writes_audit_rows(db_session, notifier, kitchen):
    pr = _approved_request(db_session, notifier, kitchen)
    actions = db_session.execute(
        select(AuditLog.action)
        .where(AuditLog.entity_type == "PurchaseRequest", AuditLog.entity_id == str(pr.id))
        .order_by(AuditLog.id)
    ).scalars().all()
    assert actions == ["created", "status:approved"]


def test_order_requires_approved_request_and_only_one_order(db_session, notifier, kitchen):
    pending = procurement.submit_request(
        db_session,
        notifier,
        requester="chef.kai",
        items=[{"product_id": kitchen["salmon"], "quantity": 2}],
        supplier_id=kitchen["supplier"],
    )
    with pytest.raises(PreconditionFailed):
        procurement.create_order_from_request(db_session, notifier, pending.id)

    approved = _approved_request(db_session, notifier, kitchen)
    procurement.create_order_from_request(db_session, notifier, approved.id)
    with pytest.raises(PreconditionFailed):
        procurement.create_order_from_request(db_session, notifier, approved.id)

    count = db_session.execute(
        select(PurchaseOrder.id).where(PurchaseOrder.request_id == approved.id)
    ).scalars().all()
    assert len(count) == 1


def test_order_line_without_price_uses_cost_price(db_session, notifier, kitchen):
    pr = _approved_request(db_session, notifier, kitchen, items=[{"product_id": kitchen["salmon"], "quantity": 2}])
    po = procurement.create_order_from_request(db_session, notifier, pr.id)
    assert Decimal(po.items[0].unit_price) == Decimal("12.50")
    assert Decimal(po.total_amount) == Decimal("25.00")


def test_total_follows_item_mutations(db_session, notifier, kitchen):
    """
    GIVEN
    - une commande draft de 10 saumons @ 12.50

    THEN
    - après add / update / remove, total_amount == SUM(quantity * unit_price)
    """
    # ---------- ARRANGE ----------
    po = procurement.create_order(
        db_session,
        notifier,
        supplier_id=kitchen["supplier"],
        lines=[{"product_id": kitchen["salmon"], "quantity": 10, "unit_price": "12.50"}],
    )
    assert Decimal(po.total_amount) == Decimal("125.00")

    # ---------- ACT / ASSERT ----------
    po = procurement.add_item(db_session, po.id, product_id=kitchen["sushi"], quantity=4, unit_price=2)
    assert Decimal(po.total_amount) == Decimal("133.00")

    sushi_item = next(i for i in po.items if i.product_id == kitchen["sushi"])
    po = procurement.update_item(db_session, po.id, sushi_item.id, quantity=6)
    assert Decimal(po.total_amount) == Decimal("137.00")

    po = procurement.remove_item(db_session, po.id, sushi_item.id)
    assert Decimal(po.total_amount) == Decimal("125.00")
    assert [i.product_id for i in po.items] == [kitchen["salmon"]]


def test_items_frozen_after_confirmation(db_session, notifier, kitchen):
    po = _sent_order(db_session, notifier, kitchen)
    po = procurement.confirm_order(db_session, po.id)
    assert po.confirmed_at is not None

    with pytest.raises(PreconditionFailed):
        procurement.add_item(db_session, po.id, product_id=kitchen["sushi"], quantity=1)


def test_receive_then_verify_merges_inventory_once(db_session, notifier, kitchen):
    """
    GIVEN
    - une commande envoyée de 10 saumons, aucun stock au frigo

    THEN
    - la réception seule ne touche pas l'inventaire
    - verify(accepted) -> stock frigo == 10, commande received
    - un second verify échoue et le stock reste 10 (pas 20)
    """
    # ---------- ARRANGE ----------
    po = _sent_order(db_session, notifier, kitchen)
    receipt = procurement.receive_goods(
        db_session,
        notifier,
        po.id,
        received_by="store.tama",
        items=[{"product_id": kitchen["salmon"], "location_id": kitchen["fridge"], "quantity": 10}],
    )
    assert receipt.status == ReceiptStatus.pending_verification
    assert current_quantity(db_session, kitchen["salmon"], kitchen["fridge"]) == 0

    # ---------- ACT ----------
    result = procurement.verify_receipt(db_session, notifier, receipt.id, verifier="manager.lea")

    # ---------- ASSERT ----------
    assert result["receipt"].status == ReceiptStatus.verified
    assert result["order"].status == POStatus.received
    assert result["inventory_deltas"] == [
        {"product_id": kitchen["salmon"], "location_id": kitchen["fridge"], "new_quantity": Decimal("10")}
    ]
    assert current_quantity(db_session, kitchen["salmon"], kitchen["fridge"]) == 10
    item = db_session.execute(select(PurchaseOrderItem).where(PurchaseOrderItem.order_id == po.id)).scalar_one()
    assert Decimal(item.received_quantity) == Decimal("10")
    assert notifier.of(NotificationType.goods_received) == [
        (NotificationType.goods_received, receipt.id, "store.tama")
    ]

    with pytest.raises(InvalidStateTransition):
        procurement.verify_receipt(db_session, notifier, receipt.id, verifier="manager.lea")
    assert current_quantity(db_session, kitchen["salmon"], kitchen["fridge"]) == 10

    stored = db_session.execute(select(InventoryItem)).scalar_one()
    assert Decimal(stored.unit_price) == Decimal("12.50")


def test_partial_receipts(db_session, notifier, kitchen):
    po = _sent_order(db_session, notifier, kitchen)

    first = procurement.receive_goods(
        db_session,
        notifier,
        po.id,
        received_by="store.tama",
        items=[{"product_id": kitchen["salmon"], "location_id": kitchen["fridge"], "quantity": 4}],
    )
    result = procurement.verify_receipt(db_session, notifier, first.id, verifier="manager.lea")
    assert result["order"].status == POStatus.partially_received

    second = procurement.receive_goods(
        db_session,
        notifier,
        po.id,
        received_by="store.tama",
        items=[{"product_id": kitchen["salmon"], "location_id": kitchen["freezer"], "quantity": 6}],
    )
    result = procurement.verify_receipt(db_session, notifier, second.id, verifier="manager.lea")
    assert result["order"].status == POStatus.received
    assert current_quantity(db_session, kitchen["salmon"], kitchen["fridge"]) == 4
    assert current_quantity(db_session, kitchen["salmon"], kitchen["freezer"]) == 6


def test_over_receipt_rolls_back_everything(db_session, notifier, kitchen):
    po = _sent_order(db_session, notifier, kitchen, quantity=10)
    receipt = procurement.receive_goods(
        db_session,
        notifier,
        po.id,
        received_by="store.tama",
        items=[{"product_id": kitchen["salmon"], "location_id": kitchen["fridge"], "quantity": 12}],
    )

    with pytest.raises(ValidationError):
        procurement.verify_receipt(db_session, notifier, receipt.id, verifier="manager.lea")

    assert current_quantity(db_session, kitchen["salmon"], kitchen["fridge"]) == 0
    reloaded = load(db_session, GoodsReceipt, receipt.id, refresh=True)
    assert reloaded.status == ReceiptStatus.pending_verification
    assert NotificationType.goods_received not in notifier.types()


def test_rejected_receipt_leaves_inventory_untouched(db_session, notifier, kitchen):
    po = _sent_order(db_session, notifier, kitchen)
    receipt = procurement.receive_goods(
        db_session,
        notifier,
        po.id,
        received_by="store.tama",
        items=[{"product_id": kitchen["salmon"], "location_id": kitchen["fridge"], "quantity": 10}],
    )
    result = procurement.verify_receipt(db_session, notifier, receipt.id, verifier="manager.lea", accepted=False)

    assert result["receipt"].status == ReceiptStatus.rejected
    assert result["order"].status == POStatus.sent
    assert result["inventory_deltas"] == []
    assert current_quantity(db_session, kitchen["salmon"], kitchen["fridge"]) == 0

    with pytest.raises(InvalidStateTransition):
        procurement.confirm_receipt(db_session, receipt.id)


def test_receive_refuses_draft_order_and_foreign_products(db_session, notifier, kitchen):
    po = procurement.create_order(
        db_session,
        notifier,
        supplier_id=kitchen["supplier"],
        lines=[{"product_id": kitchen["salmon"], "quantity": 1}],
    )
    line = {"product_id": kitchen["salmon"], "location_id": kitchen["fridge"], "quantity": 1}
    with pytest.raises(PreconditionFailed):
        procurement.receive_goods(db_session, notifier, po.id, received_by="store.tama", items=[line])

    procurement.send_order(db_session, po.id)
    with pytest.raises(ValidationError):
        procurement.receive_goods(
            db_session,
            notifier,
            po.id,
            received_by="store.tama",
            items=[{**line, "product_id": kitchen["sushi"]}],
        )


@pytest.mark.parametrize(
    "missing, overrides",
    [
        ("product_id", {}),
        ("location_id", {}),
        (None, {"product_id": "salmon"}),
        (None, {"product_id": None}),
        (None, {"location_id": "fridge"}),
        (None, {"location_id": [1]}),
    ],
)
def test_receive_rejects_malformed_lines(db_session, notifier, kitchen, missing, overrides):
    po = _sent_order(db_session, notifier, kitchen)
    item = {"product_id": kitchen["salmon"], "location_id": kitchen["fridge"], "quantity": 1, **overrides}
    item.pop(missing, None)

    with pytest.raises(ValidationError) as exc:
        procurement.receive_goods(db_session, notifier, po.id, received_by="store.tama", items=[item])

    assert exc.value.details["index"] == 0
    assert db_session.execute(select(GoodsReceipt)).scalars().all() == []


def _run_together(*calls):
    """Lance les appels en même temps (une session chacun), retourne "ok" ou le type d'erreur."""
    barrier = threading.Barrier(len(calls))
    outcomes = []

    def worker(call):
        try:
            barrier.wait()
            call()
            outcomes.append("ok")
        except Exception as exc:
            outcomes.append(type(exc).__name__)

    threads = [threading.Thread(target=worker, args=(call,)) for call in calls]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=10)
    return outcomes


def test_concurrent_approve_and_reject_only_one_wins(db_session, session_factory, notifier, kitchen):
    """
    GIVEN
    - une demande pending
    - approve() et reject() lancés en même temps, chacun dans sa session

    THEN
    - exactement un succès, l'autre InvalidStateTransition
    - une seule ligne d'audit de décision
    """
    # ---------- ARRANGE ----------
    pr = procurement.submit_request(
        db_session, notifier, requester="chef.kai", items=[{"product_id": kitchen["salmon"], "quantity": 2}]
    )
    pr_id = pr.id
    db_session.commit()

    def approve():
        db = session_factory()
        try:
            procurement.approve_request(db, notifier, pr_id, approver="manager.lea")
        finally:
            db.close()

    def reject():
        db = session_factory()
        try:
            procurement.reject_request(db, notifier, pr_id, reason="budget", rejected_by="manager.tom")
        finally:
            db.close()

    # ---------- ACT ----------
    outcomes = _run_together(approve, reject)

    # ---------- ASSERT ----------
    assert sorted(outcomes) == ["InvalidStateTransition", "ok"]
    check = session_factory()
    try:
        status = load(check, PurchaseRequest, pr_id).status
        assert status in (RequestStatus.approved, RequestStatus.rejected)
        decisions = check.execute(
            select(AuditLog)
            .where(AuditLog.entity_type == "PurchaseRequest")
            .where(AuditLog.entity_id == str(pr_id))
            .where(AuditLog.action.in_(["status:approved", "status:rejected"]))
        ).scalars().all()
        assert len(decisions) == 1
    finally:
        check.close()


def test_concurrent_verifications_add_up(db_session, session_factory, notifier, kitchen):
    """
    GIVEN
    - une commande de 10 saumons, deux réceptions (4 et 6) vers le frigo
    - les deux verify() lancés en même temps, chacun dans sa session

    THEN
    - les deux réussissent
    - stock frigo == 4 + 6, commande received
    """
    # ---------- ARRANGE ----------
    po = _sent_order(db_session, notifier, kitchen, quantity=10)
    receipts = [
        procurement.receive_goods(
            db_session,
            notifier,
            po.id,
            received_by="store.tama",
            items=[{"product_id": kitchen["salmon"], "location_id": kitchen["fridge"], "quantity": qty}],
        ).id
        for qty in (4, 6)
    ]
    po_id = po.id
    db_session.commit()

    def verify(receipt_id):
        def call():
            db = session_factory()
            try:
                procurement.verify_receipt(db, notifier, receipt_id, verifier="manager.lea")
            finally:
                db.close()

        return call

    # ---------- ACT ----------
    outcomes = _run_together(*(verify(rid) for rid in receipts))

    # ---------- ASSERT ----------
    assert outcomes == ["ok", "ok"]
    check = session_factory()
    try:
        assert current_quantity(check, kitchen["salmon"], kitchen["fridge"]) == 10
        assert load(check, PurchaseOrder, po_id).status == POStatus.received
    finally:
        check.close()
