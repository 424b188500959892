"""
Workflow engine (générique).

Une table de transitions déclarative par entité, et UNE fonction de
transition pour toutes :

    transition(db, PurchaseRequest, 12, REQUEST_FLOW, RequestStatus.approved, ...)

Verrouillage : compare-and-swap sur la colonne status
    UPDATE ... SET status = :target WHERE id = :id AND status = :seen
0 ligne modifiée => un autre écrivain est passé avant => InvalidStateTransition.

Chaque transition écrit une ligne AuditLog (même transaction) et un
événement structuré sur le logger "ocha.audit".
"""

from __future__ import annotations

import enum
import json
import logging
from dataclasses import dataclass
from typing import Any, Mapping

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from ocha.app.db.models.models_v1 import AuditLog
from ocha.app.db.models.core_types import (
    RequestStatus,
    POStatus,
    ReceiptStatus,
    ProcessingStatus,
    TransportStatus,
)
from ocha.services.errors import InvalidStateTransition, NotFound

audit_logger = logging.getLogger("ocha.audit")


@dataclass(frozen=True)
class StateMachine:
    name: str
    transitions: Mapping[enum.Enum, frozenset]

    def can(self, current: enum.Enum, target: enum.Enum) -> bool:
        return target in self.transitions.get(current, frozenset())

    def is_terminal(self, status: enum.Enum) -> bool:
        return not self.transitions.get(status)


REQUEST_FLOW = StateMachine(
    "PurchaseRequest",
    {
        RequestStatus.pending: frozenset({RequestStatus.approved, RequestStatus.rejected, RequestStatus.cancelled}),
        RequestStatus.approved: frozenset(),
        RequestStatus.rejected: frozenset(),
        RequestStatus.cancelled: frozenset(),
    },
)

ORDER_FLOW = StateMachine(
    "PurchaseOrder",
    {
        POStatus.draft: frozenset({POStatus.sent, POStatus.confirmed, POStatus.cancelled}),
        POStatus.sent: frozenset(
            {POStatus.confirmed, POStatus.partially_received, POStatus.received, POStatus.cancelled}
        ),
        POStatus.confirmed: frozenset({POStatus.partially_received, POStatus.received, POStatus.cancelled}),
        POStatus.partially_received: frozenset({POStatus.received}),
        POStatus.received: frozenset(),
        POStatus.cancelled: frozenset(),
    },
)

RECEIPT_FLOW = StateMachine(
    "GoodsReceipt",
    {
        ReceiptStatus.pending_verification: frozenset({ReceiptStatus.verified, ReceiptStatus.rejected}),
        ReceiptStatus.verified: frozenset({ReceiptStatus.confirmed}),
        ReceiptStatus.rejected: frozenset(),
        ReceiptStatus.confirmed: frozenset(),
    },
)

PROCESSING_FLOW = StateMachine(
    "ProcessingRecord",
    {
        ProcessingStatus.planned: frozenset({ProcessingStatus.in_progress, ProcessingStatus.cancelled}),
        ProcessingStatus.in_progress: frozenset({ProcessingStatus.completed, ProcessingStatus.cancelled}),
        ProcessingStatus.completed: frozenset(),
        ProcessingStatus.cancelled: frozenset(),
    },
)

TRANSPORT_FLOW = StateMachine(
    "TransportationOrder",
    {
        TransportStatus.scheduled: frozenset({TransportStatus.in_transit, TransportStatus.cancelled}),
        TransportStatus.in_transit: frozenset({TransportStatus.delivered, TransportStatus.cancelled}),
        TransportStatus.delivered: frozenset(),
        TransportStatus.cancelled: frozenset(),
    },
)


def _jsonable(value: Any) -> Any:
    if isinstance(value, enum.Enum):
        return value.value
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return str(value) if not isinstance(value, (int, float, str, bool, type(None))) else value


def record_audit(
    db: Session,
    *,
    action: str,
    entity_type: str,
    entity_id: Any,
    actor: str | None = None,
    meta: dict | None = None,
) -> None:
    payload = {k: _jsonable(v) for k, v in (meta or {}).items()}
    db.add(
        AuditLog(
            actor=actor,
            action=action,
            entity_type=entity_type,
            entity_id=str(entity_id),
            meta=json.dumps(payload, sort_keys=True) if payload else None,
        )
    )
    audit_logger.info(
        "%s %s %s",
        entity_type,
        entity_id,
        action,
        extra={"entity_type": entity_type, "entity_id": str(entity_id), "actor": actor, **payload},
    )


def current_status(db: Session, model, entity_id: int):
    status = db.execute(select(model.status).where(model.id == entity_id)).scalar_one_or_none()
    if status is None:
        raise NotFound(model.__name__, entity_id)
    return status


def transition(
    db: Session,
    model,
    entity_id: int,
    machine: StateMachine,
    target: enum.Enum,
    *,
    actor: str | None = None,
    values: dict[str, Any] | None = None,
    allowed_from: frozenset | set | None = None,
) -> enum.Enum:
    """
    Applique `target` si la table l'autorise depuis le statut courant.

    `allowed_from` restreint encore les statuts sources (ex. confirm() n'accepte
    que draft/sent). Retourne le statut précédent.
    """
    seen = current_status(db, model, entity_id)
    if not machine.can(seen, target) or (allowed_from is not None and seen not in allowed_from):
        raise InvalidStateTransition(machine.name, entity_id, seen.value, target.value)

    res = db.execute(
        update(model)
        .where(model.id == entity_id)
        .where(model.status == seen)
        .values(status=target, **(values or {}))
        .execution_options(synchronize_session=False)
    )
    if res.rowcount != 1:
        # perdu la course : on relit pour un message exact
        now = current_status(db, model, entity_id)
        raise InvalidStateTransition(machine.name, entity_id, now.value, target.value)

    record_audit(
        db,
        action=f"status:{target.value}",
        entity_type=machine.name,
        entity_id=entity_id,
        actor=actor,
        meta={"from": seen, "to": target},
    )
    return seen


def load(db: Session, model, entity_id: int, *, refresh: bool = False):
    obj = db.get(model, entity_id, populate_existing=refresh)
    if obj is None:
        raise NotFound(model.__name__, entity_id)
    return obj
