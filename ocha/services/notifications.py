"""
Notifications.

Le moteur décide QUAND notifier ; le Notifier se charge de persister.
Émission toujours APRÈS commit, et jamais bloquante :
un échec de notification est loggé puis ignoré (emit_safely).
"""

from __future__ import annotations

import logging
from typing import Callable, Protocol

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from ocha.app.db.models.models_v1 import Notification
from ocha.app.db.models.core_types import NotificationType
from ocha.services.errors import NotFound

logger = logging.getLogger(__name__)


MESSAGES = {
    NotificationType.purchase_request_created: "A new purchase request is awaiting approval",
    NotificationType.purchase_request_approved: "Your purchase request has been approved",
    NotificationType.purchase_request_rejected: "Your purchase request has been rejected",
    NotificationType.purchase_order_created: "A new purchase order has been created",
    NotificationType.goods_receipt_created: "A goods receipt is awaiting verification",
    NotificationType.goods_received: "Goods have been received into inventory",
    NotificationType.inventory_low: "Some products are running low",
    NotificationType.processing_completed: "Processing has been completed",
    NotificationType.transportation_scheduled: "A new transportation has been scheduled",
}


class Notifier(Protocol):
    def emit(self, type: NotificationType, reference_id: int | None, recipient: str | None = None) -> None:
        ...


class StoreNotifier:
    """Persiste une ligne Notification dans SA propre session."""

    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    def emit(self, type: NotificationType, reference_id: int | None, recipient: str | None = None) -> None:
        with self._session_factory() as db:
            db.add(
                Notification(
                    type=type,
                    reference_id=reference_id,
                    recipient=recipient,
                    message=MESSAGES[type],
                    read=False,
                )
            )
            db.commit()


def emit_safely(
    notifier: Notifier | None,
    type: NotificationType,
    reference_id: int | None,
    recipient: str | None = None,
) -> bool:
    if notifier is None:
        return False
    try:
        notifier.emit(type, reference_id, recipient)
        return True
    except Exception:
        logger.exception("notification %s for %s could not be emitted", type.value, reference_id)
        return False


def list_notifications(
    db: Session,
    *,
    recipient: str | None = None,
    unread_only: bool = False,
    limit: int = 100,
) -> list[Notification]:
    stmt = select(Notification).order_by(Notification.id.desc()).limit(limit)
    if recipient is not None:
        stmt = stmt.where(Notification.recipient == recipient)
    if unread_only:
        stmt = stmt.where(Notification.read.is_(False))
    return list(db.execute(stmt).scalars().all())


def mark_read(db: Session, notification_id: int) -> Notification:
    # seule mutation autorisée sur une notification
    res = db.execute(
        update(Notification)
        .where(Notification.id == notification_id)
        .values(read=True)
        .execution_options(synchronize_session=False)
    )
    if res.rowcount == 0:
        db.rollback()
        raise NotFound("Notification", notification_id)
    db.commit()
    return db.get(Notification, notification_id, populate_existing=True)
