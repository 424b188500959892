"""
Numérotation des documents : PREFIX-YYYYMMDD-NNN.

Le suffixe est le prochain libre pour la date (pas un random / timestamp).
La colonne est UNIQUE : en cas de course, l'INSERT perdant lève IntegrityError
et l'appelant réalloue (voir allocate_and_insert).
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Callable, TypeVar

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ocha.services.errors import Conflict

logger = logging.getLogger(__name__)

T = TypeVar("T")

MAX_ALLOCATION_ATTEMPTS = 5


def next_number(db: Session, column, prefix: str, on: date) -> str:
    stem = f"{prefix}-{on:%Y%m%d}-"
    rows = db.execute(select(column).where(column.like(f"{stem}%"))).scalars().all()
    used = []
    for value in rows:
        suffix = value[len(stem):]
        if suffix.isdigit():
            used.append(int(suffix))
    return f"{stem}{(max(used) + 1) if used else 1:03d}"


def allocate_and_insert(
    db: Session,
    column,
    prefix: str,
    on: date,
    build: Callable[[str], T],
    *,
    on_conflict: Callable[[], None] | None = None,
) -> T:
    """
    Alloue un numéro, construit l'objet via `build(number)` et le flush.

    Doit être la PREMIÈRE écriture de la transaction : sur IntegrityError on
    rollback et on recommence (rien d'autre n'a encore été écrit).
    `on_conflict` permet à l'appelant de revérifier une précondition
    (ex. une commande déjà créée pour la demande) avant de réessayer.
    """
    for attempt in range(1, MAX_ALLOCATION_ATTEMPTS + 1):
        number = next_number(db, column, prefix, on)
        obj = build(number)
        db.add(obj)
        try:
            db.flush()
            return obj
        except IntegrityError:
            db.rollback()
            logger.info("number %s already taken (attempt %s), reallocating", number, attempt)
            if on_conflict is not None:
                on_conflict()
    raise Conflict(f"Could not allocate a unique {prefix} number", prefix=prefix)
