from __future__ import annotations

from typing import Callable, Literal

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ocha.app.api.deps import get_session_factory
from ocha.app.db.store import RecordStore
from ocha.services.reconcile import reconcile

router = APIRouter(prefix="/reconcile")


@router.post("")
def run_reconcile(
    collection: Literal["products", "categories", "suppliers"],
    key: str | None = None,
    strategy: str | None = None,
    dry_run: bool = False,
    strict: bool = False,
    session_factory: Callable[[], Session] = Depends(get_session_factory),
):
    """
    Supprime les doublons d'une collection de référence.

    `key` accepte plusieurs clés séparées par des virgules (passes successives).
    Les échecs de suppression sont listés dans `failures` ; `strict=true`
    transforme un lot partiel en 207.
    """
    result = reconcile(
        RecordStore(session_factory, collection),
        keys=key,
        strategy=strategy,
        dry_run=dry_run,
    )
    if strict:
        result.raise_for_failures()
    return result.summary()
