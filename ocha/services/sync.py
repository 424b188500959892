"""
Sync ERP -> base locale (données de référence), ONE-WAY.

Clé stable : external_id (= id côté ERP). Upsert :
    absent  -> insert
    présent -> update des champs modifiés uniquement
Rejouer la sync ne crée jamais de doublon.

Le client RPC de l'ERP n'est pas ici : on consomme un MasterDataSource.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Iterable, Protocol

from sqlalchemy.exc import SQLAlchemyError

from ocha.app.db.models.core_types import ProductType, SupplierRank
from ocha.app.db.store import RecordStore
from ocha.services.errors import OchaError, PartialFailure, ValidationError

logger = logging.getLogger(__name__)


class MasterDataSource(Protocol):
    def fetch_products(self) -> Iterable[dict]:
        ...

    def fetch_suppliers(self) -> Iterable[dict]:
        ...


@dataclass
class SyncSummary:
    collection: str
    created: list[str] = field(default_factory=list)
    updated: list[str] = field(default_factory=list)
    unchanged: list[str] = field(default_factory=list)
    failures: list[dict] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.created) + len(self.updated) + len(self.unchanged) + len(self.failures)

    def to_dict(self) -> dict:
        return {
            "collection": self.collection,
            "total": self.total,
            "created": len(self.created),
            "updated": len(self.updated),
            "unchanged": len(self.unchanged),
            "failures": list(self.failures),
        }

    def raise_for_failures(self) -> None:
        if self.failures:
            raise PartialFailure(
                f"{len(self.failures)} {self.collection} record(s) failed to sync",
                self.failures,
                created=len(self.created),
                updated=len(self.updated),
            )


def rank_from_erp(value: Any) -> SupplierRank:
    """Rang numérique ERP : 3 -> A, 2 -> B, sinon C."""
    try:
        rank = int(value or 0)
    except (TypeError, ValueError):
        return SupplierRank.C
    if rank >= 3:
        return SupplierRank.A
    if rank == 2:
        return SupplierRank.B
    return SupplierRank.C


def _external_id(item: dict) -> str:
    ext = item.get("id")
    if ext is None or str(ext).strip() == "":
        raise ValidationError("ERP record without id", name=item.get("name"))
    return str(ext)


def _money(value: Any) -> Decimal:
    try:
        return Decimal(str(value)) if value not in (None, False) else Decimal(0)
    except InvalidOperation:
        raise ValidationError(f"invalid amount {value!r}") from None


def _text(value: Any) -> str | None:
    # l'ERP renvoie False pour "vide"
    if value in (None, False):
        return None
    return str(value)


def product_from_erp(item: dict) -> dict:
    name = _text(item.get("name"))
    if not name:
        raise ValidationError("ERP product without name", id=item.get("id"))
    return {
        "external_id": _external_id(item),
        "name": name,
        "code": _text(item.get("default_code")),
        "list_price": _money(item.get("list_price")),
        "cost_price": _money(item.get("standard_price")),
        "type": ProductType.service if item.get("type") == "service" else ProductType.raw_material,
        "active": bool(item.get("active", True)),
    }


def supplier_from_erp(item: dict) -> dict:
    name = _text(item.get("name"))
    if not name:
        raise ValidationError("ERP supplier without name", id=item.get("id"))
    country = item.get("country_id")
    if isinstance(country, (list, tuple)):
        # many2one : [id, "libellé"]
        country = country[1] if len(country) > 1 else None
    return {
        "external_id": _external_id(item),
        "name": name,
        "email": _text(item.get("email")),
        "phone": _text(item.get("phone")),
        "address": _text(item.get("street")),
        "city": _text(item.get("city")),
        "country": _text(country),
        "rank": rank_from_erp(item.get("supplier_rank")),
        "active": bool(item.get("active", True)),
    }


def _same(current: Any, new: Any) -> bool:
    if isinstance(new, Decimal) and current is not None:
        return Decimal(str(current)) == new
    return current == new


def upsert_all(store: RecordStore, items: Iterable[dict], mapper: Callable[[dict], dict]) -> SyncSummary:
    summary = SyncSummary(collection=store.collection)
    for item in items:
        ref = item.get("id")
        try:
            record = mapper(item)
            existing = store.select({"external_id": record["external_id"]}, limit=1)
            if not existing:
                store.insert(record)
                summary.created.append(record["external_id"])
                continue

            current = existing[0]
            changes = {k: v for k, v in record.items() if not _same(current.get(k), v)}
            if changes:
                store.update(current["id"], changes)
                summary.updated.append(record["external_id"])
            else:
                summary.unchanged.append(record["external_id"])
        except (OchaError, SQLAlchemyError, KeyError, TypeError, ValueError) as exc:
            logger.error("sync %s: ERP record %s failed: %s", store.collection, ref, exc)
            summary.failures.append({"id": ref, "error": str(exc)})

    logger.info(
        "sync %s: created=%s updated=%s unchanged=%s failed=%s",
        store.collection,
        len(summary.created),
        len(summary.updated),
        len(summary.unchanged),
        len(summary.failures),
    )
    return summary


def sync_products(store: RecordStore, source: MasterDataSource) -> SyncSummary:
    return upsert_all(store, source.fetch_products(), product_from_erp)


def sync_suppliers(store: RecordStore, source: MasterDataSource) -> SyncSummary:
    return upsert_all(store, source.fetch_suppliers(), supplier_from_erp)
