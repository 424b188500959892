"""
Analytics (READ ONLY).

Compteurs, sommes et rapports joints, recalculés à chaque appel, jamais stockés.
Passe uniquement par le contrat RecordStore.select.

Un id de référence qui ne se résout plus (produit / fournisseur / location
supprimé) est rendu "Unknown" : le rapport ne doit jamais échouer pour ça.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Callable, Iterable

from sqlalchemy.orm import Session

from ocha.app.db.models.core_types import POStatus
from ocha.app.db.store import RecordStore

UNKNOWN = "Unknown"

# "en attente" côté achats = pas encore confirmé par le fournisseur
PENDING_PO_STATUSES = (POStatus.draft, POStatus.sent)

COUNTED_COLLECTIONS = (
    "suppliers",
    "products",
    "purchase_requests",
    "purchase_orders",
    "goods_receipts",
    "storage_locations",
    "inventory_items",
    "processing_records",
    "transportation_orders",
)


def _lookup(store, ids: Iterable[Any], fields: list[str]) -> dict[Any, dict]:
    wanted = sorted({i for i in ids if i is not None})
    if not wanted:
        return {}
    rows = store.select({"id__in": wanted}, fields=["id", *fields])
    return {row["id"]: row for row in rows}


class AnalyticsProjector:
    def __init__(self, store_for: Callable[[str], Any]):
        self._store_for = store_for

    @classmethod
    def from_session_factory(cls, session_factory: Callable[[], Session]) -> "AnalyticsProjector":
        return cls(lambda collection: RecordStore(session_factory, collection))

    def dashboard(self) -> dict:
        counts = {name: len(self._store_for(name).select(fields=["id"])) for name in COUNTED_COLLECTIONS}

        orders = self._store_for("purchase_orders").select(fields=["id", "status", "total_amount"])
        total_value = sum((Decimal(o["total_amount"] or 0) for o in orders), Decimal(0))
        pending = sum(1 for o in orders if o["status"] in PENDING_PO_STATUSES)

        return {
            "counts": counts,
            "purchase_orders_total_amount": total_value,
            "pending_purchase_orders": pending,
            "low_stock_products": len(self.low_stock()),
        }

    def low_stock(self) -> list[dict]:
        products = self._store_for("products").select(
            {"minimum_stock__gt": 0},
            fields=["id", "name", "code", "minimum_stock"],
        )
        if not products:
            return []
        rows = self._store_for("inventory_items").select(
            {"product_id__in": [p["id"] for p in products]},
            fields=["product_id", "quantity"],
        )
        on_hand: dict[int, Decimal] = {}
        for row in rows:
            on_hand[row["product_id"]] = on_hand.get(row["product_id"], Decimal(0)) + Decimal(row["quantity"])
        return [
            {
                "product_id": p["id"],
                "name": p["name"],
                "code": p["code"],
                "on_hand": on_hand.get(p["id"], Decimal(0)),
                "minimum_stock": Decimal(p["minimum_stock"]),
            }
            for p in products
            if on_hand.get(p["id"], Decimal(0)) < Decimal(p["minimum_stock"])
        ]

    def inventory_report(self) -> list[dict]:
        items = self._store_for("inventory_items").select(
            fields=["id", "product_id", "location_id", "quantity", "unit_price", "expiry_date", "batch_number"]
        )
        products = _lookup(self._store_for("products"), (i["product_id"] for i in items), ["name", "code"])
        locations = _lookup(self._store_for("storage_locations"), (i["location_id"] for i in items), ["name"])

        report = []
        for item in items:
            product = products.get(item["product_id"])
            location = locations.get(item["location_id"])
            report.append(
                {
                    "id": item["id"],
                    "product": {
                        "id": item["product_id"],
                        "name": product["name"] if product else UNKNOWN,
                        "code": (product["code"] or "N/A") if product else "N/A",
                    },
                    "location": {
                        "id": item["location_id"],
                        "name": location["name"] if location else UNKNOWN,
                    },
                    "quantity": item["quantity"],
                    "unit_price": item["unit_price"],
                    "expiry_date": item["expiry_date"],
                    "batch_number": item["batch_number"],
                }
            )
        return report

    def purchase_report(self) -> list[dict]:
        orders = self._store_for("purchase_orders").select(
            fields=[
                "id",
                "po_number",
                "supplier_id",
                "order_date",
                "expected_date",
                "status",
                "total_amount",
                "created_at",
            ]
        )
        suppliers = _lookup(self._store_for("suppliers"), (o["supplier_id"] for o in orders), ["name"])
        return [
            {
                "id": o["id"],
                "po_number": o["po_number"],
                "supplier": {
                    "id": o["supplier_id"],
                    "name": suppliers[o["supplier_id"]]["name"] if o["supplier_id"] in suppliers else UNKNOWN,
                },
                "order_date": o["order_date"],
                "expected_date": o["expected_date"],
                "status": o["status"],
                "total_amount": o["total_amount"],
                "created_at": o["created_at"],
            }
            for o in orders
        ]

    def processing_report(self) -> list[dict]:
        records = self._store_for("processing_records").select(
            fields=[
                "id",
                "batch_number",
                "product_id",
                "input_quantity",
                "process_type",
                "output_product_id",
                "output_quantity",
                "processed_by",
                "status",
                "started_at",
                "completed_at",
            ]
        )
        ids = [r["product_id"] for r in records] + [r["output_product_id"] for r in records]
        products = _lookup(self._store_for("products"), ids, ["name", "code"])

        def product_ref(pid):
            p = products.get(pid)
            return {"id": pid, "name": p["name"] if p else UNKNOWN, "code": (p["code"] or "N/A") if p else "N/A"}

        report = []
        for r in records:
            loss = None
            if r["output_quantity"] is not None:
                loss = Decimal(r["input_quantity"]) - Decimal(r["output_quantity"])
            report.append(
                {
                    "id": r["id"],
                    "batch_number": r["batch_number"],
                    "product": product_ref(r["product_id"]),
                    "input_quantity": r["input_quantity"],
                    "output_product": product_ref(r["output_product_id"]),
                    "output_quantity": r["output_quantity"],
                    "yield_loss": loss,
                    "process_type": r["process_type"],
                    "processed_by": r["processed_by"],
                    "status": r["status"],
                    "started_at": r["started_at"],
                    "completed_at": r["completed_at"],
                }
            )
        return report


REPORTS = {
    "inventory": AnalyticsProjector.inventory_report,
    "purchases": AnalyticsProjector.purchase_report,
    "processing": AnalyticsProjector.processing_report,
}
