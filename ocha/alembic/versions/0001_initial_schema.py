"""initial schema : données de référence, achats, stock, transformation, transport

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""
from __future__ import annotations

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "0001_initial_schema"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

PK = sa.BigInteger().with_variant(sa.Integer(), "sqlite")
QTY = sa.Numeric(14, 3)
MONEY = sa.Numeric(14, 2)
TS = sa.DateTime(timezone=True)

ENUMS = {
    "product_type": ("raw_material", "finished_product", "service"),
    "supplier_rank": ("A", "B", "C"),
    "location_type": ("refrigerator", "freezer", "dry_storage", "counter"),
    "request_priority": ("low", "normal", "high", "urgent"),
    "request_status": ("pending", "approved", "rejected", "cancelled"),
    "po_status": ("draft", "sent", "confirmed", "partially_received", "received", "cancelled"),
    "receipt_status": ("pending_verification", "verified", "rejected", "confirmed"),
    "process_type": ("preparation", "cooking", "packaging", "quality_control"),
    "processing_status": ("planned", "in_progress", "completed", "cancelled"),
    "transport_status": ("scheduled", "in_transit", "delivered", "cancelled"),
    "notification_type": (
        "purchase_request_created",
        "purchase_request_approved",
        "purchase_request_rejected",
        "purchase_order_created",
        "goods_receipt_created",
        "goods_received",
        "inventory_low",
        "processing_completed",
        "transportation_scheduled",
    ),
}


def _enum(name: str) -> sa.Enum:
    return sa.Enum(*ENUMS[name], name=name)


def _fk(target: str, ondelete: str) -> sa.ForeignKey:
    return sa.ForeignKey(target, ondelete=ondelete)


def upgrade() -> None:
    # ---------- master data ----------
    op.create_table(
        "categories",
        sa.Column("id", PK, primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("parent_id", PK, _fk("categories.id", "SET NULL")),
        sa.Column("created_at", TS, nullable=False),
    )
    op.create_table(
        "products",
        sa.Column("id", PK, primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("code", sa.String(64)),
        sa.Column("description", sa.Text()),
        sa.Column("category_id", PK, _fk("categories.id", "SET NULL")),
        sa.Column("list_price", MONEY, nullable=False),
        sa.Column("cost_price", MONEY, nullable=False),
        sa.Column("type", _enum("product_type"), nullable=False),
        sa.Column("unit_of_measure", sa.String(32), nullable=False),
        sa.Column("minimum_stock", QTY, nullable=False),
        sa.Column("active", sa.Boolean(), nullable=False),
        sa.Column("external_id", sa.String(64), unique=True),
        sa.Column("created_at", TS, nullable=False),
        sa.Column("updated_at", TS, nullable=False),
    )
    op.create_index("ix_products_code", "products", ["code"])
    op.create_table(
        "suppliers",
        sa.Column("id", PK, primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("email", sa.String(255)),
        sa.Column("phone", sa.String(64)),
        sa.Column("address", sa.Text()),
        sa.Column("city", sa.String(128)),
        sa.Column("country", sa.String(64)),
        sa.Column("rank", _enum("supplier_rank"), nullable=False),
        sa.Column("payment_terms", sa.String(128)),
        sa.Column("active", sa.Boolean(), nullable=False),
        sa.Column("external_id", sa.String(64), unique=True),
        sa.Column("created_at", TS, nullable=False),
    )
    op.create_table(
        "storage_locations",
        sa.Column("id", PK, primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("code", sa.String(32), unique=True),
        sa.Column("temperature", sa.Numeric(5, 2)),
        sa.Column("capacity", QTY, nullable=False),
        sa.Column("current_usage", QTY, nullable=False),
        sa.Column("type", _enum("location_type"), nullable=False),
        sa.Column("notes", sa.Text()),
        sa.Column("active", sa.Boolean(), nullable=False),
        sa.Column("created_at", TS, nullable=False),
    )

    # ---------- procurement ----------
    op.create_table(
        "purchase_requests",
        sa.Column("id", PK, primary_key=True),
        sa.Column("pr_number", sa.String(64), nullable=False, unique=True),
        sa.Column("requester", sa.String(128), nullable=False),
        sa.Column("supplier_id", PK, _fk("suppliers.id", "SET NULL")),
        sa.Column("priority", _enum("request_priority"), nullable=False),
        sa.Column("expected_date", sa.Date()),
        sa.Column("notes", sa.Text()),
        sa.Column("status", _enum("request_status"), nullable=False),
        sa.Column("approved_by", sa.String(128)),
        sa.Column("approved_at", TS),
        sa.Column("rejection_reason", sa.Text()),
        sa.Column("rejected_at", TS),
        sa.Column("created_at", TS, nullable=False),
    )
    op.create_table(
        "purchase_request_lines",
        sa.Column("id", PK, primary_key=True),
        sa.Column("request_id", PK, _fk("purchase_requests.id", "CASCADE"), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("product_id", PK, _fk("products.id", "RESTRICT"), nullable=False),
        sa.Column("quantity", QTY, nullable=False),
        sa.Column("unit_price", MONEY),
        sa.CheckConstraint("quantity > 0", name="ck_pr_line_qty_pos"),
    )
    op.create_index("ix_purchase_request_lines_request_id", "purchase_request_lines", ["request_id"])
    op.create_table(
        "purchase_orders",
        sa.Column("id", PK, primary_key=True),
        sa.Column("po_number", sa.String(64), nullable=False, unique=True),
        sa.Column("request_id", PK, _fk("purchase_requests.id", "SET NULL"), unique=True),
        sa.Column("supplier_id", PK, _fk("suppliers.id", "RESTRICT"), nullable=False),
        sa.Column("order_date", TS, nullable=False),
        sa.Column("expected_date", sa.Date()),
        sa.Column("status", _enum("po_status"), nullable=False),
        sa.Column("total_amount", MONEY, nullable=False),
        sa.Column("notes", sa.Text()),
        sa.Column("created_by", sa.String(128)),
        sa.Column("confirmed_at", TS),
        sa.Column("created_at", TS, nullable=False),
    )
    op.create_table(
        "purchase_order_items",
        sa.Column("id", PK, primary_key=True),
        sa.Column("order_id", PK, _fk("purchase_orders.id", "CASCADE"), nullable=False),
        sa.Column("product_id", PK, _fk("products.id", "RESTRICT"), nullable=False),
        sa.Column("quantity", QTY, nullable=False),
        sa.Column("unit_price", MONEY, nullable=False),
        sa.Column("received_quantity", QTY, nullable=False),
        sa.CheckConstraint("quantity > 0", name="ck_po_item_qty_pos"),
        sa.CheckConstraint("unit_price >= 0", name="ck_po_item_unit_price_nonneg"),
        sa.CheckConstraint("received_quantity >= 0", name="ck_po_item_received_nonneg"),
        sa.CheckConstraint("received_quantity <= quantity", name="ck_po_item_received_le_qty"),
    )
    op.create_index("ix_purchase_order_items_order_id", "purchase_order_items", ["order_id"])
    op.create_table(
        "goods_receipts",
        sa.Column("id", PK, primary_key=True),
        sa.Column("gr_number", sa.String(64), nullable=False, unique=True),
        sa.Column("order_id", PK, _fk("purchase_orders.id", "RESTRICT"), nullable=False),
        sa.Column("received_by", sa.String(128), nullable=False),
        sa.Column("verified_by", sa.String(128)),
        sa.Column("notes", sa.Text()),
        sa.Column("status", _enum("receipt_status"), nullable=False),
        sa.Column("received_at", TS, nullable=False),
        sa.Column("verified_at", TS),
        sa.Column("confirmed_at", TS),
        sa.Column("created_at", TS, nullable=False),
    )
    op.create_index("ix_goods_receipts_order_id", "goods_receipts", ["order_id"])
    op.create_table(
        "goods_receipt_lines",
        sa.Column("id", PK, primary_key=True),
        sa.Column("receipt_id", PK, _fk("goods_receipts.id", "CASCADE"), nullable=False),
        sa.Column("product_id", PK, _fk("products.id", "RESTRICT"), nullable=False),
        sa.Column("location_id", PK, _fk("storage_locations.id", "RESTRICT"), nullable=False),
        sa.Column("quantity", QTY, nullable=False),
        sa.Column("expiry_date", sa.Date()),
        sa.Column("batch_number", sa.String(100)),
        sa.CheckConstraint("quantity > 0", name="ck_gr_line_qty_pos"),
    )
    op.create_index("ix_goods_receipt_lines_receipt_id", "goods_receipt_lines", ["receipt_id"])

    # ---------- inventory ----------
    op.create_table(
        "inventory_items",
        sa.Column("id", PK, primary_key=True),
        sa.Column("product_id", PK, _fk("products.id", "RESTRICT"), nullable=False),
        sa.Column("location_id", PK, _fk("storage_locations.id", "RESTRICT"), nullable=False),
        sa.Column("quantity", QTY, nullable=False),
        sa.Column("unit_price", MONEY, nullable=False),
        sa.Column("expiry_date", sa.Date()),
        sa.Column("batch_number", sa.String(100)),
        sa.Column("notes", sa.Text()),
        sa.Column("created_at", TS, nullable=False),
        sa.Column("updated_at", TS, nullable=False),
        sa.UniqueConstraint("product_id", "location_id", name="uq_inventory_product_location"),
        sa.CheckConstraint("quantity >= 0", name="ck_inventory_qty_nonneg"),
    )
    op.create_table(
        "processing_records",
        sa.Column("id", PK, primary_key=True),
        sa.Column("batch_number", sa.String(64), nullable=False, unique=True),
        sa.Column("product_id", PK, _fk("products.id", "RESTRICT"), nullable=False),
        sa.Column("input_quantity", QTY, nullable=False),
        sa.Column("input_location_id", PK, _fk("storage_locations.id", "RESTRICT"), nullable=False),
        sa.Column("process_type", _enum("process_type"), nullable=False),
        sa.Column("output_product_id", PK, _fk("products.id", "RESTRICT"), nullable=False),
        sa.Column("output_quantity", QTY),
        sa.Column("output_location_id", PK, _fk("storage_locations.id", "RESTRICT"), nullable=False),
        sa.Column("processed_by", sa.String(128)),
        sa.Column("notes", sa.Text()),
        sa.Column("status", _enum("processing_status"), nullable=False),
        sa.Column("started_at", TS),
        sa.Column("completed_at", TS),
        sa.Column("created_at", TS, nullable=False),
        sa.CheckConstraint("input_quantity > 0", name="ck_processing_input_qty_pos"),
        sa.CheckConstraint(
            "status != 'completed' OR output_quantity IS NOT NULL",
            name="ck_processing_completed_has_output",
        ),
    )
    op.create_table(
        "transportation_orders",
        sa.Column("id", PK, primary_key=True),
        sa.Column("transport_number", sa.String(64), nullable=False, unique=True),
        sa.Column("from_location_id", PK, _fk("storage_locations.id", "RESTRICT"), nullable=False),
        sa.Column("to_location_id", PK, _fk("storage_locations.id", "RESTRICT"), nullable=False),
        sa.Column("driver", sa.String(128)),
        sa.Column("vehicle", sa.String(100)),
        sa.Column("expected_departure", TS),
        sa.Column("expected_arrival", TS),
        sa.Column("actual_departure", TS),
        sa.Column("actual_arrival", TS),
        sa.Column("status", _enum("transport_status"), nullable=False),
        sa.Column("notes", sa.Text()),
        sa.Column("created_by", sa.String(128)),
        sa.Column("created_at", TS, nullable=False),
        sa.CheckConstraint("from_location_id <> to_location_id", name="ck_transport_from_ne_to"),
        sa.CheckConstraint(
            "status != 'delivered' OR actual_arrival IS NOT NULL",
            name="ck_transport_delivered_has_arrival",
        ),
    )
    op.create_table(
        "transportation_lines",
        sa.Column("id", PK, primary_key=True),
        sa.Column("order_id", PK, _fk("transportation_orders.id", "CASCADE"), nullable=False),
        sa.Column("product_id", PK, _fk("products.id", "RESTRICT"), nullable=False),
        sa.Column("quantity", QTY, nullable=False),
        sa.CheckConstraint("quantity > 0", name="ck_transport_line_qty_pos"),
    )
    op.create_index("ix_transportation_lines_order_id", "transportation_lines", ["order_id"])

    # ---------- notifications / audit ----------
    op.create_table(
        "notifications",
        sa.Column("id", PK, primary_key=True),
        sa.Column("type", _enum("notification_type"), nullable=False),
        sa.Column("reference_id", PK),
        sa.Column("recipient", sa.String(128)),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("read", sa.Boolean(), nullable=False),
        sa.Column("created_at", TS, nullable=False),
    )
    op.create_index("ix_notifications_recipient", "notifications", ["recipient"])
    op.create_table(
        "audit_log",
        sa.Column("id", PK, primary_key=True),
        sa.Column("actor", sa.String(128)),
        sa.Column("action", sa.String(64), nullable=False),
        sa.Column("entity_type", sa.String(64), nullable=False),
        sa.Column("entity_id", sa.String(64), nullable=False),
        sa.Column("meta", sa.Text()),
        sa.Column("created_at", TS, nullable=False),
    )
    op.create_index("ix_audit_entity", "audit_log", ["entity_type", "entity_id"])


def downgrade() -> None:
    for table in (
        "audit_log",
        "notifications",
        "transportation_lines",
        "transportation_orders",
        "processing_records",
        "inventory_items",
        "goods_receipt_lines",
        "goods_receipts",
        "purchase_order_items",
        "purchase_orders",
        "purchase_request_lines",
        "purchase_requests",
        "storage_locations",
        "suppliers",
        "products",
        "categories",
    ):
        op.drop_table(table)

    # types ENUM Postgres (no-op ailleurs)
    bind = op.get_bind()
    for name in ENUMS:
        _enum(name).drop(bind, checkfirst=True)
