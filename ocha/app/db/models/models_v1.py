from __future__ import annotations

from datetime import datetime, date, timezone
from decimal import Decimal

from sqlalchemy import (
    String,
    Integer,
    BigInteger,
    DateTime,
    Date,
    Boolean,
    ForeignKey,
    Numeric,
    Text,
    Enum,
    UniqueConstraint,
    Index,
    CheckConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ocha.app.db.base import Base
from ocha.app.db.models.core_types import (
    Priority,
    RequestStatus,
    POStatus,
    ReceiptStatus,
    LocationType,
    ProcessType,
    ProcessingStatus,
    TransportStatus,
    ProductType,
    SupplierRank,
    NotificationType,
)

# SQLite n'auto-incrémente que "INTEGER PRIMARY KEY"
PK = BigInteger().with_variant(Integer, "sqlite")
QTY = Numeric(14, 3)
MONEY = Numeric(14, 2)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------- MASTER DATA ----------
class Category(Base):
    __tablename__ = "categories"
    id: Mapped[int] = mapped_column(PK, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    parent_id: Mapped[int | None] = mapped_column(ForeignKey("categories.id", ondelete="SET NULL"))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)


class Product(Base):
    __tablename__ = "products"
    id: Mapped[int] = mapped_column(PK, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    code: Mapped[str | None] = mapped_column(String(64), index=True)
    description: Mapped[str | None] = mapped_column(Text)
    category_id: Mapped[int | None] = mapped_column(ForeignKey("categories.id", ondelete="SET NULL"))
    list_price: Mapped[Decimal] = mapped_column(MONEY, default=0, nullable=False)
    cost_price: Mapped[Decimal] = mapped_column(MONEY, default=0, nullable=False)
    type: Mapped[ProductType] = mapped_column(
        Enum(ProductType, name="product_type"),
        default=ProductType.raw_material,
        nullable=False,
    )
    unit_of_measure: Mapped[str] = mapped_column(String(32), default="unit", nullable=False)
    minimum_stock: Mapped[Decimal] = mapped_column(QTY, default=0, nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    # clé stable côté ERP (sync one-way)
    external_id: Mapped[str | None] = mapped_column(String(64), unique=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
    )

    category: Mapped[Category | None] = relationship()


class Supplier(Base):
    __tablename__ = "suppliers"
    id: Mapped[int] = mapped_column(PK, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str | None] = mapped_column(String(255))
    phone: Mapped[str | None] = mapped_column(String(64))
    address: Mapped[str | None] = mapped_column(Text)
    city: Mapped[str | None] = mapped_column(String(128))
    country: Mapped[str | None] = mapped_column(String(64))
    rank: Mapped[SupplierRank] = mapped_column(
        Enum(SupplierRank, name="supplier_rank"),
        default=SupplierRank.C,
        nullable=False,
    )
    payment_terms: Mapped[str | None] = mapped_column(String(128))
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    external_id: Mapped[str | None] = mapped_column(String(64), unique=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)


class StorageLocation(Base):
    __tablename__ = "storage_locations"
    id: Mapped[int] = mapped_column(PK, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    code: Mapped[str | None] = mapped_column(String(32), unique=True)
    temperature: Mapped[Decimal | None] = mapped_column(Numeric(5, 2))
    capacity: Mapped[Decimal] = mapped_column(QTY, default=0, nullable=False)
    # dérivé : recalculé depuis inventory_items, jamais saisi
    current_usage: Mapped[Decimal] = mapped_column(QTY, default=0, nullable=False)
    type: Mapped[LocationType] = mapped_column(
        Enum(LocationType, name="location_type"),
        default=LocationType.refrigerator,
        nullable=False,
    )
    notes: Mapped[str | None] = mapped_column(Text)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)


# ---------- PROCUREMENT ----------
class PurchaseRequest(Base):
    __tablename__ = "purchase_requests"
    id: Mapped[int] = mapped_column(PK, primary_key=True)
    pr_number: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    requester: Mapped[str] = mapped_column(String(128), nullable=False)
    supplier_id: Mapped[int | None] = mapped_column(ForeignKey("suppliers.id", ondelete="SET NULL"))
    priority: Mapped[Priority] = mapped_column(
        Enum(Priority, name="request_priority"),
        default=Priority.normal,
        nullable=False,
    )
    expected_date: Mapped[date | None] = mapped_column(Date)
    notes: Mapped[str | None] = mapped_column(Text)
    status: Mapped[RequestStatus] = mapped_column(
        Enum(RequestStatus, name="request_status"),
        default=RequestStatus.pending,
        nullable=False,
    )
    approved_by: Mapped[str | None] = mapped_column(String(128))
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    rejection_reason: Mapped[str | None] = mapped_column(Text)
    rejected_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    lines: Mapped[list["PurchaseRequestLine"]] = relationship(
        back_populates="request",
        cascade="all, delete-orphan",
        order_by="PurchaseRequestLine.position",
    )


class PurchaseRequestLine(Base):
    __tablename__ = "purchase_request_lines"
    id: Mapped[int] = mapped_column(PK, primary_key=True)
    request_id: Mapped[int] = mapped_column(
        ForeignKey("purchase_requests.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    product_id: Mapped[int] = mapped_column(ForeignKey("products.id", ondelete="RESTRICT"), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(QTY, nullable=False)
    unit_price: Mapped[Decimal | None] = mapped_column(MONEY)

    request: Mapped[PurchaseRequest] = relationship(back_populates="lines")

    __table_args__ = (CheckConstraint("quantity > 0", name="ck_pr_line_qty_pos"),)


class PurchaseOrder(Base):
    __tablename__ = "purchase_orders"
    id: Mapped[int] = mapped_column(PK, primary_key=True)
    po_number: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    # une seule commande par demande
    request_id: Mapped[int | None] = mapped_column(
        ForeignKey("purchase_requests.id", ondelete="SET NULL"),
        unique=True,
    )
    supplier_id: Mapped[int] = mapped_column(ForeignKey("suppliers.id", ondelete="RESTRICT"), nullable=False)
    order_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    expected_date: Mapped[date | None] = mapped_column(Date)
    status: Mapped[POStatus] = mapped_column(Enum(POStatus, name="po_status"), default=POStatus.draft, nullable=False)
    # dérivé : SUM(quantity * unit_price) des items, jamais écrit directement
    total_amount: Mapped[Decimal] = mapped_column(MONEY, default=0, nullable=False)
    notes: Mapped[str | None] = mapped_column(Text)
    created_by: Mapped[str | None] = mapped_column(String(128))
    confirmed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    supplier: Mapped[Supplier] = relationship()
    items: Mapped[list["PurchaseOrderItem"]] = relationship(
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="PurchaseOrderItem.id",
    )


class PurchaseOrderItem(Base):
    __tablename__ = "purchase_order_items"
    id: Mapped[int] = mapped_column(PK, primary_key=True)
    order_id: Mapped[int] = mapped_column(
        ForeignKey("purchase_orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    product_id: Mapped[int] = mapped_column(ForeignKey("products.id", ondelete="RESTRICT"), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(QTY, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(MONEY, default=0, nullable=False)
    received_quantity: Mapped[Decimal] = mapped_column(QTY, default=0, nullable=False)

    order: Mapped[PurchaseOrder] = relationship(back_populates="items")
    product: Mapped[Product] = relationship()

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_po_item_qty_pos"),
        CheckConstraint("unit_price >= 0", name="ck_po_item_unit_price_nonneg"),
        CheckConstraint("received_quantity >= 0", name="ck_po_item_received_nonneg"),
        CheckConstraint("received_quantity <= quantity", name="ck_po_item_received_le_qty"),
    )


class GoodsReceipt(Base):
    __tablename__ = "goods_receipts"
    id: Mapped[int] = mapped_column(PK, primary_key=True)
    gr_number: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    order_id: Mapped[int] = mapped_column(
        ForeignKey("purchase_orders.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    received_by: Mapped[str] = mapped_column(String(128), nullable=False)
    verified_by: Mapped[str | None] = mapped_column(String(128))
    notes: Mapped[str | None] = mapped_column(Text)
    status: Mapped[ReceiptStatus] = mapped_column(
        Enum(ReceiptStatus, name="receipt_status"),
        default=ReceiptStatus.pending_verification,
        nullable=False,
    )
    received_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    verified_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    confirmed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    lines: Mapped[list["GoodsReceiptLine"]] = relationship(
        back_populates="receipt",
        cascade="all, delete-orphan",
        order_by="GoodsReceiptLine.id",
    )


class GoodsReceiptLine(Base):
    __tablename__ = "goods_receipt_lines"
    id: Mapped[int] = mapped_column(PK, primary_key=True)
    receipt_id: Mapped[int] = mapped_column(
        ForeignKey("goods_receipts.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    product_id: Mapped[int] = mapped_column(ForeignKey("products.id", ondelete="RESTRICT"), nullable=False)
    location_id: Mapped[int] = mapped_column(ForeignKey("storage_locations.id", ondelete="RESTRICT"), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(QTY, nullable=False)
    expiry_date: Mapped[date | None] = mapped_column(Date)
    batch_number: Mapped[str | None] = mapped_column(String(100))

    receipt: Mapped[GoodsReceipt] = relationship(back_populates="lines")

    __table_args__ = (CheckConstraint("quantity > 0", name="ck_gr_line_qty_pos"),)


# ---------- INVENTORY ----------
class InventoryItem(Base):
    __tablename__ = "inventory_items"
    id: Mapped[int] = mapped_column(PK, primary_key=True)
    product_id: Mapped[int] = mapped_column(ForeignKey("products.id", ondelete="RESTRICT"), nullable=False)
    location_id: Mapped[int] = mapped_column(ForeignKey("storage_locations.id", ondelete="RESTRICT"), nullable=False)

    quantity: Mapped[Decimal] = mapped_column(QTY, default=0, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(MONEY, default=0, nullable=False)
    expiry_date: Mapped[date | None] = mapped_column(Date)
    batch_number: Mapped[str | None] = mapped_column(String(100))
    notes: Mapped[str | None] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint("product_id", "location_id", name="uq_inventory_product_location"),
        CheckConstraint("quantity >= 0", name="ck_inventory_qty_nonneg"),
    )


class ProcessingRecord(Base):
    __tablename__ = "processing_records"
    id: Mapped[int] = mapped_column(PK, primary_key=True)
    batch_number: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)

    product_id: Mapped[int] = mapped_column(ForeignKey("products.id", ondelete="RESTRICT"), nullable=False)
    input_quantity: Mapped[Decimal] = mapped_column(QTY, nullable=False)
    input_location_id: Mapped[int] = mapped_column(
        ForeignKey("storage_locations.id", ondelete="RESTRICT"),
        nullable=False,
    )
    process_type: Mapped[ProcessType] = mapped_column(Enum(ProcessType, name="process_type"), nullable=False)

    output_product_id: Mapped[int] = mapped_column(ForeignKey("products.id", ondelete="RESTRICT"), nullable=False)
    output_quantity: Mapped[Decimal | None] = mapped_column(QTY)
    output_location_id: Mapped[int] = mapped_column(
        ForeignKey("storage_locations.id", ondelete="RESTRICT"),
        nullable=False,
    )

    processed_by: Mapped[str | None] = mapped_column(String(128))
    notes: Mapped[str | None] = mapped_column(Text)
    status: Mapped[ProcessingStatus] = mapped_column(
        Enum(ProcessingStatus, name="processing_status"),
        default=ProcessingStatus.planned,
        nullable=False,
    )
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint("input_quantity > 0", name="ck_processing_input_qty_pos"),
        CheckConstraint(
            "status != 'completed' OR output_quantity IS NOT NULL",
            name="ck_processing_completed_has_output",
        ),
    )


class TransportationOrder(Base):
    __tablename__ = "transportation_orders"
    id: Mapped[int] = mapped_column(PK, primary_key=True)
    transport_number: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    from_location_id: Mapped[int] = mapped_column(
        ForeignKey("storage_locations.id", ondelete="RESTRICT"),
        nullable=False,
    )
    to_location_id: Mapped[int] = mapped_column(
        ForeignKey("storage_locations.id", ondelete="RESTRICT"),
        nullable=False,
    )
    driver: Mapped[str | None] = mapped_column(String(128))
    vehicle: Mapped[str | None] = mapped_column(String(100))
    expected_departure: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    expected_arrival: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    actual_departure: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    actual_arrival: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    status: Mapped[TransportStatus] = mapped_column(
        Enum(TransportStatus, name="transport_status"),
        default=TransportStatus.scheduled,
        nullable=False,
    )
    notes: Mapped[str | None] = mapped_column(Text)
    created_by: Mapped[str | None] = mapped_column(String(128))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    lines: Mapped[list["TransportationLine"]] = relationship(
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="TransportationLine.id",
    )

    __table_args__ = (
        CheckConstraint("from_location_id <> to_location_id", name="ck_transport_from_ne_to"),
        CheckConstraint(
            "status != 'delivered' OR actual_arrival IS NOT NULL",
            name="ck_transport_delivered_has_arrival",
        ),
    )


class TransportationLine(Base):
    __tablename__ = "transportation_lines"
    id: Mapped[int] = mapped_column(PK, primary_key=True)
    order_id: Mapped[int] = mapped_column(
        ForeignKey("transportation_orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    product_id: Mapped[int] = mapped_column(ForeignKey("products.id", ondelete="RESTRICT"), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(QTY, nullable=False)

    order: Mapped[TransportationOrder] = relationship(back_populates="lines")

    __table_args__ = (CheckConstraint("quantity > 0", name="ck_transport_line_qty_pos"),)


# ---------- NOTIFICATIONS ----------
class Notification(Base):
    __tablename__ = "notifications"
    id: Mapped[int] = mapped_column(PK, primary_key=True)
    type: Mapped[NotificationType] = mapped_column(Enum(NotificationType, name="notification_type"), nullable=False)
    reference_id: Mapped[int | None] = mapped_column(BigInteger().with_variant(Integer, "sqlite"))
    recipient: Mapped[str | None] = mapped_column(String(128), index=True)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)


# ---------- AUDIT ----------
class AuditLog(Base):
    __tablename__ = "audit_log"
    id: Mapped[int] = mapped_column(PK, primary_key=True)
    actor: Mapped[str | None] = mapped_column(String(128))
    action: Mapped[str] = mapped_column(String(64), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(64), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(64), nullable=False)
    meta: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (Index("ix_audit_entity", "entity_type", "entity_id"),)
