import enum

class Priority(str, enum.Enum):
    low = "low"
    normal = "normal"
    high = "high"
    urgent = "urgent"

class RequestStatus(str, enum.Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"
    cancelled = "cancelled"

class POStatus(str, enum.Enum):
    draft = "draft"
    sent = "sent"
    confirmed = "confirmed"
    partially_received = "partially_received"
    received = "received"
    cancelled = "cancelled"

class ReceiptStatus(str, enum.Enum):
    pending_verification = "pending_verification"
    verified = "verified"
    rejected = "rejected"
    confirmed = "confirmed"

class LocationType(str, enum.Enum):
    refrigerator = "refrigerator"
    freezer = "freezer"
    dry_storage = "dry_storage"
    counter = "counter"

class ProcessType(str, enum.Enum):
    preparation = "preparation"
    cooking = "cooking"
    packaging = "packaging"
    quality_control = "quality_control"

class ProcessingStatus(str, enum.Enum):
    planned = "planned"
    in_progress = "in_progress"
    completed = "completed"
    cancelled = "cancelled"

class TransportStatus(str, enum.Enum):
    scheduled = "scheduled"
    in_transit = "in_transit"
    delivered = "delivered"
    cancelled = "cancelled"

class ProductType(str, enum.Enum):
    raw_material = "raw_material"
    finished_product = "finished_product"
    service = "service"

class SupplierRank(str, enum.Enum):
    A = "A"
    B = "B"
    C = "C"

class NotificationType(str, enum.Enum):
    purchase_request_created = "purchase_request_created"
    purchase_request_approved = "purchase_request_approved"
    purchase_request_rejected = "purchase_request_rejected"
    purchase_order_created = "purchase_order_created"
    goods_receipt_created = "goods_receipt_created"
    goods_received = "goods_received"
    inventory_low = "inventory_low"
    processing_completed = "processing_completed"
    transportation_scheduled = "transportation_scheduled"
