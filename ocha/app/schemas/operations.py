from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict

from ocha.app.db.models.core_types import NotificationType, ProcessingStatus, ProcessType, TransportStatus


class ProcessingRecordRead(BaseModel):
    id: int
    batch_number: str
    product_id: int
    input_quantity: Decimal
    input_location_id: int
    process_type: ProcessType
    output_product_id: int
    output_quantity: Decimal | None = None
    output_location_id: int
    processed_by: str | None = None
    notes: str | None = None
    status: ProcessingStatus
    started_at: datetime | None = None
    completed_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class TransportationLineRead(BaseModel):
    product_id: int
    quantity: Decimal

    model_config = ConfigDict(from_attributes=True)


class TransportationOrderRead(BaseModel):
    id: int
    transport_number: str
    from_location_id: int
    to_location_id: int
    driver: str | None = None
    vehicle: str | None = None
    expected_departure: datetime | None = None
    expected_arrival: datetime | None = None
    actual_departure: datetime | None = None
    actual_arrival: datetime | None = None
    status: TransportStatus
    notes: str | None = None
    lines: list[TransportationLineRead] = []

    model_config = ConfigDict(from_attributes=True)


class NotificationRead(BaseModel):
    id: int
    type: NotificationType
    reference_id: int | None = None
    recipient: str | None = None
    message: str
    read: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
