from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from partsdb.apps.inventory.schemas import MovementRead


class TransferRequest(BaseModel):
    part_id: int
    from_location_id: int
    to_location_id: int
    quantity: int
    serialized_unit_ids: List[int] = Field(default_factory=list)
    ticket_id: Optional[str] = None
    notes: Optional[str] = None


class TransferResult(BaseModel):
    part_id: int
    quantity: int
    movements: List[MovementRead] = Field(default_factory=list)


class PickupRequest(BaseModel):
    destination_location_id: Optional[int] = None


class PickupResult(BaseModel):
    ticket_id: str
    destination_location_id: int
    items_transferred: int


class ReleaseRequest(BaseModel):
    to_location_id: int
    notes: Optional[str] = None


class ReleaseResult(BaseModel):
    ticket_id: str
    to_location_id: int
    items_released: int


class StagedPartItemRead(BaseModel):
    id: int
    ticket_id: str
    part_id: int
    part_number: Optional[str] = None
    part_name: Optional[str] = None
    quantity: int
    staging_location_id: int
    purchase_order_line_id: Optional[int] = None
    parts_request_id: Optional[int] = None
    serialized_unit_id: Optional[int] = None
    serial_number: Optional[str] = None
    assigned_technician_id: Optional[str] = None
    picked_up: bool
    picked_up_at: Optional[datetime] = None
    picked_up_by_id: Optional[str] = None
    picked_up_to_location_id: Optional[int] = None
    staged_at: datetime

    class Config:
        from_attributes = True


class PickList(BaseModel):
    ticket_id: str
    assigned_technician_ids: List[str] = Field(default_factory=list)
    items: List[StagedPartItemRead] = Field(default_factory=list)
    total_quantity: int = 0
    picked_items: int = 0
    total_items: int = 0
