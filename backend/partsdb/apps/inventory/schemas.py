from __future__ import annotations

from datetime import datetime, date
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field

from . import models


class StockLocationCreate(BaseModel):
    code: str
    name: str
    location_type: models.LocationTypeEnum = models.LocationTypeEnum.WAREHOUSE
    assigned_technician_id: Optional[str] = None
    is_staging: bool = False
    notes: Optional[str] = None


class StockLocationRead(StockLocationCreate):
    id: int
    is_active: bool
    created_at: datetime

    class Config:
        from_attributes = True


class VehicleAssignmentRequest(BaseModel):
    technician_id: str
    reassign: bool = False


class PartCreate(BaseModel):
    part_number: str
    name: str
    description: Optional[str] = None
    category: models.PartCategoryEnum = models.PartCategoryEnum.PART
    uom: str = "EA"
    unit_cost: Decimal = Field(default=Decimal("0"), ge=0)
    is_serialized: bool = False


class PartUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    category: Optional[models.PartCategoryEnum] = None
    uom: Optional[str] = None
    unit_cost: Optional[Decimal] = Field(default=None, ge=0)
    is_serialized: Optional[bool] = None
    is_active: Optional[bool] = None


class PartRead(PartCreate):
    id: int
    is_active: bool
    created_at: datetime

    class Config:
        from_attributes = True


class MovementCreate(BaseModel):
    movement_type: models.MovementTypeEnum
    part_id: int
    quantity: int
    from_location_id: Optional[int] = None
    to_location_id: Optional[int] = None
    ticket_id: Optional[str] = None
    notes: Optional[str] = None


class MovementRead(BaseModel):
    id: int
    part_id: int
    quantity: int
    movement_type: models.MovementTypeEnum
    from_location_id: Optional[int] = None
    to_location_id: Optional[int] = None
    serialized_unit_id: Optional[int] = None
    purchase_order_line_id: Optional[int] = None
    ticket_id: Optional[str] = None
    notes: Optional[str] = None
    actor_id: Optional[str] = None
    occurred_at: datetime

    class Config:
        from_attributes = True


class OnHandItem(BaseModel):
    part_id: int
    part_number: str
    part_name: str
    location_id: int
    location_code: str
    location_name: str
    quantity: int


class QuantityAtRead(BaseModel):
    part_id: int
    location_id: int
    quantity: int


class RecalculateResult(BaseModel):
    corrected_rows: int


class SerializedUnitRead(BaseModel):
    id: int
    part_id: int
    serial_number: str
    status: models.SerializedUnitStatusEnum
    current_location_id: Optional[int] = None
    vendor_id: Optional[int] = None
    purchase_order_id: Optional[int] = None
    purchase_order_line_id: Optional[int] = None
    ticket_id: Optional[str] = None
    received_date: Optional[date] = None
    unit_cost: Optional[Decimal] = None
    warranty_start_date: Optional[date] = None
    warranty_end_date: Optional[date] = None
    installed_on_equipment_id: Optional[str] = None
    installed_at: Optional[datetime] = None
    notes: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class SerializedUnitWithWarranty(SerializedUnitRead):
    warranty_status: str


class UnitStatusChange(BaseModel):
    status: models.SerializedUnitStatusEnum
    equipment_id: Optional[str] = None
    location_id: Optional[int] = None
    notes: Optional[str] = None


class UnitRelocateRequest(BaseModel):
    to_location_id: int
    ticket_id: Optional[str] = None
    notes: Optional[str] = None


class PartStockSummary(BaseModel):
    part: PartRead
    locations: List[OnHandItem] = Field(default_factory=list)
    total_quantity: int = 0
