from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field

from . import models


class VendorCreate(BaseModel):
    code: str
    name: str
    contact_email: Optional[str] = None
    phone: Optional[str] = None


class VendorRead(VendorCreate):
    id: int
    is_active: bool
    created_at: datetime

    class Config:
        from_attributes = True


class PurchaseOrderLineCreate(BaseModel):
    part_id: int
    quantity_ordered: int
    unit_price: Optional[Decimal] = Field(default=None, ge=0)
    description: Optional[str] = None
    ticket_id: Optional[str] = None
    parts_request_id: Optional[int] = None
    parts_request_line_id: Optional[int] = None


class PurchaseOrderLineUpdate(BaseModel):
    quantity_ordered: Optional[int] = None
    unit_price: Optional[Decimal] = Field(default=None, ge=0)
    description: Optional[str] = None
    ticket_id: Optional[str] = None


class PurchaseOrderLineRead(BaseModel):
    id: int
    purchase_order_id: int
    part_id: int
    description: Optional[str] = None
    quantity_ordered: int
    quantity_received: int
    quantity_damaged: int
    quantity_remaining: int
    unit_price: Decimal
    line_total: Decimal
    ticket_id: Optional[str] = None
    parts_request_id: Optional[int] = None
    parts_request_line_id: Optional[int] = None

    class Config:
        from_attributes = True


class PurchaseOrderHeader(BaseModel):
    vendor_id: Optional[int] = None
    order_date: Optional[date] = None
    expected_delivery_date: Optional[date] = None
    source: models.PurchaseOrderSourceEnum = models.PurchaseOrderSourceEnum.LOCAL_VENDOR
    shipping_amount: Decimal = Field(default=Decimal("0"), ge=0)
    tax_rate: Optional[Decimal] = Field(default=None, ge=0)
    notes: Optional[str] = None


class PurchaseOrderCreate(PurchaseOrderHeader):
    lines: List[PurchaseOrderLineCreate] = Field(default_factory=list)


class PurchaseOrderFromRequests(PurchaseOrderHeader):
    request_ids: List[int] = Field(default_factory=list)


class PurchaseOrderHeaderUpdate(BaseModel):
    vendor_id: Optional[int] = None
    order_date: Optional[date] = None
    expected_delivery_date: Optional[date] = None
    source: Optional[models.PurchaseOrderSourceEnum] = None
    shipping_amount: Optional[Decimal] = Field(default=None, ge=0)
    tax_rate: Optional[Decimal] = Field(default=None, ge=0)
    notes: Optional[str] = None


class PurchaseOrderRead(BaseModel):
    id: int
    po_number: str
    vendor_id: int
    order_date: date
    expected_delivery_date: Optional[date] = None
    source: models.PurchaseOrderSourceEnum
    status: models.PurchaseOrderStatusEnum
    tax_rate: Decimal
    subtotal: Decimal
    tax_amount: Decimal
    shipping_amount: Decimal
    total: Decimal
    notes: Optional[str] = None
    created_by_id: Optional[str] = None
    approved_by_id: Optional[str] = None
    approved_at: Optional[datetime] = None
    received_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime
    lines: List[PurchaseOrderLineRead] = Field(default_factory=list)

    class Config:
        from_attributes = True


class PurchaseOrderTransition(BaseModel):
    status: models.PurchaseOrderStatusEnum


class ReceiveLine(BaseModel):
    line_id: int
    quantity_received: int = 0
    quantity_damaged: int = 0
    location_id: Optional[int] = None
    serial_numbers: List[str] = Field(default_factory=list)
    warranty_start_date: Optional[date] = None
    warranty_end_date: Optional[date] = None


class ReceivePurchaseOrder(BaseModel):
    lines: List[ReceiveLine] = Field(default_factory=list)
    notes: Optional[str] = None


class ReceiveResult(BaseModel):
    purchase_order: PurchaseOrderRead
    units_received: int
    serialized_unit_ids: List[int] = Field(default_factory=list)
    staged_item_ids: List[int] = Field(default_factory=list)
    tickets_ready: List[str] = Field(default_factory=list)
    requests_received: List[int] = Field(default_factory=list)
