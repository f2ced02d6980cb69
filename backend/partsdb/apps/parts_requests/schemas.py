from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from . import models


class PartsRequestItemCreate(BaseModel):
    part_id: int
    quantity: int
    note: Optional[str] = None


class PartsRequestCreate(BaseModel):
    ticket_id: str
    urgency: models.RequestUrgencyEnum = models.RequestUrgencyEnum.MEDIUM
    assigned_technician_id: Optional[str] = None
    notes: Optional[str] = None
    items: List[PartsRequestItemCreate] = Field(default_factory=list)


class PartsRequestLineRead(BaseModel):
    id: int
    part_id: int
    quantity_requested: int
    note: Optional[str] = None

    class Config:
        from_attributes = True


class PartsRequestRead(BaseModel):
    id: int
    ticket_id: str
    requester_id: str
    assigned_technician_id: Optional[str] = None
    urgency: models.RequestUrgencyEnum
    status: models.RequestStatusEnum
    purchase_order_id: Optional[int] = None
    notes: Optional[str] = None
    requested_at: datetime
    ordered_at: Optional[datetime] = None
    received_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    lines: List[PartsRequestLineRead] = Field(default_factory=list)

    class Config:
        from_attributes = True


class PartsRequestQueueItem(PartsRequestRead):
    days_waiting: int = 0
    sla_breached: bool = False


class ProcurementMetrics(BaseModel):
    pending_requests: int
    ordered_requests: int
    received_this_period: int
    avg_days_to_fulfill: float
    sla_breaches: int
    requests_by_urgency: Dict[str, int]
    period_days: int
    sla_days: int
