from __future__ import annotations

import enum
from datetime import datetime, timezone

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import relationship

from partsdb.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RequestUrgencyEnum(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class RequestStatusEnum(str, enum.Enum):
    OPEN = "open"
    ORDERED = "ordered"
    RECEIVED = "received"
    CANCELLED = "cancelled"


class PartsRequest(Base):
    __tablename__ = "parts_requests"
    __table_args__ = (
        Index("ix_parts_requests_status", "status", "requested_at"),
        Index("ix_parts_requests_ticket", "ticket_id"),
    )

    id = Column(Integer, primary_key=True, index=True)
    ticket_id = Column(String(64), nullable=False)
    requester_id = Column(String(64), nullable=False)
    # Who collects the parts; defaults to the requester.
    assigned_technician_id = Column(String(64), nullable=True, index=True)
    urgency = Column(
        SAEnum(RequestUrgencyEnum, name="parts_request_urgency_enum", native_enum=False),
        nullable=False,
        default=RequestUrgencyEnum.MEDIUM,
    )
    status = Column(
        SAEnum(RequestStatusEnum, name="parts_request_status_enum", native_enum=False),
        nullable=False,
        default=RequestStatusEnum.OPEN,
    )
    purchase_order_id = Column(Integer, ForeignKey("purchase_orders.id", ondelete="SET NULL"), nullable=True)
    notes = Column(Text, nullable=True)

    requested_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    ordered_at = Column(DateTime(timezone=True), nullable=True)
    received_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)

    lines = relationship(
        "PartsRequestLine",
        back_populates="request",
        lazy="selectin",
        order_by="PartsRequestLine.id",
        cascade="all, delete-orphan",
    )


class PartsRequestLine(Base):
    __tablename__ = "parts_request_lines"
    __table_args__ = (
        CheckConstraint("quantity_requested > 0", name="ck_parts_request_line_quantity_positive"),
    )

    id = Column(Integer, primary_key=True, index=True)
    parts_request_id = Column(Integer, ForeignKey("parts_requests.id", ondelete="CASCADE"), nullable=False, index=True)
    part_id = Column(Integer, ForeignKey("parts.id", ondelete="RESTRICT"), nullable=False)
    quantity_requested = Column(Integer, nullable=False)
    note = Column(Text, nullable=True)

    request = relationship("PartsRequest", back_populates="lines")
    part = relationship("Part", lazy="joined")
