from __future__ import annotations

import enum
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from partsdb.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PurchaseOrderStatusEnum(str, enum.Enum):
    DRAFT = "draft"
    SUBMITTED = "submitted"
    APPROVED = "approved"
    PARTIAL = "partial"
    RECEIVED = "received"
    CANCELLED = "cancelled"


class PurchaseOrderSourceEnum(str, enum.Enum):
    LOCAL_VENDOR = "LOCAL_VENDOR"
    AHS_PORTAL = "AHS_PORTAL"


RECEIVABLE_STATUSES = {PurchaseOrderStatusEnum.APPROVED, PurchaseOrderStatusEnum.PARTIAL}


class Vendor(Base):
    __tablename__ = "vendors"
    __table_args__ = (UniqueConstraint("code", name="uq_vendor_code"),)

    id = Column(Integer, primary_key=True, index=True)
    code = Column(String(32), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    contact_email = Column(String(255), nullable=True)
    phone = Column(String(64), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)


class PurchaseOrder(Base):
    __tablename__ = "purchase_orders"
    __table_args__ = (
        UniqueConstraint("po_number", name="uq_purchase_order_number"),
        Index("ix_purchase_orders_status", "status"),
    )

    id = Column(Integer, primary_key=True, index=True)
    po_number = Column(String(32), nullable=False, index=True)
    vendor_id = Column(Integer, ForeignKey("vendors.id", ondelete="RESTRICT"), nullable=False, index=True)
    order_date = Column(Date, nullable=False)
    expected_delivery_date = Column(Date, nullable=True)
    source = Column(
        SAEnum(PurchaseOrderSourceEnum, name="purchase_order_source_enum", native_enum=False),
        nullable=False,
        default=PurchaseOrderSourceEnum.LOCAL_VENDOR,
    )
    status = Column(
        SAEnum(PurchaseOrderStatusEnum, name="purchase_order_status_enum", native_enum=False),
        nullable=False,
        default=PurchaseOrderStatusEnum.DRAFT,
    )

    tax_rate = Column(Numeric(6, 4), nullable=False, default=0)
    subtotal = Column(Numeric(12, 2), nullable=False, default=0)
    tax_amount = Column(Numeric(12, 2), nullable=False, default=0)
    shipping_amount = Column(Numeric(12, 2), nullable=False, default=0)
    total = Column(Numeric(12, 2), nullable=False, default=0)

    notes = Column(Text, nullable=True)
    created_by_id = Column(String(64), nullable=True)
    approved_by_id = Column(String(64), nullable=True)
    approved_at = Column(DateTime(timezone=True), nullable=True)
    received_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    vendor = relationship("Vendor", lazy="joined")
    lines = relationship(
        "PurchaseOrderLine",
        back_populates="purchase_order",
        lazy="selectin",
        order_by="PurchaseOrderLine.id",
        cascade="all, delete-orphan",
    )


class PurchaseOrderLine(Base):
    __tablename__ = "purchase_order_lines"
    __table_args__ = (
        Index("ix_purchase_order_lines_po", "purchase_order_id"),
        Index("ix_purchase_order_lines_request", "parts_request_id"),
        CheckConstraint("quantity_ordered > 0", name="ck_po_line_quantity_positive"),
        CheckConstraint(
            "quantity_received >= 0 AND quantity_received <= quantity_ordered",
            name="ck_po_line_received_within_ordered",
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    purchase_order_id = Column(Integer, ForeignKey("purchase_orders.id", ondelete="CASCADE"), nullable=False)
    part_id = Column(Integer, ForeignKey("parts.id", ondelete="RESTRICT"), nullable=False, index=True)
    description = Column(String(255), nullable=True)
    quantity_ordered = Column(Integer, nullable=False)
    quantity_received = Column(Integer, nullable=False, default=0)
    quantity_damaged = Column(Integer, nullable=False, default=0)
    unit_price = Column(Numeric(12, 2), nullable=False, default=0)
    line_total = Column(Numeric(12, 2), nullable=False, default=0)

    ticket_id = Column(String(64), nullable=True, index=True)
    parts_request_id = Column(Integer, ForeignKey("parts_requests.id", ondelete="SET NULL"), nullable=True)
    parts_request_line_id = Column(Integer, ForeignKey("parts_request_lines.id", ondelete="SET NULL"), nullable=True)

    purchase_order = relationship("PurchaseOrder", back_populates="lines")
    part = relationship("Part", lazy="joined")

    @property
    def quantity_remaining(self) -> int:
        return max(0, (self.quantity_ordered or 0) - (self.quantity_received or 0))
